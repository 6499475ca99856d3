"""Presence tracking: decides which configured devices arrived or left.

Every configured address is either absent or present. A scan that shows an
absent address moves it to present and runs its start actions; a scan that
no longer shows a present address moves it back to absent and runs its stop
actions. Nothing else triggers actions, so a device that stays in range
fires its start actions exactly once.

Addresses are compared as-is. Discovery reports upper-case MACs, so the
configuration file must use upper case too or the device never arrives.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol, Sequence

from action_runner import ActionResult, ActionRunner
from device_models import Device, DeviceConfig, PresentDevice

logger = logging.getLogger(__name__)


class Runner(Protocol):
    def run_all(self, commands: Iterable[str]) -> list[ActionResult]: ...


class PresenceEngine:
    """Owns the set of present devices and fires transition actions."""

    def __init__(self, runner: Optional[Runner] = None) -> None:
        self._runner = runner if runner is not None else ActionRunner()
        self._present: dict[str, PresentDevice] = {}

    @property
    def present(self) -> dict[str, PresentDevice]:
        """Copy of the present set, keyed by address."""
        return dict(self._present)

    def is_present(self, address: str) -> bool:
        return address in self._present

    def __len__(self) -> int:
        return len(self._present)

    def transition(self, scan_result: Iterable[Device], config: Sequence[DeviceConfig]) -> None:
        """
        Apply one scan to the present set.

        Arrivals are handled before departures. Actions run synchronously
        in configuration order.

        Args:
            scan_result: Devices visible in this cycle, in scan order
            config: Configured devices for this cycle
        """
        scanned = list(scan_result)
        self._detect_arrivals(scanned, config)
        self._detect_departures(scanned, config)

    def _detect_arrivals(self, scanned: list[Device], config: Sequence[DeviceConfig]) -> None:
        for cfg in config:
            for device in scanned:
                if device.address != cfg.address or device.address in self._present:
                    continue
                self._present[cfg.address] = PresentDevice(address=cfg.address, name=device.name)
                logger.info("Device arrived: %s (%s)", cfg.name, device.address)
                self._run(cfg.start_actions, cfg, "start")

    def _detect_departures(self, scanned: list[Device], config: Sequence[DeviceConfig]) -> None:
        visible = {device.address for device in scanned}
        for address in list(self._present):
            if address in visible:
                continue
            entry = self._present.pop(address)
            cfg = _find_config(config, address)
            if cfg is None:
                logger.info("Removing %s (%s): no longer configured, no stop actions", entry.name, address)
                continue
            logger.info("Device left: %s (%s)", cfg.name, address)
            self._run(cfg.stop_actions, cfg, "stop")

    def _run(self, commands: list[str], cfg: DeviceConfig, kind: str) -> None:
        if not commands:
            logger.debug("No %s actions for %s", kind, cfg.address)
            return
        results = self._runner.run_all(commands)
        failed = [result for result in results if not result.ok]
        if failed:
            logger.warning(
                "%d/%d %s action(s) failed for %s",
                len(failed),
                len(results),
                kind,
                cfg.address,
            )


def _find_config(config: Sequence[DeviceConfig], address: str) -> Optional[DeviceConfig]:
    for cfg in config:
        if cfg.address == address:
            return cfg
    return None
