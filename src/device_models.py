"""Data model shared by discovery, configuration and the presence engine."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Device:
    """A device seen by a Bluetooth scan.

    Two devices are the same entity when their addresses are equal. The
    comparison is exact: ``"aa:bb:..."`` and ``"AA:BB:..."`` are different
    devices.
    """

    address: str
    name: str = "[Unknown]"


@dataclass
class DeviceConfig:
    """A configured device and the commands to run on arrival/departure."""

    address: str
    name: str
    start_actions: list[str] = field(default_factory=list)
    stop_actions: list[str] = field(default_factory=list)


@dataclass
class PresentDevice:
    """Entry of the engine's present set. The name is kept for logging."""

    address: str
    name: str
