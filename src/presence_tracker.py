import argparse
import logging
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from dotenv import find_dotenv, load_dotenv

import bluetooth_scanner
from action_runner import ActionRunner
from bluetooth_scanner import AdapterUnavailableError
from device_config import ConfigError, ensure_config, load_device_configs
from device_models import Device, DeviceConfig
from instance_lock import InstanceLock, InstanceLockError
from logging_utils import configure_root_logger
from presence_engine import PresenceEngine
from tracker_settings import Settings, load_settings

logger = logging.getLogger(__name__)

# Errors that stop the daemon instead of being logged per cycle
FATAL_ERRORS = (AdapterUnavailableError, ConfigError)


class PollLoop:
    """
    Runs presence cycles on a fixed interval.

    Each cycle reloads the configuration, scans, then hands both to the
    engine. Cycles never overlap: when one overruns the interval the
    missed ticks are skipped and the loop waits for the next tick.
    """

    def __init__(
        self,
        engine: PresenceEngine,
        load_config: Callable[[], Sequence[DeviceConfig]],
        scan: Callable[[], Sequence[Device]],
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.load_config = load_config
        self.scan = scan
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._running = False
        self.cycles = 0

    def run_cycle(self) -> None:
        logger.info("=" * 50)
        logger.info(f"Starting check cycle at {datetime.now().isoformat()}")

        config = self.load_config()
        devices = self.scan()
        if not devices:
            logger.info("No devices visible in this cycle")

        self.engine.transition(devices, config)

        present = self.engine.present
        if present:
            names = ", ".join(f"{entry.name} ({address})" for address, entry in present.items())
            logger.info(f"Present: {names}")
        else:
            logger.info("Present: none")

    def _wait_for_next_tick(self, tick: float) -> float:
        """Sleep until the tick after *tick*; return that tick."""
        next_tick = tick + self.interval
        now = self._clock()
        if now > next_tick:
            missed = int((now - next_tick) // self.interval) + 1
            logger.warning(f"Cycle overran the {self.interval}s interval, skipping {missed} tick(s)")
            next_tick += missed * self.interval
        self._sleep(next_tick - now)
        return next_tick

    def stop(self) -> None:
        self._running = False

    def run_forever(self, max_cycles: Optional[int] = None) -> None:
        self._running = True
        tick = self._clock()
        while self._running:
            try:
                self.run_cycle()
            except FATAL_ERRORS:
                raise
            except Exception:
                logger.exception("Error during check cycle")
            self.cycles += 1

            if max_cycles is not None and self.cycles >= max_cycles:
                break
            if not self._running:
                break
            logger.info(f"Cycle complete. Next check in {self.interval} seconds...")
            tick = self._wait_for_next_tick(tick)


def build_loop(settings: Settings) -> PollLoop:
    runner = ActionRunner(shell=settings.action_shell, timeout=settings.action_timeout)
    engine = PresenceEngine(runner)
    return PollLoop(
        engine,
        load_config=lambda: load_device_configs(settings.config_file),
        scan=lambda: bluetooth_scanner.scan_devices(settings.max_devices, settings.scan_timeout),
        interval=settings.polling_interval,
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="proximity",
        description="Run commands when Bluetooth devices come into or leave range",
    )
    parser.add_argument("--config", type=Path, help="Device configuration file (default: ~/.proximity)")
    parser.add_argument("--interval", type=int, help="Seconds between scans")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", default="proximity.log", help="Log file name inside LOG_DIR")
    args = parser.parse_args(argv)
    if args.interval is not None and args.interval < 1:
        parser.error("--interval must be at least 1")
    return args


def _handle_termination(loop: PollLoop):
    def handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        loop.stop()
        raise KeyboardInterrupt

    return handler


def run_presence_tracker(settings: Settings, once: bool = False) -> int:
    """
    Start the daemon: check the configuration, take the instance lock and poll.

    Returns:
        Process exit status
    """
    try:
        if not ensure_config(settings.config_file):
            logger.info(f"Edit {settings.config_file} to add your devices, then start again")
            return 0
    except ConfigError as e:
        logger.critical(str(e))
        return 1

    lock = InstanceLock(settings.lock_file)
    try:
        lock.acquire()
    except InstanceLockError as e:
        logger.critical(str(e))
        return 1

    previous_handler = signal.getsignal(signal.SIGTERM)
    try:
        bluetooth_scanner.ensure_adapter()

        loop = build_loop(settings)
        signal.signal(signal.SIGTERM, _handle_termination(loop))

        logger.info("Starting proximity presence tracker")
        logger.info(f"Configuration file: {settings.config_file}")
        logger.info(f"Polling interval: {settings.polling_interval}s")
        logger.info(f"Scan timeout: {settings.scan_timeout}s, max devices: {settings.max_devices}")
        if settings.action_timeout:
            logger.info(f"Action timeout: {settings.action_timeout}s")

        try:
            loop.run_forever(max_cycles=1 if once else None)
        except KeyboardInterrupt:
            logger.info("Presence tracker stopped by user")
        return 0
    except FATAL_ERRORS as e:
        logger.critical(f"Presence tracker stopped: {e}")
        return 1
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)
        lock.release()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for the proximity daemon."""
    args = parse_args(argv)

    # Load environment variables
    load_dotenv(find_dotenv(usecwd=True))
    settings = load_settings()
    if args.config is not None:
        settings.config_file = args.config.expanduser()
    if args.interval is not None:
        settings.polling_interval = args.interval
    if args.debug:
        settings.log_level = logging.DEBUG

    configure_root_logger(args.log_file, level=settings.log_level)
    sys.exit(run_presence_tracker(settings, once=args.once))


if __name__ == "__main__":
    main()
