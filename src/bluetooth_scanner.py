import logging
import re
import subprocess
import time
from typing import Optional

from device_models import Device

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "[Unknown]"

# Extra time granted to bluetoothctl on top of the scan duration
SCAN_GRACE_SECONDS = 5

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]|\x01|\x02")
_DEVICE_EVENT = re.compile(
    r"\[(?P<event>NEW|CHG|DEL)\]\s+Device\s+(?P<mac>[0-9A-Fa-f:]{17})\s*(?P<rest>.*)$"
)
_DISCOVERY_STARTED = ("Discovery started", "Discovering: yes")


class AdapterUnavailableError(RuntimeError):
    """No usable Bluetooth controller."""


def _is_valid_mac(mac_address: str) -> bool:
    """Validate MAC address format (XX:XX:XX:XX:XX:XX)."""
    if not mac_address or len(mac_address) != 17:
        return False
    parts = mac_address.split(":")
    if len(parts) != 6:
        return False
    for part in parts:
        if len(part) != 2 or not all(c in "0123456789ABCDEFabcdef" for c in part):
            return False
    return True


def _strip_ansi(line: str) -> str:
    return _ANSI_ESCAPE.sub("", line).strip()


def _placeholder_name(mac_address: str, name: str) -> bool:
    # bluetoothctl prints the address with dashes when the device has no name
    return not name or name.replace("-", ":").upper() == mac_address.upper()


def ensure_adapter() -> None:
    """
    Check that a Bluetooth controller is available.

    Raises:
        AdapterUnavailableError: If bluetoothctl is missing or reports no controller
    """
    try:
        result = subprocess.run(
            ["bluetoothctl", "show"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except FileNotFoundError as exc:
        raise AdapterUnavailableError("bluetoothctl not found. Install the bluez package.") from exc
    except subprocess.TimeoutExpired as exc:
        raise AdapterUnavailableError("Timeout querying the Bluetooth controller") from exc

    output = f"{result.stdout}\n{result.stderr}"
    if "No default controller available" in output or "Controller" not in result.stdout:
        raise AdapterUnavailableError("Please connect a bluetooth adaptor")
    logger.debug("Bluetooth controller available")


def parse_scan_output(output: str) -> tuple[list[str], dict[str, str]]:
    """
    Parse the event stream printed by ``bluetoothctl scan on``.

    Devices listed before discovery starts come from BlueZ's cache and only
    contribute names; devices reported once discovery is running count as
    seen.

    Returns:
        Seen MAC addresses in first-seen order, and a MAC -> name mapping
    """
    seen: list[str] = []
    names: dict[str, str] = {}
    discovering = False

    for raw_line in output.splitlines():
        line = _strip_ansi(raw_line)
        if not line:
            continue
        if any(marker in line for marker in _DISCOVERY_STARTED):
            discovering = True
            continue

        match = _DEVICE_EVENT.search(line)
        if not match:
            continue

        event = match.group("event")
        mac = match.group("mac")
        rest = match.group("rest").strip()
        if not _is_valid_mac(mac):
            continue

        if event == "NEW":
            if not _placeholder_name(mac, rest):
                names.setdefault(mac, rest)
            counts = discovering
        elif event == "CHG":
            if rest.startswith("Name:") or rest.startswith("Alias:"):
                value = rest.split(":", 1)[1].strip()
                if not _placeholder_name(mac, value):
                    names[mac] = value
            counts = discovering and rest.startswith(("RSSI:", "TxPower:", "ManufacturerData", "ServiceData"))
        else:
            counts = False

        if counts and mac not in seen:
            seen.append(mac)

    return seen, names


def _run_discovery(timeout_seconds: int) -> Optional[str]:
    try:
        result = subprocess.run(
            ["bluetoothctl", "--timeout", str(timeout_seconds), "scan", "on"],
            capture_output=True,
            text=True,
            timeout=timeout_seconds + SCAN_GRACE_SECONDS,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Timeout waiting for bluetoothctl scan after %ss", timeout_seconds)
        return None
    except FileNotFoundError as exc:
        raise AdapterUnavailableError("bluetoothctl not found. Install the bluez package.") from exc

    if result.returncode != 0:
        logger.error("bluetoothctl scan failed (%s): %s", result.returncode, result.stderr.strip())
        return None
    return result.stdout


def get_connected_devices() -> list[str]:
    """
    Get MAC addresses of connected devices.

    Connected phones often stop answering inquiries, so they are merged
    into every scan.
    """
    try:
        result = subprocess.run(
            ["bluetoothctl", "devices", "Connected"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Timeout getting connected devices")
        return []
    except FileNotFoundError:
        logger.error("bluetoothctl not found. Bluetooth may not be available.")
        return []

    if result.returncode != 0:
        logger.error("Failed to get connected devices")
        return []

    connected: list[str] = []
    for line in result.stdout.split("\n"):
        line = _strip_ansi(line)
        if line.startswith("Device "):
            parts = line.split(" ", 2)
            if len(parts) >= 2 and _is_valid_mac(parts[1]):
                connected.append(parts[1])
    return connected


def get_device_name(mac_address: str) -> Optional[str]:
    """
    Get the friendly name of a device by MAC address.

    Args:
        mac_address: The MAC address of the device (format: XX:XX:XX:XX:XX:XX)

    Returns:
        The device name if found, None otherwise
    """
    if not _is_valid_mac(mac_address):
        logger.error(f"Invalid MAC address format: {mac_address}")
        return None

    try:
        result = subprocess.run(
            ["bluetoothctl", "info", mac_address],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"Timeout fetching info for {mac_address}")
        return None
    except FileNotFoundError:
        logger.error("bluetoothctl not found. Bluetooth may not be available.")
        return None

    if result.returncode != 0:
        logger.debug(f"Failed to fetch info for {mac_address}: {result.stderr.strip()}")
        return None

    for line in result.stdout.split("\n"):
        line = _strip_ansi(line)
        if line.startswith("Name:"):
            name = line.split(":", 1)[1].strip()
            if name:
                return name
    return None


def scan_devices(max_devices: int, timeout_seconds: int) -> list[Device]:
    """
    Discover nearby Bluetooth devices.

    Args:
        max_devices: Maximum number of devices to return
        timeout_seconds: How long discovery runs

    Returns:
        Visible devices in discovery order, connected devices last. Empty
        when the scan itself failed.

    Raises:
        AdapterUnavailableError: If there is no Bluetooth controller
    """
    ensure_adapter()

    start = time.perf_counter()
    output = _run_discovery(timeout_seconds)
    if output is None:
        return []

    seen, names = parse_scan_output(output)
    for mac in get_connected_devices():
        if mac not in seen:
            seen.append(mac)

    if len(seen) > max_devices:
        logger.info("Discovered %d device(s), keeping the first %d", len(seen), max_devices)
        seen = seen[:max_devices]

    devices = []
    for mac in seen:
        name = names.get(mac) or get_device_name(mac) or UNKNOWN_NAME
        devices.append(Device(address=mac, name=name))

    logger.info(
        "Scan complete: %d device(s) visible in %.2fs",
        len(devices),
        time.perf_counter() - start,
    )
    for device in devices:
        logger.debug("Visible: %s (%s)", device.address, device.name)
    return devices
