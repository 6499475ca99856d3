"""Loading and generating the device configuration file.

The file is JSON and lists the devices to watch together with the
commands to run when each one arrives or leaves::

    {
      "devices": [
        {"mac": "FF:FF:FF:FF:FF:FF", "name": "Default Name", "start": [], "stop": []}
      ]
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from device_models import DeviceConfig

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE: dict[str, Any] = {
    "devices": [
        {
            "mac": "FF:FF:FF:FF:FF:FF",
            "name": "Default Name",
            "start": [],
            "stop": [],
        }
    ]
}


class ConfigError(RuntimeError):
    """The configuration file exists but cannot be used."""


def generate_default_config(path: Path) -> Path:
    """Write the template configuration to *path*, creating parent directories."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(DEFAULT_TEMPLATE, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Error while writing default configuration file {path}: {exc}") from exc
    logger.info("New configuration successfully written to: %s", path)
    return path


def ensure_config(path: Path) -> bool:
    """
    Make sure a configuration file exists.

    Returns:
        True if the file was already there, False if the template had to be
        generated (the caller should stop so the user can fill it in)
    """
    path = Path(path)
    if path.is_file():
        return True
    generate_default_config(path)
    return False


def _load_actions(entry: dict[str, Any], key: str, address: str) -> list[str]:
    raw = entry.get(key)
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ignoring '%s' for %s: expected a list, got %s", key, address, type(raw).__name__)
        return []
    actions = []
    for command in raw:
        if isinstance(command, str) and command.strip():
            actions.append(command)
        else:
            logger.warning("Ignoring invalid '%s' entry for %s: %r", key, address, command)
    return actions


def _parse_entry(index: int, entry: Any) -> DeviceConfig | None:
    if not isinstance(entry, dict):
        logger.error("Device #%d is not an object, skipping", index)
        return None

    address = entry.get("mac")
    if not isinstance(address, str) or not address.strip():
        logger.error("Device #%d must set a valid 'mac' address, skipping", index)
        return None

    name = entry.get("name")
    if not isinstance(name, str) or not name:
        logger.warning("Device %s has no valid 'name', using its address", address)
        name = address

    return DeviceConfig(
        address=address,
        name=name,
        start_actions=_load_actions(entry, "start", address),
        stop_actions=_load_actions(entry, "stop", address),
    )


def load_device_configs(path: Path) -> list[DeviceConfig]:
    """
    Read the configured devices from *path*.

    Malformed entries are logged and skipped or completed with defaults;
    only an unreadable or structurally invalid file raises.

    Args:
        path: Location of the JSON configuration file

    Returns:
        Device configurations in file order

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except OSError as exc:
        raise ConfigError(f"Can't open the file {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigError(f"{path} is not valid UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    devices = payload.get("devices")
    if devices is None:
        logger.warning("No 'devices' list in %s", path)
        return []
    if not isinstance(devices, list):
        raise ConfigError(f"'devices' in {path} must be a list")

    configs = []
    for index, entry in enumerate(devices):
        config = _parse_entry(index, entry)
        if config is not None:
            configs.append(config)

    logger.debug("Loaded %d device configuration(s) from %s", len(configs), path)
    return configs
