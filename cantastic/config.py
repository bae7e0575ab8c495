"""
Configuration management for CANtastic.

Config is stored in ~/.cantastic/config.json. Environment variables
override the file for the settings that are commonly changed per run.
"""

import json
import os
import random
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts. Default 2.
        base_delay: Initial delay in seconds before first retry. Default 0.5.
        max_delay: Maximum delay between retries in seconds. Default 5.0.
        exponential_base: Base for exponential backoff calculation. Default 2.
        jitter: Whether to add random jitter to delays. Default True.
    """

    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given retry attempt (0-indexed).

        Uses exponential backoff: delay = base_delay * (exponential_base ** attempt)
        """
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            # Random value between half the delay and the full delay
            delay = delay * (0.5 + random.random() * 0.5)

        return delay


CONFIG_DIR = Path.home() / ".cantastic"
CONFIG_FILE = CONFIG_DIR / "config.json"

VERSION_URL = "https://raw.githubusercontent.com/JMallick1997/CANtastic/main/version.txt"
PROJECT_URL = "https://github.com/JMallick1997/CANtastic/tree/main"

DEFAULT_CONFIG = {
    "interface": "can0",
    "root": "/",
    "uuid_script": "~/klipper/scripts/canbus_query.py",
    "editor": "nano",
    "version_url": None,
    "settle_delay": 3.0,
}


def get_config_path() -> Path:
    """Get the path to the config file."""
    return CONFIG_FILE


def load_config() -> dict:
    """Load config from file, falling back to defaults."""
    if not CONFIG_FILE.exists():
        return DEFAULT_CONFIG.copy()

    try:
        with open(CONFIG_FILE, "r") as f:
            config = json.load(f)
            # Merge with defaults to handle missing keys
            return {**DEFAULT_CONFIG, **config}
    except (json.JSONDecodeError, IOError):
        return DEFAULT_CONFIG.copy()


def save_config(config: dict) -> None:
    """Save config to file."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)


def get_interface() -> str:
    """Get the CAN interface name (default can0)."""
    env_iface = os.environ.get("CANTASTIC_INTERFACE")
    if env_iface:
        return env_iface

    config = load_config()
    return config.get("interface") or DEFAULT_CONFIG["interface"]


def get_root() -> Path:
    """Get the filesystem root the configuration files are resolved against."""
    env_root = os.environ.get("CANTASTIC_ROOT")
    if env_root:
        return Path(env_root)

    config = load_config()
    return Path(config.get("root") or "/")


def get_uuid_script() -> Path:
    """Get the path to Klipper's canbus_query.py script."""
    config = load_config()
    script = config.get("uuid_script") or DEFAULT_CONFIG["uuid_script"]
    return Path(os.path.expanduser(script))


def get_editor() -> str:
    """Get the editor used by the file viewer."""
    env_editor = os.environ.get("CANTASTIC_EDITOR")
    if env_editor:
        return env_editor

    config = load_config()
    return config.get("editor") or DEFAULT_CONFIG["editor"]


def get_version_url() -> str:
    """Get the URL of the published version file."""
    env_url = os.environ.get("CANTASTIC_VERSION_URL")
    if env_url:
        return env_url

    config = load_config()
    return config.get("version_url") or VERSION_URL


def get_settle_delay() -> float:
    """Seconds to wait between bringing an interface down and up again."""
    config = load_config()
    try:
        return float(config.get("settle_delay", DEFAULT_CONFIG["settle_delay"]))
    except (TypeError, ValueError):
        return DEFAULT_CONFIG["settle_delay"]
