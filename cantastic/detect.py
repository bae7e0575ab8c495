"""
CAN configuration detection.

Works out which configuration scheme is installed from the files present
on disk, reads the bitrate and queue length back out of those files, and
summarises the state of the CAN interface for the status header.

Usage:
    from cantastic.detect import detect, get_status

    scheme = detect()
    status = get_status(LinuxSystem(), interface="can0")
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from cantastic.schemes import (
    ESOTERICAL,
    GEMINI,
    LEGACY,
    SCHEMES,
    ConfigurationScheme,
    PersistedParameters,
    all_paths,
    resolve_path,
)
from cantastic.system import System

logger = logging.getLogger(__name__)

_IP_BITRATE = re.compile(r"bitrate (\d+)")
_IP_QLEN = re.compile(r"qlen (\d+)")


def _read_text(path: Path) -> Optional[str]:
    """Read a configuration file, returning None on failure."""
    try:
        with open(path, "r") as f:
            return f.read()
    except (OSError, IOError):
        return None


def detect(root: Union[str, Path] = "/") -> ConfigurationScheme:
    """
    Classify the installed CAN configuration from the files on disk.

    Builds a (legacy, esoterical, gemini) presence pattern where a
    two-file scheme counts as present if either of its files exists:

        000 -> Unknown
        100 -> Legacy
        010 -> Esoterical, or Esoterical-Broken if one file is missing
        001 -> Gemini, or Gemini-Broken if one file is missing
        any two or more -> Multiple

    Args:
        root: Filesystem root the system paths are resolved against.

    Returns:
        The detected ConfigurationScheme. Nothing is cached.
    """
    legacy_files = [p.is_file() for p in LEGACY.resolve(root)]
    esoterical_files = [p.is_file() for p in ESOTERICAL.resolve(root)]
    gemini_files = [p.is_file() for p in GEMINI.resolve(root)]

    bits = (any(legacy_files), any(esoterical_files), any(gemini_files))
    logger.debug(f"Method bits (legacy, esoterical, gemini): {bits}")

    if bits == (False, False, False):
        return ConfigurationScheme.UNKNOWN
    if bits == (True, False, False):
        return ConfigurationScheme.LEGACY
    if bits == (False, True, False):
        if all(esoterical_files):
            return ConfigurationScheme.ESOTERICAL
        return ConfigurationScheme.ESOTERICAL_BROKEN
    if bits == (False, False, True):
        if all(gemini_files):
            return ConfigurationScheme.GEMINI
        return ConfigurationScheme.GEMINI_BROKEN
    return ConfigurationScheme.MULTIPLE


def installed_files(root: Union[str, Path] = "/") -> List[Path]:
    """Every scheme file currently present, in detection order."""
    return [resolve_path(root, p) for p in all_paths() if resolve_path(root, p).is_file()]


def extract_parameters(
    scheme: ConfigurationScheme,
    root: Union[str, Path] = "/",
) -> PersistedParameters:
    """
    Read the bitrate and queue length back out of a scheme's files.

    Missing files or missing lines give None for that field rather than
    an error; a half-written configuration is something to report, not
    to crash on.

    Args:
        scheme: An installable scheme (Legacy, Esoterical, Gemini). Any
                other value has nothing to read and returns empty parameters.
        root: Filesystem root the system paths are resolved against.
    """
    definition = SCHEMES.get(scheme)
    if definition is None:
        return PersistedParameters()

    bitrate_text = _read_text(resolve_path(root, definition.bitrate_file))
    queue_text = _read_text(resolve_path(root, definition.queue_file))

    bitrate = definition.bitrate_rule(bitrate_text) if bitrate_text is not None else None
    queue = definition.queue_rule(queue_text) if queue_text is not None else None

    logger.debug(f"{definition.name} on disk: bitrate={bitrate} txqueuelen={queue}")
    return PersistedParameters(bitrate=bitrate, tx_queue_length=queue)


# ─────────────────────────────────────────────────────────────────────────────
# Interface status
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class CanStatus:
    """State of the CAN interface and its configuration."""
    interface: str
    present: bool
    is_up: bool
    scheme: ConfigurationScheme
    bitrate: Optional[str] = None
    tx_queue_length: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def headline(self) -> str:
        if not self.present:
            return "No CAN adapter detected"
        if not self.is_up:
            return f"Adapter detected but {self.interface} is not configured"
        return f"{self.interface} is up"


def _scheme_warnings(scheme: ConfigurationScheme) -> List[str]:
    if scheme.is_broken:
        return [
            "Your systemd based CAN configuration appears to be broken.",
            "This is usually caused by a missing .network or .rules/.service file.",
            "For best results please redo your CAN Bus configuration.",
        ]
    if scheme == ConfigurationScheme.MULTIPLE:
        return [
            "Multiple CAN methods found, skipping bitrate/txqueuelen detection.",
            "Multiple CAN Bus methods at the same time will cause communication issues.",
            "For best results please redo your CAN Bus configuration.",
        ]
    if scheme == ConfigurationScheme.UNKNOWN:
        return [
            "Unknown CAN method, skipping bitrate/txqueuelen detection.",
            "Your adapter may not be plugged in yet or your CAN Bus configuration is missing.",
        ]
    return []


def get_status(
    system: System,
    root: Union[str, Path] = "/",
    interface: str = "can0",
) -> CanStatus:
    """
    Summarise the CAN interface: link state, configuration method and values.

    Legacy values come from the live link (ip reports them directly);
    the systemd schemes are read from their files.
    """
    scheme = detect(root)
    link = system.link_show(interface)

    if link is None:
        return CanStatus(interface=interface, present=False, is_up=False, scheme=scheme)

    if "state UP" not in link:
        return CanStatus(interface=interface, present=True, is_up=False, scheme=scheme)

    status = CanStatus(
        interface=interface,
        present=True,
        is_up=True,
        scheme=scheme,
        warnings=_scheme_warnings(scheme),
    )

    if scheme == ConfigurationScheme.LEGACY:
        details = system.link_details(interface) or ""
        bitrate = _IP_BITRATE.search(details)
        qlen = _IP_QLEN.search(link)
        status.bitrate = bitrate.group(1) if bitrate else None
        status.tx_queue_length = qlen.group(1) if qlen else None
    elif scheme in (ConfigurationScheme.ESOTERICAL, ConfigurationScheme.GEMINI):
        persisted = extract_parameters(scheme, root)
        status.bitrate = persisted.bitrate
        status.tx_queue_length = persisted.tx_queue_length

    return status
