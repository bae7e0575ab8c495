"""
CAN bus utilities: can-utils management, traffic capture, test frames
and Klipper UUID discovery.
"""

import logging
import re
from pathlib import Path
from typing import List

from cantastic.errors import CommandError, PreconditionError
from cantastic.system import System

logger = logging.getLogger(__name__)

CAN_UTILS = "can-utils"

# <ID>#<DATA> with 3 (standard) or 8 (extended) hex ID digits and up to
# 8 data bytes optionally separated by dots, or <ID>#R[len] for RTR
FRAME_RE = re.compile(
    r"^(?:[0-9A-Fa-f]{3}|[0-9A-Fa-f]{8})#"
    r"(?:(?:[0-9A-Fa-f]{2}\.?){0,8}|[Rr][0-8]?)$"
)

UUID_RE = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b"
)
# What Klipper's canbus_query.py prints: "Found canbus_uuid=1a2b3c4d5e6f, Application: Klipper"
KLIPPER_UUID_RE = re.compile(r"canbus_uuid=([0-9a-f]{12})\b")


def can_utils_installed(system: System) -> bool:
    """Whether the can-utils tools are on PATH."""
    return system.has_tool("cansend")


def _require_can_utils(system: System) -> None:
    if not can_utils_installed(system):
        raise PreconditionError("CAN Bus Utilities are not installed!")


def install_can_utils(system: System) -> bool:
    """
    Install can-utils through apt.

    Returns:
        False if it was already installed, True after a fresh install.

    Raises:
        CommandError: If apt fails.
    """
    if system.package_installed(CAN_UTILS):
        return False

    logger.info("Installing can-utils")
    update = system.apt_update()
    if not update.ok:
        raise CommandError(
            "Failed to update package lists. Check your network settings or system permissions.",
            update.args, update.returncode, update.stderr.strip(),
        )
    install = system.apt_install([CAN_UTILS])
    if not install.ok:
        raise CommandError(
            "Failed to install CAN Bus Utilities! Check your network settings or system permissions.",
            install.args, install.returncode, install.stderr.strip(),
        )
    return True


def remove_can_utils(system: System) -> bool:
    """
    Remove can-utils through apt.

    Returns:
        False if it was not installed, True after removal.
    """
    if not system.package_installed(CAN_UTILS):
        return False

    logger.info("Removing can-utils")
    result = system.apt_remove([CAN_UTILS])
    if not result.ok:
        raise CommandError(
            "Failed to remove CAN Bus Utilities! Check your system permissions.",
            result.args, result.returncode, result.stderr.strip(),
        )
    return True


def dump_traffic(system: System, interface: str) -> int:
    """Show live traffic with candump until Ctrl+C."""
    _require_can_utils(system)
    return system.candump(interface)


def interface_details(system: System, interface: str) -> str:
    """`ip -details link show` for an interface."""
    _require_can_utils(system)
    details = system.link_details(interface)
    if details is None:
        raise PreconditionError(f"Interface {interface} does not exist.")
    return details


def is_valid_frame(frame: str) -> bool:
    return bool(FRAME_RE.match(frame.strip()))


def send_test_frame(system: System, interface: str, frame: str) -> None:
    """
    Send one frame with cansend.

    Raises:
        PreconditionError: If can-utils is missing.
        ValueError: If the frame is not in cansend's <ID>#<DATA> format.
        CommandError: If cansend fails.
    """
    if not system.package_installed(CAN_UTILS):
        raise PreconditionError("CAN Bus Utilities are not installed!")

    frame = frame.strip()
    if not is_valid_frame(frame):
        raise ValueError(
            f"Invalid frame '{frame}'. Use <ID>#<DATA>, e.g. 123#DEADBEEF"
        )

    result = system.cansend(interface, frame)
    if not result.ok:
        raise CommandError(
            f"cansend failed on {interface}",
            result.args, result.returncode, result.stderr.strip(),
        )
    logger.info(f"Sent {frame} on {interface}")


def parse_uuids(output: str) -> List[str]:
    """Collect the unique, sorted node identifiers from canbus_query output."""
    found = set(UUID_RE.findall(output))
    found.update(KLIPPER_UUID_RE.findall(output))
    return sorted(found)


def search_uuids(system: System, script: Path, interface: str) -> List[str]:
    """
    Run Klipper's canbus_query.py and return the UUIDs it reports.

    Only nodes that have not been assigned yet answer the query, so an
    empty result on a running printer is normal.

    Raises:
        PreconditionError: If the Klipper script is not installed.
    """
    if not Path(script).is_file():
        raise PreconditionError(
            f"Klipper canbus_query.py script not found at {script}. "
            "Please ensure Klipper is installed in the default location."
        )

    output = system.run_uuid_query(script, interface)
    uuids = parse_uuids(output)
    logger.debug(f"UUID query on {interface} found {len(uuids)} node(s)")
    return uuids
