"""
Writing, removing and restarting CAN configurations.

apply_configuration() is the only place configuration files are
written. It follows a fixed sequence and checks its own work by reading
the files back:

    1. install can-utils and the scheme's dependencies
    2. remove every file belonging to the other schemes
    3. prepare systemd-networkd (systemd schemes)
    4. render and write the scheme's files
    5. restart systemd-networkd (systemd schemes)
    6. read the files back and compare against the requested values

A failed comparison raises ValidationError and leaves the files as they
are so they can be inspected.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from cantastic.detect import detect, extract_parameters
from cantastic.errors import CommandError, PreconditionError, ValidationError
from cantastic.schemes import (
    SCHEMES,
    ConfigurationScheme,
    DesiredParameters,
    PersistedParameters,
    all_paths,
    get_definition,
    resolve_path,
)
from cantastic.system import CommandResult, System

logger = logging.getLogger(__name__)

NETWORKD = "systemd-networkd"
NETWORKD_WAIT_ONLINE = "systemd-networkd-wait-online.service"
CAN_UTILS = "can-utils"


@dataclass
class ApplyResult:
    """Outcome of a successful apply_configuration()."""
    scheme: ConfigurationScheme
    persisted: PersistedParameters
    files: List[Path]
    removed: List[Path] = field(default_factory=list)
    reboot_required: bool = False


@dataclass
class RestartResult:
    """Outcome of restart_canbus(). Warnings are non-fatal."""
    scheme: ConfigurationScheme
    warnings: List[str] = field(default_factory=list)


def _check(result: CommandResult, message: str) -> CommandResult:
    if not result.ok:
        logger.error(f"{message}: {result.command_line} exited {result.returncode}")
        raise CommandError(message, result.args, result.returncode, result.stderr.strip())
    return result


def install_dependencies(system: System, packages: List[str]) -> None:
    """apt-get update followed by apt-get install -y can-utils <packages>."""
    _check(system.apt_update(), "Failed to update package lists")
    _check(
        system.apt_install([CAN_UTILS] + list(packages)),
        f"Failed to install {' '.join([CAN_UTILS] + list(packages))}",
    )


def prepare_networkd(system: System) -> None:
    """Enable and start systemd-networkd without blocking boot on it."""
    for action, unit in (
        ("enable", NETWORKD),
        ("unmask", NETWORKD),
        ("disable", NETWORKD_WAIT_ONLINE),
        ("start", NETWORKD),
    ):
        _check(system.systemctl(action, unit), f"Failed to {action} {unit}")


def restart_networkd(system: System) -> None:
    _check(
        system.systemctl("restart", NETWORKD),
        "Failed to restart systemd-networkd. Please check your systemd configuration.",
    )


def remove_scheme_files(
    root: Union[str, Path] = "/",
    keep: Optional[ConfigurationScheme] = None,
) -> List[Path]:
    """
    Delete the files of every scheme except `keep`.

    Returns:
        The paths that existed and were removed.
    """
    keep_paths = set(get_definition(keep).paths) if keep else set()
    removed = []
    for path in all_paths():
        if path in keep_paths:
            continue
        target = resolve_path(root, path)
        if target.is_file():
            target.unlink()
            logger.info(f"Removed {target}")
            removed.append(target)
    return removed


def apply_configuration(
    scheme: ConfigurationScheme,
    desired: DesiredParameters,
    system: System,
    root: Union[str, Path] = "/",
    install_deps: bool = True,
) -> ApplyResult:
    """
    Install a CAN configuration scheme and verify what was written.

    Args:
        scheme: Legacy, Esoterical or Gemini.
        desired: Validated bitrate and queue length.
        system: Host command runner.
        root: Filesystem root the system paths are resolved against.
        install_deps: Run apt for can-utils and the scheme's dependencies first.

    Returns:
        ApplyResult with the values read back from disk.

    Raises:
        KeyError: If `scheme` is not installable.
        CommandError: If a package, systemctl or restart step fails. Nothing
                      after the failing step runs.
        ValidationError: If the values on disk differ from `desired`.
                         The written files are left in place.
        OSError: If a file cannot be written (usually missing root privileges).
    """
    definition = get_definition(scheme)
    logger.info(
        f"Applying {definition.name}: bitrate={desired.bitrate} "
        f"txqueuelen={desired.tx_queue_length}"
    )

    if install_deps:
        install_dependencies(system, list(definition.dependencies))

    removed = remove_scheme_files(root, keep=scheme)

    if definition.uses_networkd:
        prepare_networkd(system)

    written = []
    for path, content in definition.render(desired).items():
        target = resolve_path(root, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        logger.info(f"Wrote {target}")
        written.append(target)

    if definition.uses_networkd:
        restart_networkd(system)

    persisted = extract_parameters(scheme, root)
    mismatches = persisted.mismatches(desired)
    if mismatches:
        raise ValidationError(definition.name, mismatches, [str(p) for p in written])

    logger.info(
        f"{definition.name} validated: bitrate={persisted.bitrate} "
        f"txqueuelen={persisted.tx_queue_length}"
    )
    return ApplyResult(
        scheme=scheme,
        persisted=persisted,
        files=written,
        removed=removed,
        reboot_required=not definition.uses_networkd,
    )


def delete_configuration(root: Union[str, Path] = "/") -> List[Path]:
    """Remove the files of every scheme. Returns the removed paths."""
    return remove_scheme_files(root)


def _cycle_legacy(system: System, interface: str, settle_delay: float) -> None:
    # ifdown fails when the interface is already down
    system.interface_down(interface)
    if settle_delay:
        time.sleep(settle_delay)
    _check(
        system.interface_up(interface),
        f"Failed to bring up {interface}. Device might be busy. "
        "Try unplugging/replugging your CAN adapter.",
    )


def restart_canbus(
    system: System,
    root: Union[str, Path] = "/",
    interface: str = "can0",
    legacy_blocked: bool = False,
    settle_delay: float = 3.0,
) -> RestartResult:
    """
    Restart the CAN interface the way the installed scheme expects.

    Args:
        system: Host command runner.
        root: Filesystem root the system paths are resolved against.
        interface: Interface name for ifup/ifdown and the link check.
        legacy_blocked: A Legacy configuration was written this session.
                        Cycling ifupdown before a reboot can hang the host,
                        so the restart is refused.
        settle_delay: Seconds between ifdown and ifup.

    Raises:
        PreconditionError: Legacy while blocked, or no known scheme installed.
        CommandError: If ifup or the networkd restart fails.
    """
    scheme = detect(root)
    result = RestartResult(scheme=scheme)
    logger.info(f"Restarting CAN bus ({scheme.value})")

    if scheme == ConfigurationScheme.LEGACY:
        if legacy_blocked:
            raise PreconditionError(
                "You cannot restart CAN Bus after making a new Legacy config. "
                "Doing so may cause your system to crash. Reboot instead."
            )
        _cycle_legacy(system, interface, settle_delay)

    elif scheme in (ConfigurationScheme.ESOTERICAL, ConfigurationScheme.GEMINI):
        restart_networkd(system)

    elif scheme == ConfigurationScheme.MULTIPLE:
        warning = (
            "Restart attempted, but your configuration is conflicting. "
            "Multiple methods detected. Please resolve this for stable operation."
        )
        # Logged up front so it survives a failed ifup
        logger.warning(warning)
        result.warnings.append(warning)
        _cycle_legacy(system, interface, settle_delay)
        restart_networkd(system)

    elif scheme.is_broken:
        result.warnings.append(
            "Your CAN Bus interface restarted, but your configuration appears to be broken. "
            "It is highly advised to redo your CAN Bus configuration."
        )
        restart_networkd(system)

    else:
        if system.link_show(interface) is not None:
            supported = ", ".join(s.value for s in SCHEMES)
            raise PreconditionError(
                f"CAN Bus restart failed. Your current CAN Bus method is not supported. "
                f"Supported methods: {supported}."
            )
        raise PreconditionError("CAN Bus is not detected or configured properly.")

    return result
