"""
Access to the host's system utilities.

Everything CANtastic runs on the host goes through a `System`. The
detection and validation logic only ever talks to this interface, so it
can be exercised against a fake without a real network stack.

Usage:
    from cantastic.system import LinuxSystem

    system = LinuxSystem()
    if system.link_show("can0") is None:
        print("no can0")
"""

import logging
import os
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Apt can take a while on a Raspberry Pi
PACKAGE_TIMEOUT = 600
DEFAULT_TIMEOUT = 30


@dataclass
class CommandResult:
    """Outcome of one external command."""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(shlex.quote(a) for a in self.args)


class System(ABC):
    """Capabilities CANtastic needs from the host."""

    # Link state

    @abstractmethod
    def link_show(self, interface: str) -> Optional[str]:
        """`ip link show <iface>` output, or None if the interface does not exist."""

    @abstractmethod
    def link_details(self, interface: str) -> Optional[str]:
        """`ip -details link show <iface>` output, or None if the interface does not exist."""

    @abstractmethod
    def interface_down(self, interface: str) -> CommandResult:
        """Bring an interface down through ifupdown."""

    @abstractmethod
    def interface_up(self, interface: str) -> CommandResult:
        """Bring an interface up through ifupdown."""

    # Services

    @abstractmethod
    def systemctl(self, action: str, unit: str) -> CommandResult:
        """Run `systemctl <action> <unit>`."""

    @abstractmethod
    def reboot(self) -> CommandResult:
        """Reboot the host."""

    # Packages

    @abstractmethod
    def package_installed(self, package: str) -> bool:
        """Whether dpkg reports the package as installed."""

    @abstractmethod
    def apt_update(self) -> CommandResult:
        """Refresh the package lists."""

    @abstractmethod
    def apt_install(self, packages: Sequence[str]) -> CommandResult:
        """Install packages non-interactively."""

    @abstractmethod
    def apt_remove(self, packages: Sequence[str]) -> CommandResult:
        """Remove packages non-interactively."""

    @abstractmethod
    def has_tool(self, name: str) -> bool:
        """Whether an executable is on PATH."""

    # Frames

    @abstractmethod
    def candump(self, interface: str) -> int:
        """Run candump in the foreground until it exits or Ctrl+C. Returns its exit status."""

    @abstractmethod
    def cansend(self, interface: str, frame: str) -> CommandResult:
        """Send one frame with cansend."""

    @abstractmethod
    def run_uuid_query(self, script: Path, interface: str) -> str:
        """Run Klipper's canbus_query.py and return whatever it printed."""

    # Files

    @abstractmethod
    def open_editor(self, path: Path) -> int:
        """Open a file in the configured editor in the foreground. Returns its exit status."""


class LinuxSystem(System):
    """`System` backed by real subprocesses.

    Args:
        use_sudo: Prefix privileged commands with sudo. Defaults to True
                  unless already running as root.
        editor: Editor command for the file viewer (default: nano).
        timeout: Timeout in seconds for ordinary commands.
    """

    def __init__(
        self,
        use_sudo: Optional[bool] = None,
        editor: str = "nano",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if use_sudo is None:
            use_sudo = hasattr(os, "geteuid") and os.geteuid() != 0
        self.use_sudo = use_sudo
        self.editor = editor
        self.timeout = timeout

    def _argv(self, args: Sequence[str], privileged: bool) -> List[str]:
        argv = list(args)
        if privileged and self.use_sudo:
            argv = ["sudo"] + argv
        return argv

    def _run(
        self,
        args: Sequence[str],
        privileged: bool = False,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command and capture its output. Never raises for command failures."""
        argv = self._argv(args, privileged)
        timeout = timeout or self.timeout
        logger.debug(f"Running: {' '.join(shlex.quote(a) for a in argv)}")

        try:
            proc = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Timed out after {timeout}s: {argv[0]}")
            return CommandResult(argv, 124, "", f"timed out after {timeout}s")
        except FileNotFoundError as e:
            logger.error(f"Command not found: {argv[0]}")
            return CommandResult(argv, 127, "", str(e))
        except OSError as e:
            logger.error(f"Could not start {argv[0]}: {e}")
            return CommandResult(argv, 126, "", str(e))

        logger.debug(f"rc={proc.returncode} stdout={proc.stdout!r} stderr={proc.stderr!r}")
        return CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)

    def _run_foreground(self, args: Sequence[str], privileged: bool = False) -> int:
        """Run a command attached to the terminal. Ctrl+C stops the command only."""
        argv = self._argv(args, privileged)
        logger.debug(f"Running in foreground: {' '.join(shlex.quote(a) for a in argv)}")

        try:
            process = subprocess.Popen(argv)
        except (FileNotFoundError, OSError) as e:
            logger.error(f"Could not start {argv[0]}: {e}")
            return 127

        try:
            return process.wait()
        except KeyboardInterrupt:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            logger.debug(f"{argv[0]} interrupted")
            return 130

    # Link state

    def link_show(self, interface: str) -> Optional[str]:
        result = self._run(["ip", "link", "show", interface])
        return result.stdout if result.ok else None

    def link_details(self, interface: str) -> Optional[str]:
        result = self._run(["ip", "-details", "link", "show", interface])
        return result.stdout if result.ok else None

    def interface_down(self, interface: str) -> CommandResult:
        return self._run(["ifdown", interface], privileged=True)

    def interface_up(self, interface: str) -> CommandResult:
        return self._run(["ifup", interface], privileged=True)

    # Services

    def systemctl(self, action: str, unit: str) -> CommandResult:
        return self._run(["systemctl", action, unit], privileged=True)

    def reboot(self) -> CommandResult:
        return self._run(["reboot", "now"], privileged=True)

    # Packages

    def package_installed(self, package: str) -> bool:
        return self._run(["dpkg", "-s", package]).ok

    def apt_update(self) -> CommandResult:
        return self._run(["apt-get", "update"], privileged=True, timeout=PACKAGE_TIMEOUT)

    def apt_install(self, packages: Sequence[str]) -> CommandResult:
        return self._run(
            ["apt-get", "install", "-y"] + list(packages),
            privileged=True,
            timeout=PACKAGE_TIMEOUT,
        )

    def apt_remove(self, packages: Sequence[str]) -> CommandResult:
        return self._run(
            ["apt-get", "remove", "-y"] + list(packages),
            privileged=True,
            timeout=PACKAGE_TIMEOUT,
        )

    def has_tool(self, name: str) -> bool:
        return shutil.which(name) is not None

    # Frames

    def candump(self, interface: str) -> int:
        return self._run_foreground(["candump", interface])

    def cansend(self, interface: str, frame: str) -> CommandResult:
        return self._run(["cansend", interface, frame])

    def run_uuid_query(self, script: Path, interface: str) -> str:
        # canbus_query.py exits non-zero on some adapters; keep whatever it printed
        result = self._run(["python3", str(script), interface], timeout=60)
        return result.stdout

    # Files

    def open_editor(self, path: Path) -> int:
        return self._run_foreground(shlex.split(self.editor) + [str(path)], privileged=True)
