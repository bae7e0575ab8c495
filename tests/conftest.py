"""Shared fixtures: a fake host and helpers for laying out configuration files."""

from pathlib import Path
from typing import List, Optional

import pytest

from cantastic.schemes import SCHEMES, DesiredParameters, resolve_path
from cantastic.system import CommandResult, System

LINK_UP = (
    "3: can0: <NOARP,UP,LOWER_UP,ECHO> mtu 16 qdisc pfifo_fast state UP "
    "mode DEFAULT group default qlen 128\n"
    "    link/can \n"
)
LINK_DOWN = (
    "3: can0: <NOARP,ECHO> mtu 16 qdisc noop state DOWN "
    "mode DEFAULT group default qlen 10\n"
    "    link/can \n"
)
LINK_DETAILS = (
    "3: can0: <NOARP,UP,LOWER_UP,ECHO> mtu 16 qdisc pfifo_fast state UP qlen 128\n"
    "    link/can  promiscuity 0 minmtu 0 maxmtu 0\n"
    "    can state ERROR-ACTIVE (berr-counter tx 0 rx 0) restart-ms 0\n"
    "\t  bitrate 1000000 sample-point 0.875\n"
)


class FakeSystem(System):
    """In-memory System that records every command instead of running it.

    Args:
        link: What `ip link show` prints, or None for a missing interface.
        details: What `ip -details link show` prints.
        installed: Packages dpkg reports as installed.
        tools: Executables found on PATH.
        failing: Commands that exit non-zero, matched on the first one or
                 two words ("systemctl restart", "apt-get", "ifup").
        uuid_output: What canbus_query.py prints.
        editor_status: Exit status the editor returns.
    """

    def __init__(
        self,
        link: Optional[str] = None,
        details: Optional[str] = None,
        installed=(),
        tools=(),
        failing=(),
        uuid_output: str = "",
        editor_status: int = 0,
    ):
        self.link = link
        self.details = details
        self.installed = set(installed)
        self.tools = set(tools)
        self.failing = set(failing)
        self.uuid_output = uuid_output
        self.editor_status = editor_status
        self.calls: List[List[str]] = []

    def _result(self, *args) -> CommandResult:
        args = [str(a) for a in args]
        self.calls.append(args)
        if args[0] in self.failing or " ".join(args[:2]) in self.failing:
            return CommandResult(args, 1, "", f"{args[0]} failed")
        return CommandResult(args, 0, "", "")

    def ran(self, *prefix) -> bool:
        """Whether any recorded command starts with these words."""
        return any(call[:len(prefix)] == list(prefix) for call in self.calls)

    def commands(self) -> List[str]:
        return [" ".join(call) for call in self.calls]

    def link_show(self, interface):
        self.calls.append(["ip", "link", "show", interface])
        return self.link

    def link_details(self, interface):
        self.calls.append(["ip", "-details", "link", "show", interface])
        return self.details

    def interface_down(self, interface):
        return self._result("ifdown", interface)

    def interface_up(self, interface):
        return self._result("ifup", interface)

    def systemctl(self, action, unit):
        return self._result("systemctl", action, unit)

    def reboot(self):
        return self._result("reboot", "now")

    def package_installed(self, package):
        self.calls.append(["dpkg", "-s", package])
        return package in self.installed

    def apt_update(self):
        return self._result("apt-get", "update")

    def apt_install(self, packages):
        return self._result("apt-get", "install", *packages)

    def apt_remove(self, packages):
        return self._result("apt-get", "remove", *packages)

    def has_tool(self, name):
        return name in self.tools

    def candump(self, interface):
        self.calls.append(["candump", interface])
        return 0

    def cansend(self, interface, frame):
        return self._result("cansend", interface, frame)

    def run_uuid_query(self, script, interface):
        self.calls.append(["python3", str(script), interface])
        return self.uuid_output

    def open_editor(self, path):
        self.calls.append(["editor", str(path)])
        return self.editor_status


@pytest.fixture
def system():
    return FakeSystem()


@pytest.fixture
def root(tmp_path):
    """An empty filesystem root for configuration files."""
    return tmp_path


@pytest.fixture
def install_scheme(root):
    """Write a scheme's files under `root` the way apply_configuration would."""

    def install(scheme, bitrate=1000000, txqueuelen=128) -> List[Path]:
        desired = DesiredParameters(bitrate=bitrate, tx_queue_length=txqueuelen)
        written = []
        for path, content in SCHEMES[scheme].render(desired).items():
            target = resolve_path(root, path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
            written.append(target)
        return written

    return install


@pytest.fixture
def touch(root):
    """Create an empty file at a system path under `root`."""

    def make(path: str) -> Path:
        target = resolve_path(root, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("")
        return target

    return make
