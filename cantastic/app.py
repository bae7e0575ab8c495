"""
Interactive CANtastic session.

Builds the menu screens (main, configuration, utilities, troubleshooting
and the file viewer) on top of MenuStack. Every action reports its own
failures and returns to the menu it was started from; only "Exit" ends
the session.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Union

import click

from cantastic import __version__
from cantastic.configure import apply_configuration, delete_configuration, restart_canbus
from cantastic.detect import CanStatus, detect, get_status
from cantastic.errors import CantasticError, CommandError, ValidationError
from cantastic.guides import GUIDES
from cantastic.menu import (
    EXIT,
    POP,
    STAY,
    Menu,
    MenuOption,
    MenuStack,
    Transition,
    pause,
    prompt_choice,
    push,
)
from cantastic.schemes import (
    BITRATE_CHOICES,
    RECOMMENDED_BITRATE,
    RECOMMENDED_TXQUEUELEN,
    SCHEMES,
    TXQUEUELEN_CHOICES,
    ConfigurationScheme,
    DesiredParameters,
    SchemeDefinition,
)
from cantastic.system import System
from cantastic.utilities import (
    can_utils_installed,
    dump_traffic,
    install_can_utils,
    interface_details,
    remove_can_utils,
    search_uuids,
    send_test_frame,
)

logger = logging.getLogger(__name__)


class Screen(Enum):
    MAIN = "main"
    CONFIGURATION = "configuration"
    UTILITIES = "utilities"
    TROUBLESHOOTING = "troubleshooting"
    FILE_VIEWER = "file_viewer"
    LEGACY_FILES = "legacy_files"
    ESOTERICAL_FILES = "esoterical_files"
    GEMINI_FILES = "gemini_files"


FILE_SCREENS = {
    ConfigurationScheme.LEGACY: Screen.LEGACY_FILES,
    ConfigurationScheme.ESOTERICAL: Screen.ESOTERICAL_FILES,
    ConfigurationScheme.GEMINI: Screen.GEMINI_FILES,
}


# ─────────────────────────────────────────────────────────────────────────────
# Output helpers shared with the CLI subcommands
# ─────────────────────────────────────────────────────────────────────────────

def report_error(exc: Exception) -> None:
    """Print a failure in the operator-facing format."""
    if isinstance(exc, ValidationError):
        click.secho(f"✗ {exc.scheme_name} Validation Failed!", fg="red")
        for name, (expected, found) in exc.mismatches.items():
            click.echo(f"   {name}: expected {expected}, found {found if found is not None else 'nothing'}")
        if exc.files:
            click.echo(f"   Please check {' & '.join(exc.files)} manually.")
    elif isinstance(exc, CommandError):
        click.secho(f"✗ {exc}", fg="red")
        if exc.stderr:
            click.secho(f"    {exc.stderr[:200]}", fg="bright_black")
    elif isinstance(exc, PermissionError):
        click.secho(f"✗ Permission denied: {exc.filename or exc}", fg="red")
        click.echo("   Run CANtastic with sudo to change system files.")
    else:
        click.secho(f"✗ {exc}", fg="red")


@contextmanager
def reported_failures():
    """Turn operation failures into messages so the session keeps running."""
    try:
        yield
    except (CantasticError, OSError, ValueError) as e:
        logger.debug(f"Operation failed: {e!r}")
        report_error(e)


def format_bitrate(bitrate: int) -> str:
    if bitrate >= 1000000:
        return f"{bitrate // 1000000}M"
    return f"{bitrate // 1000}K"


def render_status(status: CanStatus) -> None:
    if not status.present:
        click.secho(f"✗ {status.headline}", fg="red")
    elif not status.is_up:
        click.secho(f"⚠ {status.headline}", fg="yellow")
    else:
        click.secho(f"✓ {status.headline}", fg="green")

    click.echo(f"  Method:          {status.scheme.value}")
    if status.bitrate is not None or status.tx_queue_length is not None:
        click.echo(f"  Bitrate:         {status.bitrate or 'unknown'}")
        click.echo(f"  TX Queue Length: {status.tx_queue_length or 'unknown'}")
    for warning in status.warnings:
        click.secho(f"  ⚠ {warning}", fg="yellow")


class CantasticApp:
    """
    The interactive menu session.

    Args:
        system: Host command runner.
        root: Filesystem root the configuration files live under.
        interface: Default CAN interface for status and utilities.
        uuid_script: Path to Klipper's canbus_query.py.
        settle_delay: Seconds between ifdown and ifup on legacy restarts.
        editor: Editor command the file viewer opens files with.
    """

    def __init__(
        self,
        system: System,
        root: Union[str, Path] = "/",
        interface: str = "can0",
        uuid_script: Union[str, Path] = "~/klipper/scripts/canbus_query.py",
        settle_delay: float = 3.0,
        editor: str = "nano",
    ):
        self.system = system
        self.root = Path(root)
        self.interface = interface
        self.uuid_script = Path(uuid_script).expanduser()
        self.settle_delay = settle_delay
        self.editor = editor
        # Set once a Legacy config has been written; cleared by a reboot
        self.legacy_restart_blocked = False

    def screens(self) -> Dict[Screen, Callable[[], Menu]]:
        screens = {
            Screen.MAIN: self._main_menu,
            Screen.CONFIGURATION: self._configuration_menu,
            Screen.UTILITIES: self._utilities_menu,
            Screen.TROUBLESHOOTING: self._troubleshooting_menu,
            Screen.FILE_VIEWER: self._file_viewer_menu,
        }
        for scheme, screen in FILE_SCREENS.items():
            screens[screen] = self._scheme_files_builder(SCHEMES[scheme])
        return screens

    def run(self) -> None:
        MenuStack(self.screens(), start=Screen.MAIN).run()
        click.echo("Exiting CANtastic! Happy Printing!")

    def _action(self, fn: Callable[[], None]) -> Callable[[], Transition]:
        """Wrap an operation: report its failures, wait for a key, stay on the menu."""

        def run() -> Transition:
            click.clear()
            with reported_failures():
                fn()
            pause()
            return STAY

        return run

    # ─────────────────────────────────────────────────────────────────────
    # Menus
    # ─────────────────────────────────────────────────────────────────────

    def _main_menu(self) -> Menu:
        return Menu(
            title=f"CANtastic! v{__version__}",
            intro=["CAN Bus setup and troubleshooting for Klipper. Now with systemd support!"],
            options=[
                MenuOption("CAN Bus Configuration", lambda: push(Screen.CONFIGURATION)),
                MenuOption("CAN Bus Utilities", lambda: push(Screen.UTILITIES)),
                MenuOption("Troubleshooting", lambda: push(Screen.TROUBLESHOOTING)),
                MenuOption("Exit CANtastic!", lambda: EXIT),
            ],
        )

    def _configuration_menu(self) -> Menu:
        return Menu(
            title="CAN Bus Configuration",
            header=self.show_status,
            options=[
                MenuOption("Configure CAN Bus", self._action(self.configure)),
                MenuOption("Delete CAN Bus Configuration", self._action(self.delete)),
                MenuOption("Restart CAN Bus", self._action(self.restart)),
                MenuOption("UUID Search", self._action(self.uuid_search)),
                MenuOption("CAN Bus File Viewer", lambda: push(Screen.FILE_VIEWER)),
                MenuOption("Back", lambda: POP),
            ],
        )

    def _utilities_menu(self) -> Menu:
        return Menu(
            title="CAN Bus Utilities",
            header=self.show_can_utils,
            options=[
                MenuOption("Install CAN Bus Utilities", self._action(self.install_utils)),
                MenuOption("Uninstall CAN Bus Utilities", self._action(self.remove_utils)),
                MenuOption("View CAN Bus Traffic", self._action(self.view_traffic)),
                MenuOption("View Interface Status", self._action(self.view_interface)),
                MenuOption("Send a Test Frame", self._action(self.send_frame)),
                MenuOption("Back", lambda: POP),
            ],
        )

    def _troubleshooting_menu(self) -> Menu:
        options = [
            MenuOption(label, self._guide_action(label, text))
            for label, text in GUIDES
        ]
        options.append(MenuOption("Back", lambda: POP))
        return Menu(title="Troubleshooting", options=options)

    def _guide_action(self, label: str, text: str) -> Callable[[], Transition]:
        def show() -> None:
            click.secho(f"====== {label} ======", bold=True)
            click.echo("")
            click.echo(text)

        return self._action(show)

    def _file_viewer_menu(self) -> Menu:
        options = [
            MenuOption(f"{scheme.value} Files", lambda s=screen: push(s))
            for scheme, screen in FILE_SCREENS.items()
        ]
        options.append(MenuOption("Back", lambda: POP))
        return Menu(
            title="CAN Bus File Viewer",
            intro=[
                "Here you can view and modify the files associated with your CAN Bus setup.",
                "Altering these files may result in communication errors if done improperly!",
            ],
            header=lambda: click.echo(f"Detected method: {self.detect_scheme().value}"),
            options=options,
        )

    def _scheme_files_builder(self, definition: SchemeDefinition) -> Callable[[], Menu]:
        def build() -> Menu:
            options = []
            for path in definition.resolve(self.root):
                state = "" if path.is_file() else " (missing)"
                options.append(MenuOption(f"View {path}{state}", self._view_file_action(path)))
            options.append(MenuOption("Back", lambda: POP))
            return Menu(title=f"{definition.name} File Viewer", options=options)

        return build

    def _view_file_action(self, path: Path) -> Callable[[], Transition]:
        def view() -> Transition:
            if not path.is_file():
                click.secho(f"✗ No file to view at {path}.", fg="red")
                pause()
                return STAY
            returncode = self.system.open_editor(path)
            if returncode != 0:
                click.secho(
                    f"✗ Could not open {path} with {self.editor} (exit status {returncode}).",
                    fg="red",
                )
                click.echo("   Set another editor with CANTASTIC_EDITOR or in the config file.")
                pause()
            return STAY

        return view

    # ─────────────────────────────────────────────────────────────────────
    # Headers
    # ─────────────────────────────────────────────────────────────────────

    def detect_scheme(self) -> ConfigurationScheme:
        return detect(self.root)

    def show_status(self) -> None:
        render_status(get_status(self.system, self.root, self.interface))

    def show_can_utils(self) -> None:
        if can_utils_installed(self.system):
            click.secho("✓ CAN Bus Utilities are installed!", fg="green")
        else:
            click.secho("✗ CAN Bus Utilities are not installed!", fg="red")

    # ─────────────────────────────────────────────────────────────────────
    # Configuration actions
    # ─────────────────────────────────────────────────────────────────────

    def choose_method(self) -> SchemeDefinition:
        definitions = list(SCHEMES.values())
        click.secho("====== CAN Configuration Method ======", bold=True)
        click.echo("")
        click.echo("There are multiple different ways of setting up CAN Bus with Klipper:")
        click.echo("")
        for definition in definitions:
            click.echo(definition.description)
        click.echo("")
        for number, definition in enumerate(definitions, start=1):
            click.echo(f"{number}. {definition.name}")
        click.echo("")
        return definitions[prompt_choice(len(definitions))]

    def choose_bitrate(self) -> int:
        click.secho("====== Bitrate Configuration ======", bold=True)
        click.echo("")
        click.echo("A slower bitrate improves reliability but breaks accelerometers.")
        click.echo("The bitrate selected must match the bitrate flashed to your MCU!")
        click.echo("")
        for number, bitrate in enumerate(BITRATE_CHOICES, start=1):
            note = "  recommended by Klipper" if bitrate == RECOMMENDED_BITRATE else ""
            click.echo(f"{number}. {format_bitrate(bitrate):<6} ({bitrate}){note}")
        click.echo("")
        return BITRATE_CHOICES[prompt_choice(len(BITRATE_CHOICES))]

    def choose_txqueuelen(self) -> int:
        click.secho("====== Transmission Queue Length Configuration ======", bold=True)
        click.echo("")
        click.echo("A larger queue can serve more MCUs but may cause more communication crashes!")
        click.echo("")
        for number, qlen in enumerate(TXQUEUELEN_CHOICES, start=1):
            note = "  recommended by Klipper" if qlen == RECOMMENDED_TXQUEUELEN else ""
            click.echo(f"{number}. {qlen}{note}")
        click.echo("")
        return TXQUEUELEN_CHOICES[prompt_choice(len(TXQUEUELEN_CHOICES))]

    def confirm_plan(self, definition: SchemeDefinition, desired: DesiredParameters) -> bool:
        click.secho("========== ⚠ Alert! ⚠ ==========", fg="yellow", bold=True)
        click.echo("")
        click.echo("You are preparing to set up CAN Bus using the following parameters:")
        click.echo("")
        click.echo(f"  Method = {definition.name}")
        click.echo(f"  Bitrate = {desired.bitrate}")
        click.echo(f"  Transmission Queue Length = {desired.tx_queue_length}")
        click.echo("")
        click.echo("This will create the following files on your machine:")
        for path in definition.resolve(self.root):
            click.echo(f"  {path}")
        click.echo("")
        click.echo("The following packages will be installed:")
        click.echo(f"  can-utils {' '.join(definition.dependencies)}")
        click.echo("")
        click.secho("Any CAN Bus parameters currently used by your system will be erased!", fg="yellow")
        click.secho("Files from other CAN Bus methods will also be erased!", fg="yellow")
        click.secho("Make sure these parameters match the ones flashed to your Klipper MCUs!", fg="yellow")
        click.secho(
            "WARNING: Creating a new CAN Bus configuration during an active print job "
            "will cause Klipper to shutdown!",
            fg="red",
        )
        click.echo("")
        return click.confirm("Do you wish to proceed?", default=None)

    def offer_reboot(self, declined_message: str) -> None:
        if click.confirm("Do you want to restart your system now?", default=None):
            click.echo("Restarting your system...")
            result = self.system.reboot()
            if not result.ok:
                raise CommandError("Reboot failed", result.args, result.returncode, result.stderr.strip())
            return
        click.echo(declined_message)

    def configure(self) -> None:
        definition = self.choose_method()
        click.clear()
        bitrate = self.choose_bitrate()
        click.clear()
        txqueuelen = self.choose_txqueuelen()
        click.clear()
        desired = DesiredParameters(bitrate=bitrate, tx_queue_length=txqueuelen)

        if not self.confirm_plan(definition, desired):
            click.echo("CAN Bus Configuration Aborted.")
            return

        click.echo("")
        click.echo(f"Installing dependencies and writing the {definition.name} configuration...")
        result = apply_configuration(definition.scheme, desired, self.system, self.root)

        for path in result.removed:
            click.echo(f"  Removed: {path}")
        for path in result.files:
            click.echo(f"  Wrote:   {path}")
        click.secho(
            f"✓ {definition.name} validation successful: "
            f"bitrate={result.persisted.bitrate}, txqueuelen={result.persisted.tx_queue_length}",
            fg="green",
        )
        click.echo("")

        if result.reboot_required:
            self.legacy_restart_blocked = True
            click.echo(
                "Due to the way Legacy CAN Bus is setup you will need to restart "
                "your system for any changes to be effective."
            )
        else:
            click.echo("You may need to restart your system before all changes are effective.")

        self.offer_reboot(
            "CAN Bus configuration saved. Reboot later if the interface does not come up."
        )

    def delete(self) -> None:
        click.secho("====== Deleting CAN Bus Configuration ======", bold=True)
        click.echo("")
        click.echo("You are preparing to delete your system's CAN Bus configuration.")
        click.echo("This action is irreversible. Proceed with caution.")
        click.echo("")
        if not click.confirm("Do you want to proceed?", default=None):
            click.echo("CAN Bus Deletion cancelled!")
            return

        removed = delete_configuration(self.root)
        if not removed:
            click.secho("No CAN Bus configuration files found.", fg="yellow")
            return
        for path in removed:
            click.echo(f"  Removed: {path}")
        click.secho("✓ CAN Bus configuration deleted.", fg="green")
        click.echo("")
        click.echo("You may need to restart your system before changes are effective.")
        self.offer_reboot("Returning to the CAN Bus Configuration menu...")

    def restart(self) -> None:
        click.echo("Restarting CAN interface...")
        result = restart_canbus(
            self.system,
            self.root,
            interface=self.interface,
            legacy_blocked=self.legacy_restart_blocked,
            settle_delay=self.settle_delay,
        )
        for warning in result.warnings:
            click.secho(f"⚠ {warning}", fg="yellow")
        click.secho(f"✓ {result.scheme.value} CAN Bus restarted!", fg="green")

    def uuid_search(self) -> None:
        click.secho("====== UUID Search ======", bold=True)
        click.echo("")
        uuids = search_uuids(self.system, self.uuid_script, self.interface)
        if not uuids:
            click.secho(f"✗ No Klipper MCU UUIDs found on {self.interface}.", fg="red")
            click.echo("Ensure your CAN adapter is connected and MCUs are powered on.")
            return
        click.secho(f"✓ {len(uuids)} MCU UUID(s) found on {self.interface}:", fg="green")
        click.echo("")
        for number, uuid in enumerate(uuids, start=1):
            click.echo(f"{number:>2}. {uuid}")

    # ─────────────────────────────────────────────────────────────────────
    # Utility actions
    # ─────────────────────────────────────────────────────────────────────

    def ask_interface(self, message: str = "Enter the CAN interface") -> str:
        return click.prompt(message, default=self.interface).strip()

    def install_utils(self) -> None:
        click.echo("Installing CAN Bus Utilities...")
        if install_can_utils(self.system):
            click.secho("✓ CAN Bus Utilities installed successfully!", fg="green")
        else:
            click.secho("⚠ CAN Bus Utilities are already installed!", fg="yellow")

    def remove_utils(self) -> None:
        click.echo("Removing CAN Bus Utilities...")
        if remove_can_utils(self.system):
            click.secho("✓ CAN Bus Utilities removed successfully!", fg="green")
        else:
            click.secho("⚠ CAN Bus Utilities are not installed!", fg="yellow")

    def view_traffic(self) -> None:
        interface = self.ask_interface()
        click.echo("Press Ctrl+C to stop capturing CAN traffic.")
        dump_traffic(self.system, interface)

    def view_interface(self) -> None:
        interface = self.ask_interface("Enter the CAN interface to inspect")
        click.echo("")
        click.echo(interface_details(self.system, interface))

    def send_frame(self) -> None:
        interface = self.ask_interface()
        frame = click.prompt("Enter CAN ID and data (e.g., 123#DEADBEEF)")
        click.echo(f"Sending frame to {interface}...")
        send_test_frame(self.system, interface, frame)
        click.secho("✓ Frame sent.", fg="green")
