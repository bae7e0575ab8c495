"""
Command-line interface for CANtastic.

Usage:
    cantastic                      # Interactive menu
    cantastic status               # Show the CAN interface and its configuration
    cantastic detect               # Show which configuration method is installed
    cantastic configure --method esoterical --bitrate 1000000 --txqueuelen 128
    cantastic delete               # Remove every CAN configuration file
    cantastic restart              # Restart the CAN interface
    cantastic uuids                # Find unassigned Klipper MCUs
    cantastic utils install        # Install can-utils
    cantastic utils send 123#DEADBEEF
    cantastic check-update         # Compare with the published version
    cantastic config               # Show current settings
"""

import logging
import sys

import click

from cantastic import __version__
from cantastic.app import CantasticApp, format_bitrate, render_status, report_error
from cantastic.config import (
    PROJECT_URL,
    get_config_path,
    get_editor,
    get_interface,
    get_root,
    get_settle_delay,
    get_uuid_script,
    get_version_url,
    load_config,
)
from cantastic.configure import apply_configuration, delete_configuration, restart_canbus
from cantastic.detect import detect, get_status, installed_files
from cantastic.errors import CantasticError
from cantastic.schemes import (
    BITRATE_CHOICES,
    SCHEMES,
    TXQUEUELEN_CHOICES,
    ConfigurationScheme,
    DesiredParameters,
    scheme_from_name,
)
from cantastic.system import LinuxSystem
from cantastic.updates import check_for_update
from cantastic import utilities

logger = logging.getLogger(__name__)

METHOD_NAMES = [definition.name.lower() for definition in SCHEMES.values()]


def _system() -> LinuxSystem:
    return LinuxSystem(editor=get_editor())


def _fail(exc: Exception) -> None:
    report_error(exc)
    sys.exit(1)


def _show_update_check() -> None:
    info = check_for_update(__version__, get_version_url())
    if info is None:
        click.secho("⚠ Could not check for updates.", fg="yellow")
    elif info.update_available:
        click.secho(f"⚠ A new version of CANtastic! is available: v{info.latest}", fg="yellow")
        click.echo(f"  {PROJECT_URL}")


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="cantastic")
@click.option("--verbose", "-v", is_flag=True, help="Log every command that is run")
@click.option("--no-update-check", is_flag=True, help="Skip the version check on startup")
@click.pass_context
def main(ctx: click.Context, verbose: bool, no_update_check: bool):
    """
    CANtastic! - CAN Bus setup and troubleshooting for Klipper.

    Run without a command for the interactive menu.

        cantastic

        cantastic status
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is not None:
        return

    if not no_update_check:
        _show_update_check()

    app = CantasticApp(
        _system(),
        root=get_root(),
        interface=get_interface(),
        uuid_script=get_uuid_script(),
        settle_delay=get_settle_delay(),
        editor=get_editor(),
    )
    try:
        app.run()
    except (click.Abort, KeyboardInterrupt):
        click.echo("")
        click.echo("Exiting CANtastic! Happy Printing!")


@main.command()
@click.option("--interface", "-i", default=None, help="CAN interface (default from config)")
def status(interface):
    """
    Show the CAN interface state and configuration.
    """
    interface = interface or get_interface()
    click.echo("\nCANtastic! Status")
    click.echo("─" * 40)
    render_status(get_status(_system(), get_root(), interface))
    click.echo("─" * 40)


@main.command("detect")
def detect_command():
    """
    Show which CAN configuration method is installed.
    """
    root = get_root()
    scheme = detect(root)
    click.echo(f"Method: {scheme.value}")
    for path in installed_files(root):
        click.echo(f"  {path}")
    if scheme.is_broken:
        click.secho("⚠ Configuration is incomplete. Redo your CAN Bus configuration.", fg="yellow")
    elif scheme == ConfigurationScheme.MULTIPLE:
        click.secho("⚠ More than one method is installed. Redo your CAN Bus configuration.", fg="yellow")


@main.command()
@click.option(
    "--method", "-m",
    type=click.Choice(METHOD_NAMES, case_sensitive=False),
    required=True,
    help="Configuration method to install",
)
@click.option(
    "--bitrate", "-b",
    type=click.Choice([str(b) for b in BITRATE_CHOICES]),
    required=True,
    help="CAN bitrate in bit/s (must match your MCUs)",
)
@click.option(
    "--txqueuelen", "-q",
    type=click.Choice([str(q) for q in TXQUEUELEN_CHOICES]),
    required=True,
    help="Transmission queue length",
)
@click.option("--skip-deps", is_flag=True, help="Don't run apt for dependencies")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
def configure(method: str, bitrate: str, txqueuelen: str, skip_deps: bool, yes: bool):
    """
    Write a CAN configuration and verify it.

    Files from the other methods are removed first.

    Example:

        cantastic configure -m esoterical -b 1000000 -q 128
    """
    scheme = scheme_from_name(method)
    definition = SCHEMES[scheme]
    desired = DesiredParameters(bitrate=int(bitrate), tx_queue_length=int(txqueuelen))

    click.echo(f"  Method:     {definition.name}")
    click.echo(f"  Bitrate:    {format_bitrate(desired.bitrate)} ({desired.bitrate})")
    click.echo(f"  txqueuelen: {desired.tx_queue_length}")
    if not yes:
        click.confirm("Any existing CAN Bus configuration will be erased. Proceed?", abort=True)

    try:
        result = apply_configuration(
            scheme, desired, _system(), get_root(), install_deps=not skip_deps,
        )
    except (CantasticError, OSError) as e:
        _fail(e)
        return

    for path in result.removed:
        click.echo(f"  Removed: {path}")
    for path in result.files:
        click.echo(f"  Wrote:   {path}")
    click.secho(
        f"✓ {definition.name} validation successful: "
        f"bitrate={result.persisted.bitrate}, txqueuelen={result.persisted.tx_queue_length}",
        fg="green",
    )
    if result.reboot_required:
        click.secho("  Reboot your system for the Legacy configuration to take effect.", fg="yellow")


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
def delete(yes: bool):
    """
    Remove every CAN configuration file.
    """
    if not yes:
        click.confirm("This action is irreversible. Delete the CAN Bus configuration?", abort=True)

    try:
        removed = delete_configuration(get_root())
    except OSError as e:
        _fail(e)
        return

    if not removed:
        click.secho("No CAN Bus configuration files found.", fg="yellow")
        return
    for path in removed:
        click.echo(f"  Removed: {path}")
    click.secho("✓ CAN Bus configuration deleted.", fg="green")


@main.command()
def restart():
    """
    Restart the CAN interface for the installed method.
    """
    try:
        result = restart_canbus(
            _system(),
            get_root(),
            interface=get_interface(),
            settle_delay=get_settle_delay(),
        )
    except CantasticError as e:
        _fail(e)
        return

    for warning in result.warnings:
        click.secho(f"⚠ {warning}", fg="yellow")
    click.secho(f"✓ {result.scheme.value} CAN Bus restarted!", fg="green")


@main.command()
@click.option("--interface", "-i", default=None, help="CAN interface (default from config)")
def uuids(interface):
    """
    List unassigned Klipper MCU UUIDs on the bus.
    """
    interface = interface or get_interface()
    try:
        found = utilities.search_uuids(_system(), get_uuid_script(), interface)
    except CantasticError as e:
        _fail(e)
        return

    if not found:
        click.secho(f"No Klipper MCU UUIDs found on {interface}.", fg="yellow")
        return
    for uuid in found:
        click.echo(uuid)


@main.group()
def utils():
    """
    can-utils helpers: install, remove, dump, details, send.
    """
    pass


@utils.command("install")
def utils_install():
    """Install can-utils."""
    try:
        installed = utilities.install_can_utils(_system())
    except CantasticError as e:
        _fail(e)
        return
    if installed:
        click.secho("✓ CAN Bus Utilities installed successfully!", fg="green")
    else:
        click.secho("CAN Bus Utilities are already installed.", fg="yellow")


@utils.command("remove")
def utils_remove():
    """Uninstall can-utils."""
    try:
        removed = utilities.remove_can_utils(_system())
    except CantasticError as e:
        _fail(e)
        return
    if removed:
        click.secho("✓ CAN Bus Utilities removed successfully!", fg="green")
    else:
        click.secho("CAN Bus Utilities are not installed.", fg="yellow")


@utils.command("dump")
@click.option("--interface", "-i", default=None, help="CAN interface (default from config)")
def utils_dump(interface):
    """Show live CAN traffic until Ctrl+C."""
    interface = interface or get_interface()
    click.echo("Press Ctrl+C to stop capturing CAN traffic.")
    try:
        utilities.dump_traffic(_system(), interface)
    except CantasticError as e:
        _fail(e)


@utils.command("details")
@click.option("--interface", "-i", default=None, help="CAN interface (default from config)")
def utils_details(interface):
    """Show `ip -details link show` for the interface."""
    interface = interface or get_interface()
    try:
        click.echo(utilities.interface_details(_system(), interface))
    except CantasticError as e:
        _fail(e)


@utils.command("send")
@click.argument("frame")
@click.option("--interface", "-i", default=None, help="CAN interface (default from config)")
def utils_send(frame: str, interface):
    """
    Send one frame, e.g. 123#DEADBEEF.
    """
    interface = interface or get_interface()
    try:
        utilities.send_test_frame(_system(), interface, frame)
    except (CantasticError, ValueError) as e:
        _fail(e)
        return
    click.secho(f"✓ Sent {frame} on {interface}", fg="green")


@main.command("check-update")
def check_update():
    """
    Compare this version with the latest published one.
    """
    info = check_for_update(__version__, get_version_url())
    if info is None:
        click.secho("✗ Could not check for updates. Check your network connection.", fg="red")
        sys.exit(1)

    click.echo(f"  Installed: v{info.current}")
    click.echo(f"  Latest:    v{info.latest}")
    if info.update_available:
        click.secho(f"⚠ Update available: {PROJECT_URL}", fg="yellow")
    else:
        click.secho("✓ CANtastic! is up to date.", fg="green")


@main.command()
def config():
    """
    Show current configuration.
    """
    cfg = load_config()
    click.echo(f"Config file: {get_config_path()}\n")

    for key, value in cfg.items():
        click.echo(f"  {key}: {value}")


if __name__ == "__main__":
    main()
