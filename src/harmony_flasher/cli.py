"""
Harmony Flasher CLI

Command-line interface for installing a custom OS on a Mudita Harmony.
"""

import sys
import logging
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import (
    Progress,
    BarColumn,
    DownloadColumn,
    TextColumn,
    TransferSpeedColumn,
)

from harmony_flasher import __version__
from harmony_flasher.config import DEFAULT_CONFIG, FlasherConfig
from harmony_flasher.core.actions import (
    flash_custom_os as core_flash_custom_os,
    patch_offline as core_patch_offline,
    query_device_info as core_query_device_info,
)
from harmony_flasher.core.results import OperationResult
from harmony_flasher.discovery import list_serial_ports
from harmony_flasher.errors import FlasherError

logger = logging.getLogger("harmony_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="Harmony Flasher - install a custom OS on a Mudita Harmony")

ENV_PREFIX = "HARMONY_FLASHER_"


def setup_logging(verbose: bool = False) -> None:
    """Route log records through Rich; DEBUG shows frame traffic."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_result(result: OperationResult, as_json: bool = False) -> None:
    """Print an OperationResult as a summary or as JSON."""
    if as_json:
        console.print_json(json.dumps(result.to_dict()))
        return
    console.print(result.to_summary())
    for warning in result.warnings:
        print_warning(warning)


def fail(exc: FlasherError) -> None:
    """Print a flasher error and exit with its code."""
    print_error(str(exc))
    raise typer.Exit(code=exc.exit_code)


def build_config(
    port: Optional[str] = None,
    cache_dir: Optional[Path] = None,
    release_url: Optional[str] = None,
) -> FlasherConfig:
    return DEFAULT_CONFIG.with_overrides(
        port=port or None,
        cache_dir=cache_dir,
        release_url=release_url or None,
    )


def _progress() -> Progress:
    return Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    )


@app.command()
def flash(
    os_bin: Path = typer.Argument(..., help="Path to the custom os.bin"),
    port: Optional[str] = typer.Option(
        None, "--port", "-p", envvar=ENV_PREFIX + "PORT",
        help="Serial port (default: find device by USB ID)",
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, "--cache-dir", envvar=ENV_PREFIX + "CACHE_DIR",
        help="Directory for the downloaded vendor bundle",
    ),
    release_url: Optional[str] = typer.Option(
        None, "--release-url", envvar=ENV_PREFIX + "RELEASE_URL",
        help="Vendor release metadata URL",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol traffic"),
) -> None:
    """
    Patch the latest official update with a custom OS and install it.
    """
    setup_logging(verbose)
    print_header(f"Harmony Flasher {__version__}")
    config = build_config(port, cache_dir, release_url)

    try:
        with _progress() as progress:
            tasks = {}

            def progress_cb(step: str, done: int, total: Optional[int]) -> None:
                if step not in tasks:
                    label = "Downloading" if step == "download" else "Uploading"
                    tasks[step] = progress.add_task(label, total=total)
                progress.update(tasks[step], completed=done, total=total)

            result = core_flash_custom_os(str(os_bin), config, progress_cb=progress_cb)
    except FlasherError as exc:
        fail(exc)

    print_result(result, as_json)
    print_success("Rebooting, please wait for your device to update")


@app.command()
def patch(
    os_bin: Path = typer.Argument(..., help="Path to the custom os.bin"),
    bundle: Path = typer.Option(..., "--bundle", "-b", help="Vendor update bundle (.tar)"),
    out: Path = typer.Option(..., "--out", "-o", help="Output path for the patched bundle"),
    as_json: bool = typer.Option(False, "--json", help="Print result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """
    Patch a local vendor bundle offline (no device, no network).
    """
    setup_logging(verbose)
    try:
        result = core_patch_offline(str(os_bin), str(bundle), str(out))
    except FlasherError as exc:
        fail(exc)

    print_result(result, as_json)
    print_success(f"Patched bundle written to {out}")


@app.command()
def info(
    port: Optional[str] = typer.Option(
        None, "--port", "-p", envvar=ENV_PREFIX + "PORT",
        help="Serial port (default: find device by USB ID)",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print device info as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol traffic"),
) -> None:
    """Show device information."""
    setup_logging(verbose)
    try:
        device_info = core_query_device_info(build_config(port))
    except FlasherError as exc:
        fail(exc)

    if as_json:
        console.print_json(json.dumps(device_info.to_dict()))
        return

    table = Table(title="Device Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for key, value in device_info.to_dict().items():
        table.add_row(key, value or "-")
    console.print(table)

    if not device_info.onboarding_complete:
        print_warning("Device has not completed onboarding; updates will be refused")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_serial_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("USB ID", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        usb_id = f"{port.vid:04x}:{port.pid:04x}" if port.vid is not None else "-"
        table.add_row(port.device, usb_id, port.description or "-")

    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
