"""Typer command line for selenoid-cm.

Every lifecycle command builds a LifecycleConfig from settings plus flags,
opens one LifecycleController and runs one operation on it.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import typer

from selenoid_cm import __version__
from selenoid_cm.config import LATEST, LifecycleConfig, get_settings
from selenoid_cm.errors import SelenoidCMError
from selenoid_cm.lifecycle import LifecycleController
from selenoid_cm.logging import configure_logging, get_logger
from selenoid_cm.release import ReleaseDownloader

app = typer.Typer(
    name="selenoid-cm",
    help="Download, configure, start and stop Selenoid.",
    no_args_is_help=True,
    add_completion=False,
)

QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Suppress output.")
FORCE_OPTION = typer.Option(False, "--force", "-f", help="Force action.")
OUTPUT_DIR_OPTION = typer.Option(
    None,
    "--output-dir",
    "-o",
    file_okay=False,
    help="Directory to save files (default: ~/.aerokube/selenoid).",
)
BROWSERS_OPTION = typer.Option(
    "", "--browsers", "-b", help="Comma separated list of browser names to process."
)
NO_DOWNLOAD_OPTION = typer.Option(
    False,
    "--no-download",
    "-n",
    help="Only output config file without downloading images or drivers.",
)
LAST_VERSIONS_OPTION = typer.Option(
    None, "--last-versions", "-l", min=0, help="Process only last N versions (0 = all)."
)
PULL_OPTION = typer.Option(False, "--pull", "-p", help="Pull images even if present locally.")
TMPFS_OPTION = typer.Option(
    None, "--tmpfs", "-t", min=0, help="Add tmpfs volume sized in megabytes."
)
REGISTRY_OPTION = typer.Option(None, "--registry", "-r", help="Docker registry to use.")
BROWSERS_JSON_OPTION = typer.Option(
    None,
    "--browsers-json",
    "-j",
    help="Browsers JSON data URL (in most cases never needs to be set manually).",
)
OS_OPTION = typer.Option(None, "--operating-system", help="Target operating system (drivers only).")
ARCH_OPTION = typer.Option(None, "--architecture", "-a", help="Target architecture (drivers only).")
VERSION_OPTION = typer.Option(
    LATEST, "--version", "-v", help="Desired Selenoid version; empty or latest for newest."
)


def _fail(message: str) -> None:
    # printed regardless of --quiet
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=1)


def _build_config(**flags: Any) -> LifecycleConfig:
    no_download = flags.pop("no_download", False)
    return LifecycleConfig.from_settings(get_settings(), download=not no_download, **flags)


def _run(
    config: LifecycleConfig,
    operation: Callable[[LifecycleController], Awaitable[Any]],
    failure: str,
) -> Any:
    configure_logging()

    async def main() -> Any:
        lifecycle = await LifecycleController.create(
            config,
            log=get_logger(config.quiet),
            ping_timeout=get_settings().docker_ping_timeout,
        )
        async with lifecycle:
            return await operation(lifecycle)

    try:
        return asyncio.run(main())
    except SelenoidCMError as e:
        _fail(f"{failure}: {e.message}")


def _lifecycle_command(
    name: str,
    help_text: str,
    operation: Callable[[LifecycleController], Awaitable[Any]],
    failure: str,
    *,
    always_force: bool = False,
) -> None:
    def command(
        quiet: bool = QUIET_OPTION,
        force: bool = FORCE_OPTION,
        output_dir: Path | None = OUTPUT_DIR_OPTION,
        browsers: str = BROWSERS_OPTION,
        no_download: bool = NO_DOWNLOAD_OPTION,
        last_versions: int | None = LAST_VERSIONS_OPTION,
        pull: bool = PULL_OPTION,
        tmpfs: int | None = TMPFS_OPTION,
        registry: str | None = REGISTRY_OPTION,
        browsers_json: str | None = BROWSERS_JSON_OPTION,
        operating_system: str | None = OS_OPTION,
        architecture: str | None = ARCH_OPTION,
        version: str = VERSION_OPTION,
    ) -> None:
        config = _build_config(
            quiet=quiet,
            force=force or always_force,
            output_dir=output_dir,
            browsers=browsers,
            no_download=no_download,
            last_versions=last_versions,
            pull=pull,
            tmpfs=tmpfs,
            registry_url=registry,
            browsers_json_url=browsers_json,
            os=operating_system,
            arch=architecture,
            version=version,
        )
        _run(config, operation, failure)

    command.__doc__ = help_text
    app.command(name, help=help_text)(command)


_lifecycle_command(
    "download",
    "Download Selenoid image or prepare drivers mode.",
    lambda lc: lc.download(),
    "failed to download Selenoid",
)
_lifecycle_command(
    "configure",
    "Create Selenoid configuration file and download dependencies.",
    lambda lc: lc.configure(),
    "failed to configure Selenoid",
)
_lifecycle_command(
    "start",
    "Start Selenoid.",
    lambda lc: lc.start(),
    "failed to start Selenoid",
)
_lifecycle_command(
    "stop",
    "Stop Selenoid.",
    lambda lc: lc.stop(),
    "failed to stop Selenoid",
)
_lifecycle_command(
    "update",
    "Update Selenoid (download latest Selenoid, configure and start).",
    lambda lc: lc.start(),
    "failed to update Selenoid",
    always_force=True,
)


@app.command("cleanup")
def cleanup(
    quiet: bool = QUIET_OPTION,
    output_dir: Path | None = OUTPUT_DIR_OPTION,
) -> None:
    """Stop Selenoid and remove its configuration directory."""
    config = _build_config(quiet=quiet, output_dir=output_dir, no_download=True)
    _run(config, lambda lc: lc.stop(), "failed to stop Selenoid")
    try:
        shutil.rmtree(config.output_dir, ignore_errors=False)
    except FileNotFoundError:
        pass
    except OSError as e:
        _fail(f"failed to remove configuration directory: {e}")
    if not quiet:
        typer.echo("Successfully removed configuration directory", err=True)


@app.command("release")
def release(
    quiet: bool = QUIET_OPTION,
    output_dir: Path | None = OUTPUT_DIR_OPTION,
    operating_system: str | None = OS_OPTION,
    architecture: str | None = ARCH_OPTION,
    version: str = VERSION_OPTION,
) -> None:
    """Download Selenoid binary from GitHub releases."""
    config = _build_config(
        quiet=quiet,
        output_dir=output_dir,
        os=operating_system,
        arch=architecture,
        version=version,
    )
    configure_logging()
    downloader = ReleaseDownloader(config, log=get_logger(quiet))
    try:
        path = asyncio.run(downloader.download())
    except SelenoidCMError as e:
        _fail(f"failed to download Selenoid release: {e.message}")
    if not quiet:
        typer.echo(
            f"Selenoid binary saved to {path}. Don't forget to add {path.parent} to PATH",
            err=True,
        )


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"selenoid-cm {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    show_version: bool | None = typer.Option(
        None,
        "--app-version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Download, configure, start and stop Selenoid."""


def cli() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    cli()
