"""Daemon entry point: ``python -m bt_autoplay`` / ``bt-autoplay``."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Annotated

import typer

from . import __version__
from .const import DEFAULT_ADAPTER, PRESET_TARGETS, TargetConfig
from .service import AutoplayService

_LOGGER = logging.getLogger("bt_autoplay")

app = typer.Typer(
    name="bt-autoplay",
    help="Start music when a Bluetooth audio device connects.",
    add_completion=False,
)


def resolve_target(name: str, service_unit: str | None = None) -> TargetConfig:
    """Return the preset called *name*, or a target with app id *name*."""
    target = PRESET_TARGETS.get(name) or TargetConfig(app_id=name)
    if service_unit:
        target = TargetConfig(
            app_id=target.app_id,
            mpris_name=target.mpris_name,
            window_class=target.window_class,
            service_unit=service_unit,
            desktop_id=target.desktop_id,
            aliases=target.aliases,
        )
    return target


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"bt-autoplay {__version__}")
        raise typer.Exit


async def _serve(target: TargetConfig, adapter: str | None) -> None:
    service = AutoplayService.create(target, adapter=adapter)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    _LOGGER.info(
        "Watching %s for audio devices, target %s",
        adapter or "all adapters",
        target.app_id,
    )
    await service.run_forever(stop_event)


@app.command()
def run(
    target: Annotated[
        str,
        typer.Option(
            "--target",
            "-t",
            help=f"Player preset ({', '.join(sorted(PRESET_TARGETS))}) or MPRIS name.",
        ),
    ] = "netease",
    service_unit: Annotated[
        str | None,
        typer.Option(
            "--service-unit",
            help="systemd user unit that starts the player in the background.",
        ),
    ] = None,
    adapter: Annotated[
        str,
        typer.Option("--adapter", "-a", help="Bluetooth adapter to watch, or 'any'."),
    ] = DEFAULT_ADAPTER,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Watch for Bluetooth audio devices and start playback when one connects."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(
        _serve(
            resolve_target(target, service_unit),
            None if adapter == "any" else adapter,
        )
    )


def main() -> None:
    """Console-script entry point."""
    app()


if __name__ == "__main__":
    main()
