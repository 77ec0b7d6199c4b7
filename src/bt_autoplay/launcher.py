"""Start the target media application.

Two ways in, tried by :func:`bt_autoplay.dispatch.wake_target_app`:

1. The application's background playback service, as a systemd user
   unit started over the session bus.
2. Its main interface, through ``gtk-launch`` and the desktop entry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .dbus_bus import SESSION, call
from .exceptions import StrategyUnavailable, from_dbus_error
from .tools import run_tool

if TYPE_CHECKING:
    from .const import TargetConfig

_LOGGER = logging.getLogger(__name__)

_SYSTEMD_SERVICE = "org.freedesktop.systemd1"
_SYSTEMD_PATH = "/org/freedesktop/systemd1"
_SYSTEMD_MANAGER = "org.freedesktop.systemd1.Manager"


class AppLauncher:
    async def start_background_component(self, target: TargetConfig) -> None:
        """Start *target*'s systemd user unit (``StartUnit`` with mode ``replace``)."""
        from dbus_fast.errors import DBusError

        if not target.service_unit:
            raise StrategyUnavailable(f"{target.app_id} has no background unit")
        try:
            await call(
                SESSION,
                _SYSTEMD_SERVICE,
                _SYSTEMD_PATH,
                _SYSTEMD_MANAGER,
                "StartUnit",
                "ss",
                [target.service_unit, "replace"],
            )
        except DBusError as err:
            raise from_dbus_error(err, StrategyUnavailable) from err
        _LOGGER.debug("Started user unit %s", target.service_unit)

    async def launch_main_interface(self, target: TargetConfig) -> None:
        """Open *target*'s main window from its desktop entry."""
        await run_tool("gtk-launch", target.desktop_id)
        _LOGGER.debug("Launched %s", target.desktop_id)
