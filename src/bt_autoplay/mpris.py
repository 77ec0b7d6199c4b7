"""MPRIS media sessions on the D-Bus session bus.

Every running MPRIS-capable player owns a name of the form
``org.mpris.MediaPlayer2.<player>[.instance<n>]`` and exports
``/org/mpris/MediaPlayer2`` with the ``org.mpris.MediaPlayer2.Player``
interface, whose ``Play`` method is the transport command used here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .dbus_bus import SESSION, call
from .exceptions import DispatchFailure, StrategyUnavailable, from_dbus_error

_LOGGER = logging.getLogger(__name__)

_MPRIS_PREFIX = "org.mpris.MediaPlayer2."
_MPRIS_PATH = "/org/mpris/MediaPlayer2"
_PLAYER_INTERFACE = "org.mpris.MediaPlayer2.Player"


@dataclass(frozen=True)
class MediaSessionRef:
    """Handle on one active MPRIS player."""

    bus_name: str

    @property
    def player(self) -> str:
        return self.bus_name[len(_MPRIS_PREFIX):]


class MprisBackend:
    """List MPRIS players and drive their transport controls."""

    async def list_active_sessions(self) -> list[MediaSessionRef]:
        from dbus_fast.errors import DBusError

        try:
            reply = await call(
                SESSION,
                "org.freedesktop.DBus",
                "/org/freedesktop/DBus",
                "org.freedesktop.DBus",
                "ListNames",
            )
        except DBusError as err:
            raise from_dbus_error(err, StrategyUnavailable) from err
        except (OSError, RuntimeError) as err:
            raise StrategyUnavailable(f"session bus unavailable: {err}") from err

        sessions = [
            MediaSessionRef(name)
            for name in reply.body[0]
            if name.startswith(_MPRIS_PREFIX)
        ]
        _LOGGER.debug("Active MPRIS players: %s", [s.player for s in sessions])
        return sessions

    async def transport_play(self, session: MediaSessionRef) -> None:
        """Call ``Player.Play`` on *session*.

        Raises :class:`DispatchFailure` if the player says it cannot
        play (``CanPlay`` is false, e.g. an empty queue) or rejects
        the call.
        """
        from dbus_fast.errors import DBusError

        try:
            reply = await call(
                SESSION,
                session.bus_name,
                _MPRIS_PATH,
                "org.freedesktop.DBus.Properties",
                "Get",
                "ss",
                [_PLAYER_INTERFACE, "CanPlay"],
            )
            can_play = getattr(reply.body[0], "value", reply.body[0])
        except DBusError:
            _LOGGER.debug("%s: CanPlay not readable", session.player, exc_info=True)
            can_play = True

        if can_play is False:
            raise DispatchFailure(f"{session.player} reports CanPlay=false")

        try:
            await call(SESSION, session.bus_name, _MPRIS_PATH, _PLAYER_INTERFACE, "Play")
        except DBusError as err:
            raise from_dbus_error(err, DispatchFailure) from err
        _LOGGER.debug("%s: Play sent", session.player)
