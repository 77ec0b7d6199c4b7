"""systemd-logind sleep inhibitor used as the host wake resource.

``org.freedesktop.login1.Manager.Inhibit`` returns a file descriptor;
the inhibitor lock lasts exactly as long as that descriptor is open.
Holding it keeps the host from suspending while a retry session waits
for the headset's audio route to come up.

The D-Bus call is asynchronous but :class:`ResourceGuard` needs
``acquire`` / ``release`` to take effect within the current loop
iteration.  ``acquire`` therefore starts the call in the background and
``release`` invalidates it: a descriptor that arrives after its lease
was released is closed immediately.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from .const import IS_LINUX
from .dbus_bus import SYSTEM, call
from .exceptions import PermissionDenied, from_dbus_error

if TYPE_CHECKING:
    from .scheduler import LoopScheduler

_LOGGER = logging.getLogger(__name__)

_LOGIN1_SERVICE = "org.freedesktop.login1"
_LOGIN1_PATH = "/org/freedesktop/login1"
_LOGIN1_MANAGER = "org.freedesktop.login1.Manager"


class LogindInhibitor:
    """Wake resource backed by a logind ``block`` inhibitor lock.

    Parameters
    ----------
    scheduler:
        Runs the background ``Inhibit`` call.
    who, why:
        Shown by ``systemd-inhibit --list``.
    what:
        Colon-separated inhibitor types.
    """

    def __init__(
        self,
        scheduler: LoopScheduler,
        who: str = "bt-autoplay",
        why: str = "Starting playback on a Bluetooth audio device",
        what: str = "sleep:idle",
    ) -> None:
        self._scheduler = scheduler
        self._who = who
        self._why = why
        self._what = what
        self._fd: int | None = None
        self._token = 0
        self._wanted = False

    def is_held(self) -> bool:
        return self._wanted

    @property
    def fd(self) -> int | None:
        return self._fd

    def acquire(self, max_hold: float) -> None:
        if self._wanted:
            return
        self._wanted = True
        self._token += 1
        if not IS_LINUX:
            _LOGGER.debug("logind inhibitor not available on this platform")
            return
        self._scheduler.spawn(self._inhibit(self._token))

    def release(self) -> None:
        self._wanted = False
        self._token += 1
        self._close()

    async def _inhibit(self, token: int) -> None:
        from dbus_fast.errors import DBusError

        try:
            reply = await call(
                SYSTEM,
                _LOGIN1_SERVICE,
                _LOGIN1_PATH,
                _LOGIN1_MANAGER,
                "Inhibit",
                "ssss",
                [self._what, self._who, self._why, "block"],
            )
        except DBusError as err:
            mapped = from_dbus_error(err)
            if isinstance(mapped, PermissionDenied):
                _LOGGER.warning("Not authorized to inhibit sleep: %s", mapped)
            else:
                _LOGGER.warning("logind Inhibit failed: %s", mapped)
            return
        except Exception:
            _LOGGER.warning("logind Inhibit failed", exc_info=True)
            return

        fd = reply.unix_fds[reply.body[0]] if reply.unix_fds else None
        if fd is None:
            _LOGGER.warning("logind Inhibit reply carried no file descriptor")
            return

        if token != self._token:
            # Released (or re-acquired) while the call was in flight
            os.close(fd)
            return

        self._close()
        self._fd = fd
        _LOGGER.debug("Holding logind %s inhibitor (fd %d)", self._what, fd)

    def _close(self) -> None:
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        except OSError:
            _LOGGER.debug("Failed to close inhibitor fd", exc_info=True)
        self._fd = None
