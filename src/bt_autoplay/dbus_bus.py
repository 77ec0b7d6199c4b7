"""Shared D-Bus connections for BlueZ, logind, systemd and MPRIS calls.

Keeps one long-lived ``MessageBus`` per bus type: the system bus
(BlueZ, logind) and the session bus (MPRIS players, the systemd user
manager).  Every module goes through :func:`get_bus` instead of opening
its own connection, so signal subscriptions stay alive for the life of
the daemon and one-off queries skip the connect/authenticate round
trip.

All calls use raw ``bus.call(Message(...))`` instead of proxy objects,
which avoids the ``bus.introspect()`` round-trip and the high-level
client's fire-and-forget ``AddMatch``.

Thread / async safety
---------------------

Buses are lazily created on first use and reconnected if the
connection drops or the running event loop changes.  There is no
cross-thread sharing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .const import IS_LINUX

_LOGGER = logging.getLogger(__name__)

SYSTEM = "system"
SESSION = "session"

_buses: dict[str, Any] = {}  # dbus_fast.aio.MessageBus per bus kind
_bus_loops: dict[str, Any] = {}  # The event loop each bus was created on
_bluez_ready = False  # Set True once we've confirmed org.bluez is on D-Bus


async def get_bus(kind: str = SYSTEM):
    """Get the shared D-Bus connection of *kind*, creating or reconnecting as needed.

    *kind* is :data:`SYSTEM` or :data:`SESSION`.  Returns a connected
    ``dbus_fast.aio.MessageBus`` with Unix fd passing negotiated (the
    logind inhibitor needs it).

    If the running event loop differs from the one the bus was created
    on, the old bus is discarded and a fresh one is created.  This
    prevents ``Future attached to a different loop`` RuntimeErrors.

    Raises ``RuntimeError`` on non-Linux platforms.
    """
    if not IS_LINUX:
        raise RuntimeError("D-Bus is only available on Linux")

    from dbus_fast.aio import MessageBus
    from dbus_fast.constants import BusType

    current_loop = asyncio.get_running_loop()
    bus = _buses.get(kind)

    if bus is not None:
        if _bus_loops.get(kind) is not current_loop:
            _LOGGER.debug(
                "Shared %s bus was created on a different event loop, "
                "reconnecting on current loop",
                kind,
            )
            try:
                bus.disconnect()
            except Exception:
                pass
            _buses.pop(kind, None)
        elif bus.connected:
            return bus
        else:
            _LOGGER.debug("Shared %s bus disconnected, reconnecting", kind)

    bus_type = BusType.SESSION if kind == SESSION else BusType.SYSTEM
    bus = await MessageBus(bus_type=bus_type, negotiate_unix_fd=True).connect()
    _buses[kind] = bus
    _bus_loops[kind] = current_loop
    _LOGGER.debug("Shared %s bus connected", kind)
    return bus


async def call(
    kind: str,
    destination: str,
    path: str,
    interface: str,
    member: str,
    signature: str = "",
    body: list[Any] | None = None,
):
    """Send a method call on the shared bus and return the reply.

    Error replies are raised as ``dbus_fast.errors.DBusError`` so
    callers can map them with :func:`bt_autoplay.exceptions.from_dbus_error`.
    """
    from dbus_fast import Message, MessageType
    from dbus_fast.errors import DBusError

    bus = await get_bus(kind)
    reply = await bus.call(
        Message(
            destination=destination,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body or [],
        )
    )
    if reply.message_type == MessageType.ERROR:
        text = reply.body[0] if reply.body else ""
        raise DBusError(reply.error_name, text, reply)
    return reply


def unpack_variants(props: dict[str, Any]) -> dict[str, Any]:
    """Strip ``Variant`` wrappers from an ``a{sv}`` dictionary."""
    return {k: getattr(v, "value", v) for k, v in props.items()}


async def _ping_bluez() -> bool:
    """Single fast D-Bus check for ``org.bluez`` availability.

    Returns ``True`` if BlueZ responded (any non-ServiceUnknown reply).
    """
    from dbus_fast import Message, MessageType

    try:
        bus = await get_bus(SYSTEM)
        reply = await bus.call(
            Message(
                destination="org.bluez",
                path="/org/bluez",
                interface="org.freedesktop.DBus.Properties",
                member="GetAll",
                signature="s",
                body=["org.bluez.AgentManager1"],
            )
        )
        if reply.message_type != MessageType.ERROR:
            return True
        error_name = reply.error_name or ""
        if "ServiceUnknown" in error_name or "UnknownObject" in error_name:
            return False
        return True
    except Exception:
        return False


async def wait_for_bluez(
    timeout: float = 30.0,
    poll_interval: float = 1.0,
) -> bool:
    """Wait until ``org.bluez`` is available on the system D-Bus.

    The monitor may start before ``bluetoothd`` has registered on
    D-Bus; subscribing to device signals before that point would
    silently miss every connection.  This polls until ``org.bluez``
    answers or *timeout* seconds have elapsed.

    The ``_bluez_ready`` cache is validated with a single ping on every
    call, so a crashed ``bluetoothd`` is detected even when the cache
    says BlueZ was previously healthy.

    Returns ``True`` if BlueZ became available, ``False`` on timeout.
    """
    global _bluez_ready

    if not IS_LINUX:
        return True

    if _bluez_ready:
        if await _ping_bluez():
            return True
        _LOGGER.warning(
            "BlueZ was previously available but is no longer responding "
            "on D-Bus; bluetoothd may have crashed"
        )
        _bluez_ready = False

    elapsed = 0.0
    while elapsed < timeout:
        if await _ping_bluez():
            if elapsed > 0:
                _LOGGER.info("BlueZ ready on D-Bus after %.1fs", elapsed)
            else:
                _LOGGER.debug("BlueZ ready on D-Bus")
            _bluez_ready = True
            return True

        _LOGGER.debug(
            "Waiting for BlueZ on D-Bus (%.1fs / %.0fs)...",
            elapsed, timeout,
        )
        await asyncio.sleep(poll_interval)
        elapsed += poll_interval

    _LOGGER.error(
        "BlueZ did not appear on D-Bus after %.0fs, "
        "connection events will not be received",
        timeout,
    )
    return False


async def close_buses() -> None:
    """Disconnect every shared bus that is open.

    Safe to call even if no bus was ever created.
    """
    for kind, bus in list(_buses.items()):
        try:
            bus.disconnect()
        except Exception:
            pass
        _buses.pop(kind, None)
        _bus_loops.pop(kind, None)
