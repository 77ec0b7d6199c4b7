"""BlueZ D-Bus bindings: connection notifications and audio route inspection.

Two collaborators of the retry core live here:

- :class:`BluezConnectivityNotifier` turns ``PropertiesChanged`` signals
  of ``org.bluez.Device1`` into :class:`~bt_autoplay.devices.Connected`
  / :class:`~bt_autoplay.devices.Disconnected` events.
- :class:`BluezRouteInspector` reports which Bluetooth audio routes
  have a media transport, for the readiness gate.

Both use ``dbus-fast`` through the shared system bus in
:mod:`bt_autoplay.dbus_bus`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .const import IS_LINUX, RouteKind
from .dbus_bus import SYSTEM, call, get_bus, unpack_variants
from .devices import ConnectionEvent, Connected, Disconnected, describe_device
from .exceptions import RouteQueryUnavailable, from_dbus_error

_LOGGER = logging.getLogger(__name__)

# D-Bus constants
_BLUEZ_SERVICE = "org.bluez"
_DEVICE_INTERFACE = "org.bluez.Device1"
_MEDIA_INTERFACE = "org.bluez.Media1"
_TRANSPORT_INTERFACE = "org.bluez.MediaTransport1"
_MEDIA_CONTROL_INTERFACE = "org.bluez.MediaControl1"
_OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"
_PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

# Transport UUIDs name the host's local endpoint.  These are the roles
# in which the host sends audio out to the device: A2DP Source towards
# headphones and speakers, Audio Gateway towards HFP/HSP headsets.
_TRANSPORT_ROUTES = {
    "0000110a-0000-1000-8000-00805f9b34fb": RouteKind.BLUETOOTH_A2DP,  # A2DP source
    "0000111f-0000-1000-8000-00805f9b34fb": RouteKind.BLUETOOTH_SCO,  # HFP gateway
    "00001112-0000-1000-8000-00805f9b34fb": RouteKind.BLUETOOTH_SCO,  # HSP gateway
}

# Backoff for re-subscribing after the system bus drops
_RESUBSCRIBE_DELAY = 1.0
_RESUBSCRIBE_MAX_DELAY = 30.0

_DEVICE_MATCH_RULE = (
    "type='signal',sender='org.bluez',"
    "interface='org.freedesktop.DBus.Properties',"
    "member='PropertiesChanged',arg0='org.bluez.Device1'"
)


def address_to_bluez_path(address: str, adapter: str = "hci0") -> str:
    """Convert a device address + adapter to a BlueZ D-Bus object path.

    Example::

        >>> address_to_bluez_path("AA:BB:CC:DD:EE:FF", "hci0")
        '/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF'
    """
    dev_part = f"dev_{address.upper().replace(':', '_')}"
    return f"/org/bluez/{adapter}/{dev_part}"


def bluez_path_to_address(path: str) -> tuple[str, str] | None:
    """Split a BlueZ device path into ``(adapter, address)``.

    Returns ``None`` for paths that are not device objects (adapters,
    transports, players, ...).
    """
    parts = path.strip("/").split("/")
    if len(parts) != 4 or parts[:2] != ["org", "bluez"]:
        return None
    adapter, dev_part = parts[2], parts[3]
    if not dev_part.startswith("dev_"):
        return None
    return adapter, dev_part[4:].replace("_", ":")


async def _get_device_properties(
    address: str, adapter: str = "hci0"
) -> dict[str, Any] | None:
    """Fetch ``org.bluez.Device1`` properties for a device.

    Returns a dict of property name → value, or ``None`` if the device
    is not on D-Bus or its properties may not be read.
    """
    if not IS_LINUX:
        return None

    path = address_to_bluez_path(address, adapter)
    try:
        reply = await call(
            SYSTEM,
            _BLUEZ_SERVICE,
            path,
            _PROPERTIES_INTERFACE,
            "GetAll",
            "s",
            [_DEVICE_INTERFACE],
        )
    except Exception:
        _LOGGER.debug(
            "Failed to get D-Bus properties for %s on %s",
            address,
            adapter,
            exc_info=True,
        )
        return None
    return unpack_variants(reply.body[0])


async def _cancel(task: asyncio.Task[None] | None) -> None:
    if task is None or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def _get_managed_objects() -> dict[str, dict[str, dict[str, Any]]]:
    """Return BlueZ's object tree with variants unpacked.

    Raises the :mod:`~bt_autoplay.exceptions` taxonomy on D-Bus errors.
    """
    from dbus_fast.errors import DBusError

    try:
        reply = await call(
            SYSTEM, _BLUEZ_SERVICE, "/", _OBJECT_MANAGER_INTERFACE, "GetManagedObjects"
        )
    except DBusError as err:
        raise from_dbus_error(err) from err
    return {
        path: {iface: unpack_variants(props) for iface, props in ifaces.items()}
        for path, ifaces in reply.body[0].items()
    }


class BluezRouteInspector:
    """Report active audio output routes from BlueZ media transports.

    A ``MediaTransport1`` object exists once an audio server (PipeWire,
    PulseAudio) has configured a stream endpoint for the device, which
    is the point at which audio actually routes to it.

    Parameters
    ----------
    adapter:
        Only consider transports on this adapter.  ``None`` means any.
    """

    def __init__(self, adapter: str | None = None) -> None:
        self._adapter = adapter

    def _on_adapter(self, path: str) -> bool:
        return self._adapter is None or path.startswith(f"/org/bluez/{self._adapter}/")

    async def active_routes(self) -> set[RouteKind]:
        """Return the set of active output routes.

        The built-in output is always present.  Raises
        :class:`RouteQueryUnavailable` when no adapter has an audio
        server registered (``org.bluez.Media1`` missing), since then
        transports can never appear.
        """
        if not IS_LINUX:
            raise RouteQueryUnavailable("BlueZ is only available on Linux")

        objects = await _get_managed_objects()
        if not any(_MEDIA_INTERFACE in ifaces for ifaces in objects.values()):
            raise RouteQueryUnavailable("no audio server registered with BlueZ")

        routes = {RouteKind.SPEAKER}
        for path, ifaces in objects.items():
            transport = ifaces.get(_TRANSPORT_INTERFACE)
            if transport is None or not self._on_adapter(path):
                continue
            uuid = str(transport.get("UUID", "")).lower()
            route = _TRANSPORT_ROUTES.get(uuid)
            if route is not None:
                routes.add(route)
        return routes

    async def legacy_route_active(self) -> bool:
        """Return whether any device reports the deprecated ``MediaControl1.Connected``.

        Older BlueZ builds publish this flag once AVRCP/A2DP are up,
        without exposing transports to the caller.
        """
        if not IS_LINUX:
            return False

        objects = await _get_managed_objects()
        for path, ifaces in objects.items():
            control = ifaces.get(_MEDIA_CONTROL_INTERFACE)
            if control is not None and self._on_adapter(path):
                if control.get("Connected") is True:
                    return True
        return False


class BluezConnectivityNotifier:
    """Deliver device connect/disconnect events from BlueZ.

    Events are processed in signal order: property lookups for one
    event finish before the next event is handed to *handler*.

    If the system bus connection drops, the notifier logs a warning and
    re-subscribes on a fresh connection, retrying with backoff until
    it succeeds or :meth:`unsubscribe` is called.  Connection changes
    during the gap are not replayed.

    Usage::

        notifier = BluezConnectivityNotifier(adapter="hci0")
        await notifier.subscribe(monitor.on_event)
        # ... later ...
        await notifier.unsubscribe()

    Parameters
    ----------
    adapter:
        Only report devices on this adapter.  ``None`` means any.
    """

    def __init__(self, adapter: str | None = None) -> None:
        self._adapter = adapter
        self._handler: Callable[[ConnectionEvent], None] | None = None
        self._queue: asyncio.Queue[tuple[str, str, bool]] | None = None
        self._pump: asyncio.Task[None] | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._bus: Any = None

    @property
    def is_subscribed(self) -> bool:
        return self._handler is not None

    async def subscribe(self, handler: Callable[[ConnectionEvent], None]) -> None:
        """Start delivering events to *handler*.

        Calling ``subscribe()`` while already subscribed replaces the
        handler.  If the match rule cannot be installed the error is
        raised and the notifier stays unsubscribed, so the call can be
        retried.
        """
        if self._handler is not None:
            self._handler = handler
            return

        self._handler = handler
        self._queue = asyncio.Queue()
        try:
            await self._attach()
        except BaseException:
            self._handler = None
            self._queue = None
            raise
        self._pump = asyncio.ensure_future(self._run())
        _LOGGER.info(
            "Listening for Bluetooth connections on %s", self._adapter or "all adapters"
        )

    async def unsubscribe(self) -> None:
        """Stop delivering events.  Safe to call when not subscribed."""
        if self._handler is None:
            return
        self._handler = None
        await _cancel(self._watcher)
        self._watcher = None
        if self._bus is not None:
            self._bus.remove_message_handler(self._on_message)
            try:
                await call(
                    SYSTEM,
                    "org.freedesktop.DBus",
                    "/org/freedesktop/DBus",
                    "org.freedesktop.DBus",
                    "RemoveMatch",
                    "s",
                    [_DEVICE_MATCH_RULE],
                )
            except Exception:
                _LOGGER.debug("RemoveMatch failed", exc_info=True)
            self._bus = None
        await _cancel(self._pump)
        self._pump = None
        self._queue = None

    async def _attach(self) -> None:
        """Install the message handler and match rule on the current system bus."""
        bus = await get_bus(SYSTEM)
        bus.add_message_handler(self._on_message)
        try:
            await call(
                SYSTEM,
                "org.freedesktop.DBus",
                "/org/freedesktop/DBus",
                "org.freedesktop.DBus",
                "AddMatch",
                "s",
                [_DEVICE_MATCH_RULE],
            )
        except BaseException:
            bus.remove_message_handler(self._on_message)
            raise
        self._bus = bus
        self._watcher = asyncio.ensure_future(self._watch(bus))

    async def _watch(self, bus: Any) -> None:
        try:
            await bus.wait_for_disconnect()
        except Exception as err:
            _LOGGER.debug("System bus closed with error: %s", err)
        if self._bus is not bus or self._handler is None:
            return

        _LOGGER.warning(
            "System bus connection lost, re-subscribing to Bluetooth connection events"
        )
        self._bus = None
        delay = _RESUBSCRIBE_DELAY
        while self._handler is not None:
            try:
                await self._attach()
            except Exception as err:
                _LOGGER.warning(
                    "Re-subscribing to BlueZ failed (%s), retrying in %.0fs", err, delay
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, _RESUBSCRIBE_MAX_DELAY)
                continue
            _LOGGER.info("Re-subscribed to Bluetooth connection events")
            return

    def _on_message(self, msg: Any) -> bool:
        if msg.member != "PropertiesChanged" or not msg.body or not msg.path:
            return False
        if msg.body[0] != _DEVICE_INTERFACE:
            return False
        changed = msg.body[1] if len(msg.body) > 1 else {}
        if "Connected" not in changed:
            return False
        parsed = bluez_path_to_address(msg.path)
        if parsed is None:
            return False
        adapter, address = parsed
        if self._adapter is not None and adapter != self._adapter:
            return False
        connected = bool(getattr(changed["Connected"], "value", changed["Connected"]))
        if self._queue is not None:
            self._queue.put_nowait((adapter, address, connected))
        return False  # don't consume

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            adapter, address, connected = await self._queue.get()
            props = await _get_device_properties(address, adapter)
            device = describe_device(address, props)
            event: ConnectionEvent = Connected(device) if connected else Disconnected(device)
            _LOGGER.debug("BlueZ event on %s: %s", adapter, event)
            handler = self._handler
            if handler is None:
                continue
            try:
                handler(event)
            except Exception:
                _LOGGER.exception("Connection event handler failed for %s", device)
