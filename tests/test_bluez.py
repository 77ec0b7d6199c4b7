"""Tests for bluez module."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bt_autoplay.bluez import (
    BluezConnectivityNotifier,
    BluezRouteInspector,
    _get_managed_objects,
    address_to_bluez_path,
    bluez_path_to_address,
)
from bt_autoplay.const import RouteKind
from bt_autoplay.devices import Connected, DeviceClass, Disconnected
from bt_autoplay.exceptions import PermissionDenied, RouteQueryUnavailable

A2DP_SOURCE = "0000110a-0000-1000-8000-00805f9b34fb"
A2DP_SINK = "0000110b-0000-1000-8000-00805f9b34fb"
HFP_GATEWAY = "0000111f-0000-1000-8000-00805f9b34fb"
DEV_PATH = "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF"


def test_address_to_bluez_path_default_adapter():
    path = address_to_bluez_path("AA:BB:CC:DD:EE:FF")
    assert path == DEV_PATH


def test_address_to_bluez_path_specific_adapter():
    path = address_to_bluez_path("AA:BB:CC:DD:EE:FF", "hci1")
    assert path == "/org/bluez/hci1/dev_AA_BB_CC_DD_EE_FF"


def test_address_to_bluez_path_lowercase_normalized():
    path = address_to_bluez_path("aa:bb:cc:dd:ee:ff")
    assert path == DEV_PATH


def test_bluez_path_to_address():
    assert bluez_path_to_address(DEV_PATH) == ("hci0", "AA:BB:CC:DD:EE:FF")


@pytest.mark.parametrize(
    "path",
    [
        "/org/bluez/hci0",
        "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF/fd0",
        "/org/bluez/hci0/player0",
        "/org/freedesktop/login1",
    ],
)
def test_bluez_path_to_address_rejects_non_device_paths(path):
    assert bluez_path_to_address(path) is None


# ── Route inspection ──────────────────────────────────────────────


def _objects(*transports, media=True, legacy=None):
    objects = {"/org/bluez/hci0": {"org.bluez.Adapter1": {}}}
    if media:
        objects["/org/bluez/hci0"]["org.bluez.Media1"] = {}
    for i, (adapter, uuid) in enumerate(transports):
        objects[f"/org/bluez/{adapter}/dev_AA_BB_CC_DD_EE_FF/fd{i}"] = {
            "org.bluez.MediaTransport1": {"UUID": uuid, "State": "idle"}
        }
    if legacy is not None:
        objects[DEV_PATH] = {"org.bluez.MediaControl1": {"Connected": legacy}}
    return objects


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
@patch("bt_autoplay.bluez._get_managed_objects", new_callable=AsyncMock)
async def test_active_routes_speaker_only(mock_objects):
    mock_objects.return_value = _objects()
    assert await BluezRouteInspector().active_routes() == {RouteKind.SPEAKER}


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
@patch("bt_autoplay.bluez._get_managed_objects", new_callable=AsyncMock)
async def test_active_routes_with_transports(mock_objects):
    mock_objects.return_value = _objects(("hci0", A2DP_SOURCE), ("hci0", HFP_GATEWAY.upper()))
    assert await BluezRouteInspector().active_routes() == {
        RouteKind.SPEAKER,
        RouteKind.BLUETOOTH_A2DP,
        RouteKind.BLUETOOTH_SCO,
    }


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
@patch("bt_autoplay.bluez._get_managed_objects", new_callable=AsyncMock)
async def test_active_routes_headphones_streaming_from_host(mock_objects):
    objects = _objects()
    objects[f"{DEV_PATH}/sep1/fd0"] = {
        "org.bluez.MediaTransport1": {"UUID": A2DP_SOURCE, "State": "active"}
    }
    mock_objects.return_value = objects
    assert RouteKind.BLUETOOTH_A2DP in await BluezRouteInspector().active_routes()


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
@patch("bt_autoplay.bluez._get_managed_objects", new_callable=AsyncMock)
async def test_active_routes_ignores_inbound_a2dp(mock_objects):
    # A phone streaming into the host; nothing flows out to a headset
    mock_objects.return_value = _objects(("hci0", A2DP_SINK))
    assert await BluezRouteInspector().active_routes() == {RouteKind.SPEAKER}


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
@patch("bt_autoplay.bluez._get_managed_objects", new_callable=AsyncMock)
async def test_active_routes_filters_adapter(mock_objects):
    mock_objects.return_value = _objects(("hci1", A2DP_SOURCE))
    routes = await BluezRouteInspector(adapter="hci0").active_routes()
    assert RouteKind.BLUETOOTH_A2DP not in routes
    routes = await BluezRouteInspector(adapter="hci1").active_routes()
    assert RouteKind.BLUETOOTH_A2DP in routes


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
@patch("bt_autoplay.bluez._get_managed_objects", new_callable=AsyncMock)
async def test_active_routes_without_audio_server(mock_objects):
    mock_objects.return_value = _objects(media=False)
    with pytest.raises(RouteQueryUnavailable):
        await BluezRouteInspector().active_routes()


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", False)
async def test_active_routes_non_linux():
    with pytest.raises(RouteQueryUnavailable):
        await BluezRouteInspector().active_routes()


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
@patch("bt_autoplay.bluez._get_managed_objects", new_callable=AsyncMock)
async def test_legacy_route_active(mock_objects):
    mock_objects.return_value = _objects(media=False, legacy=True)
    assert await BluezRouteInspector().legacy_route_active() is True
    mock_objects.return_value = _objects(media=False, legacy=False)
    assert await BluezRouteInspector().legacy_route_active() is False


@pytest.mark.asyncio
@patch("bt_autoplay.bluez.IS_LINUX", True)
async def test_get_managed_objects_maps_access_denied():
    from dbus_fast.errors import DBusError

    err = DBusError("org.freedesktop.DBus.Error.AccessDenied", "denied")
    with patch("bt_autoplay.bluez.call", new_callable=AsyncMock, side_effect=err):
        with pytest.raises(PermissionDenied):
            await _get_managed_objects()


# ── Connectivity notifier ─────────────────────────────────────────


def _signal(path=DEV_PATH, changed=None, interface="org.bluez.Device1"):
    return SimpleNamespace(
        member="PropertiesChanged",
        path=path,
        body=[interface, changed if changed is not None else {}, []],
    )


def _listening(adapter=None):
    notifier = BluezConnectivityNotifier(adapter)
    notifier._queue = asyncio.Queue()
    return notifier


@pytest.mark.asyncio
async def test_on_message_queues_connection_change():
    from dbus_fast import Variant

    notifier = _listening()
    assert notifier._on_message(_signal(changed={"Connected": Variant("b", True)})) is False
    assert notifier._queue.get_nowait() == ("hci0", "AA:BB:CC:DD:EE:FF", True)


@pytest.mark.asyncio
async def test_on_message_ignores_unrelated_signals():
    notifier = _listening()
    notifier._on_message(_signal(changed={"RSSI": -60}))
    notifier._on_message(_signal(interface="org.bluez.MediaControl1", changed={"Connected": True}))
    notifier._on_message(_signal(path="/org/bluez/hci0", changed={"Connected": True}))
    assert notifier._queue.empty()


@pytest.mark.asyncio
async def test_on_message_filters_adapter():
    notifier = _listening(adapter="hci1")
    notifier._on_message(_signal(changed={"Connected": False}))
    assert notifier._queue.empty()


@pytest.mark.asyncio
@patch("bt_autoplay.bluez._get_device_properties", new_callable=AsyncMock)
async def test_run_delivers_events_in_order(mock_props):
    mock_props.return_value = {"Class": 0x240404, "Alias": "Headset"}
    events = []
    notifier = _listening()
    notifier._handler = events.append
    notifier._queue.put_nowait(("hci0", "AA:BB:CC:DD:EE:FF", True))
    notifier._queue.put_nowait(("hci0", "AA:BB:CC:DD:EE:FF", False))

    pump = asyncio.ensure_future(notifier._run())
    for _ in range(10):
        await asyncio.sleep(0)
    pump.cancel()

    assert [type(e) for e in events] == [Connected, Disconnected]
    assert events[0].device.device_class is DeviceClass.WEARABLE_HEADSET
    assert events[0].device.name == "Headset"


@pytest.mark.asyncio
@patch("bt_autoplay.bluez._get_device_properties", new_callable=AsyncMock, return_value=None)
async def test_run_unreadable_properties_gives_unknown_device(mock_props):
    events = []
    notifier = _listening()
    notifier._handler = events.append
    notifier._queue.put_nowait(("hci0", "AA:BB:CC:DD:EE:FF", True))

    pump = asyncio.ensure_future(notifier._run())
    for _ in range(5):
        await asyncio.sleep(0)
    pump.cancel()

    assert events[0].device.device_class is DeviceClass.UNKNOWN
    assert events[0].device.name is None


@pytest.mark.asyncio
@patch("bt_autoplay.bluez._get_device_properties", new_callable=AsyncMock, return_value=None)
async def test_run_survives_handler_errors(mock_props):
    handler = MagicMock(side_effect=[RuntimeError("boom"), None])
    notifier = _listening()
    notifier._handler = handler
    notifier._queue.put_nowait(("hci0", "AA:BB:CC:DD:EE:01", True))
    notifier._queue.put_nowait(("hci0", "AA:BB:CC:DD:EE:02", True))

    pump = asyncio.ensure_future(notifier._run())
    for _ in range(10):
        await asyncio.sleep(0)
    pump.cancel()

    assert handler.call_count == 2


def _bus():
    bus = MagicMock()
    bus.dropped = asyncio.Event()

    async def wait_for_disconnect():
        await bus.dropped.wait()

    bus.wait_for_disconnect = wait_for_disconnect
    return bus


async def _settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe():
    bus = _bus()
    notifier = BluezConnectivityNotifier()
    with (
        patch("bt_autoplay.bluez.get_bus", new_callable=AsyncMock, return_value=bus),
        patch("bt_autoplay.bluez.call", new_callable=AsyncMock) as mock_call,
    ):
        await notifier.subscribe(lambda event: None)
        assert notifier.is_subscribed
        bus.add_message_handler.assert_called_once_with(notifier._on_message)
        assert mock_call.await_args.args[4] == "AddMatch"

        await notifier.unsubscribe()
        assert not notifier.is_subscribed
        bus.remove_message_handler.assert_called_once_with(notifier._on_message)
        assert mock_call.await_args.args[4] == "RemoveMatch"

    # Second unsubscribe is a no-op
    await notifier.unsubscribe()


@pytest.mark.asyncio
async def test_subscribe_can_be_retried_after_addmatch_failure():
    bus = _bus()
    notifier = BluezConnectivityNotifier()
    with (
        patch("bt_autoplay.bluez.get_bus", new_callable=AsyncMock, return_value=bus),
        patch(
            "bt_autoplay.bluez.call",
            new_callable=AsyncMock,
            side_effect=[RuntimeError("AddMatch rejected"), None, None],
        ),
    ):
        with pytest.raises(RuntimeError):
            await notifier.subscribe(lambda event: None)
        assert not notifier.is_subscribed
        assert notifier._pump is None
        assert notifier._queue is None
        bus.remove_message_handler.assert_called_once_with(notifier._on_message)

        await notifier.subscribe(lambda event: None)
        assert notifier.is_subscribed
        assert notifier._pump is not None
        assert not notifier._pump.done()
        assert bus.add_message_handler.call_count == 2

        await notifier.unsubscribe()
        assert notifier._pump is None


@pytest.mark.asyncio
@patch("bt_autoplay.bluez._get_device_properties", new_callable=AsyncMock, return_value=None)
async def test_resubscribes_after_bus_drop(mock_props, caplog):
    old_bus, new_bus = _bus(), _bus()
    events = []
    notifier = BluezConnectivityNotifier()
    with (
        patch(
            "bt_autoplay.bluez.get_bus",
            new_callable=AsyncMock,
            side_effect=[old_bus, new_bus],
        ),
        patch("bt_autoplay.bluez.call", new_callable=AsyncMock) as mock_call,
    ):
        await notifier.subscribe(events.append)
        old_bus.dropped.set()
        await _settle()

        assert "connection lost" in caplog.text
        new_bus.add_message_handler.assert_called_once_with(notifier._on_message)
        assert [c.args[4] for c in mock_call.await_args_list] == ["AddMatch", "AddMatch"]
        assert notifier._bus is new_bus

        # Events keep flowing through the original pump
        notifier._on_message(_signal(changed={"Connected": True}))
        await _settle()
        assert [type(e) for e in events] == [Connected]

        await notifier.unsubscribe()
        new_bus.remove_message_handler.assert_called_once_with(notifier._on_message)
        old_bus.remove_message_handler.assert_not_called()


@pytest.mark.asyncio
@patch("bt_autoplay.bluez._RESUBSCRIBE_DELAY", 0.0)
async def test_resubscribe_retries_until_bus_returns(caplog):
    old_bus, new_bus = _bus(), _bus()
    notifier = BluezConnectivityNotifier()
    with (
        patch(
            "bt_autoplay.bluez.get_bus",
            new_callable=AsyncMock,
            side_effect=[old_bus, RuntimeError("no bus"), RuntimeError("no bus"), new_bus],
        ),
        patch("bt_autoplay.bluez.call", new_callable=AsyncMock),
    ):
        await notifier.subscribe(lambda event: None)
        old_bus.dropped.set()
        await _settle(20)

        assert caplog.text.count("Re-subscribing to BlueZ failed") == 2
        assert notifier._bus is new_bus
        await notifier.unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribe_stops_bus_watch():
    bus = _bus()
    notifier = BluezConnectivityNotifier()
    with (
        patch("bt_autoplay.bluez.get_bus", new_callable=AsyncMock, return_value=bus) as mock_get_bus,
        patch("bt_autoplay.bluez.call", new_callable=AsyncMock),
    ):
        await notifier.subscribe(lambda event: None)
        await notifier.unsubscribe()
        bus.dropped.set()
        await _settle()
    assert mock_get_bus.await_count == 1
