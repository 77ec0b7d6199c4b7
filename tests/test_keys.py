"""Tests for keys module: xdotool media keys."""

from unittest.mock import AsyncMock, patch

import pytest

from bt_autoplay.const import PRESET_TARGETS
from bt_autoplay.exceptions import DispatchFailure, StrategyUnavailable
from bt_autoplay.keys import KeyPhase, MediaKey, XdotoolKeySender

SPOTIFY = PRESET_TARGETS["spotify"]


@pytest.fixture
def x11(monkeypatch):
    monkeypatch.setenv("DISPLAY", ":0")
    with (
        patch("bt_autoplay.keys.IS_LINUX", True),
        patch("bt_autoplay.keys.shutil.which", return_value="/usr/bin/xdotool"),
    ):
        yield


def test_supported_with_display(x11):
    assert XdotoolKeySender(SPOTIFY).supports_control_signals() is True


def test_unsupported_without_display(x11, monkeypatch):
    monkeypatch.delenv("DISPLAY")
    assert XdotoolKeySender(SPOTIFY).supports_control_signals() is False


@patch("bt_autoplay.keys.IS_LINUX", True)
@patch("bt_autoplay.keys.shutil.which", return_value=None)
def test_unsupported_without_xdotool(mock_which, monkeypatch):
    monkeypatch.setenv("DISPLAY", ":0")
    assert XdotoolKeySender(SPOTIFY).supports_control_signals() is False


@pytest.mark.asyncio
async def test_press_targets_found_window(x11):
    sender = XdotoolKeySender(SPOTIFY)
    with patch(
        "bt_autoplay.keys.run_tool", new_callable=AsyncMock, side_effect=["73400321\n", "", ""]
    ) as mock_run:
        await sender.emit_control_signal(MediaKey.PLAY, KeyPhase.DOWN)
        await sender.emit_control_signal(MediaKey.PLAY, KeyPhase.UP)

    calls = [c.args for c in mock_run.await_args_list]
    assert calls == [
        ("xdotool", "search", "--class", "Spotify"),
        ("xdotool", "keydown", "--window", "73400321", "XF86AudioPlay"),
        ("xdotool", "keyup", "--window", "73400321", "XF86AudioPlay"),
    ]


@pytest.mark.asyncio
async def test_press_without_window_goes_to_focused_client(x11):
    sender = XdotoolKeySender(SPOTIFY)
    with patch(
        "bt_autoplay.keys.run_tool",
        new_callable=AsyncMock,
        side_effect=[DispatchFailure("no match"), ""],
    ) as mock_run:
        await sender.emit_control_signal(MediaKey.PLAY, KeyPhase.DOWN)
    assert mock_run.await_args.args == ("xdotool", "keydown", "XF86AudioPlay")


@pytest.mark.asyncio
async def test_emit_unsupported_raises(monkeypatch):
    monkeypatch.delenv("DISPLAY", raising=False)
    with pytest.raises(StrategyUnavailable):
        await XdotoolKeySender(SPOTIFY).emit_control_signal(MediaKey.PLAY, KeyPhase.DOWN)
