"""Synthetic media-key events aimed at the target application.

Uses ``xdotool`` to press and release ``XF86AudioPlay``.  When a window
of the target application can be found by its X11 class the events are
sent to that window; otherwise they go to whichever client currently
grabs the media keys (usually the desktop's media-key daemon, which
forwards them to the active MPRIS player).

Emission is all this module promises.  Whether the player reacted is
not observable here.
"""

from __future__ import annotations

import logging
import os
import shutil
from enum import Enum
from typing import TYPE_CHECKING

from .const import IS_LINUX
from .exceptions import DispatchFailure, StrategyUnavailable
from .tools import run_tool

if TYPE_CHECKING:
    from .const import TargetConfig

_LOGGER = logging.getLogger(__name__)


class MediaKey(str, Enum):
    """X keysyms for media control keys."""

    PLAY = "XF86AudioPlay"
    PAUSE = "XF86AudioPause"
    NEXT = "XF86AudioNext"


class KeyPhase(str, Enum):
    DOWN = "keydown"
    UP = "keyup"


class XdotoolKeySender:
    """Emit key-down / key-up media events for one target application."""

    def __init__(self, target: TargetConfig) -> None:
        self._target = target
        self._window: str | None = None

    def supports_control_signals(self) -> bool:
        """Return whether synthetic key events can be sent on this host.

        Needs ``xdotool`` and an X display (Wayland sessions only work
        through XWayland, which sets ``DISPLAY`` too).
        """
        return (
            IS_LINUX
            and bool(os.environ.get("DISPLAY"))
            and shutil.which("xdotool") is not None
        )

    async def emit_control_signal(self, key: MediaKey, phase: KeyPhase) -> None:
        """Send one phase of *key*.

        The target window is looked up on ``DOWN`` and reused for the
        matching ``UP`` so a press and its release land in one place.
        """
        if not self.supports_control_signals():
            raise StrategyUnavailable("synthetic key events need xdotool and an X display")

        if phase is KeyPhase.DOWN:
            self._window = await self._find_window()

        args = ["xdotool", phase.value]
        if self._window is not None:
            args += ["--window", self._window]
        args.append(key.value)
        await run_tool(*args)
        _LOGGER.debug(
            "Sent %s %s to %s",
            key.value,
            phase.value,
            f"window {self._window}" if self._window else "focused client",
        )

    async def _find_window(self) -> str | None:
        try:
            out = await run_tool("xdotool", "search", "--class", self._target.window_class)
        except DispatchFailure:
            # xdotool search exits 1 when nothing matches
            return None
        for line in out.splitlines():
            if line.strip():
                return line.strip()
        return None
