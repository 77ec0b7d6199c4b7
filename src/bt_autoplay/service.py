"""The long-lived monitor: wires BlueZ events to the retry machinery.

Usage::

    service = AutoplayService.create(PRESET_TARGETS["spotify"])
    await service.start()
    ...
    await service.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .bluez import BluezConnectivityNotifier, BluezRouteInspector
from .const import DEFAULT_ADAPTER, SessionConfig, TargetConfig
from .dbus_bus import close_buses, wait_for_bluez
from .dispatch import ActionDispatcher, MediaKeyStrategy, TransportPlayStrategy
from .inhibit import LogindInhibitor
from .keys import XdotoolKeySender
from .launcher import AppLauncher
from .lease import ResourceGuard
from .monitor import EventMonitor
from .mpris import MprisBackend
from .orchestrator import Orchestrator
from .presence import SystemdNotifier
from .readiness import ReadinessGate
from .scheduler import LoopScheduler
from .session import RetrySession, SessionState

_LOGGER = logging.getLogger(__name__)

_TITLE = "Bluetooth autoplay"

_STATUS_TEXT = {
    SessionState.ARMED: "waiting for {device} audio",
    SessionState.RUNNING: "starting playback on {device}",
    SessionState.SUCCEEDED: "playing on {device}",
    SessionState.EXHAUSTED: "gave up on {device}",
    SessionState.CANCELLED: "listening for Bluetooth connections...",
}


class AutoplayService:
    """Subscribe to connection events and run retry sessions for them.

    Use :meth:`create` for the real BlueZ / logind / MPRIS wiring; the
    constructor takes the pieces directly so they can be replaced.
    """

    def __init__(
        self,
        notifier: Any,
        orchestrator: Orchestrator,
        presence: SystemdNotifier | None = None,
        bluez_timeout: float = 30.0,
    ) -> None:
        self._notifier = notifier
        self._orchestrator = orchestrator
        self._monitor = EventMonitor(orchestrator)
        self._presence = presence or SystemdNotifier()
        self._bluez_timeout = bluez_timeout
        self._running = False

    @classmethod
    def create(
        cls,
        target: TargetConfig,
        adapter: str | None = DEFAULT_ADAPTER,
        config: SessionConfig | None = None,
    ) -> AutoplayService:
        config = config or SessionConfig()
        scheduler = LoopScheduler()
        presence = SystemdNotifier()

        keys = XdotoolKeySender(target)
        dispatcher = ActionDispatcher(
            [MediaKeyStrategy(keys), TransportPlayStrategy(MprisBackend(), target)],
            scheduler,
            reinforcement=MediaKeyStrategy(keys),
            reinforce_delay=config.reinforce_delay,
        )

        def publish(session: RetrySession) -> None:
            text = _STATUS_TEXT[session.state].format(device=session.device.display_name)
            presence.publish(_TITLE, text)

        orchestrator = Orchestrator(
            ReadinessGate(BluezRouteInspector(adapter)),
            dispatcher,
            ResourceGuard(LogindInhibitor(scheduler), scheduler),
            scheduler,
            config=config,
            target=target,
            launcher=AppLauncher(),
            on_transition=publish,
        )
        return cls(BluezConnectivityNotifier(adapter), orchestrator, presence)

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @property
    def monitor(self) -> EventMonitor:
        return self._monitor

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Wait for BlueZ, subscribe, and report readiness.  Idempotent."""
        if self._running:
            return
        if not await wait_for_bluez(timeout=self._bluez_timeout):
            _LOGGER.warning("Subscribing anyway; events arrive once bluetoothd is up")
        await self._notifier.subscribe(self._monitor.on_event)
        self._running = True
        self._presence.ready()
        self._presence.publish(_TITLE, "listening for Bluetooth connections...")

    async def stop(self) -> None:
        """Unsubscribe, cancel all session work and release the wake lease."""
        if not self._running:
            return
        self._running = False
        self._presence.stopping()
        await self._notifier.unsubscribe()
        await self._orchestrator.shutdown()
        await close_buses()
        _LOGGER.info("Stopped")

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Run until *stop_event* is set, then stop cleanly."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()
