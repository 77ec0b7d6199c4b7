"""Process-wide owner of the retry session and its generation counter.

At most one :class:`~bt_autoplay.session.RetrySession` is live at a
time.  Starting a new one cancels the previous one, releases the wake
lease, and bumps the generation so every callback the old session
still has scheduled turns into a no-op.  Cancelling (on disconnect)
bumps the generation too, which also voids a pending post-success
release.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .const import SessionConfig
from .dispatch import wake_target_app
from .session import RetrySession

if TYPE_CHECKING:
    from .const import TargetConfig
    from .devices import DeviceDescriptor
    from .dispatch import ActionDispatcher, LaunchBackend
    from .lease import ResourceGuard
    from .readiness import ReadinessGate
    from .scheduler import LoopScheduler

_LOGGER = logging.getLogger(__name__)


class Orchestrator:
    """Start, replace and cancel retry sessions.

    Parameters
    ----------
    gate, dispatcher, guard, scheduler:
        Collaborators handed to every session.
    config:
        Session timing and bounds.
    target, launcher:
        When both are given, the target application is woken up
        (best effort, in the background) before each session is armed.
    on_transition:
        Forwarded to every session; called after each state change.
    """

    def __init__(
        self,
        gate: ReadinessGate,
        dispatcher: ActionDispatcher,
        guard: ResourceGuard,
        scheduler: LoopScheduler,
        *,
        config: SessionConfig | None = None,
        target: TargetConfig | None = None,
        launcher: LaunchBackend | None = None,
        on_transition: Callable[[RetrySession], None] | None = None,
    ) -> None:
        self._gate = gate
        self._dispatcher = dispatcher
        self._guard = guard
        self._scheduler = scheduler
        self._config = config or SessionConfig()
        self._target = target
        self._launcher = launcher
        self._on_transition = on_transition
        self._generation = 0
        self._session: RetrySession | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def session(self) -> RetrySession | None:
        """Return the most recent session, live or not."""
        return self._session

    @property
    def live_session(self) -> RetrySession | None:
        if self._session is not None and self._session.is_live:
            return self._session
        return None

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def start_session(self, device: DeviceDescriptor) -> RetrySession:
        """Replace any previous session with a fresh, armed one for *device*."""
        self._retire(f"superseded by {device}")
        self._generation += 1

        session = RetrySession(
            self._generation,
            device,
            gate=self._gate,
            dispatcher=self._dispatcher,
            guard=self._guard,
            scheduler=self._scheduler,
            is_current=self.is_current,
            config=self._config,
            on_transition=self._on_transition,
        )
        self._session = session
        self._guard.acquire(self._config.lease_cap)

        if self._launcher is not None and self._target is not None:
            self._scheduler.spawn(wake_target_app(self._launcher, self._target))

        session.arm()
        if self._on_transition is not None:
            try:
                self._on_transition(session)
            except Exception:
                _LOGGER.exception("g%d: transition callback failed", session.generation)
        return session

    def cancel_session(self, reason: str) -> bool:
        """Cancel the live session, if any, and release the wake lease.

        The lease is released and the generation invalidated even when
        no session is live, so this is safe to call any number of
        times.  Returns whether a live session was cancelled.
        """
        cancelled = self._retire(reason)
        self._generation += 1
        return cancelled

    def _retire(self, reason: str) -> bool:
        cancelled = False
        if self._session is not None:
            cancelled = self._session.cancel(reason)
        if self._guard.release() and not cancelled:
            _LOGGER.debug("Released wake lease held past session end (%s)", reason)
        return cancelled

    async def shutdown(self) -> None:
        """Cancel the live session and any in-flight work."""
        self.cancel_session("shutting down")
        await self._scheduler.cancel_all()
