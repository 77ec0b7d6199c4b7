"""Staged retry session: the state machine behind one connect event.

A session is created for each qualifying connect and lives until it
succeeds, runs out of attempts, or is cancelled::

    ARMED ──► RUNNING ──► SUCCEEDED
      │          │   └──► EXHAUSTED
      └──────────┴──────► CANCELLED

Arming schedules one callback per stage offset (3 s, 6 s, 10 s by
default).  Each callback checks the readiness gate and, if the audio
route is up, runs the dispatcher.  A failed check or a failed dispatch
counts as one attempt; after ``max_attempts`` the session is exhausted
and the wake lease is released at once.  After a success the lease is
kept for ``post_success_hold`` seconds so the player can get going,
then released.

Stale callbacks
---------------

Scheduled callbacks are never cancelled.  Each one carries the
generation it was scheduled for and does nothing unless that
generation is still the orchestrator's current one.  A session that
was cancelled or replaced can therefore never touch the state (or the
lease) of its successor.  Because readiness checks and dispatches
suspend on D-Bus and subprocess calls, the generation is checked again
after every ``await``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from .const import SessionConfig

if TYPE_CHECKING:
    from .devices import DeviceDescriptor
    from .dispatch import ActionDispatcher
    from .lease import ResourceGuard
    from .readiness import ReadinessGate
    from .scheduler import LoopScheduler

_LOGGER = logging.getLogger(__name__)


class SessionState(str, Enum):
    ARMED = "armed"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {SessionState.SUCCEEDED, SessionState.EXHAUSTED, SessionState.CANCELLED}
)


class RetrySession:
    """One bounded sequence of readiness-gated playback attempts.

    Parameters
    ----------
    generation:
        Id assigned by the orchestrator; callbacks carry it.
    device:
        The device whose connection started the session.
    gate, dispatcher, guard, scheduler:
        Collaborators shared with the orchestrator.
    is_current:
        Returns whether a generation is still the live one.
    config:
        Stage offsets and limits.
    on_transition:
        Called after every state change.
    """

    def __init__(
        self,
        generation: int,
        device: DeviceDescriptor,
        *,
        gate: ReadinessGate,
        dispatcher: ActionDispatcher,
        guard: ResourceGuard,
        scheduler: LoopScheduler,
        is_current: Callable[[int], bool],
        config: SessionConfig | None = None,
        on_transition: Callable[[RetrySession], None] | None = None,
    ) -> None:
        self._generation = generation
        self._device = device
        self._gate = gate
        self._dispatcher = dispatcher
        self._guard = guard
        self._scheduler = scheduler
        self._is_current = is_current
        self._config = config or SessionConfig()
        self._on_transition = on_transition
        self._state = SessionState.ARMED
        self._attempt_count = 0
        self._dispatch_count = 0
        self._armed = False
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return (
            f"<RetrySession g{self._generation} {self._device.address} "
            f"{self._state.value} {self._attempt_count}/{self._config.max_attempts}>"
        )

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def device(self) -> DeviceDescriptor:
        return self._device

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def attempt_count(self) -> int:
        return self._attempt_count

    @property
    def dispatch_count(self) -> int:
        """Return how many times the dispatcher was run for this session."""
        return self._dispatch_count

    @property
    def is_live(self) -> bool:
        return self._state not in TERMINAL_STATES

    def arm(self) -> None:
        """Schedule the staged attempts.  Arming twice is a no-op."""
        if self._armed or not self.is_live:
            return
        self._armed = True
        for stage, offset in enumerate(self._config.stage_offsets, start=1):
            self._scheduler.call_later(offset, self._on_stage, self._generation, stage)
        _LOGGER.info(
            "g%d: armed for %s, attempts at %s s",
            self._generation,
            self._device,
            "/".join(f"{o:g}" for o in self._config.stage_offsets),
        )

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the session and release the lease.

        Returns ``False`` (and does nothing) if the session already
        reached a terminal state.
        """
        if not self.is_live:
            return False
        self._guard.release()
        self._set_state(SessionState.CANCELLED)
        _LOGGER.info("g%d: cancelled (%s)", self._generation, reason)
        return True

    def _still_current(self, generation: int) -> bool:
        return self._is_current(generation) and self.is_live

    def _on_stage(self, generation: int, stage: int) -> None:
        if not self._still_current(generation):
            _LOGGER.debug("g%d: stage %d fired for a retired session, ignoring", generation, stage)
            return
        self._scheduler.spawn(self._run_stage(generation, stage))

    async def _run_stage(self, generation: int, stage: int) -> None:
        # An earlier stage may still be waiting on D-Bus; finish it first
        async with self._lock:
            if not self._still_current(generation):
                return
            if self._attempt_count >= self._config.max_attempts:
                self._exhaust()
                return

            self._set_state(SessionState.RUNNING)
            _LOGGER.debug("g%d: stage %d, checking audio route", generation, stage)

            ready = await self._gate.is_ready()
            if not self._still_current(generation):
                _LOGGER.debug("g%d: retired while checking readiness", generation)
                return
            if not ready:
                self._record_failure(stage, "audio route not active yet")
                return

            self._dispatch_count += 1
            dispatched = await self._dispatcher.dispatch(
                lambda: self._is_current(generation)
            )
            if not self._still_current(generation):
                _LOGGER.debug("g%d: retired while dispatching", generation)
                return
            if dispatched:
                self._succeed(stage)
            else:
                self._record_failure(stage, "no playback strategy succeeded")

    def _record_failure(self, stage: int, reason: str) -> None:
        self._attempt_count = min(self._attempt_count + 1, self._config.max_attempts)
        _LOGGER.info(
            "g%d: attempt %d/%d failed at stage %d: %s",
            self._generation,
            self._attempt_count,
            self._config.max_attempts,
            stage,
            reason,
        )
        if self._attempt_count >= self._config.max_attempts:
            self._exhaust()
        else:
            self._notify()

    def _exhaust(self) -> None:
        self._guard.release()
        self._set_state(SessionState.EXHAUSTED)
        _LOGGER.info(
            "g%d: giving up on %s after %d attempts",
            self._generation,
            self._device,
            self._attempt_count,
        )

    def _succeed(self, stage: int) -> None:
        self._attempt_count = self._config.max_attempts
        self._set_state(SessionState.SUCCEEDED)
        self._scheduler.call_later(
            self._config.post_success_hold, self._on_release_due, self._generation
        )
        _LOGGER.info(
            "g%d: playback started on %s at stage %d, holding wake lease %.1f s",
            self._generation,
            self._device,
            stage,
            self._config.post_success_hold,
        )

    def _on_release_due(self, generation: int) -> None:
        if not self._is_current(generation):
            _LOGGER.debug("g%d: post-success release for a retired session, ignoring", generation)
            return
        if self._guard.release():
            _LOGGER.info("g%d: wake lease released", generation)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._state = state
        self._notify()

    def _notify(self) -> None:
        if self._on_transition is None:
            return
        try:
            self._on_transition(self)
        except Exception:
            _LOGGER.exception("g%d: transition callback failed", self._generation)
