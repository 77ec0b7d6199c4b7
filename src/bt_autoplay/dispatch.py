"""Fallback chain of playback strategies.

:class:`ActionDispatcher` walks an ordered list of
:class:`DispatchStrategy` objects until one reports success:

1. :class:`MediaKeyStrategy` - synthetic play key (press + release).
2. :class:`TransportPlayStrategy` - ``Play`` on the target's MPRIS
   session, if it has one.

Each strategy returns a :class:`StrategyOutcome`.  ``UNSUPPORTED``
(the host cannot do this at all) is skipped without counting as a
failure; ``FAILED`` moves on to the next strategy as well, but if no
strategy succeeds the dispatch as a whole failed.  No strategy raises
past :meth:`DispatchStrategy.attempt`.

After a success the dispatcher sends one more play key shortly after,
because some players swallow the first key while they finish opening
their output stream.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from .exceptions import DispatchFailure, StrategyUnavailable
from .keys import KeyPhase, MediaKey

if TYPE_CHECKING:
    from .const import TargetConfig
    from .mpris import MediaSessionRef
    from .scheduler import LoopScheduler

_LOGGER = logging.getLogger(__name__)


class StrategyOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"


class ControlSignalBackend(Protocol):
    def supports_control_signals(self) -> bool: ...

    async def emit_control_signal(self, key: MediaKey, phase: KeyPhase) -> None: ...


class SessionBackend(Protocol):
    async def list_active_sessions(self) -> list[MediaSessionRef]: ...

    async def transport_play(self, session: MediaSessionRef) -> None: ...


class LaunchBackend(Protocol):
    async def start_background_component(self, target: TargetConfig) -> None: ...

    async def launch_main_interface(self, target: TargetConfig) -> None: ...


class DispatchStrategy(abc.ABC):
    """One way of making the target application start playing."""

    name = "strategy"

    async def attempt(self) -> StrategyOutcome:
        """Run the strategy.  Never raises."""
        try:
            return await self._attempt()
        except StrategyUnavailable as err:
            _LOGGER.debug("%s: unsupported here (%s)", self.name, err)
            return StrategyOutcome.UNSUPPORTED
        except DispatchFailure as err:
            _LOGGER.warning("%s: failed (%s)", self.name, err)
            return StrategyOutcome.FAILED
        except Exception:
            _LOGGER.warning("%s: failed", self.name, exc_info=True)
            return StrategyOutcome.FAILED

    @abc.abstractmethod
    async def _attempt(self) -> StrategyOutcome:
        """Strategy body; may raise the dispatch exceptions."""


class MediaKeyStrategy(DispatchStrategy):
    """Press and release the play key at the target application."""

    name = "media-key"

    def __init__(self, backend: ControlSignalBackend, key: MediaKey = MediaKey.PLAY) -> None:
        self._backend = backend
        self._key = key

    async def _attempt(self) -> StrategyOutcome:
        if not self._backend.supports_control_signals():
            return StrategyOutcome.UNSUPPORTED
        await self._backend.emit_control_signal(self._key, KeyPhase.DOWN)
        await self._backend.emit_control_signal(self._key, KeyPhase.UP)
        _LOGGER.info("Sent %s key press", self._key.value)
        return StrategyOutcome.SUCCEEDED


class TransportPlayStrategy(DispatchStrategy):
    """Call ``Play`` on the target's active media session."""

    name = "transport-play"

    def __init__(self, backend: SessionBackend, target: TargetConfig) -> None:
        self._backend = backend
        self._target = target

    async def _attempt(self) -> StrategyOutcome:
        for session in await self._backend.list_active_sessions():
            if self._target.owns_bus_name(session.bus_name):
                await self._backend.transport_play(session)
                _LOGGER.info("Sent Play to media session %s", session.bus_name)
                return StrategyOutcome.SUCCEEDED
        _LOGGER.debug("No active media session for %s", self._target.app_id)
        return StrategyOutcome.FAILED


class ActionDispatcher:
    """Try strategies in order until one succeeds.

    Parameters
    ----------
    strategies:
        The fallback chain, in order.
    scheduler:
        Runs the delayed reinforcement.
    reinforcement:
        Strategy repeated *reinforce_delay* seconds after a success.
        ``None`` disables reinforcement.
    reinforce_delay:
        Seconds between the success and the reinforcement.
    """

    def __init__(
        self,
        strategies: list[DispatchStrategy],
        scheduler: LoopScheduler,
        reinforcement: DispatchStrategy | None = None,
        reinforce_delay: float = 0.5,
    ) -> None:
        self._strategies = list(strategies)
        self._scheduler = scheduler
        self._reinforcement = reinforcement
        self._reinforce_delay = reinforce_delay

    @property
    def strategies(self) -> list[DispatchStrategy]:
        return list(self._strategies)

    async def dispatch(self, still_wanted: Callable[[], bool] | None = None) -> bool:
        """Run the chain.  Returns ``True`` iff a strategy succeeded.

        *still_wanted* is checked before the reinforcement fires; if it
        returns ``False`` by then (the session was cancelled or
        superseded) the reinforcement is dropped.
        """
        for strategy in self._strategies:
            outcome = await strategy.attempt()
            if outcome is StrategyOutcome.SUCCEEDED:
                self._schedule_reinforcement(still_wanted)
                return True
        return False

    def _schedule_reinforcement(self, still_wanted: Callable[[], bool] | None) -> None:
        if self._reinforcement is None:
            return
        self._scheduler.call_later(
            self._reinforce_delay, self._fire_reinforcement, still_wanted
        )

    def _fire_reinforcement(self, still_wanted: Callable[[], bool] | None) -> None:
        if still_wanted is not None and not still_wanted():
            _LOGGER.debug("Session ended before reinforcement, skipping")
            return
        self._scheduler.spawn(self._reinforce())

    async def _reinforce(self) -> None:
        assert self._reinforcement is not None
        outcome = await self._reinforcement.attempt()
        _LOGGER.debug("Reinforcement %s: %s", self._reinforcement.name, outcome.value)


async def wake_target_app(launcher: LaunchBackend, target: TargetConfig) -> bool:
    """Best-effort start of the target application.

    Tries the background playback service first and falls back to the
    main interface.  Failures are logged, never raised.  Returns
    whether either way worked.
    """
    try:
        await launcher.start_background_component(target)
        _LOGGER.info("Started background playback service of %s", target.app_id)
        return True
    except Exception as err:
        _LOGGER.debug("Background start of %s failed: %s", target.app_id, err)

    try:
        await launcher.launch_main_interface(target)
        _LOGGER.info("Launched %s", target.app_id)
        return True
    except Exception as err:
        _LOGGER.warning("Could not start %s: %s", target.app_id, err)
        return False
