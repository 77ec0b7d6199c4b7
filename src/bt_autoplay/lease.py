"""Exclusive, time-bounded wake lease.

:class:`ResourceGuard` wraps the host's wake resource (see
:mod:`bt_autoplay.inhibit`) with lease semantics:

- ``acquire(max_hold)`` is idempotent.  Acquiring while held is a
  no-op and does **not** extend the expiry.
- The lease expires on its own after *max_hold* seconds, so a missed
  release can never keep the host awake indefinitely.
- ``release()`` is idempotent and safe when nothing is held.

Errors from the underlying resource are logged and swallowed; losing
the wake resource degrades to "the host may suspend", which is never
worth crashing the monitor for.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .scheduler import LoopScheduler

_LOGGER = logging.getLogger(__name__)


class WakeResource(Protocol):
    def acquire(self, max_hold: float) -> None: ...

    def release(self) -> None: ...

    def is_held(self) -> bool: ...


class ResourceGuard:
    """Hold a :class:`WakeResource` for at most a bounded time.

    Parameters
    ----------
    resource:
        The platform wake resource.
    scheduler:
        Source of time and timers; the expiry timer runs on it.
    """

    def __init__(self, resource: WakeResource, scheduler: LoopScheduler) -> None:
        self._resource = resource
        self._scheduler = scheduler
        self._held = False
        self._deadline: float | None = None
        self._max_hold = 0.0
        self._expiry: Any = None
        self._lease_id = 0

    @property
    def deadline(self) -> float | None:
        """Return the scheduler time at which the current lease expires."""
        return self._deadline if self._held else None

    def is_held(self) -> bool:
        return self._held

    def acquire(self, max_hold: float) -> bool:
        """Take the lease for at most *max_hold* seconds.

        Returns ``True`` if a new lease was taken, ``False`` if one was
        already held (its expiry is left untouched).
        """
        if self._held:
            _LOGGER.debug("Wake lease already held, keeping existing expiry")
            return False

        try:
            self._resource.acquire(max_hold)
        except Exception:
            _LOGGER.warning(
                "Failed to acquire wake resource, continuing without it",
                exc_info=True,
            )

        self._lease_id += 1
        self._max_hold = max_hold
        self._held = True
        self._deadline = self._scheduler.time() + max_hold
        self._expiry = self._scheduler.call_later(
            max_hold, self._expire, self._lease_id
        )
        _LOGGER.debug("Wake lease %d acquired for %.1f s", self._lease_id, max_hold)
        return True

    def release(self) -> bool:
        """Release the lease.  Returns ``False`` if nothing was held."""
        if not self._held:
            return False
        self._drop()
        _LOGGER.debug("Wake lease %d released", self._lease_id)
        return True

    def _expire(self, lease_id: int) -> None:
        if not self._held or lease_id != self._lease_id:
            return
        _LOGGER.warning(
            "Wake lease %d hit its %.1f s safety cap, releasing",
            lease_id,
            self._max_hold,
        )
        self._expiry = None
        self._drop()

    def _drop(self) -> None:
        self._held = False
        self._deadline = None
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None
        try:
            self._resource.release()
        except Exception:
            _LOGGER.warning("Failed to release wake resource", exc_info=True)
