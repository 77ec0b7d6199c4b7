"""Turn connection events into retry-session starts and cancellations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .devices import Connected, Disconnected, is_qualifying_device

if TYPE_CHECKING:
    from .devices import ConnectionEvent, DeviceDescriptor
    from .orchestrator import Orchestrator

_LOGGER = logging.getLogger(__name__)


class EventMonitor:
    """Filter connection events and drive the orchestrator.

    - ``Connected`` of a qualifying audio device starts a new session
      (replacing any live one).  Other devices are ignored outright.
    - ``Disconnected`` of any device cancels the live session and
      releases the wake lease.  Without a live session it is a no-op
      apart from making sure the lease is not held.

    Parameters
    ----------
    orchestrator:
        Owner of the session lifecycle.
    qualifies:
        Device predicate.  Defaults to
        :func:`~bt_autoplay.devices.is_qualifying_device`.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        qualifies: Callable[[DeviceDescriptor], bool] = is_qualifying_device,
    ) -> None:
        self._orchestrator = orchestrator
        self._qualifies = qualifies

    def on_event(self, event: ConnectionEvent) -> None:
        if isinstance(event, Connected):
            self._on_connected(event.device)
        elif isinstance(event, Disconnected):
            self._on_disconnected(event.device)
        else:
            _LOGGER.debug("Ignoring unknown event %r", event)

    def _on_connected(self, device: DeviceDescriptor) -> None:
        if not self._qualifies(device):
            _LOGGER.debug(
                "Ignoring %s: %s is not an audio output",
                device,
                device.device_class.value,
            )
            return
        _LOGGER.info("Audio device connected: %s", device)
        self._orchestrator.start_session(device)

    def _on_disconnected(self, device: DeviceDescriptor) -> None:
        _LOGGER.info("Device disconnected: %s", device)
        self._orchestrator.cancel_session(f"{device} disconnected")
