"""bt-autoplay: start music when a Bluetooth audio device connects.

Watches BlueZ for headset / speaker / car-kit connections and, once the
audio route is actually up, tells the chosen media player to play.
Attempts are staged (3 s, 6 s, 10 s after connect), bounded, and
cancelled cleanly when the device goes away or another one connects.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .bluez import BluezConnectivityNotifier, BluezRouteInspector, address_to_bluez_path
from .const import (
    DEFAULT_ADAPTER,
    DEFAULT_MAX_ATTEMPTS,
    IS_LINUX,
    PRESET_TARGETS,
    QUALIFYING_ROUTES,
    RouteKind,
    SessionConfig,
    TargetConfig,
)
from .devices import (
    ConnectionEvent,
    Connected,
    DeviceClass,
    DeviceDescriptor,
    Disconnected,
    classify,
    is_qualifying_device,
)
from .dispatch import (
    ActionDispatcher,
    DispatchStrategy,
    MediaKeyStrategy,
    StrategyOutcome,
    TransportPlayStrategy,
    wake_target_app,
)
from .exceptions import (
    AutoplayError,
    DispatchFailure,
    PermissionDenied,
    RouteQueryUnavailable,
    StrategyUnavailable,
)
from .inhibit import LogindInhibitor
from .lease import ResourceGuard
from .monitor import EventMonitor
from .orchestrator import Orchestrator
from .readiness import ReadinessGate
from .scheduler import LoopScheduler
from .service import AutoplayService
from .session import RetrySession, SessionState

__all__ = [
    # Service
    "AutoplayService",
    # Session lifecycle
    "EventMonitor",
    "Orchestrator",
    "RetrySession",
    "SessionState",
    "SessionConfig",
    "LoopScheduler",
    # Wake lease
    "ResourceGuard",
    "LogindInhibitor",
    # Readiness
    "ReadinessGate",
    "RouteKind",
    "QUALIFYING_ROUTES",
    "BluezRouteInspector",
    # Dispatch
    "ActionDispatcher",
    "DispatchStrategy",
    "MediaKeyStrategy",
    "TransportPlayStrategy",
    "StrategyOutcome",
    "TargetConfig",
    "PRESET_TARGETS",
    "wake_target_app",
    # Devices and events
    "BluezConnectivityNotifier",
    "ConnectionEvent",
    "Connected",
    "Disconnected",
    "DeviceClass",
    "DeviceDescriptor",
    "classify",
    "is_qualifying_device",
    "address_to_bluez_path",
    # Errors
    "AutoplayError",
    "DispatchFailure",
    "PermissionDenied",
    "RouteQueryUnavailable",
    "StrategyUnavailable",
    # Constants
    "DEFAULT_ADAPTER",
    "DEFAULT_MAX_ATTEMPTS",
    "IS_LINUX",
]
