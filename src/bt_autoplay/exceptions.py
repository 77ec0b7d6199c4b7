"""Error taxonomy for bt-autoplay.

Backends raise these; the core components catch them at their own
boundary and turn them into plain results, so nothing here ever
reaches the event loop.
"""

from __future__ import annotations

from typing import Any

# D-Bus error names that mean "you are not allowed to ask".
_PERMISSION_ERRORS = frozenset(
    {
        "org.freedesktop.DBus.Error.AccessDenied",
        "org.freedesktop.DBus.Error.AuthFailed",
        "org.freedesktop.DBus.Error.InteractiveAuthorizationRequired",
        "org.bluez.Error.NotAuthorized",
        "org.bluez.Error.NotPermitted",
    }
)

# D-Bus error names that mean "nobody is there to answer".
_UNAVAILABLE_ERRORS = frozenset(
    {
        "org.freedesktop.DBus.Error.ServiceUnknown",
        "org.freedesktop.DBus.Error.UnknownObject",
        "org.freedesktop.DBus.Error.UnknownInterface",
        "org.freedesktop.DBus.Error.UnknownMethod",
        "org.freedesktop.DBus.Error.NameHasNoOwner",
        "org.bluez.Error.NotSupported",
    }
)


class AutoplayError(Exception):
    """Base class for all bt-autoplay errors."""


class PermissionDenied(AutoplayError):
    """Device metadata or route state could not be read for lack of authorization."""


class RouteQueryUnavailable(AutoplayError):
    """The primary audio route query is not available on this host."""


class StrategyUnavailable(AutoplayError):
    """A dispatch strategy is not supported on this host."""


class DispatchFailure(AutoplayError):
    """A dispatch strategy ran but the target did not accept the command."""


def from_dbus_error(
    err: Any, unavailable: type[AutoplayError] = RouteQueryUnavailable
) -> AutoplayError:
    """Map a ``dbus_fast.errors.DBusError`` onto the taxonomy.

    *unavailable* selects which class "service not there" errors map
    to, since that means something different to the route inspector
    than to a dispatch strategy.  Anything else becomes a
    :class:`DispatchFailure`.
    """
    name = getattr(err, "type", None) or ""
    text = getattr(err, "text", None) or str(err)
    if name in _PERMISSION_ERRORS:
        return PermissionDenied(f"{name}: {text}")
    if name in _UNAVAILABLE_ERRORS:
        return unavailable(f"{name}: {text}")
    return DispatchFailure(f"{name}: {text}" if name else text)
