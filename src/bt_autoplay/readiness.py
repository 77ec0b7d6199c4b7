"""Readiness gate: is the Bluetooth audio route actually up?

A headset reports ``Connected`` long before its A2DP transport exists,
and a play command sent in that window lands on the built-in speaker
(or nowhere).  :class:`ReadinessGate` answers "is the peripheral audio
path active right now" so the retry session only dispatches once it is.

The gate prefers the full route query.  Where the host cannot answer it
(:class:`~bt_autoplay.exceptions.RouteQueryUnavailable`) it falls back
to the inspector's coarser legacy flag.  Every other failure, and a
permission denial on either path, fails closed: no dispatch without
confirmed readiness.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .const import QUALIFYING_ROUTES, RouteKind
from .exceptions import PermissionDenied, RouteQueryUnavailable

_LOGGER = logging.getLogger(__name__)


class RouteInspector(Protocol):
    async def active_routes(self) -> set[RouteKind]: ...

    async def legacy_route_active(self) -> bool: ...


class ReadinessGate:
    """Boolean readiness check over a :class:`RouteInspector`."""

    def __init__(
        self,
        inspector: RouteInspector,
        qualifying: frozenset[RouteKind] = QUALIFYING_ROUTES,
    ) -> None:
        self._inspector = inspector
        self._qualifying = qualifying

    async def is_ready(self) -> bool:
        try:
            routes = await self._inspector.active_routes()
        except PermissionDenied as err:
            _LOGGER.warning("Cannot confirm audio route: %s", err)
            return False
        except RouteQueryUnavailable as err:
            _LOGGER.debug("Route query unavailable (%s), using legacy flag", err)
            return await self._legacy_ready()
        except Exception:
            _LOGGER.warning("Audio route query failed", exc_info=True)
            return False

        ready = bool(routes & self._qualifying)
        if ready:
            _LOGGER.debug(
                "Bluetooth audio route active: %s",
                sorted(r.value for r in routes & self._qualifying),
            )
        return ready

    async def _legacy_ready(self) -> bool:
        try:
            return bool(await self._inspector.legacy_route_active())
        except (PermissionDenied, RouteQueryUnavailable) as err:
            _LOGGER.warning("Cannot confirm audio route: %s", err)
            return False
        except Exception:
            _LOGGER.warning("Legacy audio route query failed", exc_info=True)
            return False
