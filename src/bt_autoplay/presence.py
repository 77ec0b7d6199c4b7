"""Status reporting to the service manager (``sd_notify``).

When the daemon runs as a systemd ``Type=notify`` service, systemd
passes a datagram socket in ``$NOTIFY_SOCKET``.  ``READY=1`` marks
start-up complete and ``STATUS=...`` is what ``systemctl status``
shows.  Outside systemd every call is a no-op.
"""

from __future__ import annotations

import logging
import os
import socket

_LOGGER = logging.getLogger(__name__)


class SystemdNotifier:
    def __init__(self, address: str | None = None) -> None:
        if address is None:
            address = os.environ.get("NOTIFY_SOCKET")
        if address and address.startswith("@"):
            # Abstract namespace socket
            address = "\0" + address[1:]
        self._address = address or None

    @property
    def enabled(self) -> bool:
        return self._address is not None

    def ready(self) -> None:
        self._send("READY=1")

    def stopping(self) -> None:
        self._send("STOPPING=1")

    def publish(self, title: str, text: str) -> None:
        """Show ``title: text`` as the service status."""
        self._send(f"STATUS={title}: {text}")

    def _send(self, message: str) -> bool:
        if self._address is None:
            return False
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
                sock.connect(self._address)
                sock.sendall(message.encode())
        except OSError:
            _LOGGER.debug("sd_notify %r failed", message, exc_info=True)
            return False
        return True
