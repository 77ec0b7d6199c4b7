"""Constants and configuration dataclasses for bt-autoplay."""

from __future__ import annotations

import platform
from dataclasses import dataclass
from enum import Enum

IS_LINUX = platform.system() == "Linux"

DEFAULT_ADAPTER = "hci0"

# Staged attempt offsets (seconds after arming).  The first catches
# headsets whose A2DP transport comes up almost immediately, the last
# leaves room for slow profile negotiation.
STAGE_OFFSETS = (3.0, 6.0, 10.0)

DEFAULT_MAX_ATTEMPTS = 3

# How long the wake lease is kept after playback was triggered.
POST_SUCCESS_HOLD = 3.0

# Safety ceiling on the wake lease, independent of the staged schedule.
LEASE_CAP = 30.0

# Delay before the second play signal sent after a successful dispatch.
REINFORCE_DELAY = 0.5


class RouteKind(str, Enum):
    """Kinds of audio output route the host can report."""

    SPEAKER = "speaker"
    WIRED = "wired"
    BLUETOOTH_A2DP = "bluetooth-a2dp"
    BLUETOOTH_SCO = "bluetooth-sco"


# Routes that count as "the peripheral audio path is up".
QUALIFYING_ROUTES = frozenset({RouteKind.BLUETOOTH_A2DP, RouteKind.BLUETOOTH_SCO})


@dataclass(frozen=True)
class SessionConfig:
    """Timing and bounds for one retry session.

    Parameters
    ----------
    stage_offsets:
        Seconds after arming at which each staged attempt fires.
    max_attempts:
        Failed attempts after which the session is exhausted.
    post_success_hold:
        Seconds the wake lease stays held after a successful dispatch.
    lease_cap:
        Hard expiry of the wake lease, even if nothing releases it.
    reinforce_delay:
        Seconds before the follow-up play signal after a success.
    """

    stage_offsets: tuple[float, ...] = STAGE_OFFSETS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    post_success_hold: float = POST_SUCCESS_HOLD
    lease_cap: float = LEASE_CAP
    reinforce_delay: float = REINFORCE_DELAY


@dataclass(frozen=True)
class TargetConfig:
    """The media application playback is triggered on.

    Parameters
    ----------
    app_id:
        Identifier of the application (package or reverse-DNS name).
    mpris_name:
        Suffix of its ``org.mpris.MediaPlayer2.<name>`` bus name.
        Defaults to *app_id*.
    window_class:
        X11 window class used to aim synthetic key events.  Defaults
        to *mpris_name*.
    service_unit:
        systemd user unit that starts background playback, if any.
    desktop_id:
        Desktop entry id used to open the main interface.  Defaults
        to *app_id*.
    aliases:
        Other MPRIS name suffixes the application registers under.
    """

    app_id: str
    mpris_name: str = ""
    window_class: str = ""
    service_unit: str | None = None
    desktop_id: str = ""
    aliases: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.mpris_name:
            object.__setattr__(self, "mpris_name", self.app_id)
        if not self.window_class:
            object.__setattr__(self, "window_class", self.mpris_name)
        if not self.desktop_id:
            object.__setattr__(self, "desktop_id", self.app_id)

    @property
    def mpris_bus_name(self) -> str:
        """Return the well-known MPRIS bus name of the target."""
        return f"org.mpris.MediaPlayer2.{self.mpris_name}"

    def owns_bus_name(self, bus_name: str) -> bool:
        """Return whether *bus_name* is one of the target's MPRIS names.

        Players that allow several instances register
        ``org.mpris.MediaPlayer2.<name>.instance<pid>``.
        """
        prefix = "org.mpris.MediaPlayer2."
        if not bus_name.startswith(prefix):
            return False
        suffix = bus_name[len(prefix):]
        for name in (self.mpris_name, *self.aliases):
            if suffix == name or suffix.startswith(f"{name}."):
                return True
        return False


PRESET_TARGETS: dict[str, TargetConfig] = {
    "netease": TargetConfig(
        app_id="netease-cloud-music",
        mpris_name="netease-cloud-music",
        window_class="netease-cloud-music",
        desktop_id="netease-cloud-music",
    ),
    "spotify": TargetConfig(
        app_id="spotify",
        window_class="Spotify",
        desktop_id="spotify",
    ),
    "rhythmbox": TargetConfig(
        app_id="org.gnome.Rhythmbox3",
        mpris_name="rhythmbox",
        window_class="Rhythmbox",
        aliases=("org.gnome.Rhythmbox3",),
    ),
}
