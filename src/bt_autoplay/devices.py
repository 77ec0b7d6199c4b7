"""Device descriptors, connection events and audio-class qualification.

BlueZ exposes the Bluetooth *Class of Device* of a classic device as
the ``Class`` property of ``org.bluez.Device1`` (a 24-bit integer)::

    bits 23..13  service classes
    bits 12..8   major device class   (0x04 = Audio/Video)
    bits  7..2   minor device class
    bits  1..0   format type

Only the major and minor parts (mask ``0x1FFC``) matter for deciding
whether a device is an audio output.  When ``Class`` is missing (LE
devices, or metadata we may not read) the ``Icon`` hint BlueZ derives
from it is used instead.  Anything else is ``UNKNOWN`` and does not
qualify.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

_DEVICE_CLASS_MASK = 0x1FFC
_MAJOR_CLASS_MASK = 0x1F00

_MAJOR_COMPUTER = 0x0100
_MAJOR_PHONE = 0x0200
_MAJOR_AUDIO_VIDEO = 0x0400
_MAJOR_PERIPHERAL = 0x0500

UNKNOWN_NAME = "unknown device"


class DeviceClass(str, Enum):
    """Coarse device-class tag of a connected peripheral."""

    WEARABLE_HEADSET = "audio-headset"
    HANDSFREE = "audio-handsfree"
    HEADPHONES = "audio-headphones"
    LOUDSPEAKER = "audio-loudspeaker"
    CAR_AUDIO = "car-audio"
    OTHER_AUDIO_VIDEO = "audio-video"
    PERIPHERAL_INPUT = "peripheral-input"
    PHONE = "phone"
    COMPUTER = "computer"
    UNKNOWN = "unknown"

    @classmethod
    def from_class_of_device(cls, cod: int | None) -> DeviceClass:
        """Decode a raw Class of Device value."""
        if cod is None:
            return cls.UNKNOWN
        device_class = cod & _DEVICE_CLASS_MASK
        if device_class in _AUDIO_MINOR_CLASSES:
            return _AUDIO_MINOR_CLASSES[device_class]
        major = cod & _MAJOR_CLASS_MASK
        if major == _MAJOR_AUDIO_VIDEO:
            return cls.OTHER_AUDIO_VIDEO
        if major == _MAJOR_PERIPHERAL:
            return cls.PERIPHERAL_INPUT
        if major == _MAJOR_PHONE:
            return cls.PHONE
        if major == _MAJOR_COMPUTER:
            return cls.COMPUTER
        return cls.UNKNOWN

    @classmethod
    def from_icon(cls, icon: str | None) -> DeviceClass:
        """Decode the freedesktop icon name BlueZ publishes as ``Icon``."""
        if not icon:
            return cls.UNKNOWN
        if icon in _ICON_CLASSES:
            return _ICON_CLASSES[icon]
        if icon.startswith("input-"):
            return cls.PERIPHERAL_INPUT
        return cls.UNKNOWN


_AUDIO_MINOR_CLASSES = {
    0x0404: DeviceClass.WEARABLE_HEADSET,
    0x0408: DeviceClass.HANDSFREE,
    0x0414: DeviceClass.LOUDSPEAKER,
    0x0418: DeviceClass.HEADPHONES,
    0x0420: DeviceClass.CAR_AUDIO,
}

_ICON_CLASSES = {
    "audio-headset": DeviceClass.WEARABLE_HEADSET,
    "audio-headphones": DeviceClass.HEADPHONES,
    "audio-card": DeviceClass.OTHER_AUDIO_VIDEO,
    "phone": DeviceClass.PHONE,
    "computer": DeviceClass.COMPUTER,
}

QUALIFYING_CLASSES = frozenset(
    {
        DeviceClass.WEARABLE_HEADSET,
        DeviceClass.HEADPHONES,
        DeviceClass.LOUDSPEAKER,
        DeviceClass.CAR_AUDIO,
    }
)


@dataclass(frozen=True)
class DeviceDescriptor:
    """Identity of a device as reported with a connection event.

    *name* is ``None`` when the notifier could not read it.
    """

    address: str
    device_class: DeviceClass = DeviceClass.UNKNOWN
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or UNKNOWN_NAME

    def __str__(self) -> str:
        return f"{self.display_name} ({self.address})"


@dataclass(frozen=True)
class Connected:
    device: DeviceDescriptor


@dataclass(frozen=True)
class Disconnected:
    device: DeviceDescriptor


ConnectionEvent = Union[Connected, Disconnected]


def is_qualifying_device(device: DeviceDescriptor) -> bool:
    """Return whether *device* is an audio output worth starting playback for.

    Pure function of the class tag: headsets, headphones, loudspeakers
    and car kits qualify; everything else (including ``UNKNOWN``) does
    not.
    """
    return device.device_class in QUALIFYING_CLASSES


def classify(props: dict[str, Any] | None) -> DeviceClass:
    """Classify a device from its ``org.bluez.Device1`` properties.

    Returns ``UNKNOWN`` when *props* is ``None`` (metadata not
    readable), so restricted devices fail closed.
    """
    if props is None:
        return DeviceClass.UNKNOWN
    device_class = DeviceClass.from_class_of_device(props.get("Class"))
    if device_class is DeviceClass.UNKNOWN:
        device_class = DeviceClass.from_icon(props.get("Icon"))
    return device_class


def describe_device(address: str, props: dict[str, Any] | None) -> DeviceDescriptor:
    """Build a :class:`DeviceDescriptor` from ``org.bluez.Device1`` properties."""
    name = None
    if props is not None:
        name = props.get("Alias") or props.get("Name")
        # BlueZ falls back to the dashed address as Alias when there is no name
        if name and name.replace("-", ":").upper() == address.upper():
            name = None
    return DeviceDescriptor(address=address, device_class=classify(props), name=name)
