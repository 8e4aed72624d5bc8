#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Immutable records decoded from Switcher frames."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .internal_types import *

class SwitchState(Enum):
    """The power state of a switch. The protocol only distinguishes ON and OFF."""
    OFF = 0
    ON = 1

    @classmethod
    def from_raw(cls, raw: int) -> SwitchState:
        """Any nonzero raw state field means ON."""
        return cls.OFF if raw == 0 else cls.ON

@dataclass(frozen=True)
class DeviceDescriptor:
    """The coordinates needed to open a command session with a device."""

    device_id: str
    """The 3-byte device id, as 6 lowercase hex digits."""

    address: str
    """The IPv4 address of the device, in dotted-quad form."""

    name: str = ""
    """The device name, if known."""

    def to_jsonable(self) -> JsonableDict:
        return dict(device_id=self.device_id, address=self.address, name=self.name)

@dataclass(frozen=True)
class DeviceStatus:
    """A snapshot of a device's identity and live status, decoded from a status
       broadcast or from the reply to a status query."""

    name: str
    device_id: str
    source_address: str
    state: SwitchState
    remaining_seconds: int
    """Seconds until the device turns itself off, or 0 if no timer is running."""
    default_shutdown_seconds: int
    """The auto-shutdown duration applied when the device is turned on without a timer."""
    power_consumption_watts: int

    @property
    def is_on(self) -> bool:
        return self.state == SwitchState.ON

    def to_jsonable(self) -> JsonableDict:
        return dict(
            name=self.name,
            device_id=self.device_id,
            source_address=self.source_address,
            state=self.state.name,
            remaining_seconds=self.remaining_seconds,
            default_shutdown_seconds=self.default_shutdown_seconds,
            power_consumption_watts=self.power_consumption_watts,
          )
