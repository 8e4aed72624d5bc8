#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Encoding and decoding of Switcher protocol frames.

Inbound frames are decoded through fixed offset tables:

  * Status broadcasts (UDP, exactly 165 bytes, beginning with FE F0)
  * Status query replies (TCP, variable length)
  * Login replies (TCP, session token at offset 8)

Outbound command frames are built from a fixed template:

    FE F0 <len:u16le> 02 32 <opcode:2> <session_token:4> 34 00 01 <9 x 00>
    <unix_time:u32le> <10 x 00> F0 FE <addressing> <command payload> <trailer:4>

where <len> is the total length of the signed frame and <trailer> is produced by sign().
"""

from __future__ import annotations

import struct
import socket
import time

from .internal_types import *
from .pkg_logging import logger
from .exceptions import SwitcherError, SwitcherFrameError
from .crc import crc16
from .models import SwitchState, DeviceStatus
from .constants import (
    BROADCAST_FRAME_LENGTH,
    FRAME_MAGIC,
    SIGNING_KEY,
    NULL_SESSION_TOKEN,
    SESSION_TOKEN_LENGTH,
    DEVICE_ID_LENGTH,
    PHONE_ID_LENGTH,
    DEVICE_PASSWORD_LENGTH,
    MIN_DEFAULT_SHUTDOWN_SECONDS,
    MAX_DEFAULT_SHUTDOWN_SECONDS,
  )

FieldSpan = Tuple[int, int]
"""A (byte_offset, length) pair locating a field within a frame."""

BROADCAST_FIELDS: Final[Dict[str, FieldSpan]] = {
    'device_id': (18, 3),
    # Overlaps the last device_id byte. Some client implementations read the name at byte 40.
    'device_name': (20, 32),
    'source_address': (76, 4),
    'switch_state': (133, 2),
    'power_consumption_watts': (135, 2),
    'remaining_seconds': (147, 4),
    'default_shutdown_seconds': (155, 4),
}
"""Field locations within a 165-byte status broadcast."""

STATUS_REPLY_FIELDS: Final[Dict[str, FieldSpan]] = {
    'device_name': (20, 32),
    'switch_state': (75, 2),
    'power_consumption_watts': (77, 2),
    'remaining_seconds': (89, 4),
    'default_shutdown_seconds': (97, 4),
}
"""Field locations within the reply to a status query."""

LOGIN_REPLY_FIELDS: Final[Dict[str, FieldSpan]] = {
    'session_token': (8, SESSION_TOKEN_LENGTH),
}
"""Field locations within the reply to a login request."""

TRAILER_LENGTH = 4

_FRAME_PROTOCOL_BYTES = b'\x02\x32'
_VERSION_BLOCK = b'\x34\x00\x01' + bytes(9)
_PRE_ADDRESS_BLOCK = bytes(10) + b'\xf0\xfe'
_LOGIN_ADDRESS_BLOCK = b'\x1c\x00'
_CREDENTIALS_PADDING = bytes(28)

OPCODE_LOGIN = b'\xa1\x00'
OPCODE_QUERY_STATUS = b'\x01\x03'
OPCODE_CONTROL = b'\x01\x02'

_POWER_PAYLOAD_PREFIX = b'\x01\x06\x00'
_SHUTDOWN_PAYLOAD_PREFIX = b'\x04\x04\x00'


def is_broadcast(data: bytes) -> bool:
    """Returns True iff data has the shape of a status broadcast: exactly 165 bytes beginning with FE F0."""
    return len(data) == BROADCAST_FRAME_LENGTH and data[:2] == FRAME_MAGIC


class SwitcherFrame:
    """A read-only cursor over one raw frame, with typed accessors for fields
       named in an offset table. Subclasses provide the table and the minimum
       length that makes every field in it addressable."""

    fields: Dict[str, FieldSpan] = {}
    min_length: int = 0

    raw_data: bytes
    """The raw frame contents"""

    def __init__(self, raw_data: bytes):
        self.raw_data = bytes(raw_data)

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.raw_data.hex(' ')})"

    def __repr__(self) -> str:
        return str(self)

    def __len__(self) -> int:
        return len(self.raw_data)

    @property
    def is_complete(self) -> bool:
        """Returns True iff every field in the offset table lies within the frame"""
        return len(self.raw_data) >= self.min_length

    def validate(self) -> None:
        if not self.is_complete:
            raise SwitcherFrameError(
                f"Frame too short ({len(self.raw_data)} bytes, need {self.min_length}): {self}")

    def field_bytes(self, name: str) -> bytes:
        offset, length = self.fields[name]
        if offset + length > len(self.raw_data):
            raise SwitcherFrameError(f"Field {name} at [{offset}:{offset + length}] is beyond end of frame: {self}")
        return self.raw_data[offset:offset + length]

    def field_str(self, name: str) -> str:
        """Decodes a NUL-padded text field"""
        return self.field_bytes(name).replace(b'\x00', b'').decode('utf-8', errors='replace')

    def field_hex(self, name: str) -> str:
        return self.field_bytes(name).hex()

    def field_u16le(self, name: str) -> int:
        result: int = struct.unpack('<H', self.field_bytes(name))[0]
        return result

    def field_u32le(self, name: str) -> int:
        result: int = struct.unpack('<I', self.field_bytes(name))[0]
        return result

    def field_ipv4(self, name: str) -> str:
        """Decodes a big-endian IPv4 address field to dotted-quad form"""
        return socket.inet_ntoa(self.field_bytes(name))

    def field_state(self, name: str) -> SwitchState:
        return SwitchState.from_raw(self.field_u16le(name))


class SwitcherBroadcast(SwitcherFrame):
    """A status broadcast periodically sent by every device to UDP port 20002."""

    fields = BROADCAST_FIELDS
    min_length = BROADCAST_FRAME_LENGTH

    @property
    def is_valid(self) -> bool:
        return is_broadcast(self.raw_data)

    def validate(self) -> None:
        if not self.is_valid:
            raise SwitcherFrameError(f"Not a switcher status broadcast: {self}")

    @property
    def device_id(self) -> str:
        return self.field_hex('device_id')

    @property
    def device_name(self) -> str:
        return self.field_str('device_name')

    @property
    def source_address(self) -> str:
        return self.field_ipv4('source_address')

    @property
    def switch_state(self) -> SwitchState:
        return self.field_state('switch_state')

    @property
    def power_consumption_watts(self) -> int:
        return self.field_u16le('power_consumption_watts')

    @property
    def remaining_seconds(self) -> int:
        return self.field_u32le('remaining_seconds')

    @property
    def default_shutdown_seconds(self) -> int:
        return self.field_u32le('default_shutdown_seconds')

    def to_device_status(self) -> DeviceStatus:
        self.validate()
        return DeviceStatus(
            name=self.device_name,
            device_id=self.device_id,
            source_address=self.source_address,
            state=self.switch_state,
            remaining_seconds=self.remaining_seconds,
            default_shutdown_seconds=self.default_shutdown_seconds,
            power_consumption_watts=self.power_consumption_watts,
          )


class SwitcherStatusReply(SwitcherFrame):
    """The reply to a status query. It carries neither the device id nor the
       device address, so those are supplied by the session that sent the query."""

    fields = STATUS_REPLY_FIELDS
    min_length = max(offset + length for offset, length in STATUS_REPLY_FIELDS.values())

    def to_device_status(self, device_id: str, source_address: str) -> DeviceStatus:
        self.validate()
        return DeviceStatus(
            name=self.field_str('device_name'),
            device_id=device_id,
            source_address=source_address,
            state=self.field_state('switch_state'),
            remaining_seconds=self.field_u32le('remaining_seconds'),
            default_shutdown_seconds=self.field_u32le('default_shutdown_seconds'),
            power_consumption_watts=self.field_u16le('power_consumption_watts'),
          )


class SwitcherLoginReply(SwitcherFrame):
    """The reply to a login request, carrying the session token."""

    fields = LOGIN_REPLY_FIELDS
    min_length = max(offset + length for offset, length in LOGIN_REPLY_FIELDS.values())

    @property
    def session_token(self) -> bytes:
        self.validate()
        return self.field_bytes('session_token')


def decode_broadcast(data: bytes) -> Optional[DeviceStatus]:
    """Decodes a status broadcast. Returns None if data is not a broadcast."""
    if not is_broadcast(data):
        return None
    return SwitcherBroadcast(data).to_device_status()

def decode_status_reply(data: bytes, device_id: str, source_address: str) -> DeviceStatus:
    return SwitcherStatusReply(data).to_device_status(device_id, source_address)

def decode_login_reply(data: bytes) -> bytes:
    """Returns the 4-byte session token from a login reply."""
    return SwitcherLoginReply(data).session_token


def crc_trailer(frame: bytes) -> bytes:
    """Computes the 4-byte signature trailer for an unsigned frame.

    The first two bytes are the CRC of the frame, little-endian; the last two are
    the CRC of (those two bytes + SIGNING_KEY), little-endian.
    """
    frame_crc = struct.pack('<H', crc16(frame) & 0xFFFF)
    key_crc = struct.pack('<H', crc16(frame_crc + SIGNING_KEY) & 0xFFFF)
    return frame_crc + key_crc

def sign(frame: bytes) -> bytes:
    """Returns frame with its signature trailer appended."""
    return frame + crc_trailer(frame)

def unix_timestamp() -> int:
    return int(round(time.time()))

def clamp_default_shutdown(seconds: int) -> int:
    """Clamps an auto-shutdown duration to the range the device accepts."""
    if seconds < MIN_DEFAULT_SHUTDOWN_SECONDS:
        logger.warning(f"Default shutdown can't be less than 1 hour; setting to {MIN_DEFAULT_SHUTDOWN_SECONDS}")
        return MIN_DEFAULT_SHUTDOWN_SECONDS
    if seconds > MAX_DEFAULT_SHUTDOWN_SECONDS:
        logger.warning(f"Default shutdown can't be more than 23 hours and 59 minutes; setting to {MAX_DEFAULT_SHUTDOWN_SECONDS}")
        return MAX_DEFAULT_SHUTDOWN_SECONDS
    return seconds

def _check_length(name: str, value: bytes, length: int) -> None:
    if len(value) != length:
        raise SwitcherError(f"{name} must be exactly {length} bytes, got {len(value)}: {value.hex()}")


class SwitcherCredentials:
    """The per-device constants that are embedded in every command frame."""

    device_id: bytes
    phone_id: bytes
    device_password: bytes

    def __init__(self, device_id: bytes, phone_id: bytes, device_password: bytes):
        _check_length("device_id", device_id, DEVICE_ID_LENGTH)
        _check_length("phone_id", phone_id, PHONE_ID_LENGTH)
        _check_length("device_password", device_password, DEVICE_PASSWORD_LENGTH)
        self.device_id = device_id
        self.phone_id = phone_id
        self.device_password = device_password

    @property
    def credentials_block(self) -> bytes:
        return self.phone_id + b'\x00\x00' + self.device_password

    def __str__(self) -> str:
        return f"SwitcherCredentials(device_id={self.device_id.hex()})"

    def __repr__(self) -> str:
        return str(self)


class Command:
    """A command that can be sent to a device. Each variant has one opcode and
       one rule for encoding its payload."""

    name: str = "Command"
    opcode: bytes = OPCODE_CONTROL
    requires_session: bool = True
    """False only for Login, which is sent before a session token exists."""

    def payload(self, credentials: SwitcherCredentials) -> bytes:
        """Returns the bytes that follow the F0 FE marker"""
        raise NotImplementedError()

    def encode(
            self,
            credentials: SwitcherCredentials,
            session_token: Optional[bytes]=None,
            timestamp: Optional[int]=None,
          ) -> bytes:
        """Builds the unsigned frame for this command."""
        if self.requires_session:
            if session_token is None:
                raise SwitcherError(f"{self.name} requires a session token")
            token = session_token
        else:
            token = NULL_SESSION_TOKEN
        _check_length("session_token", token, SESSION_TOKEN_LENGTH)
        if timestamp is None:
            timestamp = unix_timestamp()
        body = (
            _FRAME_PROTOCOL_BYTES + self.opcode + token + _VERSION_BLOCK +
            struct.pack('<I', timestamp) + _PRE_ADDRESS_BLOCK + self.payload(credentials)
          )
        declared_length = len(FRAME_MAGIC) + 2 + len(body) + TRAILER_LENGTH
        return FRAME_MAGIC + struct.pack('<H', declared_length) + body

    def build(
            self,
            credentials: SwitcherCredentials,
            session_token: Optional[bytes]=None,
            timestamp: Optional[int]=None,
          ) -> bytes:
        """Builds and signs the frame for this command."""
        return sign(self.encode(credentials, session_token=session_token, timestamp=timestamp))

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return str(self)


class LoginCommand(Command):
    name = "Login"
    opcode = OPCODE_LOGIN
    requires_session = False

    def payload(self, credentials: SwitcherCredentials) -> bytes:
        return _LOGIN_ADDRESS_BLOCK + credentials.credentials_block + _CREDENTIALS_PADDING

class QueryStatusCommand(Command):
    name = "QueryStatus"
    opcode = OPCODE_QUERY_STATUS

    def payload(self, credentials: SwitcherCredentials) -> bytes:
        return credentials.device_id + b'\x00'

class _PowerCommand(Command):
    state: SwitchState
    duration_seconds: int = 0

    def payload(self, credentials: SwitcherCredentials) -> bytes:
        return (
            credentials.device_id + b'\x00' + credentials.credentials_block + _CREDENTIALS_PADDING +
            _POWER_PAYLOAD_PREFIX + bytes([self.state.value]) + b'\x00' +
            struct.pack('<I', self.duration_seconds)
          )

class PowerOnCommand(_PowerCommand):
    state = SwitchState.ON

    def __init__(self, duration_seconds: int=0):
        if duration_seconds < 0:
            raise SwitcherError(f"Power-on duration cannot be negative: {duration_seconds}")
        self.duration_seconds = duration_seconds
        self.name = f"PowerOn({duration_seconds})"

class PowerOffCommand(_PowerCommand):
    name = "PowerOff"
    state = SwitchState.OFF

class SetDefaultShutdownCommand(Command):
    seconds: int

    def __init__(self, seconds: int=MIN_DEFAULT_SHUTDOWN_SECONDS):
        self.seconds = clamp_default_shutdown(seconds)
        self.name = f"SetDefaultShutdown({self.seconds})"

    def payload(self, credentials: SwitcherCredentials) -> bytes:
        return (
            credentials.device_id + b'\x00' + credentials.credentials_block + _CREDENTIALS_PADDING +
            _SHUTDOWN_PAYLOAD_PREFIX + struct.pack('<I', self.seconds)
          )
