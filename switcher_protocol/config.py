#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Client configuration, with an environment-variable layer.

Each field may be supplied through a SWITCHER_* environment variable; explicit
overrides (e.g., from command-line flags) take precedence:

    config = SwitcherConfig.from_env(device_id=args.device_id, address=args.address)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

from .internal_types import *
from .constants import (
    SWITCHER_TCP_PORT,
    SWITCHER_UDP_PORT,
    SWITCHER_UDP_BIND_ADDRESS,
    DEFAULT_PHONE_ID,
    DEFAULT_DEVICE_PASSWORD,
    DEFAULT_COMMAND_TIMEOUT,
    DEVICE_ID_LENGTH,
    PHONE_ID_LENGTH,
    DEVICE_PASSWORD_LENGTH,
  )
from .exceptions import SwitcherConfigError

ENV_DEVICE_ID = "SWITCHER_DEVICE_ID"
ENV_ADDRESS = "SWITCHER_ADDRESS"
ENV_PORT = "SWITCHER_PORT"
ENV_UDP_PORT = "SWITCHER_UDP_PORT"
ENV_BIND_ADDRESS = "SWITCHER_BIND_ADDRESS"
ENV_PHONE_ID = "SWITCHER_PHONE_ID"
ENV_DEVICE_PASSWORD = "SWITCHER_DEVICE_PASSWORD"
ENV_COMMAND_TIMEOUT = "SWITCHER_COMMAND_TIMEOUT"
ENV_INVALIDATE_TOKEN = "SWITCHER_INVALIDATE_TOKEN"

_TRUE_STRINGS = ('1', 'true', 'yes', 'on')
_FALSE_STRINGS = ('', '0', 'false', 'no', 'off')

def _parse_hex(name: str, value: str, length: int) -> bytes:
    try:
        result = bytes.fromhex(value)
    except ValueError as e:
        raise SwitcherConfigError(f"{name}: not a hex string: {value!r}") from e
    if len(result) != length:
        raise SwitcherConfigError(f"{name}: expected {length} bytes ({length*2} hex digits), got {value!r}")
    return result

def _parse_port(name: str, value: str) -> int:
    try:
        result = int(value)
    except ValueError as e:
        raise SwitcherConfigError(f"{name}: not an integer: {value!r}") from e
    if not 0 <= result <= 65535:
        raise SwitcherConfigError(f"{name}: port out of range: {result}")
    return result

def _parse_timeout(name: str, value: str) -> Optional[float]:
    """Empty string or 0 means no timeout."""
    if value.strip() == '':
        return None
    try:
        result = float(value)
    except ValueError as e:
        raise SwitcherConfigError(f"{name}: not a number: {value!r}") from e
    if result < 0:
        raise SwitcherConfigError(f"{name}: must not be negative: {result}")
    return None if result == 0 else result

def _parse_bool(name: str, value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE_STRINGS:
        return True
    if v in _FALSE_STRINGS:
        return False
    raise SwitcherConfigError(f"{name}: not a boolean: {value!r}")

@dataclass
class SwitcherConfig:
    device_id: Optional[str] = None
    """The 3-byte device id as 6 hex digits. Required to send commands."""

    address: Optional[str] = None
    """The IPv4 address of the device. Required to send commands; may be discovered from device_id."""

    port: int = SWITCHER_TCP_PORT
    udp_port: int = SWITCHER_UDP_PORT
    bind_address: str = SWITCHER_UDP_BIND_ADDRESS
    phone_id: bytes = DEFAULT_PHONE_ID
    device_password: bytes = DEFAULT_DEVICE_PASSWORD

    command_timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT
    """Seconds to wait for a reply. None (or 0) waits forever."""

    invalidate_token_on_disconnect: bool = False

    def __post_init__(self) -> None:
        if self.device_id is not None:
            _parse_hex('device_id', self.device_id, DEVICE_ID_LENGTH)
            self.device_id = self.device_id.lower()
        if len(self.phone_id) != PHONE_ID_LENGTH:
            raise SwitcherConfigError(f"phone_id: expected {PHONE_ID_LENGTH} bytes, got {self.phone_id!r}")
        if len(self.device_password) != DEVICE_PASSWORD_LENGTH:
            raise SwitcherConfigError(f"device_password: expected {DEVICE_PASSWORD_LENGTH} bytes")
        if self.command_timeout is not None:
            if self.command_timeout < 0:
                raise SwitcherConfigError(f"command_timeout: must not be negative: {self.command_timeout}")
            if self.command_timeout == 0:
                self.command_timeout = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]]=None, **overrides: Any) -> SwitcherConfig:
        """Builds a configuration from environment variables (os.environ by default).

        Keyword overrides whose value is not None replace the corresponding environment value.
        Raises SwitcherConfigError for malformed values or unknown override names.
        """
        if environ is None:
            environ = os.environ
        known_fields = set(f.name for f in fields(cls))
        for name in overrides:
            if name not in known_fields:
                raise SwitcherConfigError(f"Unknown configuration field: {name}")

        kwargs: Dict[str, Any] = {}
        value = environ.get(ENV_DEVICE_ID)
        if value:
            kwargs['device_id'] = value
        value = environ.get(ENV_ADDRESS)
        if value:
            kwargs['address'] = value
        value = environ.get(ENV_PORT)
        if value:
            kwargs['port'] = _parse_port(ENV_PORT, value)
        value = environ.get(ENV_UDP_PORT)
        if value:
            kwargs['udp_port'] = _parse_port(ENV_UDP_PORT, value)
        value = environ.get(ENV_BIND_ADDRESS)
        if value:
            kwargs['bind_address'] = value
        value = environ.get(ENV_PHONE_ID)
        if value:
            kwargs['phone_id'] = _parse_hex(ENV_PHONE_ID, value, PHONE_ID_LENGTH)
        value = environ.get(ENV_DEVICE_PASSWORD)
        if value:
            kwargs['device_password'] = _parse_hex(ENV_DEVICE_PASSWORD, value, DEVICE_PASSWORD_LENGTH)
        value = environ.get(ENV_COMMAND_TIMEOUT)
        if value is not None:
            kwargs['command_timeout'] = _parse_timeout(ENV_COMMAND_TIMEOUT, value)
        value = environ.get(ENV_INVALIDATE_TOKEN)
        if value is not None:
            kwargs['invalidate_token_on_disconnect'] = _parse_bool(ENV_INVALIDATE_TOKEN, value)

        for name, override in overrides.items():
            if override is not None:
                kwargs[name] = override
        return cls(**kwargs)
