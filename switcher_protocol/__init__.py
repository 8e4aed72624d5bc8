# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package switcher_protocol implements the local-network protocol of Switcher smart power switches.

Switcher devices announce themselves by broadcasting a 165-byte UDP status frame to
port 20002 every few seconds. The frame carries the device's id, name, IP address,
on/off state, power consumption, and auto-shutdown timers, so a listener can both
discover devices and track their status without sending anything.

Devices are controlled over a TCP connection to port 9957. A client first logs in,
receiving a 4-byte session token, and then sends signed command frames (status
query, power on/off with an optional timer, default auto-shutdown duration), each of
which is answered by a single reply frame. Frames are signed with a two-pass
CRC16 (XMODEM) trailer.

The protocol is not publicly documented; this implementation follows the behavior
of devices observed on real networks.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict

from .exceptions import (
    SwitcherError,
    SwitcherConnectionError,
    SwitcherListenerError,
    SwitcherLoginError,
    SwitcherFrameError,
    SwitcherTimeoutError,
    SwitcherConfigError,
  )

from .crc import crc16
from .models import SwitchState, DeviceDescriptor, DeviceStatus
from .switcher_frame import (
    is_broadcast,
    sign,
    decode_broadcast,
    SwitcherCredentials,
    Command,
    LoginCommand,
    QueryStatusCommand,
    PowerOnCommand,
    PowerOffCommand,
    SetDefaultShutdownCommand,
  )
from .events import (
    SwitcherEvent,
    ReadyEvent,
    ErrorEvent,
    StatusEvent,
    StateChangedEvent,
    DurationChangedEvent,
    SwitcherEventHandler,
    SwitcherEventDispatcher,
    SwitcherEventSubscriber,
  )
from .switcher_socket import SwitcherBroadcastSocket, SwitcherBroadcastSubscriber, SwitcherBroadcastInfo
from .discovery import SwitcherDiscovery, discover, discover_all
from .status_listener import SwitcherStatusListener
from .session import SwitcherSession, SessionState
from .config import SwitcherConfig
from .client import Switcher
from .constants import (
    SWITCHER_UDP_PORT,
    SWITCHER_TCP_PORT,
    MIN_DEFAULT_SHUTDOWN_SECONDS,
    MAX_DEFAULT_SHUTDOWN_SECONDS,
    DEFAULT_COMMAND_TIMEOUT,
  )

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict',
    'SwitcherError', 'SwitcherConnectionError', 'SwitcherListenerError', 'SwitcherLoginError',
    'SwitcherFrameError', 'SwitcherTimeoutError', 'SwitcherConfigError',
    'crc16',
    'SwitchState', 'DeviceDescriptor', 'DeviceStatus',
    'is_broadcast', 'sign', 'decode_broadcast',
    'SwitcherCredentials', 'Command', 'LoginCommand', 'QueryStatusCommand',
    'PowerOnCommand', 'PowerOffCommand', 'SetDefaultShutdownCommand',
    'SwitcherEvent', 'ReadyEvent', 'ErrorEvent', 'StatusEvent', 'StateChangedEvent', 'DurationChangedEvent',
    'SwitcherEventHandler', 'SwitcherEventDispatcher', 'SwitcherEventSubscriber',
    'SwitcherBroadcastSocket', 'SwitcherBroadcastSubscriber', 'SwitcherBroadcastInfo',
    'SwitcherDiscovery', 'discover', 'discover_all',
    'SwitcherStatusListener',
    'SwitcherSession', 'SessionState',
    'SwitcherConfig',
    'Switcher',
    'SWITCHER_UDP_PORT', 'SWITCHER_TCP_PORT',
    'MIN_DEFAULT_SHUTDOWN_SECONDS', 'MAX_DEFAULT_SHUTDOWN_SECONDS', 'DEFAULT_COMMAND_TIMEOUT',
]
