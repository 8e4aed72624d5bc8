# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SWITCHER_UDP_BIND_ADDRESS = "0.0.0.0"
"""The local address that broadcast listeners bind to (all interfaces)."""

SWITCHER_UDP_PORT = 20002
"""The UDP port on which devices broadcast their identity and status."""

SWITCHER_TCP_PORT = 9957
"""The TCP port on which devices accept commands."""

BROADCAST_FRAME_LENGTH = 165
"""The exact length of a valid status broadcast datagram."""

FRAME_MAGIC = b'\xfe\xf0'
"""The first two bytes of every broadcast and command frame."""

SESSION_TOKEN_LENGTH = 4
DEVICE_ID_LENGTH = 3
PHONE_ID_LENGTH = 2
DEVICE_PASSWORD_LENGTH = 4

DEFAULT_PHONE_ID = b'\x00\x00'
"""The phone id sent in login and command frames."""

DEFAULT_DEVICE_PASSWORD = b'\x00\x00\x00\x00'
"""The device password sent in login and command frames."""

NULL_SESSION_TOKEN = b'\x00\x00\x00\x00'
"""The session token placeholder sent in the login frame."""

SIGNING_KEY = b'0' * 32
"""The shared key appended to the first CRC before computing the second CRC of the frame trailer."""

MIN_DEFAULT_SHUTDOWN_SECONDS = 3600
"""The smallest auto-shutdown setting a device accepts (1 hour)."""

MAX_DEFAULT_SHUTDOWN_SECONDS = 86340
"""The largest auto-shutdown setting a device accepts (23 hours 59 minutes)."""

DEFAULT_COMMAND_TIMEOUT = 10.0
"""The default number of seconds to wait for a device to reply to a command."""

MAX_REPLY_SIZE = 1024
"""The maximum number of bytes read for a single TCP reply."""
