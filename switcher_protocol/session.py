#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SwitcherSession -- An authenticated TCP command session with one Switcher device.

The session moves through three states:

    DISCONNECTED --connect--> CONNECTED --login--> LOGGED_IN

The connection is opened lazily by the first command and reused by later ones. The
session token returned by the login exchange is cached for the lifetime of the
session, so login happens at most once; if the connection drops, the next command
reconnects and resends the cached token (unless invalidate_token_on_disconnect
is set, in which case the next command logs in again).

The protocol has no request ids, so the reply to a command is simply the next data
received on the connection. Commands are therefore serialized with a lock, and each
exchange is bounded by command_timeout; a connection whose exchange timed out or was
cancelled is dropped so a late reply cannot be mistaken for the reply to a later
command.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    SWITCHER_TCP_PORT,
    DEFAULT_PHONE_ID,
    DEFAULT_DEVICE_PASSWORD,
    DEFAULT_COMMAND_TIMEOUT,
    MIN_DEFAULT_SHUTDOWN_SECONDS,
    MAX_REPLY_SIZE,
    DEVICE_ID_LENGTH,
  )
from .exceptions import (
    SwitcherError,
    SwitcherConnectionError,
    SwitcherLoginError,
    SwitcherFrameError,
    SwitcherTimeoutError,
  )
from .models import SwitchState, DeviceStatus
from .events import SwitcherEventDispatcher, ErrorEvent, StateChangedEvent, DurationChangedEvent
from .switcher_frame import (
    SwitcherCredentials,
    Command,
    LoginCommand,
    QueryStatusCommand,
    PowerOnCommand,
    PowerOffCommand,
    SetDefaultShutdownCommand,
    decode_login_reply,
    decode_status_reply,
  )

class SessionState(Enum):
    DISCONNECTED = 0
    CONNECTED = 1
    LOGGED_IN = 2

def parse_device_id(device_id: str) -> bytes:
    """Converts a device id in hex form (e.g., 'a1b2c3') to its 3 raw bytes."""
    try:
        result = bytes.fromhex(device_id)
    except ValueError as e:
        raise SwitcherError(f"Device id is not a hex string: {device_id!r}") from e
    if len(result) != DEVICE_ID_LENGTH:
        raise SwitcherError(f"Device id must be 3 bytes (6 hex digits): {device_id!r}")
    return result

class SwitcherSession(AsyncContextManager['SwitcherSession']):
    device_id: str
    address: str
    port: int
    credentials: SwitcherCredentials

    command_timeout: Optional[float]
    """The number of seconds to wait for a connection or a reply. None waits forever."""

    invalidate_token_on_disconnect: bool
    """If True, the cached session token is discarded whenever the connection is dropped."""

    dispatcher: SwitcherEventDispatcher
    """The dispatcher that error, state-changed and duration-changed events are emitted to."""

    session_token: Optional[bytes] = None
    reader: Optional[asyncio.StreamReader] = None
    writer: Optional[asyncio.StreamWriter] = None

    last_login_error: Optional[SwitcherLoginError] = None

    _lock: Optional[asyncio.Lock] = None

    def __init__(
            self,
            device_id: str,
            address: str,
            port: int=SWITCHER_TCP_PORT,
            phone_id: bytes=DEFAULT_PHONE_ID,
            device_password: bytes=DEFAULT_DEVICE_PASSWORD,
            command_timeout: Optional[float]=DEFAULT_COMMAND_TIMEOUT,
            invalidate_token_on_disconnect: bool=False,
            dispatcher: Optional[SwitcherEventDispatcher]=None,
          ):
        self.device_id = device_id.lower()
        self.address = address
        self.port = port
        self.credentials = SwitcherCredentials(parse_device_id(device_id), phone_id, device_password)
        self.command_timeout = command_timeout
        self.invalidate_token_on_disconnect = invalidate_token_on_disconnect
        self.dispatcher = SwitcherEventDispatcher() if dispatcher is None else dispatcher

    def __str__(self) -> str:
        return f"SwitcherSession(device_id={self.device_id}, address={self.address}, port={self.port}, state={self.state.name})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def is_connected(self) -> bool:
        return self.writer is not None

    @property
    def state(self) -> SessionState:
        if not self.is_connected:
            return SessionState.DISCONNECTED
        if self.session_token is None:
            return SessionState.CONNECTED
        return SessionState.LOGGED_IN

    def _command_lock(self) -> asyncio.Lock:
        # Created on first use so it belongs to the loop that runs the commands
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def _emit_error(self, error: BaseException) -> None:
        await self.dispatcher.emit(ErrorEvent(error))

    async def _connect(self) -> None:
        """Opens the TCP connection if it is not already open."""
        if self.is_connected:
            return
        logger.debug(f"Connecting to {self.address}:{self.port}")
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.address, self.port), self.command_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            self.reader = None
            self.writer = None
            logger.debug(f"Connection rejected, error: {e!r}")
            error = SwitcherConnectionError(self.address, self.port)
            await self._emit_error(error)
            raise error from e
        logger.info(f"Connected to switcher at {self.address}:{self.port}")

    async def _drop_connection(self) -> None:
        reader = self.reader
        writer = self.writer
        self.reader = None
        self.writer = None
        if self.invalidate_token_on_disconnect and self.session_token is not None:
            logger.debug("Discarding cached session token")
            self.session_token = None
        if reader is not None:
            reader.feed_eof()
        if writer is not None:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception as e:
                logger.debug(f"Exception while closing connection: {e!r}")

    async def _exchange(self, frame: bytes, emit_errors: bool=True) -> bytes:
        """Writes one frame and returns the next chunk of data received.

        Any failure, including cancellation of the caller, drops the connection, so a reply
        still in flight is never read by a later exchange. Failures are emitted as ErrorEvents
        unless emit_errors is False.
        """
        assert self.reader is not None and self.writer is not None
        logger.debug(f"Writing {len(frame)} bytes: {frame.hex(' ')}")
        error: SwitcherError
        try:
            self.writer.write(frame)
            await asyncio.wait_for(self.writer.drain(), self.command_timeout)
            reply = await asyncio.wait_for(self.reader.read(MAX_REPLY_SIZE), self.command_timeout)
        except asyncio.CancelledError:
            logger.debug("Exchange cancelled; dropping connection")
            await self._drop_connection()
            raise
        except asyncio.TimeoutError as e:
            await self._drop_connection()
            error = SwitcherTimeoutError(
                f"No reply from switcher at {self.address}:{self.port} within {self.command_timeout} seconds")
            if emit_errors:
                await self._emit_error(error)
            raise error from e
        except OSError as e:
            await self._drop_connection()
            error = SwitcherConnectionError(
                self.address, self.port, f"Connection to switcher at {self.address}:{self.port} failed: {e}")
            if emit_errors:
                await self._emit_error(error)
            raise error from e
        if len(reply) == 0:
            await self._drop_connection()
            error = SwitcherConnectionError(
                self.address, self.port, f"Connection closed by switcher at {self.address}:{self.port}")
            if emit_errors:
                await self._emit_error(error)
            raise error
        logger.debug(f"Read {len(reply)} bytes: {reply.hex(' ')}")
        return reply

    async def _login(self) -> Optional[bytes]:
        """Returns the cached session token, logging in first if there is none.

        A failed login is emitted as an ErrorEvent and recorded in last_login_error; the
        previously held token (possibly None) is returned in that case.
        """
        if self.session_token is not None:
            return self.session_token
        try:
            logger.debug("login...")
            reply = await self._exchange(LoginCommand().build(self.credentials), emit_errors=False)
            token = decode_login_reply(reply)
        except SwitcherError as e:
            logger.debug(f"login failed due to an error: {e}")
            error = SwitcherLoginError(f"login failed due to an error: {e}")
            error.__cause__ = e
            self.last_login_error = error
            await self._emit_error(error)
            return self.session_token
        self.session_token = token
        self.last_login_error = None
        logger.info(f"Logged in to switcher {self.device_id}, session token {token.hex()}")
        return token

    async def login(self) -> bytes:
        """Logs in if there is no cached session token, and returns the token.

        Raises SwitcherLoginError if no token could be obtained.
        """
        async with self._command_lock():
            await self._connect()
            token = await self._login()
        if token is None:
            raise self.last_login_error or SwitcherLoginError("login did not return a session token")
        return token

    async def execute(self, command: Command) -> bytes:
        """Sends one command and returns the raw reply. Commands on one session never overlap."""
        async with self._command_lock():
            await self._connect()
            token = await self._login()
            if token is None:
                raise self.last_login_error or SwitcherLoginError("login did not return a session token")
            logger.debug(f"Sending {command} command")
            return await self._exchange(command.build(self.credentials, session_token=token))

    async def turn_on(self, duration_minutes: int=0) -> SwitchState:
        """Turns the device on. If duration_minutes is nonzero, the device turns itself off after that
           many minutes; if 0, it stays on."""
        await self.execute(PowerOnCommand(int(duration_minutes) * 60))
        await self.dispatcher.emit(StateChangedEvent(SwitchState.ON))
        return SwitchState.ON

    async def turn_off(self) -> SwitchState:
        await self.execute(PowerOffCommand())
        await self.dispatcher.emit(StateChangedEvent(SwitchState.OFF))
        return SwitchState.OFF

    async def set_default_shutdown(self, seconds: int=MIN_DEFAULT_SHUTDOWN_SECONDS) -> int:
        """Sets the auto-shutdown duration, clamped to [3600, 86340] seconds. Returns the value sent."""
        command = SetDefaultShutdownCommand(seconds)
        logger.debug(f"sending default_shutdown command | {command.seconds} seconds")
        await self.execute(command)
        await self.dispatcher.emit(DurationChangedEvent(command.seconds))
        return command.seconds

    async def query_status(self) -> DeviceStatus:
        reply = await self.execute(QueryStatusCommand())
        try:
            return decode_status_reply(reply, self.device_id, self.address)
        except SwitcherFrameError as e:
            await self._emit_error(e)
            raise

    async def close(self) -> None:
        """Closes the connection, if open. Safe to call more than once."""
        if self.is_connected:
            logger.debug(f"Closing connection to {self.address}:{self.port}")
        await self._drop_connection()

    async def __aenter__(self) -> SwitcherSession:
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.close()
        return False
