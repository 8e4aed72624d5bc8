#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import asyncio
import logging
from signal import SIGINT, SIGTERM

from switcher_protocol.internal_types import *

from switcher_protocol import (
    __version__ as pkg_version,
    Switcher,
    SwitcherConfig,
    SwitcherStatusListener,
    SwitcherEventDispatcher,
    SwitcherDiscovery,
    StatusEvent,
    ErrorEvent,
    discover,
    MIN_DEFAULT_SHUTDOWN_SECONDS,
  )

DEFAULT_DISCOVERY_TIMEOUT = 10.0

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):  # type: ignore[no-untyped-def]
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def print_json(value: Jsonable) -> None:
    print(json.dumps(value, indent=2, sort_keys=True))
    sys.stdout.flush()

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def get_config(self) -> SwitcherConfig:
        return SwitcherConfig.from_env(
            device_id=self._args.device_id,
            address=self._args.address,
            command_timeout=self._args.command_timeout,
          )

    async def create_switcher(self) -> Switcher:
        """Creates a command-only client for the configured device. If no address is configured,
           the device is located by discovering its device id."""
        config = self.get_config()
        if config.device_id is not None and config.address is None:
            logging.debug(f"No address for device {config.device_id}; discovering")
            device = await discover(
                identifier=config.device_id,
                timeout=DEFAULT_DISCOVERY_TIMEOUT,
                bind_address=config.bind_address,
                port=config.udp_port,
              )
            if device is None:
                raise CmdExitError(1, f"Device {config.device_id} not found within {DEFAULT_DISCOVERY_TIMEOUT} seconds")
            config.address = device.address
        return Switcher.from_config(config, listen_for_status=False)

    async def cmd_discover(self) -> int:
        identifier: Optional[str] = self._args.identifier
        timeout: Optional[float] = self._args.timeout
        config = self.get_config()
        if self._args.all:
            if timeout is None:
                timeout = DEFAULT_DISCOVERY_TIMEOUT
            results: List[Jsonable] = []
            async with SwitcherDiscovery(
                    identifier=identifier,
                    timeout=timeout,
                    bind_address=config.bind_address,
                    port=config.udp_port,
                  ) as discovery:
                async for device in discovery:
                    results.append(device.to_jsonable())
            print_json(results)
            return 0
        device = await discover(
            identifier=identifier,
            timeout=timeout,
            bind_address=config.bind_address,
            port=config.udp_port,
          )
        if device is None:
            raise CmdExitError(1, "No matching device found")
        print_json(device.to_jsonable())
        return 0

    async def cmd_listen(self) -> int:
        max_count: int = self._args.count
        config = self.get_config()
        dispatcher = SwitcherEventDispatcher()
        listener = SwitcherStatusListener(dispatcher=dispatcher, bind_address=config.bind_address, port=config.udp_port)
        n = 0

        async def do_listen() -> None:
            nonlocal n
            async with dispatcher.subscribe() as subscriber:
                async with listener:
                    async for event in subscriber:
                        if isinstance(event, StatusEvent):
                            print_json(event.status.to_jsonable())
                            n += 1
                            if max_count > 0 and n >= max_count:
                                break
                        elif isinstance(event, ErrorEvent):
                            logging.warning(f"{event.error}")

        listen_task = asyncio.create_task(do_listen())
        if not self._provide_traceback:
            loop = asyncio.get_running_loop()
            for signal in (SIGINT, SIGTERM):
                loop.add_signal_handler(signal, listen_task.cancel)
        try:
            await listen_task
        except asyncio.CancelledError as e:
            logging.debug("Detected SIGINT/SIGTERM, listener cancelled")
            raise CmdExitError(1, "Listener terminated with SIGINT or SIGTERM") from e
        finally:
            if not self._provide_traceback:
                for signal in (SIGINT, SIGTERM):
                    loop.remove_signal_handler(signal)
        return 0

    async def cmd_status(self) -> int:
        async with await self.create_switcher() as switcher:
            status = await switcher.query_status()
        print_json(status.to_jsonable())
        return 0

    async def cmd_on(self) -> int:
        minutes: int = self._args.minutes
        async with await self.create_switcher() as switcher:
            state = await switcher.turn_on(duration_minutes=minutes)
        print_json(dict(device_id=switcher.device_id, state=state.name, duration_minutes=minutes))
        return 0

    async def cmd_off(self) -> int:
        async with await self.create_switcher() as switcher:
            state = await switcher.turn_off()
        print_json(dict(device_id=switcher.device_id, state=state.name))
        return 0

    async def cmd_set_shutdown(self) -> int:
        seconds: int = self._args.seconds
        async with await self.create_switcher() as switcher:
            applied = await switcher.set_default_shutdown(seconds)
        print_json(dict(device_id=switcher.device_id, default_shutdown_seconds=applied))
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the switcher command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Discover and control Switcher power switches.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.add_argument('--device-id', dest='device_id', default=None,
                            help='''The device id (6 hex digits). Default: use env var SWITCHER_DEVICE_ID''')
        parser.add_argument('--address', default=None,
                            help='''The device IP address. Default: use env var SWITCHER_ADDRESS, or discover the device by its id''')
        parser.add_argument('--command-timeout', dest='command_timeout', type=float, default=None,
                            help='''Seconds to wait for a device to reply; 0 waits forever. Default: use env var SWITCHER_COMMAND_TIMEOUT, or 10''')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= discover

        parser_discover = subparsers.add_parser('discover', description="Discover Switcher devices by listening for their status broadcasts")
        parser_discover.add_argument('--identifier', default=None,
                            help='''A device id, device name, or IP address to look for. Default: any device''')
        parser_discover.add_argument('--timeout', type=float, default=None,
                            help=f'''The number of seconds to listen for. Default: forever, or {DEFAULT_DISCOVERY_TIMEOUT} with --all''')
        parser_discover.add_argument('--all', action='store_true', default=False,
                            help='''List every device heard before the timeout, rather than the first one. Default: False''')
        parser_discover.set_defaults(func=self.cmd_discover)

        # ======================= listen

        parser_listen = subparsers.add_parser('listen', description="Print every status broadcast heard on the LAN")
        parser_listen.add_argument('--count', type=int, default=0,
                            help='''Exit after this many status reports. Default: 0 (no limit)''')
        parser_listen.set_defaults(func=self.cmd_listen)

        # ======================= status

        parser_status = subparsers.add_parser('status', description="Query the status of a device")
        parser_status.set_defaults(func=self.cmd_status)

        # ======================= on

        parser_on = subparsers.add_parser('on', description="Turn a device on")
        parser_on.add_argument('--minutes', type=int, default=0,
                            help='''Turn the device off again after this many minutes. Default: 0 (stay on)''')
        parser_on.set_defaults(func=self.cmd_on)

        # ======================= off

        parser_off = subparsers.add_parser('off', description="Turn a device off")
        parser_off.set_defaults(func=self.cmd_off)

        # ======================= set-shutdown

        parser_set_shutdown = subparsers.add_parser('set-shutdown', description="Set a device's default auto-shutdown duration")
        parser_set_shutdown.add_argument('--seconds', type=int, default=MIN_DEFAULT_SHUTDOWN_SECONDS,
                            help=f'''The auto-shutdown duration, clamped to 3600..86340. Default: {MIN_DEFAULT_SHUTDOWN_SECONDS}''')
        parser_set_shutdown.set_defaults(func=self.cmd_set_shutdown)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"switcher: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"switcher: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
