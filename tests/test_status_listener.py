"""Tests for the persistent status listener."""

from __future__ import annotations

import asyncio

import pytest

from conftest import DEVICE_ID, build_broadcast, send_datagram
from switcher_protocol.events import ErrorEvent, StatusEvent, SwitcherEventDispatcher
from switcher_protocol.exceptions import SwitcherListenerError
from switcher_protocol.models import SwitchState
from switcher_protocol.status_listener import SwitcherStatusListener


class TestSwitcherStatusListener:
    """Tests for SwitcherStatusListener."""

    @pytest.mark.asyncio
    async def test_emits_status_events(self) -> None:
        """Test every valid broadcast is emitted as a StatusEvent and invalid ones are dropped."""
        dispatcher = SwitcherEventDispatcher()
        async with dispatcher.subscribe() as subscriber:
            async with SwitcherStatusListener(
                dispatcher=dispatcher, bind_address="127.0.0.1", port=0
            ) as listener:
                assert listener.is_running
                assert listener.switcher_socket is not None
                port = listener.switcher_socket.bound_port
                send_datagram(b"\xfe\xf0" + bytes(10), port)
                send_datagram(build_broadcast(state=1, power=1850), port)
                send_datagram(build_broadcast(state=0, power=0), port)
                first = await asyncio.wait_for(subscriber.receive(), 2.0)
                second = await asyncio.wait_for(subscriber.receive(), 2.0)

        assert isinstance(first, StatusEvent)
        assert first.status.device_id == DEVICE_ID
        assert first.status.state == SwitchState.ON
        assert first.status.power_consumption_watts == 1850
        assert isinstance(second, StatusEvent)
        assert second.status.state == SwitchState.OFF

    @pytest.mark.asyncio
    async def test_receive_error_does_not_stop_listener(self) -> None:
        """Test a receive error is emitted as a listener error and listening continues."""
        dispatcher = SwitcherEventDispatcher()
        async with dispatcher.subscribe() as subscriber:
            async with SwitcherStatusListener(
                dispatcher=dispatcher, bind_address="127.0.0.1", port=0
            ) as listener:
                assert listener.switcher_socket is not None
                listener.switcher_socket.error_received(OSError("network unreachable"))
                error_event = await asyncio.wait_for(subscriber.receive(), 2.0)
                send_datagram(build_broadcast(), listener.switcher_socket.bound_port)
                status_event = await asyncio.wait_for(subscriber.receive(), 2.0)
                assert listener.is_running

        assert isinstance(error_event, ErrorEvent)
        assert isinstance(error_event.error, SwitcherListenerError)
        assert "status report failed" in str(error_event.error)
        assert isinstance(status_event, StatusEvent)

    @pytest.mark.asyncio
    async def test_bind_failure(self) -> None:
        """Test a bind failure is emitted and raised."""
        dispatcher = SwitcherEventDispatcher()
        listener = SwitcherStatusListener(dispatcher=dispatcher, bind_address="203.0.113.1", port=0)
        async with dispatcher.subscribe() as subscriber:
            with pytest.raises(SwitcherListenerError):
                await listener.start()
            event = await asyncio.wait_for(subscriber.receive(), 1.0)

        assert isinstance(event, ErrorEvent)
        assert isinstance(event.error, SwitcherListenerError)
        assert listener.is_running is False

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self) -> None:
        """Test stop releases the socket and can be called repeatedly."""
        listener = SwitcherStatusListener(bind_address="127.0.0.1", port=0)
        await listener.start()
        await listener.stop()
        await listener.stop()

        assert listener.is_running is False
        assert listener.switcher_socket is None
