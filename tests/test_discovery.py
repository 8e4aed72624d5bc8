"""Tests for device discovery over UDP broadcasts."""

from __future__ import annotations

import asyncio
import time
from typing import List
from unittest.mock import AsyncMock, patch

import pytest

from conftest import DEVICE_ID, DEVICE_NAME, build_broadcast, send_datagram
from switcher_protocol.discovery import SwitcherDiscovery, broadcast_matches, discover
from switcher_protocol.events import ErrorEvent, ReadyEvent
from switcher_protocol.exceptions import SwitcherListenerError
from switcher_protocol.models import DeviceDescriptor
from switcher_protocol.switcher_frame import SwitcherBroadcast
from switcher_protocol.switcher_socket import SwitcherBroadcastInfo, SwitcherBroadcastSocket


def make_info(src_ip: str = "10.0.0.9") -> SwitcherBroadcastInfo:
    frame = SwitcherBroadcast(build_broadcast(address="192.168.1.50"))
    return SwitcherBroadcastInfo((src_ip, 20002), frame, frame.to_device_status())


class TestBroadcastMatches:
    """Tests for identifier matching."""

    def test_no_identifier_matches_anything(self) -> None:
        """Test a missing identifier matches every device."""
        assert broadcast_matches(None, make_info()) is True
        assert broadcast_matches("", make_info()) is True

    def test_matches_device_id(self) -> None:
        """Test matching on the device id."""
        assert broadcast_matches(DEVICE_ID, make_info()) is True

    def test_matches_device_name(self) -> None:
        """Test matching on the device name."""
        assert broadcast_matches(DEVICE_NAME, make_info()) is True

    def test_matches_sender_address(self) -> None:
        """Test matching on the address the datagram came from."""
        assert broadcast_matches("10.0.0.9", make_info()) is True

    def test_no_match(self) -> None:
        """Test an unrelated identifier does not match."""
        assert broadcast_matches("nonexistent-id", make_info()) is False


class TestSwitcherDiscovery:
    """Tests for SwitcherDiscovery and discover()."""

    @pytest.mark.asyncio
    async def test_finds_matching_device(self) -> None:
        """Test the first matching broadcast yields a descriptor with the sender's address."""
        async with SwitcherDiscovery(
            identifier=DEVICE_ID, timeout=5.0, bind_address="127.0.0.1", port=0
        ) as discovery:
            assert discovery.switcher_socket is not None
            port = discovery.switcher_socket.bound_port
            send_datagram(b"not a switcher", port)
            send_datagram(build_broadcast(device_id="0a0b0c", name=None), port)
            send_datagram(build_broadcast(address="192.168.1.50"), port)
            device = await discovery.next_device()

        assert device == DeviceDescriptor(
            device_id=DEVICE_ID, address="127.0.0.1", name=DEVICE_NAME
        )
        assert discovery.switcher_socket is None

    @pytest.mark.asyncio
    async def test_iterates_distinct_devices(self) -> None:
        """Test a sweep yields each device once until the timeout."""
        devices: List[DeviceDescriptor] = []
        async with SwitcherDiscovery(
            timeout=0.5, bind_address="127.0.0.1", port=0
        ) as discovery:
            assert discovery.switcher_socket is not None
            port = discovery.switcher_socket.bound_port
            send_datagram(build_broadcast(), port)
            send_datagram(build_broadcast(), port)
            send_datagram(build_broadcast(device_id="0a0b0c", name=None), port)
            async for device in discovery:
                devices.append(device)

        assert sorted(device.device_id for device in devices) == ["0a0b0c", DEVICE_ID]

    @pytest.mark.asyncio
    async def test_max_devices(self) -> None:
        """Test the sweep stops after max_devices."""
        async with SwitcherDiscovery(
            timeout=5.0, max_devices=1, bind_address="127.0.0.1", port=0
        ) as discovery:
            assert discovery.switcher_socket is not None
            send_datagram(build_broadcast(), discovery.switcher_socket.bound_port)
            first = await discovery.next_device()
            second = await discovery.next_device()

        assert first is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_timeout_releases_listener_once(self) -> None:
        """Test discovering a missing device returns nothing after the timeout and closes the socket once."""
        original_close = SwitcherBroadcastSocket._close_transport
        with patch.object(
            SwitcherBroadcastSocket,
            "_close_transport",
            autospec=True,
            side_effect=original_close,
        ) as mock_close:
            start = time.monotonic()
            device = await discover(
                identifier="nonexistent-id", timeout=1.0, bind_address="127.0.0.1", port=0
            )
            elapsed = time.monotonic() - start
            # let the transport's connection_lost callback run
            await asyncio.sleep(0.05)

        assert device is None
        assert 0.9 <= elapsed < 2.0
        assert mock_close.call_count == 1

    @pytest.mark.asyncio
    async def test_bind_failure_reports_listener_error(self) -> None:
        """Test a bind failure is raised as a listener error and passed to the event callback."""
        on_event = AsyncMock()
        with pytest.raises(SwitcherListenerError):
            # TEST-NET-3 address; never assigned to a local interface
            await discover(timeout=1.0, on_event=on_event, bind_address="203.0.113.1", port=0)

        on_event.assert_awaited_once()
        event = on_event.await_args.args[0]
        assert isinstance(event, ErrorEvent)
        assert isinstance(event.error, SwitcherListenerError)

    @pytest.mark.asyncio
    async def test_ready_event(self) -> None:
        """Test the event callback receives a ReadyEvent for the found device."""
        device = DeviceDescriptor(device_id=DEVICE_ID, address="127.0.0.1", name=DEVICE_NAME)
        on_event = AsyncMock()
        with patch.object(
            SwitcherDiscovery, "next_device", AsyncMock(return_value=device)
        ):
            result = await discover(
                identifier=DEVICE_ID, timeout=1.0, on_event=on_event, bind_address="127.0.0.1", port=0
            )

        assert result == device
        on_event.assert_awaited_once_with(ReadyEvent(device))
