"""Tests for the event dispatcher and subscribers."""

from __future__ import annotations

import asyncio
from typing import List
from unittest.mock import AsyncMock

import pytest

from switcher_protocol.events import (
    DurationChangedEvent,
    ErrorEvent,
    StateChangedEvent,
    SwitcherEvent,
    SwitcherEventDispatcher,
)
from switcher_protocol.exceptions import SwitcherError
from switcher_protocol.models import SwitchState


class TestSwitcherEventDispatcher:
    """Tests for SwitcherEventDispatcher."""

    @pytest.mark.asyncio
    async def test_handlers_called_in_order(self) -> None:
        """Test every handler is awaited with every event."""
        dispatcher = SwitcherEventDispatcher()
        seen: List[SwitcherEvent] = []

        async def handler(event: SwitcherEvent) -> None:
            seen.append(event)

        dispatcher.add_handler(handler)
        await dispatcher.emit(StateChangedEvent(SwitchState.ON))
        await dispatcher.emit(DurationChangedEvent(3600))

        assert seen == [StateChangedEvent(SwitchState.ON), DurationChangedEvent(3600)]

    @pytest.mark.asyncio
    async def test_remove_handler(self) -> None:
        """Test a removed handler is no longer called."""
        dispatcher = SwitcherEventDispatcher()
        handler = AsyncMock()
        handler_id = dispatcher.add_handler(handler)
        dispatcher.remove_handler(handler_id)

        await dispatcher.emit(StateChangedEvent(SwitchState.OFF))

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self) -> None:
        """Test a handler exception is logged, not propagated."""
        dispatcher = SwitcherEventDispatcher()
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        working = AsyncMock()
        dispatcher.add_handler(failing)
        dispatcher.add_handler(working)

        event = ErrorEvent(SwitcherError("test"))
        await dispatcher.emit(event)

        failing.assert_awaited_once_with(event)
        working.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_subscriber_receives_events(self) -> None:
        """Test a subscriber sees events emitted while it is open."""
        dispatcher = SwitcherEventDispatcher()
        async with dispatcher.subscribe() as subscriber:
            await dispatcher.emit(StateChangedEvent(SwitchState.ON))
            event = await asyncio.wait_for(subscriber.receive(), 1.0)

        assert event == StateChangedEvent(SwitchState.ON)

    @pytest.mark.asyncio
    async def test_subscriber_iteration_ends_on_close(self) -> None:
        """Test closing the dispatcher ends subscriber iteration after queued events."""
        dispatcher = SwitcherEventDispatcher()
        received: List[SwitcherEvent] = []
        async with dispatcher.subscribe() as subscriber:
            await dispatcher.emit(DurationChangedEvent(7200))
            dispatcher.close()
            async for event in subscriber:
                received.append(event)

        assert received == [DurationChangedEvent(7200)]

    @pytest.mark.asyncio
    async def test_closed_subscriber_is_removed(self) -> None:
        """Test a subscriber stops receiving after its context exits."""
        dispatcher = SwitcherEventDispatcher()
        async with dispatcher.subscribe() as subscriber:
            pass
        await dispatcher.emit(StateChangedEvent(SwitchState.ON))

        assert subscriber not in dispatcher.subscribers
        assert await subscriber.receive() is None
