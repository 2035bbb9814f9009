"""Tests for the engine event bus."""

from __future__ import annotations

from flowwatch.core.events import EngineEvent, EngineEventType, EventBus
from flowwatch.core.types import FlowDefinition


def _event(event_type: EngineEventType = EngineEventType.RUN_STARTED) -> EngineEvent:
    return EngineEvent(event_type=event_type, flow=FlowDefinition(id="f1"), run_id="r1")


class TestEventBus:
    async def test_sync_and_async_callbacks(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        def sync_cb(event: EngineEvent) -> None:
            seen.append(f"sync:{event.event_type}")

        async def async_cb(event: EngineEvent) -> None:
            seen.append(f"async:{event.event_type}")

        bus.on_event(sync_cb)
        bus.on_event(async_cb)
        await bus.emit(_event())

        assert seen == ["sync:RUN_STARTED", "async:RUN_STARTED"]

    async def test_failing_callback_does_not_block_others(self) -> None:
        bus = EventBus()
        seen: list[EngineEvent] = []

        def boom(event: EngineEvent) -> None:
            raise RuntimeError("subscriber broke")

        bus.on_event(boom)
        bus.on_event(seen.append)
        await bus.emit(_event(EngineEventType.RUN_COMPLETED))

        assert len(seen) == 1
        assert seen[0].flow_id == "f1"

    async def test_no_callbacks(self) -> None:
        await EventBus().emit(_event())
