import asyncio

import pytest

from src.agentgate.core.errors import (
    AgentConstructionError,
    ConversationError,
    DuplicateSessionId,
    SessionBusy,
    SessionNotFound,
)
from src.agentgate.core.session_manager import AdmissionStatus


def test_second_start_with_same_id_is_duplicate(make_manager):
    async def scenario():
        manager = make_manager()
        first = await manager.start_session("a")
        assert first.status is AdmissionStatus.CREATED
        with pytest.raises(DuplicateSessionId):
            await manager.start_session("a")
        assert manager.active_ids() == ["a"]

    asyncio.run(scenario())


def test_start_beyond_capacity_is_queued_not_error(make_manager, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("a")
        result = await manager.start_session("b")
        assert result.status is AdmissionStatus.QUEUED
        assert result.queue_position == 0
        assert manager.queued_ids() == ["b"]
        assert factory.calls == 1

    asyncio.run(scenario())


def test_starting_a_queued_id_again_keeps_single_entry(make_manager):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("a")
        await manager.start_session("b")
        await manager.start_session("c")
        again = await manager.start_session("c")
        assert again.status is AdmissionStatus.QUEUED
        assert again.queue_position == 1
        assert manager.queued_ids() == ["b", "c"]

    asyncio.run(scenario())


def test_capacity_holds_across_concurrent_constructions(make_manager, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=2)
        factory.gate = asyncio.Event()
        tasks = [asyncio.create_task(manager.start_session(sid)) for sid in "abcde"]
        for _ in range(3):
            await asyncio.sleep(0)
        assert manager.queued_ids() == ["c", "d", "e"]
        assert manager.active_ids() == []
        factory.gate.set()
        results = await asyncio.gather(*tasks)
        assert [r.status for r in results] == [AdmissionStatus.CREATED] * 2 + [AdmissionStatus.QUEUED] * 3
        assert manager.active_ids() == ["a", "b"]
        assert len(manager.active_ids()) <= manager.capacity

    asyncio.run(scenario())


def test_scenario_expiry_admits_queued_session(make_manager, scheduler):
    async def scenario():
        manager = make_manager(max_active_sessions=2)
        assert (await manager.start_session("x")).status is AdmissionStatus.CREATED
        scheduler.advance(100)
        assert (await manager.start_session("y")).status is AdmissionStatus.CREATED
        assert (await manager.start_session("z")).status is AdmissionStatus.QUEUED

        scheduler.advance(500)  # x idle for 600s
        await manager.wait_for_background()

        assert set(manager.active_ids()) == {"y", "z"}
        assert manager.queued_ids() == []

    asyncio.run(scenario())


def test_drain_on_expiry_with_single_slot(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("A")
        await manager.start_session("B")

        scheduler.advance(600)
        await manager.wait_for_background()

        assert manager.active_ids() == ["B"]
        assert manager.queued_ids() == []
        assert factory.handles[0].closed is True

    asyncio.run(scenario())


def test_queue_is_drained_in_arrival_order(make_manager, scheduler):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("holder")
        await manager.start_session("A")
        await manager.start_session("B")

        scheduler.advance(600)
        await manager.wait_for_background()
        assert manager.active_ids() == ["A"]
        assert manager.queued_ids() == ["B"]

        scheduler.advance(600)
        await manager.wait_for_background()
        assert manager.active_ids() == ["B"]
        assert manager.queued_ids() == []

    asyncio.run(scenario())


def test_idle_session_expires_at_timeout(make_manager, scheduler):
    async def scenario():
        manager = make_manager()
        await manager.start_session("a")
        scheduler.advance(599.999)
        assert manager.active_ids() == ["a"]
        scheduler.advance(0.01)
        await manager.wait_for_background()
        assert manager.active_ids() == []

    asyncio.run(scenario())


def test_activity_just_before_expiry_reschedules_timer(make_manager, scheduler):
    async def scenario():
        manager = make_manager()
        await manager.start_session("a")
        scheduler.advance(599.999)
        await manager.send_message("a", "still here")
        scheduler.advance(0.002)
        assert manager.active_ids() == ["a"]
        # exactly one live timer for the session
        assert len(scheduler.pending()) == 1

        scheduler.advance(600)
        await manager.wait_for_background()
        assert manager.active_ids() == []

    asyncio.run(scenario())


def test_failed_drain_keeps_id_at_head(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("A")
        await manager.start_session("B")
        await manager.start_session("C")
        factory.fail_next()

        scheduler.advance(600)
        await manager.wait_for_background()

        assert manager.active_ids() == []
        assert manager.queued_ids() == ["B", "C"]

        # retry fires after the first backoff step and admits B first
        scheduler.advance(1)
        await manager.wait_for_background()
        assert manager.active_ids() == ["B"]
        assert manager.queued_ids() == ["C"]

    asyncio.run(scenario())


def test_drain_inside_backoff_window_leaves_head_in_place(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=2)
        await manager.start_session("A")
        scheduler.advance(100)
        await manager.start_session("B")
        await manager.start_session("C")
        factory.fail_next()

        scheduler.advance(500)  # A expires, C fails once
        await manager.wait_for_background()
        calls = factory.calls

        scheduler.advance(0.5)
        assert await manager.drain_one() is None
        assert factory.calls == calls
        assert manager.queued_ids() == ["C"]

        scheduler.advance(0.5)
        await manager.wait_for_background()
        assert set(manager.active_ids()) == {"B", "C"}

    asyncio.run(scenario())


def test_queued_id_dropped_after_retry_budget(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=1, drain_max_retries=3, drain_backoff_base=1.0)
        await manager.start_session("A")
        await manager.start_session("B")
        factory.fail_next(times=3)

        scheduler.advance(600)
        await manager.wait_for_background()
        assert manager.queued_ids() == ["B"]

        scheduler.advance(1)
        await manager.wait_for_background()
        assert manager.queued_ids() == ["B"]

        scheduler.advance(2)
        await manager.wait_for_background()
        assert manager.queued_ids() == []
        assert manager.active_ids() == []
        assert factory.calls == 4

    asyncio.run(scenario())


def test_failed_direct_construction_registers_nothing(make_manager, factory):
    async def scenario():
        manager = make_manager()
        factory.fail_next()
        with pytest.raises(AgentConstructionError):
            await manager.start_session("a")
        assert manager.active_ids() == []
        result = await manager.start_session("a")
        assert result.status is AdmissionStatus.CREATED

    asyncio.run(scenario())


def test_failed_direct_construction_frees_slot_for_queue(make_manager, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        factory.gate = asyncio.Event()
        factory.fail_next()
        first = asyncio.create_task(manager.start_session("a"))
        await asyncio.sleep(0)

        queued = await manager.start_session("b")
        assert queued.status is AdmissionStatus.QUEUED

        factory.gate.set()
        with pytest.raises(AgentConstructionError):
            await first
        await manager.wait_for_background()
        assert manager.active_ids() == ["b"]

    asyncio.run(scenario())


def test_construction_timeout_is_construction_error(make_manager, factory):
    async def scenario():
        manager = make_manager(construct_timeout=0.05)
        factory.gate = asyncio.Event()
        with pytest.raises(AgentConstructionError) as excinfo:
            await manager.start_session("slow")
        assert "timed out" in str(excinfo.value)
        assert manager.active_ids() == []

    asyncio.run(scenario())


def test_send_forwards_payload_and_returns_chunks(make_manager, factory):
    async def scenario():
        manager = make_manager()
        await manager.start_session("a")
        exchange = await manager.send_message("a", "hello")
        assert factory.handles[0].received == ["hello"]
        assert [c.content for c in exchange.chunks] == ["GENERAL\nHello from the agent."]
        assert exchange.model_name == "fake-model"
        assert exchange.admission is None
        assert manager.get_session("a").message_count == 1

    asyncio.run(scenario())


def test_send_to_unknown_id_creates_session_when_enabled(make_manager, factory):
    async def scenario():
        manager = make_manager(auto_create_on_send=True)
        exchange = await manager.send_message("new", "hi")
        assert exchange.admission is not None
        assert exchange.admission.status is AdmissionStatus.CREATED
        assert manager.active_ids() == ["new"]
        assert factory.handles[0].received == ["hi"]

    asyncio.run(scenario())


def test_send_to_unknown_id_is_not_found_when_disabled(make_manager):
    async def scenario():
        manager = make_manager(auto_create_on_send=False)
        with pytest.raises(SessionNotFound):
            await manager.send_message("ghost", "hi")
        assert manager.active_ids() == []

    asyncio.run(scenario())


def test_send_when_full_queues_instead_of_replying(make_manager):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("a")
        exchange = await manager.send_message("b", "hi")
        assert exchange.queued
        again = await manager.send_message("b", "hi again")
        assert again.queued
        assert manager.queued_ids() == ["b"]

    asyncio.run(scenario())


def test_conversation_error_leaves_session_intact(make_manager, factory):
    async def scenario():
        manager = make_manager()
        await manager.start_session("a")
        factory.handles[0].fail_with = RuntimeError("rpc down")
        with pytest.raises(ConversationError):
            await manager.send_message("a", "hi")
        assert manager.active_ids() == ["a"]

        factory.handles[0].fail_with = None
        exchange = await manager.send_message("a", "retry")
        assert exchange.chunks

    asyncio.run(scenario())


def test_request_timeout_is_conversation_error(make_manager, factory):
    async def scenario():
        manager = make_manager(request_timeout=0.05)
        await manager.start_session("a")
        factory.handles[0].gate = asyncio.Event()
        with pytest.raises(ConversationError) as excinfo:
            await manager.send_message("a", "hi")
        assert "no reply" in str(excinfo.value)
        assert manager.active_ids() == ["a"]

    asyncio.run(scenario())


def test_overlapping_sends_are_serialised(make_manager, factory):
    async def scenario():
        manager = make_manager()
        await manager.start_session("a")
        handle = factory.handles[0]
        handle.gate = asyncio.Event()

        first = asyncio.create_task(manager.send_message("a", "one"))
        second = asyncio.create_task(manager.send_message("a", "two"))
        for _ in range(3):
            await asyncio.sleep(0)
        assert handle.received == ["one"]
        assert manager.get_session("a").busy is True

        handle.gate.set()
        await asyncio.gather(first, second)
        assert handle.received == ["one", "two"]
        assert handle.max_in_flight == 1

    asyncio.run(scenario())


def test_overlapping_send_rejected_under_reject_policy(make_manager, factory):
    async def scenario():
        manager = make_manager(busy_policy="reject")
        await manager.start_session("a")
        handle = factory.handles[0]
        handle.gate = asyncio.Event()

        first = asyncio.create_task(manager.send_message("a", "one"))
        await asyncio.sleep(0)
        with pytest.raises(SessionBusy):
            await manager.send_message("a", "two")

        handle.gate.set()
        await first
        assert handle.received == ["one"]

    asyncio.run(scenario())


def test_shutdown_releases_everything(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("a")
        await manager.start_session("b")
        await manager.shutdown()

        assert manager.active_ids() == []
        assert manager.queued_ids() == []
        assert scheduler.pending() == []
        assert factory.handles[0].closed is True

    asyncio.run(scenario())


def test_arrival_right_after_expiry_queues_behind_head(make_manager, scheduler):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("A")
        await manager.start_session("B")

        scheduler.advance(600)
        # the drain task has not run yet, but B already holds the freed slot
        late = await manager.start_session("D")
        assert late.status is AdmissionStatus.QUEUED

        await manager.wait_for_background()
        assert manager.active_ids() == ["B"]
        assert manager.queued_ids() == ["D"]

    asyncio.run(scenario())


def test_arrival_during_head_backoff_waits_its_turn(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=1)
        await manager.start_session("A")
        await manager.start_session("B")
        factory.fail_next()

        scheduler.advance(600)
        await manager.wait_for_background()
        assert manager.active_ids() == []

        late = await manager.start_session("D")
        assert late.status is AdmissionStatus.QUEUED
        assert manager.queued_ids() == ["B", "D"]

        scheduler.advance(1)
        await manager.wait_for_background()
        assert manager.active_ids() == ["B"]
        assert manager.queued_ids() == ["D"]

    asyncio.run(scenario())


def test_two_freed_slots_keep_failed_head_first(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager(max_active_sessions=2)
        await manager.start_session("A")
        await manager.start_session("B")
        await manager.start_session("C")
        await manager.start_session("D")
        factory.fail_next()

        scheduler.advance(600)  # A and B expire together
        await manager.wait_for_background()
        assert manager.active_ids() == []
        assert manager.queued_ids() == ["C", "D"]

        scheduler.advance(1)
        await manager.wait_for_background()
        assert manager.active_ids() == ["C", "D"]
        assert manager.queued_ids() == []

    asyncio.run(scenario())


def test_shutdown_during_construction_discards_handle(make_manager, scheduler, factory):
    async def scenario():
        manager = make_manager()
        factory.gate = asyncio.Event()
        pending = asyncio.create_task(manager.start_session("a"))
        await asyncio.sleep(0)

        await manager.shutdown()
        factory.gate.set()
        with pytest.raises(AgentConstructionError):
            await pending

        assert manager.active_ids() == []
        assert scheduler.pending() == []
        assert factory.handles[0].closed is True

    asyncio.run(scenario())
