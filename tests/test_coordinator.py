"""
Tests for supervised streaming.

Verifies:
- Tokens pass through in producer order while the check is ON_TRACK
- An OFF_TRACK verdict ends the stream with exactly one interrupt chunk
- The interrupt chunk is always last
- Supervisor failures count as ON_TRACK
- The supervisor only ever sees a snapshot of the state
- Reading generation falls back to the worker's reading
"""
import asyncio

import pytest

from tarot_pipeline.coordinator import LLMCoordinator
from tarot_pipeline.models import ConversationState, TranscriptEntry, UserProfile
from tarot_pipeline.tarot_client import FALLBACK_CARD
from observability.event_store import EventStore
from observability.events import Component, EventEmitter

from fakes import FakeSupervisor, FakeWorker, off_track


async def collect(stream):
    return [chunk async for chunk in stream]


def tokens_of(chunks):
    return [c.token for c in chunks if not c.is_interrupt]


@pytest.mark.asyncio
async def test_on_track_stream_is_passed_through_unchanged():
    worker = FakeWorker(["Tell", " me", " more."], delay=0.01)
    coordinator = LLMCoordinator(worker, FakeSupervisor())

    chunks = await collect(coordinator.stream_supervised("prompt", ConversationState(), "fire"))

    assert tokens_of(chunks) == ["Tell", " me", " more."]
    assert not any(c.is_interrupt for c in chunks)


@pytest.mark.asyncio
async def test_off_track_before_first_token_yields_only_interrupt():
    worker = FakeWorker(["a", "b", "c"], delay=0.05)
    verdict = off_track()
    coordinator = LLMCoordinator(worker, FakeSupervisor(verdict))

    chunks = await collect(coordinator.stream_supervised("prompt", ConversationState(), "what about my taxes"))

    assert len(chunks) == 1
    assert chunks[0].interrupt == verdict
    assert worker.stream_closed


@pytest.mark.asyncio
async def test_off_track_mid_stream_drops_remaining_tokens():
    worker = FakeWorker(["1", "2", "3", "4", "5"], delay=0.03)
    coordinator = LLMCoordinator(worker, FakeSupervisor(off_track(), delay=0.05))

    chunks = await collect(coordinator.stream_supervised("prompt", ConversationState(), "blah"))

    assert chunks[-1].is_interrupt
    assert sum(1 for c in chunks if c.is_interrupt) == 1
    forwarded = tokens_of(chunks)
    assert forwarded == ["1", "2", "3", "4", "5"][: len(forwarded)]
    assert len(forwarded) < 5


@pytest.mark.asyncio
async def test_late_off_track_verdict_is_appended_after_all_tokens():
    worker = FakeWorker(["x", "y", "z"])
    coordinator = LLMCoordinator(worker, FakeSupervisor(off_track(), delay=0.1))

    chunks = await collect(coordinator.stream_supervised("prompt", ConversationState(), "blah"))

    assert tokens_of(chunks) == ["x", "y", "z"]
    assert chunks[-1].is_interrupt
    assert len(chunks) == 4


@pytest.mark.asyncio
async def test_supervisor_error_counts_as_on_track():
    worker = FakeWorker(["ok", "."])
    coordinator = LLMCoordinator(worker, FakeSupervisor(error=RuntimeError("boom")))

    chunks = await collect(coordinator.stream_supervised("prompt", ConversationState(), "fire"))

    assert tokens_of(chunks) == ["ok", "."]
    assert not any(c.is_interrupt for c in chunks)


@pytest.mark.asyncio
async def test_disabled_supervisor_is_never_consulted():
    worker = FakeWorker(["a", "b"])
    supervisor = FakeSupervisor(off_track())
    coordinator = LLMCoordinator(worker, supervisor, supervisor_enabled=False)

    chunks = await collect(coordinator.stream_supervised("prompt", ConversationState(), "blah"))

    assert tokens_of(chunks) == ["a", "b"]
    assert supervisor.seen_states == []


@pytest.mark.asyncio
async def test_supervisor_sees_a_snapshot():
    state = ConversationState(transcript=[TranscriptEntry("assistant", "Fire, water, earth, or air?")])
    supervisor = FakeSupervisor(delay=0.1)
    coordinator = LLMCoordinator(FakeWorker(["a", "b"], delay=0.01), supervisor)

    stream = coordinator.stream_supervised("prompt", state, "fire")
    first = await stream.__anext__()
    state.transcript.append(TranscriptEntry("user", "fire"))
    state.profile.element = "water"
    rest = await collect(stream)

    assert first.token == "a"
    assert tokens_of(rest) == ["b"]
    seen = supervisor.seen_states[0]
    assert seen is not state
    assert [e.content for e in seen.transcript] == ["Fire, water, earth, or air?"]
    assert seen.profile.element is None


@pytest.mark.asyncio
async def test_abandoned_stream_cancels_pending_check():
    worker = FakeWorker(["a", "b", "c"])
    supervisor = FakeSupervisor(delay=5)
    coordinator = LLMCoordinator(worker, supervisor)

    stream = coordinator.stream_supervised("prompt", ConversationState(), "fire")
    first = await stream.__anext__()
    await stream.aclose()

    assert first.token == "a"
    assert worker.stream_closed
    pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    await asyncio.sleep(0.01)
    assert all(t.done() for t in pending)


@pytest.mark.asyncio
async def test_interrupt_is_recorded_as_event():
    store = EventStore()
    emitter = EventEmitter(Component.COORDINATOR, echo=False, store=store)
    coordinator = LLMCoordinator(
        FakeWorker(["a"], delay=0.05),
        FakeSupervisor(off_track(reason="taxes")),
        session_id="sess_1",
        emitter=emitter,
    )

    await collect(coordinator.stream_supervised("prompt", ConversationState(), "taxes?"))

    events = store.query(session_id="sess_1", event_type="coordinator.interrupt")
    assert len(events) == 1
    assert events[0]["reason"] == "taxes"
    assert events[0]["tokens_forwarded"] == 0


@pytest.mark.asyncio
async def test_generate_reading_uses_enhanced_text():
    supervisor = FakeSupervisor(enhanced="A deeper reading.")
    coordinator = LLMCoordinator(FakeWorker(reading_text="Plain."), supervisor)

    reading = await coordinator.generate_reading(UserProfile(), FALLBACK_CARD)

    assert reading == "A deeper reading."


@pytest.mark.asyncio
async def test_generate_reading_falls_back_when_enhancement_fails():
    supervisor = FakeSupervisor(enhance_error=RuntimeError("down"))
    coordinator = LLMCoordinator(FakeWorker(reading_text="Plain."), supervisor)

    assert await coordinator.generate_reading(UserProfile(), FALLBACK_CARD) == "Plain."


@pytest.mark.asyncio
async def test_generate_reading_falls_back_on_empty_enhancement():
    coordinator = LLMCoordinator(FakeWorker(reading_text="Plain."), FakeSupervisor(enhanced=""))

    assert await coordinator.generate_reading(UserProfile(), FALLBACK_CARD) == "Plain."


@pytest.mark.asyncio
async def test_generate_reading_skips_enhancement_when_disabled():
    supervisor = FakeSupervisor(enhanced="Enhanced.")
    coordinator = LLMCoordinator(FakeWorker(reading_text="Plain."), supervisor)

    reading = await coordinator.generate_reading(UserProfile(), FALLBACK_CARD, use_enhancement=False)

    assert reading == "Plain."
    assert supervisor.enhance_calls == 0


@pytest.mark.asyncio
async def test_aclose_closes_both_clients():
    worker, supervisor = FakeWorker(), FakeSupervisor()

    await LLMCoordinator(worker, supervisor).aclose()

    assert worker.closed and supervisor.closed


@pytest.mark.asyncio
async def test_conversational_reply_comes_from_the_worker():
    worker = FakeWorker(reading_text="The moon favors you.")
    supervisor = FakeSupervisor(off_track())
    coordinator = LLMCoordinator(worker, supervisor)

    reply = await coordinator.conversational_reply("I love the moon", "time of day")

    assert reply == "The moon favors you."
    assert worker.replies == [("I love the moon", "time of day")]
    assert supervisor.seen_states == []
