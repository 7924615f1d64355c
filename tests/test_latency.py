"""
Tests for the latency optimizer.

Thresholds are scaled down so the suite stays fast; the ratios between the
operation time and the threshold match the real 800 ms setting.
"""
import asyncio

import pytest

from tarot_pipeline.latency import LatencyOptimizer, latency_band
from observability.event_store import EventStore
from observability.events import Component, EventEmitter


class FillerRecorder:
    def __init__(self, error=None):
        self.order = []
        self.error = error

    async def __call__(self):
        self.order.append("filler")
        if self.error is not None:
            raise self.error


async def finishes_after(seconds, value="done", order=None):
    await asyncio.sleep(seconds)
    if order is not None:
        order.append("result")
    return value


async def fails_after(seconds):
    await asyncio.sleep(seconds)
    raise ConnectionError("backend gone")


@pytest.mark.parametrize("ms,band", [(120, "fast"), (499, "fast"), (500, "ok"), (999, "ok"), (1000, "slow")])
def test_latency_band(ms, band):
    assert latency_band(ms) == band


@pytest.mark.asyncio
async def test_fast_operation_gets_no_filler():
    filler = FillerRecorder()
    optimizer = LatencyOptimizer(filler, threshold_ms=80)

    result = await optimizer.await_with_filler(finishes_after(0.02, "card"))

    assert result == "card"
    assert filler.order == []


@pytest.mark.asyncio
async def test_slow_operation_gets_exactly_one_filler_before_result():
    filler = FillerRecorder()
    optimizer = LatencyOptimizer(filler, threshold_ms=50)

    result = await optimizer.await_with_filler(finishes_after(0.25, "reading", order=filler.order))

    assert result == "reading"
    assert filler.order == ["filler", "result"]


@pytest.mark.asyncio
async def test_failure_is_propagated_after_filler():
    filler = FillerRecorder()
    optimizer = LatencyOptimizer(filler, threshold_ms=30)

    with pytest.raises(ConnectionError):
        await optimizer.await_with_filler(fails_after(0.1))

    assert filler.order == ["filler"]


@pytest.mark.asyncio
async def test_fast_failure_is_propagated_without_filler():
    filler = FillerRecorder()
    optimizer = LatencyOptimizer(filler, threshold_ms=200)

    with pytest.raises(ConnectionError):
        await optimizer.await_with_filler(fails_after(0))

    assert filler.order == []


@pytest.mark.asyncio
async def test_filler_failure_does_not_change_outcome():
    filler = FillerRecorder(error=RuntimeError("speaker unplugged"))
    optimizer = LatencyOptimizer(filler, threshold_ms=20)

    assert await optimizer.await_with_filler(finishes_after(0.08, 42)) == 42


@pytest.mark.asyncio
async def test_measurements_are_recorded_as_events():
    store = EventStore()
    optimizer = LatencyOptimizer(
        FillerRecorder(),
        threshold_ms=20,
        session_id="sess_lat",
        emitter=EventEmitter(Component.LATENCY, echo=False, store=store),
    )

    await optimizer.await_with_filler(finishes_after(0.08), label="reading")

    measured = store.query(session_id="sess_lat", event_type="latency.measured")
    injected = store.query(session_id="sess_lat", event_type="latency.filler_injected")
    assert len(measured) == 1
    assert measured[0]["label"] == "reading"
    assert measured[0]["filler_injected"] is True
    assert measured[0]["failed"] is False
    assert measured[0]["latency_ms"] >= 20
    assert len(injected) == 1


@pytest.mark.asyncio
async def test_track_operation_reraises():
    store = EventStore()
    optimizer = LatencyOptimizer(
        FillerRecorder(),
        session_id="sess_track",
        emitter=EventEmitter(Component.LATENCY, echo=False, store=store),
    )

    with pytest.raises(ConnectionError):
        await optimizer.track_operation(lambda: fails_after(0), "card_draw")

    measured = store.query(session_id="sess_track", event_type="latency.measured")
    assert measured[0]["failed"] is True


def test_log_latency_uses_injected_clock():
    clock = iter([10.5])
    optimizer = LatencyOptimizer(FillerRecorder(), now=lambda: next(clock))

    assert optimizer.log_latency("warmup", 10.0) == 500
