"""Unit tests for the debounced trigger wrapper."""

from __future__ import annotations

import asyncio

import pytest

from tablewatch.config.models import DebounceOptions
from tablewatch.exceptions import CallbackError
from tablewatch.observer.debounce import DebouncedSubscription
from tablewatch.observer.events import ChangeEvent, Operation


def _event(row_id: int = 1) -> ChangeEvent:
    return ChangeEvent(table="t", operation=Operation.INSERT, row={"id": row_id})


class _Recorder:
    def __init__(self) -> None:
        self.fires = 0
        self.predicate_calls = 0
        self.errors: list[Exception] = []

    def on_fire(self) -> None:
        self.fires += 1

    async def report(self, error: Exception) -> None:
        self.errors.append(error)

    def predicate(self, result: bool = True):
        def _predicate(event: ChangeEvent) -> bool:
            self.predicate_calls += 1
            return result

        return _predicate


def _debounced(recorder: _Recorder, predicate_result: bool = True, **options: object) -> DebouncedSubscription:
    return DebouncedSubscription(
        recorder.predicate(predicate_result),
        recorder.on_fire,
        DebounceOptions(**options),
        recorder.report,
    )


@pytest.mark.asyncio
async def test_burst_in_window_fires_leading_and_trailing() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.2)

    await debounced.on_change(_event(1))
    assert recorder.fires == 1
    await asyncio.sleep(0.05)
    await debounced.on_change(_event(2))
    await asyncio.sleep(0.04)
    await debounced.on_change(_event(3))
    assert recorder.fires == 1

    await asyncio.sleep(0.2)
    assert recorder.fires == 2
    assert not debounced.window_open


@pytest.mark.asyncio
async def test_single_event_fires_once() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.05)

    await debounced.on_change(_event())
    assert recorder.fires == 1
    assert debounced.window_open
    await asyncio.sleep(0.1)
    assert recorder.fires == 1
    assert not debounced.window_open


@pytest.mark.asyncio
async def test_without_fire_first_only_trailing_fire() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.05, fire_first=False)

    await debounced.on_change(_event())
    await debounced.on_change(_event())
    assert recorder.fires == 0
    await asyncio.sleep(0.1)
    assert recorder.fires == 1


@pytest.mark.asyncio
async def test_new_window_opens_after_expiry() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.03)

    await debounced.on_change(_event())
    await asyncio.sleep(0.06)
    await debounced.on_change(_event())
    assert recorder.fires == 2


@pytest.mark.asyncio
async def test_non_matching_events_do_not_open_window() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, predicate_result=False, delay=0.03)

    await debounced.on_change(_event())
    assert recorder.fires == 0
    assert not debounced.window_open


@pytest.mark.asyncio
async def test_reduce_skips_predicate_once_hit_is_pending() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.05, fire_first=False)

    await debounced.on_change(_event())
    calls = recorder.predicate_calls
    await debounced.on_change(_event())
    assert recorder.predicate_calls == calls
    await debounced.stop()


@pytest.mark.asyncio
async def test_without_reduce_predicate_still_evaluated() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.05, fire_first=False, reduce=False)

    await debounced.on_change(_event())
    calls = recorder.predicate_calls
    await debounced.on_change(_event())
    assert recorder.predicate_calls == calls + 1
    assert recorder.fires == 0
    await debounced.stop()


@pytest.mark.asyncio
async def test_fire_unreduced_fires_on_every_extra_match() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.05, fire_first=False, reduce=False, fire_unreduced=True)

    await debounced.on_change(_event())
    await debounced.on_change(_event())
    await debounced.on_change(_event())
    assert recorder.fires == 2
    await debounced.stop()


@pytest.mark.asyncio
async def test_stop_cancels_pending_trailing_fire() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.05)

    await debounced.on_change(_event())
    await debounced.on_change(_event())
    assert debounced.pending_hit
    await debounced.stop()
    await asyncio.sleep(0.1)
    assert recorder.fires == 1
    assert not debounced.window_open


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited() -> None:
    fired = asyncio.Event()
    recorder = _Recorder()

    async def predicate(event: ChangeEvent) -> bool:
        return True

    async def on_fire() -> None:
        fired.set()

    debounced = DebouncedSubscription(predicate, on_fire, DebounceOptions(delay=0.01), recorder.report)
    await debounced.on_change(_event())
    assert fired.is_set()
    await debounced.stop()


@pytest.mark.asyncio
async def test_failing_on_fire_is_reported() -> None:
    recorder = _Recorder()

    def on_fire() -> None:
        raise RuntimeError("boom")

    debounced = DebouncedSubscription(lambda e: True, on_fire, DebounceOptions(delay=0.01), recorder.report)
    await debounced.on_change(_event())
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], CallbackError)
    assert isinstance(recorder.errors[0].error, RuntimeError)
    await debounced.stop()


def test_debounce_option_defaults() -> None:
    options = DebounceOptions()
    assert options.delay == 0.2
    assert options.reduce is True
    assert options.fire_first is True
    assert options.fire_unreduced is False


@pytest.mark.asyncio
async def test_stop_during_async_predicate_prevents_later_fires() -> None:
    recorder = _Recorder()
    gate = asyncio.Event()

    async def predicate(event: ChangeEvent) -> bool:
        await gate.wait()
        return True

    debounced = DebouncedSubscription(predicate, recorder.on_fire, DebounceOptions(delay=0.05), recorder.report)
    pending = asyncio.create_task(debounced.on_change(_event()))
    await asyncio.sleep(0)
    await debounced.stop()
    gate.set()
    await pending
    await asyncio.sleep(0.1)

    assert recorder.fires == 0
    assert not debounced.window_open
    assert not debounced.active


@pytest.mark.asyncio
async def test_stop_during_window_drops_trailing_hit() -> None:
    recorder = _Recorder()
    debounced = _debounced(recorder, delay=0.05)
    await debounced.on_change(_event(1))
    await debounced.on_change(_event(2))
    assert debounced.pending_hit
    await debounced.stop()
    await debounced.on_change(_event(3))
    await asyncio.sleep(0.1)
    assert recorder.fires == 1


@pytest.mark.asyncio
async def test_stop_notifies_owner() -> None:
    recorder = _Recorder()
    stopped: list[DebouncedSubscription] = []
    debounced = DebouncedSubscription(
        recorder.predicate(),
        recorder.on_fire,
        DebounceOptions(),
        recorder.report,
        on_stop=stopped.append,
    )
    await debounced.stop()
    assert stopped == [debounced]
