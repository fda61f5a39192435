import asyncio

import pytest

from core.cancellation import CancelSignal, OperationCancelled


@pytest.mark.asyncio
async def test_guard_returns_result_when_not_cancelled():
    cancel = CancelSignal()

    async def work():
        await asyncio.sleep(0.01)
        return 42

    assert await cancel.guard(work()) == 42


@pytest.mark.asyncio
async def test_guard_propagates_errors_from_the_operation():
    cancel = CancelSignal()

    async def work():
        raise ValueError("bad page")

    with pytest.raises(ValueError):
        await cancel.guard(work())


@pytest.mark.asyncio
async def test_guard_interrupts_pending_operation():
    cancel = CancelSignal()
    finished = []

    async def work():
        try:
            await asyncio.sleep(10)
        finally:
            finished.append(True)

    cancel.trip_after(0.02, "deadline")
    with pytest.raises(OperationCancelled) as exc_info:
        await cancel.guard(work())

    assert exc_info.value.reason == "deadline"
    # The interrupted operation was cleaned up before guard() returned
    assert finished == [True]


@pytest.mark.asyncio
async def test_guard_on_tripped_signal_does_not_start_operation():
    cancel = CancelSignal()
    cancel.trip("shutdown")
    started = []

    async def work():
        started.append(True)

    with pytest.raises(OperationCancelled):
        await cancel.guard(work())
    assert started == []


@pytest.mark.asyncio
async def test_parent_trips_children():
    shutdown = CancelSignal()
    cycle = CancelSignal(parent=shutdown)

    assert shutdown.trip("shutdown") is True
    assert cycle.is_set()
    assert cycle.reason == "shutdown"
    assert shutdown.trip("again") is False


@pytest.mark.asyncio
async def test_child_of_tripped_parent_starts_tripped():
    shutdown = CancelSignal()
    shutdown.trip("shutdown")

    assert CancelSignal(parent=shutdown).is_set()


@pytest.mark.asyncio
async def test_close_disarms_timer_and_detaches():
    shutdown = CancelSignal()
    cycle = CancelSignal(parent=shutdown)
    cycle.trip_after(0.01)
    cycle.close()

    await asyncio.sleep(0.05)
    assert not cycle.is_set()

    shutdown.trip("shutdown")
    assert not cycle.is_set()
