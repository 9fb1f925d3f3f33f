import asyncio
from unittest.mock import Mock

import pytest

from world.reminder import Reminder, ReminderState
from world.scheduler import ReminderScheduler

SECOND = 1000


def reminder_due_in(clock, delay_ms: int, *, state=ReminderState.ACTIVE, rid="r1") -> Reminder:
    next_time = None if state is ReminderState.PAUSED else clock.now_ms() + delay_ms
    return Reminder(
        id=rid,
        text="Stand up",
        interval_minutes=1,
        state=state,
        next_trigger_time=next_time,
        created_at=clock.now_ms(),
    )


@pytest.fixture
def on_trigger():
    return Mock(return_value=None)


@pytest.fixture
def scheduler(on_trigger, clock, fake_loop):
    return ReminderScheduler(on_trigger, clock=clock, loop=fake_loop)


def test_schedule_arms_one_timer(scheduler, clock, fake_loop, on_trigger):
    r = reminder_due_in(clock, 30 * SECOND)
    scheduler.schedule(r)

    assert scheduler.is_scheduled(r.id)
    assert scheduler.active_timer_count == 1
    assert len(fake_loop.live_handles()) == 1
    assert fake_loop.live_handles()[0].when_ms == r.next_trigger_time
    on_trigger.assert_not_called()


def test_timer_fires_once_at_deadline(scheduler, clock, fake_loop, on_trigger):
    r = reminder_due_in(clock, 30 * SECOND)
    scheduler.schedule(r)

    fake_loop.advance(29)
    on_trigger.assert_not_called()
    fake_loop.advance(1)
    on_trigger.assert_called_once_with(r)
    assert not scheduler.is_scheduled(r.id)


def test_bookkeeping_removed_before_callback(clock, fake_loop):
    seen = []
    scheduler = ReminderScheduler(lambda r: seen.append(scheduler.is_scheduled(r.id)), clock=clock, loop=fake_loop)
    scheduler.schedule(reminder_due_in(clock, SECOND))
    fake_loop.advance(1)
    assert seen == [False]


def test_overdue_fires_synchronously_without_timer(scheduler, clock, fake_loop, on_trigger):
    r = reminder_due_in(clock, -5 * SECOND)
    scheduler.schedule(r)

    on_trigger.assert_called_once_with(r)
    assert fake_loop.handles == []
    assert scheduler.active_timer_count == 0


def test_reschedule_replaces_previous_timer(scheduler, clock, fake_loop, on_trigger):
    r = reminder_due_in(clock, 60 * SECOND)
    scheduler.schedule(r)
    first = fake_loop.live_handles()[0]

    r.snooze(2, now=clock.now_ms())
    scheduler.schedule(r)

    assert first.cancelled()
    assert len(fake_loop.live_handles()) == 1
    assert scheduler.active_timer_count == 1

    fake_loop.advance(60)
    on_trigger.assert_not_called()
    fake_loop.advance(60)
    on_trigger.assert_called_once_with(r)


def test_paused_reminder_is_not_scheduled(scheduler, clock, fake_loop):
    r = reminder_due_in(clock, 0, state=ReminderState.PAUSED)
    scheduler.schedule(r)
    assert fake_loop.handles == []
    assert not scheduler.is_scheduled(r.id)


def test_schedule_paused_cancels_existing_timer(scheduler, clock, fake_loop):
    r = reminder_due_in(clock, 10 * SECOND)
    scheduler.schedule(r)
    r.pause()
    scheduler.schedule(r)
    assert fake_loop.live_handles() == []


def test_cancel_unknown_id_is_noop(scheduler):
    scheduler.cancel("missing")
    assert scheduler.active_timer_count == 0


def test_cancel_all(scheduler, clock, fake_loop):
    for i in range(3):
        scheduler.schedule(reminder_due_in(clock, (i + 1) * SECOND, rid=f"r{i}"))
    assert sorted(scheduler.pending_ids()) == ["r0", "r1", "r2"]

    scheduler.cancel_all()
    assert scheduler.active_timer_count == 0
    assert fake_loop.live_handles() == []


def test_dispose_rejects_later_schedules(scheduler, clock, fake_loop, on_trigger):
    scheduler.schedule(reminder_due_in(clock, SECOND))
    scheduler.dispose()
    scheduler.schedule(reminder_due_in(clock, -SECOND, rid="late"))

    assert fake_loop.live_handles() == []
    on_trigger.assert_not_called()


def test_callback_error_does_not_escape(clock, fake_loop):
    scheduler = ReminderScheduler(Mock(side_effect=RuntimeError("boom")), clock=clock, loop=fake_loop)
    scheduler.schedule(reminder_due_in(clock, -SECOND))
    scheduler.schedule(reminder_due_in(clock, SECOND, rid="r2"))
    fake_loop.advance(1)
    assert scheduler.active_timer_count == 0


@pytest.mark.asyncio
async def test_async_callback_is_tracked_until_done(clock, fake_loop):
    done = asyncio.Event()
    calls = []

    async def on_trigger(reminder):
        calls.append(reminder.id)
        await done.wait()

    scheduler = ReminderScheduler(on_trigger, clock=clock, loop=fake_loop)
    scheduler.schedule(reminder_due_in(clock, -SECOND))
    assert scheduler.inflight_count == 1

    done.set()
    await scheduler.join()
    assert calls == ["r1"]
    assert scheduler.inflight_count == 0


@pytest.mark.asyncio
async def test_async_callback_error_is_logged_not_raised(clock, fake_loop):
    async def on_trigger(reminder):
        raise ValueError("bad reminder")

    scheduler = ReminderScheduler(on_trigger, clock=clock, loop=fake_loop)
    scheduler.schedule(reminder_due_in(clock, -SECOND))
    await scheduler.join()
    assert scheduler.inflight_count == 0


@pytest.mark.asyncio
async def test_dispose_cancels_inflight(clock, fake_loop):
    started = asyncio.Event()

    async def on_trigger(reminder):
        started.set()
        await asyncio.Event().wait()

    scheduler = ReminderScheduler(on_trigger, clock=clock, loop=fake_loop)
    scheduler.schedule(reminder_due_in(clock, -SECOND))
    await started.wait()

    scheduler.dispose()
    await scheduler.join()
    assert scheduler.inflight_count == 0


@pytest.mark.asyncio
async def test_real_event_loop_timer(clock):
    fired = asyncio.Event()
    scheduler = ReminderScheduler(lambda r: fired.set(), clock=clock)
    scheduler.schedule(reminder_due_in(clock, 20))
    await asyncio.wait_for(fired.wait(), timeout=2)
    assert scheduler.active_timer_count == 0
