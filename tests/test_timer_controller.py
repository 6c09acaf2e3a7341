"""
Tests for tools/timer_controller.py — countdowns, clamps, pause/resume.

Driven by FakeClock/FakeScheduler from conftest; nothing sleeps.
"""

import asyncio

from models.session import TimerKind
from tools.timer_controller import TimerController


def make_timers(clock, scheduler):
    return TimerController(clock=clock, scheduler=scheduler)


class TestVoteTimer:

    def test_fires_after_duration(self, clock, scheduler):
        fired = []
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(30, lambda: fired.append("vote"))
        scheduler.advance(29)
        assert fired == []
        scheduler.advance(1)
        assert fired == ["vote"]
        assert timers.vote_deadline is None
        assert not timers.is_vote_running

    def test_duration_is_clamped_to_minimum(self, clock, scheduler):
        timers = make_timers(clock, scheduler)
        used = timers.start_vote_timer(3, lambda: None)
        assert used == 5
        assert timers.vote_deadline == clock.now + 5

    def test_restart_replaces_previous(self, clock, scheduler):
        fired = []
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(10, lambda: fired.append("first"))
        timers.start_vote_timer(20, lambda: fired.append("second"))
        assert len(scheduler.pending) == 1
        scheduler.advance(60)
        assert fired == ["second"]

    def test_cancel(self, clock, scheduler):
        fired = []
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(10, lambda: fired.append("vote"))
        timers.cancel_vote_timer()
        scheduler.advance(60)
        assert fired == []
        assert timers.vote_snapshot() is None

    def test_callback_error_is_contained(self, clock, scheduler):
        def boom():
            raise RuntimeError("boom")

        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(10, boom)
        scheduler.advance(10)  # should not raise
        assert not timers.is_vote_running


class TestAutoRepeat:

    def test_delay_is_clamped_to_minimum(self, clock, scheduler):
        timers = make_timers(clock, scheduler)
        used = timers.start_auto_repeat(10, lambda: None)
        assert used == 20
        assert timers.next_vote_start == clock.now + 20

    def test_fires_and_clears_next_start(self, clock, scheduler):
        fired = []
        timers = make_timers(clock, scheduler)
        timers.start_auto_repeat(25, lambda: fired.append("auto"))
        scheduler.advance(25)
        assert fired == ["auto"]
        assert timers.next_vote_start is None

    def test_only_one_auto_repeat_at_a_time(self, clock, scheduler):
        fired = []
        timers = make_timers(clock, scheduler)
        timers.start_auto_repeat(30, lambda: fired.append(1))
        timers.start_auto_repeat(40, lambda: fired.append(2))
        scheduler.advance(100)
        assert fired == [2]


class TestPauseResume:

    def test_resume_honors_exact_remaining(self, clock, scheduler):
        fired = []
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(30, lambda: fired.append("vote"))
        scheduler.advance(20)  # 10s left
        timers.pause()
        assert timers.paused_vote_remaining == 10
        assert timers.vote_deadline is None

        scheduler.advance(3600)  # a long pause changes nothing
        assert fired == []

        resumed_at = clock.now
        assert timers.resume() is True
        assert timers.vote_deadline == resumed_at + 10
        assert timers.paused_vote_remaining is None
        scheduler.advance(9.5)
        assert fired == []
        scheduler.advance(0.5)
        assert fired == ["vote"]

    def test_pause_auto_repeat(self, clock, scheduler):
        fired = []
        timers = make_timers(clock, scheduler)
        timers.start_auto_repeat(60, lambda: fired.append("auto"))
        scheduler.advance(15)
        timers.pause()
        assert timers.paused_auto_repeat_remaining == 45
        scheduler.advance(500)
        timers.resume()
        assert timers.next_vote_start == clock.now + 45
        scheduler.advance(45)
        assert fired == ["auto"]

    def test_resume_without_stored_time_calls_restart(self, clock, scheduler):
        restarted = []
        timers = make_timers(clock, scheduler)
        timers.pause()
        assert timers.resume(restart_auto_repeat=lambda: restarted.append(True)) is False
        assert restarted == [True]

    def test_resume_with_stored_time_skips_restart(self, clock, scheduler):
        restarted = []
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(30, lambda: None)
        timers.pause()
        timers.resume(restart_auto_repeat=lambda: restarted.append(True))
        assert restarted == []

    def test_pause_twice_keeps_first_remaining(self, clock, scheduler):
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(30, lambda: None)
        scheduler.advance(5)
        timers.pause()
        scheduler.advance(5)
        timers.pause()
        assert timers.paused_vote_remaining == 25

    def test_paused_snapshot(self, clock, scheduler):
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(30, lambda: None)
        scheduler.advance(12)
        timers.pause()
        snap = timers.vote_snapshot()
        assert snap.kind == TimerKind.VOTE
        assert snap.is_paused is True
        assert snap.paused_remaining == 18
        assert snap.deadline is None

    def test_cancel_all_clears_everything(self, clock, scheduler):
        timers = make_timers(clock, scheduler)
        timers.start_vote_timer(30, lambda: None)
        timers.pause()
        timers.start_auto_repeat(30, lambda: None)
        timers.cancel_all()
        assert timers.vote_snapshot() is None
        assert timers.auto_repeat_snapshot() is None
        assert scheduler.pending == []


class TestEventLoopScheduler:
    """Without an injected scheduler the running asyncio loop is used."""

    def test_real_loop_pause_resume(self):
        fired = []

        async def run():
            timers = TimerController()
            # Bypass the 5s minimum by scheduling through resume()
            timers.start_vote_timer(5, lambda: fired.append("vote"))
            timers.pause()
            timers._vote.paused_remaining = 0.05
            timers.resume()
            await asyncio.sleep(0.2)

        asyncio.run(run())
        assert fired == ["vote"]
