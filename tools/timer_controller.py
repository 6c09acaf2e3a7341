"""
TimerController — The vote countdown and the auto-repeat countdown.

Pure Python + asyncio. Callbacks are scheduled with `call_later` on the
running event loop unless a scheduler is injected (tests pass a fake one
together with a fake clock).

Pausing cancels the scheduled callback and remembers how much time was
left. Resuming schedules a fresh callback for exactly that remainder, no
matter how long the pause lasted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from models.config import MIN_AUTO_REPEAT_SECONDS, MIN_VOTE_DURATION_SECONDS
from models.session import TimerKind, TimerSnapshot

logger = logging.getLogger("TimerController")


@dataclass
class _Countdown:
    """One scheduled callback plus its pause bookkeeping."""

    kind: TimerKind
    callback: Optional[Callable[[], None]] = None
    handle: Any = None  # asyncio.TimerHandle or anything with .cancel()
    deadline: Optional[float] = None
    paused_remaining: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self.handle is not None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
        self.handle = None
        self.deadline = None

    def reset(self) -> None:
        self.cancel()
        self.callback = None
        self.paused_remaining = None

    def snapshot(self) -> Optional[TimerSnapshot]:
        if self.deadline is None and self.paused_remaining is None:
            return None
        return TimerSnapshot(
            kind=self.kind,
            deadline=self.deadline,
            is_paused=self.paused_remaining is not None,
            paused_remaining=self.paused_remaining,
        )


class TimerController:
    """At most one vote countdown and one auto-repeat countdown.

    Usage:
        timers = TimerController()
        timers.start_vote_timer(40, on_expire=end_vote)
        timers.pause()     # remembers what was left
        timers.resume()    # reschedules exactly that remainder
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Any = None,
    ):
        self._clock = clock
        self._scheduler = scheduler
        self._vote = _Countdown(TimerKind.VOTE)
        self._auto_repeat = _Countdown(TimerKind.AUTO_REPEAT)

    # ------------------------------------------------------------------
    # Scheduling primitives
    # ------------------------------------------------------------------

    def _loop(self):
        if self._scheduler is not None:
            return self._scheduler
        return asyncio.get_running_loop()

    def _schedule(self, countdown: _Countdown, delay: float) -> None:
        delay = max(0.0, delay)
        countdown.deadline = self._clock() + delay
        countdown.handle = self._loop().call_later(delay, self._fire, countdown)

    def _fire(self, countdown: _Countdown) -> None:
        callback = countdown.callback
        countdown.handle = None
        countdown.deadline = None
        countdown.callback = None
        logger.info(f"{countdown.kind.value} timer fired")
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            logger.error(f"{countdown.kind.value} timer callback error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Vote countdown
    # ------------------------------------------------------------------

    def start_vote_timer(self, duration: float, on_expire: Callable[[], None]) -> float:
        """Start (or restart) the vote countdown. Returns the clamped duration."""
        duration = max(duration, MIN_VOTE_DURATION_SECONDS)
        self._vote.reset()
        self._vote.callback = on_expire
        self._schedule(self._vote, duration)
        logger.info(f"Vote timer started ({duration}s)")
        return duration

    def cancel_vote_timer(self) -> None:
        self._vote.reset()

    # ------------------------------------------------------------------
    # Auto-repeat countdown
    # ------------------------------------------------------------------

    def start_auto_repeat(self, delay: float, on_fire: Callable[[], None]) -> float:
        """Schedule the next cycle's start. Returns the clamped delay."""
        delay = max(delay, MIN_AUTO_REPEAT_SECONDS)
        self._auto_repeat.reset()
        self._auto_repeat.callback = on_fire
        self._schedule(self._auto_repeat, delay)
        logger.info(f"Auto-repeat scheduled in {delay}s")
        return delay

    def cancel_auto_repeat(self) -> None:
        self._auto_repeat.reset()

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    def pause(self) -> None:
        """Freeze whichever countdown is running."""
        now = self._clock()
        for countdown in (self._vote, self._auto_repeat):
            if not countdown.is_running:
                continue
            countdown.paused_remaining = max(0.0, countdown.deadline - now)
            countdown.cancel()
            logger.info(
                f"{countdown.kind.value} timer paused with "
                f"{countdown.paused_remaining:.1f}s remaining"
            )

    def resume(self, restart_auto_repeat: Optional[Callable[[], None]] = None) -> bool:
        """Reschedule any frozen countdown for exactly its stored remainder.

        If nothing was frozen, `restart_auto_repeat` (when given) is called so
        the caller can begin a fresh auto-repeat cycle from the full delay.
        Returns True if a frozen countdown was resumed.
        """
        resumed = False
        for countdown in (self._vote, self._auto_repeat):
            if countdown.paused_remaining is None:
                continue
            remaining = countdown.paused_remaining
            countdown.paused_remaining = None
            self._schedule(countdown, remaining)
            resumed = True
            logger.info(f"{countdown.kind.value} timer resumed with {remaining:.1f}s remaining")

        if not resumed and restart_auto_repeat is not None:
            restart_auto_repeat()
        return resumed

    def cancel_all(self) -> None:
        self._vote.reset()
        self._auto_repeat.reset()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def vote_deadline(self) -> Optional[float]:
        return self._vote.deadline

    @property
    def next_vote_start(self) -> Optional[float]:
        """When the auto-repeat countdown will start the next vote."""
        return self._auto_repeat.deadline

    @property
    def is_vote_running(self) -> bool:
        return self._vote.is_running

    @property
    def is_auto_repeat_running(self) -> bool:
        return self._auto_repeat.is_running

    @property
    def paused_vote_remaining(self) -> Optional[float]:
        return self._vote.paused_remaining

    @property
    def paused_auto_repeat_remaining(self) -> Optional[float]:
        return self._auto_repeat.paused_remaining

    def vote_snapshot(self) -> Optional[TimerSnapshot]:
        return self._vote.snapshot()

    def auto_repeat_snapshot(self) -> Optional[TimerSnapshot]:
        return self._auto_repeat.snapshot()
