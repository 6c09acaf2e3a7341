"""
SessionStateMachine — The idle → vote → combine → idle cycle.

Owns the one unit of mutable session state: the phase, the ledger, the
timers, the pause flag, the latest game context, and the last merge trace.
Everything else reaches that state through the methods here.

Transitions return a bool. A rejected transition is a silent no-op, so
callers must check the result before acting as if it happened.
"""

import logging
import time
from typing import Any, Callable, Optional

from models.config import SNAPSHOT_SUBMISSION_LIMIT, SessionConfig
from models.merge import GameContext, MergeTrace
from models.session import ConfigView, Phase, SessionSnapshot
from tools.submission_ledger import SubmissionLedger
from tools.timer_controller import TimerController

logger = logging.getLogger("SessionState")


class SessionStateMachine:
    """Phase-gated owner of the ledger and timers."""

    def __init__(self, ledger: SubmissionLedger, timers: TimerController):
        self.ledger = ledger
        self.timers = timers
        self._phase: Phase = Phase.IDLE
        self.is_paused: bool = False
        self.context: Optional[GameContext] = None
        self.last_merge_trace: Optional[MergeTrace] = None

    @classmethod
    def create_initial(
        cls,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Any = None,
    ) -> "SessionStateMachine":
        """Fresh session in `idle` with an empty ledger and no timers."""
        return cls(SubmissionLedger(clock=clock), TimerController(clock=clock, scheduler=scheduler))

    @property
    def phase(self) -> Phase:
        return self._phase

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def to_vote(self) -> bool:
        if self._phase != Phase.IDLE:
            logger.info(f"Cannot transition to vote - current phase: {self._phase.value}")
            return False
        self.ledger.clear()
        self._phase = Phase.VOTE
        logger.info("Transitioned: idle -> vote")
        return True

    def to_combine(self) -> bool:
        if self._phase != Phase.VOTE:
            logger.info(f"Cannot transition to combine - current phase: {self._phase.value}")
            return False
        self.timers.cancel_vote_timer()
        self._phase = Phase.COMBINE
        logger.info("Transitioned: vote -> combine")
        return True

    def to_idle(self) -> bool:
        """Valid from any phase. Drops the vote countdown and its deadline."""
        old_phase = self._phase
        self.timers.cancel_vote_timer()
        self._phase = Phase.IDLE
        logger.info(f"Transitioned: {old_phase.value} -> idle")
        return True

    # ------------------------------------------------------------------
    # Phase-gated ledger mutations
    # ------------------------------------------------------------------

    def submit(self, user: str, text: str, debug_mode: bool = False) -> bool:
        """Forward to the ledger if voting is open. Returns whether it was forwarded."""
        if self._phase != Phase.VOTE:
            return False
        self.ledger.submit(user, text, debug_mode)
        return True

    def vote(self, voter: str, target_user: str, debug_mode: bool = False) -> bool:
        if self._phase != Phase.VOTE:
            return False
        self.ledger.vote(voter, target_user, debug_mode)
        return True

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self, config: Optional[SessionConfig] = None) -> SessionSnapshot:
        config_view = None
        if config is not None:
            config_view = ConfigView(
                model_id=config.model_id,
                vote_duration_seconds=config.vote_duration_seconds,
                auto_repeat_cooldown_seconds=config.auto_repeat_cooldown_seconds,
                debug_mode=config.debug_mode,
                has_llm=config.has_llm,
                party_member_name=config.party_member_name,
                player_character_name=config.player_character_name,
                twitch_channel=config.twitch_channel,
            )
        return SessionSnapshot(
            phase=self._phase,
            is_paused=self.is_paused,
            submission_count=len(self.ledger),
            submissions=self.ledger.snapshot(SNAPSHOT_SUBMISSION_LIMIT),
            vote_timer=self.timers.vote_snapshot(),
            auto_repeat_timer=self.timers.auto_repeat_snapshot(),
            last_merge_trace=self.last_merge_trace,
            has_context=self.context is not None,
            config=config_view,
        )
