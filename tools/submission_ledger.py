"""
SubmissionLedger — In-memory submissions and votes for the current cycle.

Pure Python + Pydantic. No transport or LLM imports. Phase gating is the
caller's job (SessionStateMachine); the ledger itself accepts any call.

Malformed input (empty/over-long text, votes for unknown users) is dropped
silently. Public chat is noisy and answering it would just add spam.
"""

import logging
import time
from typing import Callable, List, Optional

from models.config import MAX_SUBMISSION_LENGTH
from models.session import Submission, SubmissionView

logger = logging.getLogger("SubmissionLedger")


class SubmissionLedger:
    """Ordered submissions for one vote cycle.

    Normal mode keeps one submission per user (case-insensitive) and one
    vote per voter. Debug mode lets a single tester fill the ledger:
    every submission is appended and repeat votes keep counting.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._submissions: List[Submission] = []
        self._clock = clock

    def __len__(self) -> int:
        return len(self._submissions)

    @property
    def submissions(self) -> List[Submission]:
        """Copy of the submissions in insertion order."""
        return list(self._submissions)

    def find(self, user: str) -> Optional[Submission]:
        """First submission authored by `user`, ignoring case."""
        key = user.lower()
        for submission in self._submissions:
            if submission.user_key == key:
                return submission
        return None

    def submit(self, user: str, text: str, debug_mode: bool = False) -> None:
        if len(text) == 0 or len(text) > MAX_SUBMISSION_LENGTH:
            return

        now = self._clock()
        if not debug_mode:
            existing = self.find(user)
            if existing is not None:
                existing.text = text
                existing.created_at = now
                # a debug-mode record would count a repeat as an extra vote
                if existing.user_key not in existing.votes.voters:
                    existing.votes.add(user)
                logger.info(f"Submission updated by {user}: {text[:50]}")
                return

        self._submissions.append(
            Submission.create(user, text, debug_mode=debug_mode, created_at=now)
        )
        logger.info(f"Submission from {user}: {text[:50]}")

    def vote(self, voter: str, target_user: str, debug_mode: bool = False) -> None:
        """Record `voter`'s vote for `target_user`'s submission.

        Dedup rules come from the submission's vote record, which was fixed
        by the mode in force when it was created; `debug_mode` only matters
        for logging. Nothing stops a voter from naming themselves. In normal
        mode that is a no-op because authors already hold their own vote.
        """
        target = self.find(target_user)
        if target is None:
            return
        if debug_mode != (target.votes.kind == "counted"):
            logger.debug(f"Mode changed mid-cycle; {target.user}'s votes keep their original rules")
        if target.votes.add(voter):
            logger.info(f"Vote from {voter} for {target_user}")

    @staticmethod
    def vote_count(submission: Submission) -> int:
        return submission.vote_count

    def clear(self) -> None:
        self._submissions.clear()

    def snapshot(self, limit: int) -> List[SubmissionView]:
        """First `limit` submissions, in insertion order, for display."""
        return [
            SubmissionView(
                user=s.user,
                text=s.text,
                created_at=s.created_at,
                vote_count=s.vote_count,
            )
            for s in self._submissions[:limit]
        ]
