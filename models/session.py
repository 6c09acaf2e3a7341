"""
Session schemas — phase, submissions, vote records, and the snapshots
published to observers.
"""

import time
from enum import Enum
from typing import List, Literal, Optional, Set, Union

from pydantic import BaseModel, Field

from models.merge import MergeTrace


class Phase(str, Enum):
    """Where the submit-and-vote cycle currently is."""

    IDLE = "idle"
    VOTE = "vote"
    COMBINE = "combine"


class TrackedVotes(BaseModel):
    """Normal-mode votes: one per distinct voter."""

    kind: Literal["tracked"] = "tracked"
    voters: Set[str] = Field(default_factory=set)

    @property
    def count(self) -> int:
        return len(self.voters)

    def add(self, voter: str) -> bool:
        """Record a vote. Returns False if this voter was already counted."""
        key = voter.lower()
        if key in self.voters:
            return False
        self.voters.add(key)
        return True


class CountedVotes(BaseModel):
    """Debug-mode votes: repeat voters keep adding to the count.

    The voter set still grows with new voters. Once somebody votes twice,
    `duplicate_count` takes over as the reported count.
    """

    kind: Literal["counted"] = "counted"
    voters: Set[str] = Field(default_factory=set)
    duplicate_count: Optional[int] = None

    @property
    def count(self) -> int:
        if self.duplicate_count is not None:
            return self.duplicate_count
        return len(self.voters)

    def add(self, voter: str) -> bool:
        key = voter.lower()
        if key in self.voters:
            self.duplicate_count = max(self.duplicate_count or 0, len(self.voters)) + 1
        else:
            self.voters.add(key)
        return True


VoteRecord = Union[TrackedVotes, CountedVotes]


class Submission(BaseModel):
    """One proposed action for the current cycle."""

    user: str
    text: str
    created_at: float = Field(default_factory=time.monotonic)
    votes: VoteRecord = Field(default_factory=TrackedVotes, discriminator="kind")

    @property
    def user_key(self) -> str:
        return self.user.lower()

    @property
    def vote_count(self) -> int:
        return self.votes.count

    @classmethod
    def create(cls, user: str, text: str, debug_mode: bool = False,
               created_at: Optional[float] = None) -> "Submission":
        """Build a submission whose author holds the first vote."""
        votes: VoteRecord = CountedVotes() if debug_mode else TrackedVotes()
        votes.add(user)
        fields = {"user": user, "text": text, "votes": votes}
        if created_at is not None:
            fields["created_at"] = created_at
        return cls(**fields)


class SubmissionView(BaseModel):
    """Serializable projection of a Submission for UIs."""

    user: str
    text: str
    created_at: float
    vote_count: int


class TimerKind(str, Enum):
    VOTE = "vote"
    AUTO_REPEAT = "auto_repeat"


class TimerSnapshot(BaseModel):
    """State of one countdown. `deadline` is on the monotonic clock."""

    kind: TimerKind
    deadline: Optional[float] = None
    is_paused: bool = False
    paused_remaining: Optional[float] = None


class ConfigView(BaseModel):
    """The subset of configuration that observers may see (no secrets)."""

    model_id: str
    vote_duration_seconds: float
    auto_repeat_cooldown_seconds: Optional[float] = None
    debug_mode: bool = False
    has_llm: bool = False
    party_member_name: str = ""
    player_character_name: str = ""
    twitch_channel: str = ""


class SessionSnapshot(BaseModel):
    """Everything an observer needs to render the session."""

    phase: Phase
    is_paused: bool = False
    submission_count: int = 0
    submissions: List[SubmissionView] = Field(default_factory=list)
    vote_timer: Optional[TimerSnapshot] = None
    auto_repeat_timer: Optional[TimerSnapshot] = None
    last_merge_trace: Optional[MergeTrace] = None
    has_context: bool = False
    config: Optional[ConfigView] = None
