"""
Pydantic v2 data models — the contract between the session engine,
its collaborators, and any observer UI.
"""

from models.chat import ChatEvent, ChatSource
from models.config import SessionConfig
from models.merge import ContextSection, GameContext, MergeRequest, MergeResult, MergeTrace
from models.session import (
    ConfigView,
    CountedVotes,
    Phase,
    SessionSnapshot,
    Submission,
    SubmissionView,
    TimerKind,
    TimerSnapshot,
    TrackedVotes,
    VoteRecord,
)

__all__ = [
    "ChatEvent",
    "ChatSource",
    "SessionConfig",
    "ContextSection",
    "GameContext",
    "MergeRequest",
    "MergeResult",
    "MergeTrace",
    "ConfigView",
    "CountedVotes",
    "Phase",
    "SessionSnapshot",
    "Submission",
    "SubmissionView",
    "TimerKind",
    "TimerSnapshot",
    "TrackedVotes",
    "VoteRecord",
]
