"""
Merge schemas — story context from the game, and the request/result pair
that flows through the ActionBlender.
"""

import time
from typing import List, Optional

from pydantic import BaseModel, Field


class ContextSection(BaseModel):
    """One block of the game's assembled context (story, memory, notes...)."""

    type: str = ""
    text: Optional[str] = None

    model_config = {"extra": "allow"}


class GameContext(BaseModel):
    """Latest context pushed by the game service."""

    adventure_id: Optional[str] = None
    action_id: Optional[str] = None
    sections: List[ContextSection] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    @classmethod
    def from_payload(cls, payload: dict) -> "GameContext":
        """Build from a raw contextUpdate payload (camelCase keys)."""
        adventure_id = payload.get("adventureId")
        action_id = payload.get("actionId")
        return cls(
            adventure_id=str(adventure_id) if adventure_id is not None else None,
            action_id=str(action_id) if action_id is not None else None,
            sections=[ContextSection(**s) for s in payload.get("contextSections") or []],
        )


class MergeTrace(BaseModel):
    """Record of the final language-model call of a merge."""

    system_prompt: str
    user_prompt: str
    response: str
    model: str
    timestamp: float = Field(default_factory=time.time)


class MergeResult(BaseModel):
    action_text: str
    trace: Optional[MergeTrace] = None


class MergeRequest(BaseModel):
    """Inputs to one blend.

    `submissions` holds models.session.Submission instances; typed loosely
    here to keep this module free of the session import.
    """

    submissions: list
    story_context: Optional[GameContext] = None
    last_known_action: Optional[str] = None
    party_name: str = ""
