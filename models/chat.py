"""
Chat schemas — the source-neutral event handed to the Orchestrator.
"""

from enum import Enum

from pydantic import BaseModel


class ChatSource(str, Enum):
    TWITCH = "twitch"
    YOUTUBE = "youtube"


class ChatEvent(BaseModel):
    """A single chat line. `is_privileged` means broadcaster or moderator."""

    source: ChatSource
    user: str
    text: str
    is_privileged: bool = False

    @property
    def can_use_commands(self) -> bool:
        # YouTube has no verified role data, so it never issues commands.
        return self.source == ChatSource.TWITCH and self.is_privileged
