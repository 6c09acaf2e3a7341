"""
Session configuration — read from the environment (.env via python-dotenv),
validated by Pydantic.

Requested durations are stored as given. The effective_* properties apply
the minimum clamps, so the UI can show what was asked for and the timers
run what is allowed.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

MAX_SUBMISSION_LENGTH = 200
MIN_VOTE_DURATION_SECONDS = 5
MIN_AUTO_REPEAT_SECONDS = 20
SNAPSHOT_SUBMISSION_LIMIT = 50

DEFAULT_MODEL_ID = "gemini-2.0-flash"
DEFAULT_VOTE_DURATION_SECONDS = 40
DEFAULT_MAX_TOKENS = 150
DEFAULT_PLAYER_NAME = "You"
DEFAULT_PARTY_MEMBER_NAME = "Elara"


def _env_bool(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


class SessionConfig(BaseModel):
    """Everything the session engine and its collaborators are configured with."""

    llm_api_key: str = ""
    model_id: str = DEFAULT_MODEL_ID
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1)
    vote_duration_seconds: float = DEFAULT_VOTE_DURATION_SECONDS
    auto_repeat_cooldown_seconds: Optional[float] = None
    debug_mode: bool = False
    player_character_name: str = ""
    party_member_name: str = ""

    twitch_channel: str = ""
    twitch_oauth_token: str = ""
    youtube_enabled: bool = False

    aid_firebase_token: str = ""
    aid_short_id: str = ""
    aid_origin: str = "play.aidungeon.com"

    @field_validator("auto_repeat_cooldown_seconds")
    @classmethod
    def validate_cooldown(cls, v):
        # 0 or negative means "disabled", same as unset
        if v is None or v <= 0:
            return None
        return v

    @property
    def has_llm(self) -> bool:
        return bool(self.llm_api_key)

    @property
    def effective_vote_duration(self) -> float:
        return max(self.vote_duration_seconds, MIN_VOTE_DURATION_SECONDS)

    @property
    def effective_auto_repeat_cooldown(self) -> Optional[float]:
        if self.auto_repeat_cooldown_seconds is None:
            return None
        return max(self.auto_repeat_cooldown_seconds, MIN_AUTO_REPEAT_SECONDS)

    @property
    def resolved_party_name(self) -> str:
        return self.party_member_name or DEFAULT_PARTY_MEMBER_NAME

    @property
    def resolved_player_name(self) -> str:
        return self.player_character_name or self.twitch_channel or DEFAULT_PLAYER_NAME

    def updated(self, **changes) -> "SessionConfig":
        """Return a copy with `changes` merged in and re-validated."""
        data = self.model_dump()
        data.update(changes)
        return SessionConfig(**data)

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Build from environment variables. Call load_dotenv() first."""
        fields = {
            "llm_api_key": os.getenv("GEMINI_API_KEY", ""),
            "model_id": os.getenv("LLM_MODEL_ID", DEFAULT_MODEL_ID),
            "debug_mode": _env_bool("DEBUG_MODE"),
            "youtube_enabled": _env_bool("YOUTUBE_ENABLED"),
            "player_character_name": os.getenv("PLAYER_CHARACTER_NAME", ""),
            "party_member_name": os.getenv("PARTY_MEMBER_NAME", ""),
            "twitch_channel": os.getenv("TWITCH_CHANNEL", ""),
            "twitch_oauth_token": os.getenv("TWITCH_OAUTH_TOKEN", ""),
            "aid_firebase_token": os.getenv("AID_FIREBASE_TOKEN", ""),
            "aid_short_id": os.getenv("AID_SHORT_ID", ""),
            "aid_origin": os.getenv("AID_ORIGIN", "play.aidungeon.com"),
            "auto_repeat_cooldown_seconds": _env_float("AUTO_REPEAT_COOLDOWN_SECONDS"),
        }
        vote_duration = _env_float("VOTE_DURATION_SECONDS")
        if vote_duration is not None:
            fields["vote_duration_seconds"] = vote_duration
        max_tokens = _env_float("LLM_MAX_TOKENS")
        if max_tokens is not None:
            fields["max_tokens"] = int(max_tokens)
        return cls(**fields)
