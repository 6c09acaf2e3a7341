"""
Chat Parser — Classifies a chat line as a command, a vote, or a submission.

Fast regex matching, no state. Anything unrecognized returns None and is
ignored by the caller.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

START_VOTE_COMMAND = "!vote"
END_VOTE_COMMAND = "!tally"

# "+1 @name" or "@name +1"
_VOTE_PATTERN = re.compile(r"^(?:\+1\s+@(\w+)|@(\w+)\s+\+1)$", re.IGNORECASE)
# "> action" or ">action"
_SUBMISSION_PATTERN = re.compile(r"^>\s*(.+)$")


class ChatIntent(str, Enum):
    START_VOTE = "start_vote"
    END_VOTE = "end_vote"
    VOTE = "vote"
    SUBMISSION = "submission"


@dataclass(frozen=True)
class ParsedChat:
    intent: ChatIntent
    value: str = ""  # vote target (lowercased) or submission text


def parse_chat_text(text: str) -> Optional[ParsedChat]:
    """Classify one chat line.

    Commands are matched verbatim, ignoring case. Permission checks are left
    to the caller.
    """
    lowered = text.lower()
    if lowered == START_VOTE_COMMAND:
        return ParsedChat(ChatIntent.START_VOTE)
    if lowered == END_VOTE_COMMAND:
        return ParsedChat(ChatIntent.END_VOTE)

    vote_match = _VOTE_PATTERN.match(text)
    if vote_match:
        target = vote_match.group(1) or vote_match.group(2)
        return ParsedChat(ChatIntent.VOTE, target.lower())

    submission_match = _SUBMISSION_PATTERN.match(text)
    if submission_match:
        return ParsedChat(ChatIntent.SUBMISSION, submission_match.group(1).strip())

    return None
