"""
AI Dungeon Error Types — Structured exception hierarchy for the game client.

Lets the Orchestrator report a precise reason in chat, and lets the
request layer retry only what is worth retrying.
"""


class AIDError(Exception):
    """Base class for all AI Dungeon client errors."""
    pass


class AIDConfigError(AIDError):
    """Firebase token or adventure shortId missing. NOT retryable without config change."""
    pass


class AIDConnectionError(AIDError):
    """API unreachable or returned a server error (5xx). Retryable."""
    pass


class AIDTimeoutError(AIDError):
    """Request timed out. Retryable."""
    pass


class AIDAuthError(AIDError):
    """Firebase token rejected (401/403). Usually expired; NOT retryable."""
    pass


class AIDRateLimitError(AIDError):
    """API returned 429 Too Many Requests. Retryable after backoff."""
    pass


class AIDNotFoundError(AIDError):
    """Adventure does not exist or is not visible to this account."""
    pass


class AIDRejectedError(AIDError):
    """GraphQL answered but refused the operation (errors[] or success=false)."""
    pass
