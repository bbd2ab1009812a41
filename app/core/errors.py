"""Error taxonomy shared by services and routes.

- AuthError: missing or invalid bearer token (401)
- ConfigError: provider credentials missing (500, operator-facing)
- ProviderError: completion or billing call failed
- PersistenceError: a store read/write failed
"""
from typing import Optional


class ChatAppError(Exception):
    """Base class for application errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthError(ChatAppError):
    status_code = 401


class ConfigError(ChatAppError):
    status_code = 500


class ProviderError(ChatAppError):
    status_code = 502


class PersistenceError(ChatAppError):
    status_code = 503


class QuotaExceededError(ChatAppError):
    """Daily message limit reached; caller should prompt for an upgrade."""

    status_code = 429

    def __init__(self, limit: int):
        super().__init__(
            "Message Limit Reached",
            f"You've reached your daily limit of {limit} messages. "
            "Upgrade your plan to send more messages.",
        )
        self.limit = limit


class ChatNotFoundError(ChatAppError):
    status_code = 404


class ChatBusyError(ChatAppError):
    """A send is already in flight for this chat from the same client session."""

    status_code = 409
