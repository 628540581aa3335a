"""Domain-level exceptions for the support chat client."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat synchronisation errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason
        self.status_code = status_code


class AuthenticationUnavailable(ChatError):
    """No valid session or bearer token for an operation that needs one."""

    reason = "auth_unavailable"


class NetworkOrServerFailure(ChatError):
    """Non-2xx response or transport exception from the backend."""

    reason = "network_or_server_failure"


class ValidationFailure(ChatError):
    """Input rejected client-side before any network call."""

    reason = "invalid"


class StaleReference(ChatError):
    """A mutation targeted a conversation that is no longer held locally."""

    reason = "stale_reference"

    def __init__(self, conversation_id: object) -> None:
        super().__init__(f"stale_reference:{conversation_id}")
        self.conversation_id = conversation_id
