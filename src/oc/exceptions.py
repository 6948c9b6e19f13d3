"""
Custom exception hierarchy for the object cache.

All exceptions inherit from OCError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class OCError(Exception):
    """Base exception for all object cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class StoreError(OCError):
    """Raised when a single blob or index store call fails.

    Context should include:
        - store: "blob" or "index"
        - operation: get, put, delete, list
        - key: The key involved, if any
    """

    pass


class TransientStoreError(StoreError):
    """A store call failed for a reason expected to clear on its own.

    Network hiccups, throttling and locked databases land here. Callers
    skip the affected key for the current cycle and move on.
    """

    pass


class CycleFatalError(OCError):
    """Raised when a reclamation cycle cannot meaningfully continue.

    Context should include:
        - cycle_id: The cycle identifier
        - phase: The phase that failed (expiration, eviction)

    The cycle is aborted and retried at the next scheduled invocation,
    never immediately.
    """

    pass


class AuthenticationError(OCError):
    """Raised when request credentials are missing or do not match.

    Context should include:
        - username: The username presented, if one could be decoded
    """

    pass
