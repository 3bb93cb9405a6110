"""Exception taxonomy for the conversation engine.

- ConfigurationError: a form config is internally inconsistent (fatal, raised
  before a conversation may start)
- ProviderError: the LLM capability failed (retryable unless marked otherwise)
- TerminalStateViolation: a caller tried to mutate a finished conversation
- ConversationNotFound / ConversationLimitReached: driver-level lookups and budgets
"""

from __future__ import annotations


class ConvoFormsError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(ConvoFormsError):
    """Raised when a conversational form config fails validation."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__(
            "Invalid conversational form config: " + "; ".join(problems)
        )


class ProviderError(ConvoFormsError):
    """Raised by an LLM capability on network, quota or model failure.

    ``retryable`` is False for conditions that will not go away by asking again
    (bad credentials, unknown model, rejected request).
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "provider_error",
        retryable: bool = True,
    ) -> None:
        self.code = code
        self.retryable = retryable
        super().__init__(message)


class TerminalStateViolation(ConvoFormsError):
    """Raised when a mutation is attempted on a non-active conversation."""

    def __init__(self, conversation_id: str, status: str) -> None:
        self.conversation_id = conversation_id
        self.status = status
        super().__init__(
            f"Conversation {conversation_id} is {status}; it can no longer be modified"
        )


class ConversationNotFound(ConvoFormsError):
    """Raised when no stored state exists for a conversation id."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class ConversationLimitReached(ConvoFormsError):
    """Raised before a turn is processed when a turn or duration ceiling is hit.

    ``user_message`` is safe to show to the respondent as-is.
    """

    TURN_LIMIT_REACHED = "TURN_LIMIT_REACHED"
    DURATION_EXCEEDED = "DURATION_EXCEEDED"

    def __init__(self, conversation_id: str, code: str, user_message: str) -> None:
        self.conversation_id = conversation_id
        self.code = code
        self.user_message = user_message
        super().__init__(f"{code}: {user_message}")
