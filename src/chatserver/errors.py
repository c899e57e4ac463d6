"""Domain error taxonomy.

Components raise these; the session coordinator catches them and discards
the offending event. The protocol has no error acknowledgment channel, so
none of them reaches a client; they are logged and counted per reason.
"""


class ChatError(Exception):
    """Base class for expected, non-fatal domain failures."""

    code = "CHAT_ERROR"


class DeniedError(ChatError):
    """Actor lacks permission for the operation."""

    code = "DENIED"


class NotFoundError(ChatError):
    """Referenced message, room, user or target identity is absent."""

    code = "NOT_FOUND"


class PolicyDisabledError(ChatError):
    """Operation is disabled by the current server settings."""

    code = "POLICY_DISABLED"


class ValidationRejectedError(ChatError):
    """Input falls outside accepted shape, size or type."""

    code = "VALIDATION_REJECTED"
