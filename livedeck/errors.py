"""
Error taxonomy for livedeck.

Handlers raise these; the error middleware in main.py maps them to
HTTP responses. TransportError never reaches a client.
"""


class LiveDeckError(Exception):
    """Base exception for all livedeck errors."""

    status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthorizationError(LiveDeckError):
    """Missing or bad credential. The command is rejected before any write."""

    status = 401

    def __init__(self, reason: str = "Unauthorized"):
        super().__init__(reason)


class ValidationError(LiveDeckError):
    """Malformed command payload."""

    status = 400

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid {field}: {reason}", {"field": field, "reason": reason})
        self.field = field
        self.reason = reason


class ConfigurationError(LiveDeckError):
    """A required external service is missing or unreachable."""

    status = 500

    def __init__(self, message: str, cause: Exception | None = None):
        details = {"cause": str(cause)} if cause else {}
        super().__init__(message, details)
        self.cause = cause


class TransportError(LiveDeckError):
    """Client disconnect or send failure on a streaming connection."""

    def __init__(self, deck_id: str, reason: str):
        super().__init__(f"Stream for deck {deck_id} failed: {reason}", {"deck_id": deck_id})
        self.deck_id = deck_id
        self.reason = reason
