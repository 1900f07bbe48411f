"""
Domain errors for the task/turn, rating and completion engines.
Each error carries the HTTP status code the API layer reports it with.
"""
from typing import Any, Dict, Optional


class ChatEvalError(Exception):
    """Base class for errors reported back to the caller."""
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(ChatEvalError):
    """Malformed or out-of-range input. Nothing was persisted."""
    status_code = 400


class NotFoundError(ChatEvalError):
    """Unknown task, conversation, rating or user id."""
    status_code = 404


class StateError(ChatEvalError):
    """Task already completed or out of turns. Retrying will not help."""
    status_code = 400


class ConflictError(ChatEvalError):
    """Concurrent write lost a race. Re-fetch and retry."""
    status_code = 409


class UpstreamError(ChatEvalError):
    """The response generator failed or timed out. The turn was not consumed."""
    status_code = 500
