"""Domain error taxonomy.

Services raise these; ``profit_iq.main`` maps them to HTTP responses.
"""

from __future__ import annotations

from typing import Optional


class ProfitIQError(Exception):
    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class AuthorizationError(ProfitIQError):
    # Reported as 404 so callers cannot discover other owners' data.
    status_code = 404
    public_message = "Not found"


class NotFoundError(ProfitIQError):
    status_code = 404
    public_message = "Not found"


class ValidationError(ProfitIQError):
    status_code = 400
    public_message = "Invalid request"


class InvalidTransition(ValidationError):
    def __init__(self, current: str, event: str) -> None:
        super().__init__(f"Cannot apply {event} to a document in {current} status")
        self.current = current
        self.event = event


class PersistenceError(ProfitIQError):
    status_code = 500
    public_message = "Failed to save changes"


class AdapterFailure(ProfitIQError):
    """Extraction could not produce a validated result."""

    status_code = 500
    public_message = "Extraction failed"
    error_kind = "adapter_failed"


class FetchFailure(AdapterFailure):
    error_kind = "fetch_failed"


class ModelFailure(AdapterFailure):
    error_kind = "model_failed"


class ParseFailure(AdapterFailure):
    error_kind = "parse_failed"

    def __init__(self, message: Optional[str] = None, *, raw_text: str = "", provider_result=None) -> None:
        super().__init__(message)
        self.raw_text = raw_text
        self.provider_result = provider_result


class ChatFailure(ModelFailure):
    """The chat model could not be reached or did not answer in time."""

    public_message = "Failed to process chat"
    error_kind = "chat_failed"
