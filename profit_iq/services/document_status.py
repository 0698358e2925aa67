from enum import StrEnum

from profit_iq.core.errors import InvalidTransition
from profit_iq.schemas.document import DocumentStatus


class DocumentEvent(StrEnum):
    EXTRACT_STARTED = "extract_started"
    EXTRACT_SUCCEEDED = "extract_succeeded"
    EXTRACT_FAILED = "extract_failed"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS = {
    DocumentStatus.PENDING: {
        DocumentEvent.EXTRACT_STARTED: DocumentStatus.PROCESSING,
    },
    DocumentStatus.PROCESSING: {
        # A stale or concurrent extract may restart a document stuck in processing.
        DocumentEvent.EXTRACT_STARTED: DocumentStatus.PROCESSING,
        DocumentEvent.EXTRACT_SUCCEEDED: DocumentStatus.EXTRACTED,
        DocumentEvent.EXTRACT_FAILED: DocumentStatus.FAILED,
    },
    DocumentStatus.EXTRACTED: {
        DocumentEvent.EXTRACT_STARTED: DocumentStatus.PROCESSING,
        DocumentEvent.CONFIRMED: DocumentStatus.CONFIRMED,
        DocumentEvent.REJECTED: DocumentStatus.REJECTED,
    },
    DocumentStatus.CONFIRMED: {
        DocumentEvent.EXTRACT_STARTED: DocumentStatus.PROCESSING,
        DocumentEvent.REJECTED: DocumentStatus.REJECTED,
    },
    DocumentStatus.FAILED: {
        DocumentEvent.EXTRACT_STARTED: DocumentStatus.PROCESSING,
        DocumentEvent.REJECTED: DocumentStatus.REJECTED,
    },
    DocumentStatus.REJECTED: {
        DocumentEvent.EXTRACT_STARTED: DocumentStatus.PROCESSING,
        DocumentEvent.REJECTED: DocumentStatus.REJECTED,
    },
}


def next_status(current: str, event: DocumentEvent) -> DocumentStatus:
    """Return the status a document moves to when *event* is applied.

    Raises ``InvalidTransition`` when the event is not legal from *current*.
    """
    try:
        state = DocumentStatus(current)
    except ValueError:
        raise InvalidTransition(str(current), str(event))
    target = ALLOWED_TRANSITIONS.get(state, {}).get(event)
    if target is None:
        raise InvalidTransition(state.value, DocumentEvent(event).value)
    return target
