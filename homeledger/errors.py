# homeledger/errors.py
"""
Error taxonomy shared by the services, the Celery tasks and the HTTP layer.

Every error carries the HTTP status and a short machine-readable code so the
route layer can render it without knowing which service raised it.
"""
from typing import Optional


class HomeLedgerError(Exception):
    status_code = 500
    code = "server_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidUpload(HomeLedgerError):
    """Bad content type, oversized file or missing field. Raised before any write."""
    status_code = 400
    code = "bad_request"


class NotFound(HomeLedgerError):
    """Lookup failed somewhere along the property ownership chain."""
    status_code = 404
    code = "not_found"


class StatusConflict(HomeLedgerError):
    """A conditional status write found the row in an unexpected state."""
    status_code = 409
    code = "status_conflict"


class PreconditionFailed(HomeLedgerError):
    status_code = 422
    code = "precondition_failed"


class StorageError(HomeLedgerError):
    status_code = 502
    code = "storage_error"


class ExtractionError(HomeLedgerError):
    status_code = 502
    code = "extraction_error"


class ResolutionError(HomeLedgerError):
    status_code = 502
    code = "resolution_error"


class PipelineStageError(HomeLedgerError):
    """Wraps a failure in one pipeline stage; `stage` names where it happened."""
    status_code = 502
    code = "pipeline_error"

    def __init__(self, stage: str, cause: Exception, document_id: Optional[str] = None):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
        self.document_id = document_id


class SuggestionError(HomeLedgerError):
    status_code = 502
    code = "suggestion_error"


class UnknownCategory(HomeLedgerError):
    """An item or confirm override names a category the owner cannot see."""
    status_code = 400
    code = "bad_request"


class Forbidden(HomeLedgerError):
    status_code = 403
    code = "forbidden"


class Conflict(HomeLedgerError):
    """Uniqueness or in-use checks that are not document/task status races."""
    status_code = 409
    code = "conflict"


class ChatError(HomeLedgerError):
    status_code = 502
    code = "chat_error"
