"""
Domain errors for the quoting workflow.

Services raise these; the app-level exception handler renders them as
{"error": {"code": ..., "message": ...}} with the matching HTTP status.
"""

from typing import Optional


class QuoteWorkflowError(Exception):
    code = "QUOTE_WORKFLOW_ERROR"
    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class InvalidStateError(QuoteWorkflowError):
    code = "INVALID_STATE"
    status_code = 409


class PermissionDeniedError(QuoteWorkflowError):
    code = "PERMISSION_DENIED"
    status_code = 403


class AlreadyConvertedError(QuoteWorkflowError):
    code = "ALREADY_CONVERTED"
    status_code = 409


class MissingSelectionError(QuoteWorkflowError):
    code = "MISSING_SELECTION"
    status_code = 422


class NotFoundError(QuoteWorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class ValidationFailedError(QuoteWorkflowError):
    code = "VALIDATION_FAILED"
    status_code = 422


class ExternalCollaboratorError(QuoteWorkflowError):
    """A collaborator (email, extraction, store) failed; names which one and for what."""

    code = "EXTERNAL_COLLABORATOR_ERROR"
    status_code = 502

    def __init__(self, collaborator: str, ref: Optional[str], message: str):
        super().__init__(f"{collaborator} failed for {ref}: {message}")
        self.collaborator = collaborator
        self.ref = ref
        self.reason = message
