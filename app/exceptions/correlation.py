# app/exceptions/correlation.py
from fastapi import HTTPException, status


class CorrelationError(Exception):
    """Base error for the observable correlation engine"""


class IngestionError(CorrelationError):
    """A candidate could not be persisted; the rest of the ingestion was abandoned"""

    def __init__(self, evidence_id, value: str, cause: Exception):
        self.evidence_id = evidence_id
        self.value = value
        self.cause = cause
        super().__init__(
            f"Failed to process observable '{value[:100]}' for evidence {evidence_id}: {cause}"
        )


class ObservableProcessingError(HTTPException):
    """Evidence write failed because its observables could not be stored"""
    def __init__(self, detail: str = "Failed to process evidence observables"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail
        )


class CaseNotFoundError(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Case not found"
        )


class EvidenceNotFoundError(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Evidence not found"
        )


class ObservableNotFoundError(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Observable not found"
        )
