"""
Core Exceptions
================

Error taxonomy for governance operations.

Every error is scoped to one case operation. Validation and not-found errors
are raised before anything is written; conflicts and partial failures tell
the caller to re-read instead of assuming an outcome; store outages are
retryable with no assumed state change.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain rule violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Input rejected before any write (missing reason text, short nudge...)."""


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ResourceNotFoundException(ApplicationException):
    """A case or RN is missing or not eligible for the operation."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None,
        reason: Optional[str] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += f" {reason}" if reason else " not found"
        super().__init__(message, details)


class ConflictException(DomainException):
    """
    The caller acted on stale state.

    Raised when the believed epoch differs from a fresh reconstruction, when
    a compare-and-set on the assignment pointer loses a race, or when the
    action targets an epoch that is already closed. The caller must refresh.
    """

    def __init__(
        self,
        message: str,
        case_id: Optional[str] = None,
        expected_epoch_id: Optional[str] = None,
        current_epoch_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.case_id = case_id
        self.expected_epoch_id = expected_epoch_id
        self.current_epoch_id = current_epoch_id
        super().__init__(
            message,
            details or {
                "case_id": case_id,
                "expected_epoch_id": expected_epoch_id,
                "current_epoch_id": current_epoch_id,
            }
        )


class PartialFailureException(ApplicationException):
    """
    The assignment pointer was updated but the audit append failed.

    The row change is not rolled back: the row is authoritative and the
    missing event is reconciled later by legacy repair.
    """

    def __init__(
        self,
        case_id: str,
        operation: str,
        epoch_id: Optional[str] = None,
        cause: Optional[str] = None
    ):
        self.case_id = case_id
        self.operation = operation
        self.epoch_id = epoch_id
        super().__init__(
            f"{operation} applied to case {case_id} but the audit event was not recorded",
            {
                "case_id": case_id,
                "operation": operation,
                "epoch_id": epoch_id,
                "cause": cause,
            }
        )


class StoreUnavailableException(RepositoryException):
    """The row store or event log could not be reached. Safe to retry."""

    retryable = True
