"""
Failure Classification

Tags fetch errors so the fetcher can decide whether to retry them and
how to describe them in an OperationOutcome.
"""

from enum import Enum

from bulkfetch.exceptions import (
    DataFormatError,
    FatalInternalError,
    HashingError,
    ResourceNotFoundError,
    SourceServerError,
    SourceTransportError,
)
from bulkfetch.models import FHIRResourceType, OutcomeRecord


class ErrorClass(str, Enum):
    """How a fetch failure is handled."""
    FATAL = "fatal"  # Propagated, never retried
    NOT_FOUND = "not_found"
    SOURCE_ERROR = "source_error"
    TRANSPORT = "transport"
    DATA_FORMAT = "data_format"
    INTERNAL = "internal"


def classify_error(error: BaseException) -> ErrorClass:
    """Tag an exception raised during a fetch."""
    if isinstance(error, (FatalInternalError, HashingError)):
        return ErrorClass.FATAL
    if isinstance(error, ResourceNotFoundError):
        return ErrorClass.NOT_FOUND
    if isinstance(error, SourceServerError):
        return ErrorClass.SOURCE_ERROR
    if isinstance(error, SourceTransportError):
        return ErrorClass.TRANSPORT
    if isinstance(error, DataFormatError):
        return ErrorClass.DATA_FORMAT
    return ErrorClass.INTERNAL


def is_retryable(error: BaseException) -> bool:
    """Everything except fatal errors is retried."""
    return classify_error(error) is not ErrorClass.FATAL


def form_operation_outcome(
    resource_type: FHIRResourceType,
    patient_id: str,
    error: BaseException,
) -> OutcomeRecord:
    """
    Describe an abandoned fetch.

    Args:
        resource_type: The resource type that was being fetched
        patient_id: The patient's MBI
        error: The last error raised

    Returns:
        OutcomeRecord located at the patient
    """
    error_class = classify_error(error)
    if error_class is ErrorClass.FATAL:
        raise ValueError("Fatal errors are not converted to outcomes")

    if error_class is ErrorClass.NOT_FOUND:
        details = f"{resource_type.value} resource not found in source for id: {patient_id}"
    elif error_class is ErrorClass.SOURCE_ERROR:
        details = (
            f"Source error fetching {resource_type.value} resource. "
            f"HTTP return code: {error.status_code}"
        )
    else:
        details = f"Internal error: {error}"

    return OutcomeRecord.for_patient(patient_id, details)
