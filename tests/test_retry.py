import pytest

from bulkfetch.engine.retry import ErrorClass, classify_error, form_operation_outcome, is_retryable
from bulkfetch.exceptions import (
    DataFormatError,
    FatalInternalError,
    HashingError,
    ResourceNotFoundError,
    SourceServerError,
    SourceTransportError,
)
from bulkfetch.models import FHIRResourceType


@pytest.mark.parametrize("error, expected", [
    (FatalInternalError("bad job"), ErrorClass.FATAL),
    (HashingError("no provider"), ErrorClass.FATAL),
    (ResourceNotFoundError("gone"), ErrorClass.NOT_FOUND),
    (SourceServerError(502), ErrorClass.SOURCE_ERROR),
    (SourceTransportError("reset"), ErrorClass.TRANSPORT),
    (DataFormatError("bad type"), ErrorClass.DATA_FORMAT),
    (KeyError("missing"), ErrorClass.INTERNAL),
])
def test_classify_error(error, expected):
    assert classify_error(error) is expected
    assert is_retryable(error) is (expected is not ErrorClass.FATAL)


def test_not_found_outcome():
    outcome = form_operation_outcome(
        FHIRResourceType.CLAIMS_SUMMARY, "P123", ResourceNotFoundError("gone")
    )

    assert outcome.severity == "error"
    assert outcome.code == "exception"
    assert outcome.details == "ExplanationOfBenefit resource not found in source for id: P123"
    assert outcome.location == ["Patient", "id", "P123"]


def test_server_error_outcome():
    outcome = form_operation_outcome(
        FHIRResourceType.PATIENT, "P123", SourceServerError(503, "unavailable")
    )

    assert outcome.details == "Source error fetching Patient resource. HTTP return code: 503"


def test_other_errors_use_original_message():
    outcome = form_operation_outcome(
        FHIRResourceType.COVERAGE, "P123", DataFormatError("Unexpected resource type")
    )

    assert outcome.details == "Internal error: Unexpected resource type"


def test_fatal_errors_are_not_converted():
    with pytest.raises(ValueError):
        form_operation_outcome(FHIRResourceType.COVERAGE, "P123", FatalInternalError("bad job"))


def test_outcome_renders_operation_outcome_resource():
    outcome = form_operation_outcome(
        FHIRResourceType.COVERAGE, "P123", SourceServerError(500)
    )

    resource = outcome.to_resource()

    assert resource.resource_type == "OperationOutcome"
    assert resource.to_dict()["issue"] == [{
        "severity": "error",
        "code": "exception",
        "details": {"text": "Source error fetching Coverage resource. HTTP return code: 500"},
        "location": ["Patient", "id", "P123"],
    }]
