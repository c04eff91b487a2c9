"""
Fetch Engine Errors

FatalInternalError and HashingError fail the batch item. Everything
else raised while fetching is retried and then recorded as an
OperationOutcome for the patient.
"""

from uuid import UUID


class BulkFetchError(Exception):
    """Base error for the fetch engine."""
    pass


class FatalInternalError(BulkFetchError):
    """
    A broken job or batch invariant, e.g. a resource type the engine
    cannot fetch. Never retried and never converted to an outcome.
    """

    def __init__(
        self,
        message: str,
        job_id: UUID | None = None,
        batch_id: UUID | None = None,
    ):
        self.job_id = job_id
        self.batch_id = batch_id
        super().__init__(message)


class SourceError(BulkFetchError):
    """Error returned by, or while reaching, the claims source."""
    pass


class ResourceNotFoundError(SourceError):
    """The requested resource does not exist in the source."""
    pass


class SourceServerError(SourceError):
    """The source answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Source server error {status_code}: {body}")


class SourceTransportError(SourceError):
    """Network level failure talking to the source."""
    pass


class DataFormatError(BulkFetchError):
    """The source returned data that does not match the request."""
    pass


class HashingError(RuntimeError):
    """Identifier hashing is unavailable or misconfigured."""
    pass
