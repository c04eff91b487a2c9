"""
Resource Fetcher

Fetches every resource of one type for one patient from the claims
source. Resolution, the first page and all following pages run as a
single retried unit; a fetch that still fails after the last attempt is
returned as an OperationOutcome instead of raising, so one patient
cannot fail the batch.
"""

from typing import List

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from bulkfetch.engine.resolver import IdentifierResolver
from bulkfetch.engine.retry import ErrorClass, classify_error, form_operation_outcome, is_retryable
from bulkfetch.exceptions import DataFormatError, FatalInternalError, ResourceNotFoundError
from bulkfetch.integrations.source_client import SourceClient
from bulkfetch.models import (
    DateRange,
    FetchRequest,
    FetchResult,
    FHIRResource,
    FHIRResourceType,
    ResourcePage,
    RetryPolicy,
)
from bulkfetch.observability.metrics import MetricsCollector, get_metrics_collector

logger = structlog.get_logger(__name__)

SUPPORTED_RESOURCE_TYPES = frozenset({
    FHIRResourceType.PATIENT,
    FHIRResourceType.COVERAGE,
    FHIRResourceType.EXPLANATION_OF_BENEFIT,
})


class ResourceFetcher:
    """
    Fetches resources of a requested type for a patient.

    Holds no per-fetch state, so one instance serves concurrent fetches.

    Usage:
        fetcher = ResourceFetcher(client, resolver, RetryPolicy(max_attempts=3))
        result = await fetcher.fetch_resources(request)
        for resource in result.entries:
            ...
    """

    def __init__(
        self,
        client: SourceClient,
        resolver: IdentifierResolver,
        policy: RetryPolicy,
        metrics: MetricsCollector | None = None,
    ):
        self.client = client
        self.resolver = resolver
        self.policy = policy

        collector = metrics or get_metrics_collector()
        self._retries = collector.counter(
            "bulkfetch_fetch_retries_total",
            "Fetch attempts that failed and were retried",
        )
        self._outcomes = collector.counter(
            "bulkfetch_fetch_outcomes_total",
            "Fetches abandoned and recorded as OperationOutcome",
        )

    async def fetch_resources(self, request: FetchRequest) -> FetchResult:
        """
        Fetch all resources for the request's patient.

        Returns:
            FetchResult with the resources in page order, or with a single
            outcome record if every attempt failed

        Raises:
            FatalInternalError: the request cannot be served at all
            HashingError: identifier hashing is misconfigured
        """
        log = logger.bind(
            job_id=str(request.job_id),
            batch_id=str(request.batch_id),
            resource_type=request.resource_type.value,
            patient_id=request.patient_id,
        )

        attempts = 0
        try:
            async for attempt in self._retrying(request):
                with attempt:
                    attempts += 1
                    resources = await self._fetch_all(request)
        except Exception as error:
            error_class = classify_error(error)
            if error_class is ErrorClass.FATAL:
                raise

            log.error(
                "Turning error into OperationOutcome",
                error=str(error),
                error_class=error_class.value,
                attempts=attempts,
            )
            self._outcomes.inc(labels={
                "resource_type": request.resource_type.value,
                "error_class": error_class.value,
            })
            outcome = form_operation_outcome(request.resource_type, request.patient_id, error)
            return FetchResult.from_outcome(outcome, attempts)

        return FetchResult(resources=resources, attempts=attempts)

    async def fetch_first_page(
        self,
        resource_type: FHIRResourceType,
        patient_id: str,
        date_range: DateRange,
        request: FetchRequest | None = None,
    ) -> ResourcePage:
        """
        Request the first page of resources for a resolved patient.

        Raises:
            ResourceNotFoundError: a Coverage or ExplanationOfBenefit search
                matched nothing
        """
        if resource_type is FHIRResourceType.PATIENT:
            return await self.client.request_patient(patient_id, date_range)
        elif resource_type is FHIRResourceType.EXPLANATION_OF_BENEFIT:
            page = await self.client.request_eob(patient_id, date_range)
        elif resource_type is FHIRResourceType.COVERAGE:
            page = await self.client.request_coverage(patient_id, date_range)
        else:
            raise FatalInternalError(
                f"Unexpected resource type: {resource_type.value}",
                job_id=request.job_id if request else None,
                batch_id=request.batch_id if request else None,
            )

        # A beneficiary without claims data has no Coverage or EOB entries
        if not page.entries:
            raise ResourceNotFoundError(f"No {resource_type.value} resources found in source")
        return page

    async def drain_pages(
        self,
        resource_type: FHIRResourceType,
        first_page: ResourcePage,
    ) -> List[FHIRResource]:
        """
        Collect the entries of the first page and of every following page.
        """
        resources: List[FHIRResource] = []
        self._add_resources(resources, first_page, resource_type)

        page = first_page
        while page.has_next:
            logger.debug("Fetching next page", resource_type=resource_type.value)
            page = await self.client.request_next_page(page)
            self._add_resources(resources, page, resource_type)

        logger.debug(
            "Done fetching pages",
            resource_type=resource_type.value,
            resources=len(resources),
        )
        return resources

    async def _fetch_all(self, request: FetchRequest) -> List[FHIRResource]:
        # Unsupported types fail before any source request
        if request.resource_type not in SUPPORTED_RESOURCE_TYPES:
            raise FatalInternalError(
                f"Unexpected resource type: {request.resource_type.value}",
                job_id=request.job_id,
                batch_id=request.batch_id,
            )

        logger.debug(
            "Fetching first page",
            resource_type=request.resource_type.value,
            patient_id=request.patient_id,
        )
        source_patient_id = await self.resolver.resolve_patient_id(request.patient_id)
        first_page = await self.fetch_first_page(
            request.resource_type,
            source_patient_id,
            request.date_range,
            request,
        )
        return await self.drain_pages(request.resource_type, first_page)

    def _retrying(self, request: FetchRequest) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(
                multiplier=self.policy.initial_wait_seconds,
                max=self.policy.max_wait_seconds,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=lambda state: self._log_retry(request, state),
            reraise=True,
        )

    def _log_retry(self, request: FetchRequest, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        self._retries.inc(labels={"resource_type": request.resource_type.value})
        logger.warning(
            "Retrying fetch",
            job_id=str(request.job_id),
            batch_id=str(request.batch_id),
            resource_type=request.resource_type.value,
            patient_id=request.patient_id,
            attempt=state.attempt_number,
            error=str(error),
        )

    @staticmethod
    def _add_resources(
        resources: List[FHIRResource],
        page: ResourcePage,
        resource_type: FHIRResourceType,
    ) -> None:
        for resource in page.entries:
            if resource.resource_type != resource_type.value:
                raise DataFormatError(
                    f"Unexpected resource type: got {resource.resource_type} "
                    f"expected: {resource_type.value}"
                )
            resources.append(resource)
