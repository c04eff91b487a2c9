"""
Batch Aggregation

Runs the fetches of one job batch (every requested resource type for
every patient) with bounded concurrency. Per-patient failures come back
as outcome records; a fatal error fails the whole batch.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from bulkfetch.config import OperationsSettings, Settings
from bulkfetch.engine.fetcher import ResourceFetcher
from bulkfetch.engine.resolver import IdentifierResolver
from bulkfetch.exceptions import BulkFetchError
from bulkfetch.integrations.source_client import SourceClient
from bulkfetch.models import (
    FetchRequest,
    FetchResult,
    FHIRResource,
    FHIRResourceType,
    OutcomeRecord,
    RetryPolicy,
)
from bulkfetch.observability.metrics import MetricsCollector, get_metrics_collector

logger = structlog.get_logger(__name__)


class JobBatch(BaseModel):
    """A batch of patients to export for one job."""
    job_id: UUID
    batch_id: UUID
    patient_ids: list[str] = Field(default_factory=list)
    resource_types: list[FHIRResourceType] = Field(default_factory=list)
    since: Optional[datetime] = None
    transaction_time: datetime

    def fetch_requests(self) -> list[FetchRequest]:
        """One request per resource type and patient, grouped by type."""
        return [
            FetchRequest(
                job_id=self.job_id,
                batch_id=self.batch_id,
                resource_type=resource_type,
                since=self.since,
                transaction_time=self.transaction_time,
                patient_id=patient_id,
            )
            for resource_type in self.resource_types
            for patient_id in self.patient_ids
        ]


@dataclass
class BatchResult:
    """Resources and outcome records produced by one batch."""
    job_id: UUID
    batch_id: UUID
    resources: dict[FHIRResourceType, list[FHIRResource]] = field(default_factory=dict)
    outcomes: list[OutcomeRecord] = field(default_factory=list)

    @property
    def resource_count(self) -> int:
        return sum(len(resources) for resources in self.resources.values())

    @property
    def outcome_count(self) -> int:
        return len(self.outcomes)


class AggregationEngine:
    """
    Processes job batches against the claims source.

    Usage:
        async with BlueButtonClient(settings.source) as client:
            engine = AggregationEngine.from_settings(client, settings)
            result = await engine.process_batch(batch)
    """

    def __init__(
        self,
        fetcher: ResourceFetcher,
        operations: OperationsSettings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.fetcher = fetcher
        self.operations = operations or OperationsSettings()

        collector = metrics or get_metrics_collector()
        self._fetches = collector.counter(
            "bulkfetch_fetches_total",
            "Completed fetches by resource type",
        )
        self._active = collector.gauge(
            "bulkfetch_active_fetches",
            "Fetches currently in flight",
        )
        self._failed_batches = collector.counter(
            "bulkfetch_failed_batches_total",
            "Batches failed by a fatal error",
        )

    @classmethod
    def from_settings(
        cls,
        client: SourceClient,
        settings: Settings,
        metrics: MetricsCollector | None = None,
    ) -> "AggregationEngine":
        """Wire resolver, fetcher and engine from application settings."""
        resolver = IdentifierResolver.from_settings(client, settings.source)
        fetcher = ResourceFetcher(
            client=client,
            resolver=resolver,
            policy=RetryPolicy.from_settings(settings.operations),
            metrics=metrics,
        )
        return cls(fetcher, settings.operations, metrics)

    async def process_batch(self, batch: JobBatch) -> BatchResult:
        """
        Fetch every requested resource type for every patient in the batch.

        Raises:
            FatalInternalError: a broken job or batch invariant
            HashingError: identifier hashing is misconfigured
        """
        requests = batch.fetch_requests()
        semaphore = asyncio.Semaphore(self.operations.max_concurrent_fetches)

        logger.info(
            "Processing batch",
            job_id=str(batch.job_id),
            batch_id=str(batch.batch_id),
            patients=len(batch.patient_ids),
            resource_types=[rt.value for rt in batch.resource_types],
        )

        async def run(request: FetchRequest) -> FetchResult:
            async with semaphore:
                self._active.inc()
                try:
                    return await self.fetcher.fetch_resources(request)
                finally:
                    self._active.dec()

        tasks = [asyncio.create_task(run(request)) for request in requests]
        try:
            results = await asyncio.gather(*tasks)
        except Exception as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._failed_batches.inc()
            logger.error(
                "Batch failed",
                job_id=str(batch.job_id),
                batch_id=str(batch.batch_id),
                error=str(e),
            )
            raise

        batch_result = BatchResult(
            job_id=batch.job_id,
            batch_id=batch.batch_id,
            resources={rt: [] for rt in batch.resource_types},
        )
        for request, result in zip(requests, results):
            self._fetches.inc(labels={"resource_type": request.resource_type.value})
            if result.is_outcome:
                batch_result.outcomes.append(result.outcome)
            else:
                batch_result.resources[request.resource_type].extend(result.resources)

        logger.info(
            "Batch complete",
            job_id=str(batch.job_id),
            batch_id=str(batch.batch_id),
            resources=batch_result.resource_count,
            outcomes=batch_result.outcome_count,
        )
        return batch_result

    async def check_source_health(self) -> bool:
        """Check the claims source answers its capability statement."""
        try:
            capabilities = await self.fetcher.client.request_capabilities()
        except BulkFetchError as e:
            logger.warning("Source health check failed", error=str(e))
            return False
        return capabilities.resource_type == FHIRResourceType.CAPABILITY_STATEMENT.value
