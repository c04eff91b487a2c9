"""
Claims Source Client

Async client for the FHIR claims server (Blue Button / BFD).

Supports:
- Patient lookup by hashed MBI
- Patient, Coverage and ExplanationOfBenefit searches bounded by `_lastUpdated`
- Bundle pagination via the `next` link
- CapabilityStatement for health checks

The client never retries; the fetch engine owns retry.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog

from bulkfetch.config import SourceClientSettings
from bulkfetch.exceptions import (
    DataFormatError,
    ResourceNotFoundError,
    SourceServerError,
    SourceTransportError,
)
from bulkfetch.models import DateRange, FHIRResource, ResourcePage
from bulkfetch.observability.metrics import (
    MetricMaker,
    MetricsCollector,
    get_metrics_collector,
    instrument,
)

logger = structlog.get_logger(__name__)

MBI_HASH_SYSTEM = "https://bluebutton.cms.gov/resources/identifier/mbi-hash"


class SourceOperation(str, Enum):
    """Instrumented source operations."""
    REQUEST_PATIENT = "requestPatient"
    REQUEST_EOB = "requestEOB"
    REQUEST_COVERAGE = "requestCoverage"
    REQUEST_NEXT = "requestNextBundle"
    REQUEST_CAPABILITIES = "requestCapabilities"


# =============================================================================
# Contract
# =============================================================================

class SourceClient(ABC):
    """
    What the fetch engine needs from the claims source.

    Every method may raise ResourceNotFoundError, SourceServerError or
    SourceTransportError.
    """

    @abstractmethod
    async def request_patient(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        """Search the Patient resource with the given logical id."""

    @abstractmethod
    async def request_coverage(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        """Search Coverage for a patient."""

    @abstractmethod
    async def request_eob(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        """Search ExplanationOfBenefit for a patient."""

    @abstractmethod
    async def request_patient_by_identifier_hash(self, identifier_hash: str) -> ResourcePage:
        """
        Search Patient by hashed MBI.

        Should only ever match one patient, but callers must check.
        """

    @abstractmethod
    async def request_next_page(self, page: ResourcePage) -> ResourcePage:
        """Follow the page's `next` link. The page must have one."""

    @abstractmethod
    async def request_capabilities(self) -> FHIRResource:
        """Fetch the server CapabilityStatement."""


# =============================================================================
# HTTP Client
# =============================================================================

class BlueButtonClient(SourceClient):
    """
    HTTP implementation of the source client over ``httpx.AsyncClient``.

    Every request is timed and error-counted under its SourceOperation.

    Usage:
        async with BlueButtonClient(settings) as client:
            page = await client.request_coverage("-19990000000001", date_range)
    """

    def __init__(
        self,
        settings: SourceClientSettings | None = None,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or SourceClientSettings()
        self.base_url = self.settings.server_base_url.rstrip("/")
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

        names = [op.value for op in SourceOperation]
        metric_maker = MetricMaker(metrics or get_metrics_collector(), "source_client")
        self._timers = metric_maker.register_timers(names)
        self._error_counters = metric_maker.register_counters(names)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.settings.timeout_seconds,
                verify=self.settings.verify_ssl,
                transport=self._transport,
                headers={"Accept": "application/fhir+json"},
            )
            logger.debug("Source client connected", base_url=self.base_url)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.debug("Source client closed", base_url=self.base_url)

    async def __aenter__(self) -> "BlueButtonClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # Source Operations
    # =========================================================================

    async def request_patient(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        logger.debug("Fetching patient", source_patient_id=patient_id, base_url=self.base_url)
        params = [("_id", patient_id)] + self._last_updated(date_range)
        return await self._search(SourceOperation.REQUEST_PATIENT, "Patient", params)

    async def request_coverage(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        logger.debug("Fetching coverage", source_patient_id=patient_id, base_url=self.base_url)
        params = [
            ("beneficiary", f"Patient/{patient_id}"),
            ("_count", str(self.settings.resources_count)),
        ] + self._last_updated(date_range)
        return await self._search(SourceOperation.REQUEST_COVERAGE, "Coverage", params)

    async def request_eob(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        logger.debug("Fetching EOBs", source_patient_id=patient_id, base_url=self.base_url)
        params = [("patient", patient_id)]
        if self.settings.exclude_samhsa:
            params.append(("excludeSAMHSA", "true"))
        params.append(("_count", str(self.settings.resources_count)))
        params += self._last_updated(date_range)
        return await self._search(SourceOperation.REQUEST_EOB, "ExplanationOfBenefit", params)

    async def request_patient_by_identifier_hash(self, identifier_hash: str) -> ResourcePage:
        logger.debug("Fetching patient by identifier hash", base_url=self.base_url)
        params = [("identifier", f"{MBI_HASH_SYSTEM}|{identifier_hash}")]
        return await self._search(SourceOperation.REQUEST_PATIENT, "Patient", params)

    async def request_next_page(self, page: ResourcePage) -> ResourcePage:
        if not page.has_next:
            raise ValueError("Page has no next link")

        with self._instrumented(SourceOperation.REQUEST_NEXT):
            logger.debug("Fetching next page", url=page.next_link)
            data = await self._get_json(page.next_link)
            return self._to_page(data)

    async def request_capabilities(self) -> FHIRResource:
        with self._instrumented(SourceOperation.REQUEST_CAPABILITIES):
            data = await self._get_json(f"{self.base_url}/metadata")
            return FHIRResource.from_dict(data)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _instrumented(self, operation: SourceOperation):
        return instrument(
            self._timers[operation.value],
            self._error_counters[operation.value],
        )

    @staticmethod
    def _last_updated(date_range: DateRange) -> List[Tuple[str, str]]:
        return [("_lastUpdated", value) for value in date_range.to_params()]

    async def _search(
        self,
        operation: SourceOperation,
        resource_type: str,
        params: List[Tuple[str, str]],
    ) -> ResourcePage:
        with self._instrumented(operation):
            data = await self._get_json(f"{self.base_url}/{resource_type}", params)
            return self._to_page(data)

    @staticmethod
    def _to_page(data: Dict[str, Any]) -> ResourcePage:
        if data.get("resourceType") != "Bundle":
            raise DataFormatError(
                f"Expected a Bundle from the source, got {data.get('resourceType')}"
            )
        return ResourcePage.from_dict(data)

    async def _get_json(
        self,
        url: str,
        params: Optional[List[Tuple[str, str]]] = None,
    ) -> Dict[str, Any]:
        if self._http is None:
            await self.connect()

        try:
            response = await self._http.get(url, params=params)
        except httpx.TransportError as e:
            logger.warning("Source request failed", url=url, error=str(e))
            raise SourceTransportError(f"Request to {url} failed: {e}") from e

        if response.status_code == 404:
            raise ResourceNotFoundError(f"Source returned 404 for {response.url.path}")
        if response.status_code >= 400:
            raise SourceServerError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise DataFormatError(f"Source returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise DataFormatError(
                f"Expected a JSON object from the source, got {type(data).__name__}"
            )
        return data
