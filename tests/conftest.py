from collections import Counter, defaultdict, deque
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from bulkfetch.engine.fetcher import ResourceFetcher
from bulkfetch.engine.resolver import IdentifierResolver
from bulkfetch.exceptions import ResourceNotFoundError
from bulkfetch.hashing import hash_identifier
from bulkfetch.integrations.source_client import SourceClient
from bulkfetch.models import (
    DateRange,
    FetchRequest,
    FHIRResource,
    ResourcePage,
    RetryPolicy,
)
from bulkfetch.observability.metrics import MetricsCollector

TEST_PEPPER_HEX = "b8ebdcc47fdd852b8b0201835c6273a9177806e84f2d9dc4f7ecaff08681e86d"
TEST_PEPPER = bytes.fromhex(TEST_PEPPER_HEX)
TEST_ITERATIONS = 10
SINCE = datetime(2024, 1, 1, tzinfo=timezone.utc)
TRANSACTION_TIME = datetime(2024, 3, 1, tzinfo=timezone.utc)


def make_resource(resource_type: str, resource_id: str) -> FHIRResource:
    return FHIRResource.from_dict({"resourceType": resource_type, "id": resource_id})


def make_request(resource_type, patient_id="P123", since=None) -> FetchRequest:
    return FetchRequest(
        job_id=uuid4(),
        batch_id=uuid4(),
        resource_type=resource_type,
        since=since,
        transaction_time=TRANSACTION_TIME,
        patient_id=patient_id,
    )


class FakeSourceClient(SourceClient):
    """In-memory claims source with scripted failures."""

    def __init__(self):
        self.patients = defaultdict(list)  # identifier hash -> Patient resources
        self.first_pages = {}  # (resource type, source patient id) -> first page
        self.next_pages = {}  # next link -> page
        self.errors = defaultdict(deque)  # method -> errors to raise, in order
        self.calls = Counter()
        self.identifier_hashes = []
        self.date_ranges = []

    # Setup helpers

    def add_patient(self, mbi: str, source_id: str | None = None) -> str:
        if source_id is None:
            source_id = f"-{mbi}"
        identifier_hash = hash_identifier(mbi, TEST_PEPPER, TEST_ITERATIONS)
        self.patients[identifier_hash].append(make_resource("Patient", source_id))
        return source_id

    def add_pages(
        self,
        resource_type: str,
        source_id: str,
        page_sizes: list[int],
        entry_type: str | None = None,
    ) -> None:
        entry_type = entry_type or resource_type
        total = sum(page_sizes)
        links = [
            f"https://source.test/{resource_type}?patient={source_id}&page={n}"
            for n in range(len(page_sizes))
        ]
        for n, size in enumerate(page_sizes):
            page = ResourcePage(
                total=total,
                entries=[make_resource(entry_type, f"{resource_type}-{n}-{i}") for i in range(size)],
                next_link=links[n + 1] if n + 1 < len(page_sizes) else None,
            )
            if n == 0:
                self.first_pages[(resource_type, source_id)] = page
            else:
                self.next_pages[links[n]] = page

    def fail(self, method: str, *errors: Exception) -> None:
        self.errors[method].extend(errors)

    def _call(self, method: str) -> None:
        self.calls[method] += 1
        if self.errors[method]:
            raise self.errors[method].popleft()

    def _first_page(self, method, resource_type, patient_id, date_range) -> ResourcePage:
        self._call(method)
        self.date_ranges.append(date_range)
        page = self.first_pages.get((resource_type, patient_id))
        if page is None:
            raise ResourceNotFoundError(f"No {resource_type} for {patient_id}")
        return page

    # SourceClient

    async def request_patient(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        return self._first_page("request_patient", "Patient", patient_id, date_range)

    async def request_coverage(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        return self._first_page("request_coverage", "Coverage", patient_id, date_range)

    async def request_eob(self, patient_id: str, date_range: DateRange) -> ResourcePage:
        return self._first_page("request_eob", "ExplanationOfBenefit", patient_id, date_range)

    async def request_patient_by_identifier_hash(self, identifier_hash: str) -> ResourcePage:
        self._call("request_patient_by_identifier_hash")
        self.identifier_hashes.append(identifier_hash)
        matches = self.patients.get(identifier_hash, [])
        return ResourcePage(total=len(matches), entries=list(matches))

    async def request_next_page(self, page: ResourcePage) -> ResourcePage:
        self._call("request_next_page")
        if not page.has_next:
            raise ValueError("Page has no next link")
        return self.next_pages[page.next_link]

    async def request_capabilities(self) -> FHIRResource:
        self._call("request_capabilities")
        return make_resource("CapabilityStatement", "bfd")


@pytest.fixture
def source():
    return FakeSourceClient()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def resolver(source):
    return IdentifierResolver(source, TEST_PEPPER, TEST_ITERATIONS)


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, initial_wait_seconds=0, max_wait_seconds=0)


@pytest.fixture
def fetcher(source, resolver, policy, metrics):
    return ResourceFetcher(source, resolver, policy, metrics)

