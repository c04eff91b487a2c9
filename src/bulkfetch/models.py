"""
Fetch Engine Models

FHIR resources and search bundles as returned by the claims source,
plus the request, result and outcome types of a single fetch.
"""

from typing import List, Optional
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from bulkfetch.exceptions import DataFormatError


# =============================================================================
# FHIR Models
# =============================================================================

class FHIRResourceType(str, Enum):
    """FHIR resource types."""
    PATIENT = "Patient"
    COVERAGE = "Coverage"
    EXPLANATION_OF_BENEFIT = "ExplanationOfBenefit"
    # Claims summary data is served as ExplanationOfBenefit
    CLAIMS_SUMMARY = "ExplanationOfBenefit"
    PRACTITIONER = "Practitioner"
    ORGANIZATION = "Organization"
    OPERATION_OUTCOME = "OperationOutcome"
    CAPABILITY_STATEMENT = "CapabilityStatement"


class FHIRResource(BaseModel):
    """A FHIR resource."""
    resource_type: str
    id: Optional[str] = None
    meta: Optional[dict] = None
    data: dict = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "FHIRResource":
        """Create from dictionary."""
        return cls(
            resource_type=data.get("resourceType", "Unknown"),
            id=data.get("id"),
            meta=data.get("meta"),
            data=data,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return self.data


class ResourcePage(BaseModel):
    """One page of a FHIR searchset Bundle."""
    bundle_type: str = "searchset"
    total: int = 0
    entries: List[FHIRResource] = Field(default_factory=list)
    next_link: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ResourcePage":
        """Create from a Bundle dictionary."""
        entries = []
        for index, entry in enumerate(data.get("entry", [])):
            if not isinstance(entry, dict) or not isinstance(entry.get("resource"), dict):
                raise DataFormatError(f"Bundle entry {index} has no resource")
            entries.append(FHIRResource.from_dict(entry["resource"]))

        next_link = None
        for link in data.get("link", []):
            if link.get("relation") == "next":
                next_link = link.get("url")

        return cls(
            bundle_type=data.get("type", "searchset"),
            total=data.get("total", len(entries)),
            entries=entries,
            next_link=next_link,
        )

    @property
    def has_next(self) -> bool:
        return self.next_link is not None


# =============================================================================
# Fetch Models
# =============================================================================

class DateRange(BaseModel):
    """A `_lastUpdated` range: lower bound exclusive, upper bound inclusive."""
    model_config = ConfigDict(frozen=True)

    lower_exclusive: Optional[datetime] = None
    upper_inclusive: datetime

    @classmethod
    def for_job(cls, since: Optional[datetime], transaction_time: datetime) -> "DateRange":
        """
        Build the range for a bulk job.

        Bulk export treats `since` as exclusive and the transaction time as
        inclusive. No resource may have lastUpdated after the transaction
        time, with or without `since`.
        """
        return cls(lower_exclusive=since, upper_inclusive=transaction_time)

    def to_params(self) -> List[str]:
        """Render as `_lastUpdated` search parameter values."""
        params = []
        if self.lower_exclusive is not None:
            params.append(f"gt{self.lower_exclusive.isoformat()}")
        params.append(f"le{self.upper_inclusive.isoformat()}")
        return params


class FetchRequest(BaseModel):
    """Everything needed to fetch one resource type for one patient."""
    model_config = ConfigDict(frozen=True)

    job_id: UUID
    batch_id: UUID
    resource_type: FHIRResourceType
    since: Optional[datetime] = None
    transaction_time: datetime
    patient_id: str

    @property
    def date_range(self) -> DateRange:
        return DateRange.for_job(self.since, self.transaction_time)


class RetryPolicy(BaseModel):
    """Retry configuration for one fetch."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=1.0, ge=0)
    max_wait_seconds: float = Field(default=10.0, ge=0)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        """Build from OperationsSettings."""
        return cls(
            max_attempts=settings.retry_count,
            initial_wait_seconds=settings.retry_initial_wait_seconds,
            max_wait_seconds=settings.retry_max_wait_seconds,
        )


class OutcomeRecord(BaseModel):
    """An abandoned fetch, recorded in place of the patient's resources."""
    severity: str = "error"
    code: str = "exception"
    details: str
    location: List[str] = Field(default_factory=list)

    @classmethod
    def for_patient(cls, patient_id: str, details: str) -> "OutcomeRecord":
        return cls(details=details, location=["Patient", "id", patient_id])

    def to_resource(self) -> FHIRResource:
        """Render as a FHIR OperationOutcome with a single issue."""
        return FHIRResource.from_dict({
            "resourceType": FHIRResourceType.OPERATION_OUTCOME.value,
            "issue": [
                {
                    "severity": self.severity,
                    "code": self.code,
                    "details": {"text": self.details},
                    "location": list(self.location),
                }
            ],
        })


class FetchResult(BaseModel):
    """
    Result of one fetch: either the patient's resources or, when the
    fetch was abandoned, a single outcome record. Never both.
    """
    resources: List[FHIRResource] = Field(default_factory=list)
    outcome: Optional[OutcomeRecord] = None
    attempts: int = 1

    @classmethod
    def from_outcome(cls, outcome: OutcomeRecord, attempts: int) -> "FetchResult":
        return cls(outcome=outcome, attempts=attempts)

    @property
    def is_outcome(self) -> bool:
        return self.outcome is not None

    @property
    def entries(self) -> List[FHIRResource]:
        """The resources, or the rendered outcome as a one-element list."""
        if self.outcome is not None:
            return [self.outcome.to_resource()]
        return list(self.resources)
