"""
Identifier Resolver

Resolves a raw MBI to the claims source's Patient resource by searching
on the peppered identifier hash.
"""

import structlog

from bulkfetch.config import SourceClientSettings
from bulkfetch.exceptions import ResourceNotFoundError
from bulkfetch.hashing import decode_pepper, hash_identifier
from bulkfetch.integrations.source_client import SourceClient
from bulkfetch.models import FHIRResource

logger = structlog.get_logger(__name__)


class IdentifierResolver:
    """
    Looks patients up by hashed MBI.

    Exactly one Patient must match. Zero matches and multiple matches
    both raise ResourceNotFoundError; multiple matches are logged as an
    anomaly.
    """

    def __init__(self, client: SourceClient, pepper: bytes, iterations: int):
        self.client = client
        self._pepper = pepper
        self._iterations = iterations

    @classmethod
    def from_settings(
        cls,
        client: SourceClient,
        settings: SourceClientSettings,
    ) -> "IdentifierResolver":
        pepper_hex = settings.hash_pepper.get_secret_value() if settings.hash_pepper else None
        return cls(
            client=client,
            pepper=decode_pepper(pepper_hex),
            iterations=settings.hash_iterations,
        )

    def hash_identifier(self, identifier: str) -> str:
        return hash_identifier(identifier, self._pepper, self._iterations)

    async def resolve_patient(self, identifier: str) -> FHIRResource:
        """
        Find the single Patient whose hashed MBI matches.

        Raises:
            ResourceNotFoundError: no patient, or more than one, matches
            HashingError: the identifier could not be hashed
        """
        identifier_hash = self.hash_identifier(identifier)
        page = await self.client.request_patient_by_identifier_hash(identifier_hash)

        if page.total == 0 or not page.entries:
            raise ResourceNotFoundError("No patient matches the identifier hash")
        if page.total > 1 or len(page.entries) > 1:
            logger.error(
                "Multiple patients match MBI",
                mbi=identifier,
                matches=max(page.total, len(page.entries)),
            )
            raise ResourceNotFoundError("No patient matches the identifier hash")

        return page.entries[0]

    async def resolve_patient_id(self, identifier: str) -> str:
        """The source-side logical id of the patient with this MBI."""
        patient = await self.resolve_patient(identifier)
        if not patient.id:
            raise ResourceNotFoundError("Patient matching the identifier hash has no id")
        return patient.id
