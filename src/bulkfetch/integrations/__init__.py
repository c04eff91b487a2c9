"""
bulkfetch Integrations

- Claims source client contract
- Blue Button (BFD) FHIR client
"""

from bulkfetch.integrations.source_client import (
    SourceClient,
    BlueButtonClient,
    SourceOperation,
    MBI_HASH_SYSTEM,
)

__all__ = [
    "SourceClient",
    "BlueButtonClient",
    "SourceOperation",
    "MBI_HASH_SYSTEM",
]
