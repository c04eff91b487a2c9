"""
bulkfetch Engine

- Identifier resolution by hashed MBI
- Paginated, retried resource fetching
- Batch aggregation
"""

from bulkfetch.engine.resolver import IdentifierResolver
from bulkfetch.engine.retry import ErrorClass, classify_error, form_operation_outcome
from bulkfetch.engine.fetcher import ResourceFetcher, SUPPORTED_RESOURCE_TYPES
from bulkfetch.engine.aggregation import AggregationEngine, BatchResult, JobBatch

__all__ = [
    "IdentifierResolver",
    "ErrorClass",
    "classify_error",
    "form_operation_outcome",
    "ResourceFetcher",
    "SUPPORTED_RESOURCE_TYPES",
    "AggregationEngine",
    "BatchResult",
    "JobBatch",
]
