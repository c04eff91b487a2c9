"""
bulkfetch: Claims Resource Fetch Engine

Fetches Patient, Coverage and ExplanationOfBenefit resources from a
FHIR claims server on behalf of bulk aggregation jobs, isolating
per-patient failures as OperationOutcome records.
"""

__version__ = "0.1.0"
