"""
Label-scan ingestion pipeline.

Jobs are submitted with an uploaded label image, claimed in batches by
workers, run through AI extraction and resolved against the catalog.
"""

from vinho.pipeline.claimer import JobClaimer
from vinho.pipeline.resolver import EntityResolver, ResolvedEntities
from vinho.pipeline.retry import RetryManager
from vinho.pipeline.submission import ScanSubmission, submit_scan
from vinho.pipeline.worker import ExtractionWorker, JobOutcome

__all__ = [
    "EntityResolver",
    "ExtractionWorker",
    "JobClaimer",
    "JobOutcome",
    "ResolvedEntities",
    "RetryManager",
    "ScanSubmission",
    "submit_scan",
]
