"""Delivery of normalized articles to the ingest sink."""

from .ingest import BatchIngestResult, IngestClient, IngestResult

__all__ = ["BatchIngestResult", "IngestClient", "IngestResult"]
