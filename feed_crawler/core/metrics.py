"""Per-batch aggregation of source crawl metrics."""

from __future__ import annotations

from .types import BatchTotals, CrawlMetrics


class MetricsAggregator:
    """Collects CrawlMetrics from workers; one writer per source id.

    Created fresh for every batch and read only after all workers drained.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, CrawlMetrics] = {}

    def record(self, source_id: str, metrics: CrawlMetrics) -> None:
        if source_id in self._metrics:
            raise ValueError(f"Metrics already recorded for source {source_id}")
        self._metrics[source_id] = metrics

    def get(self, source_id: str) -> CrawlMetrics | None:
        return self._metrics.get(source_id)

    def snapshot(self) -> dict[str, CrawlMetrics]:
        return dict(self._metrics)

    def totals(self) -> BatchTotals:
        totals = BatchTotals()
        for metrics in self._metrics.values():
            totals.add(metrics)
        return totals

    def failed_sources(self) -> list[str]:
        return [source_id for source_id, m in self._metrics.items() if m.error is not None]

    def __len__(self) -> int:
        return len(self._metrics)
