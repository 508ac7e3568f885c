"""
Metrics Collection for Document Ingestion

Collects and exposes metrics for:
- Classification (documents per type, unknowns, extraction failures)
- Imports (committed, duplicates, failed)
- Batch runs (items, failures, cancellations)
- Processing times (average, p95)

Metrics are kept in memory for the lifetime of the process.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class ClassificationMetrics:
    """Metrics for document classification."""
    classified: int = 0
    unknown: int = 0
    unsupported: int = 0
    extraction_failures: int = 0

    by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class ImportMetrics:
    """Metrics for import commits."""
    committed: int = 0
    duplicates: int = 0
    failed: int = 0

    by_type: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"committed": 0, "duplicates": 0, "failed": 0})
    )


@dataclass
class BatchMetrics:
    """Metrics for batch runs."""
    runs: int = 0
    items: int = 0
    failures: int = 0
    cancelled: int = 0


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the ingestion pipeline.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_classified("purchase_order")
        metrics.record_import_committed("purchase_order")
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.classification = ClassificationMetrics()
        self.imports = ImportMetrics()
        self.batches = BatchMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Classification
    # =========================================================================

    def record_classified(self, document_type: str, duration_ms: float = None):
        with self._lock:
            self.classification.classified += 1
            self.classification.by_type[document_type] += 1
            if document_type == "unknown":
                self.classification.unknown += 1
            if duration_ms:
                self.timings.add_sample(duration_ms, "classify")

    def record_unsupported(self):
        with self._lock:
            self.classification.unsupported += 1

    def record_extraction_failed(self):
        with self._lock:
            self.classification.extraction_failures += 1

    # =========================================================================
    # Imports
    # =========================================================================

    def record_import_committed(self, document_type: str, duration_ms: float = None):
        with self._lock:
            self.imports.committed += 1
            self.imports.by_type[document_type]["committed"] += 1
            if duration_ms:
                self.timings.add_sample(duration_ms, "commit")

    def record_import_duplicate(self, document_type: str):
        with self._lock:
            self.imports.duplicates += 1
            self.imports.by_type[document_type]["duplicates"] += 1

    def record_import_failed(self, document_type: str):
        with self._lock:
            self.imports.failed += 1
            self.imports.by_type[document_type]["failed"] += 1

    # =========================================================================
    # Batches
    # =========================================================================

    def record_batch(self, items: int, failures: int, cancelled: int, duration_ms: float = None):
        """Record a finished batch run."""
        with self._lock:
            self.batches.runs += 1
            self.batches.items += items
            self.batches.failures += failures
            self.batches.cancelled += cancelled
            if duration_ms:
                self.timings.add_sample(duration_ms, "batch")

    # =========================================================================
    # Timing
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "classification": {
                    "classified": self.classification.classified,
                    "unknown": self.classification.unknown,
                    "unsupported": self.classification.unsupported,
                    "extraction_failures": self.classification.extraction_failures,
                    "by_type": dict(self.classification.by_type),
                },
                "imports": {
                    "committed": self.imports.committed,
                    "duplicates": self.imports.duplicates,
                    "failed": self.imports.failed,
                    "by_type": {k: dict(v) for k, v in self.imports.by_type.items()},
                },
                "batches": {
                    "runs": self.batches.runs,
                    "items": self.batches.items,
                    "failures": self.batches.failures,
                    "cancelled": self.batches.cancelled,
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()
