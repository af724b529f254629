"""
Metrics Collection for the Deduplication Engine

Collects and exposes metrics for:
- Decisions (by decision, reason and confidence tier)
- Review queue (items created, resolved by status, concurrent-resolution conflicts)
- Activity execution (started, completed, failed, retries)
- Processing times (average, p95)

Metrics are stored in-memory. When DEDUP_METRICS_DB_PATH is set, each
event is also appended to a sqlite snapshot table for durability.
"""

import json
import logging
import sqlite3
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Any

logger = logging.getLogger(__name__)


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class DecisionMetrics:
    """Counts of classification outcomes."""
    evaluated: int = 0
    key_matches: int = 0
    by_decision: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    by_reason: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    by_tier: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class ReviewMetrics:
    """Review queue throughput."""
    created: int = 0
    resolved: int = 0
    conflicts: int = 0
    by_status: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class ActivityMetrics:
    """Metrics for activity execution."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    retries: int = 0

    by_name: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0, "retries": 0}))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Keep last N samples for percentile calculations
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
    Thread-safe metrics collector for the deduplication engine.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_decision("NearMatch", "FuzzyMatch", "Medium", duration_ms=3.2)
        metrics.record_review_resolved("ConfirmedDuplicate")
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self, db_path: Optional[Path] = None):
        self.decisions = DecisionMetrics()
        self.reviews = ReviewMetrics()
        self.activities = ActivityMetrics()
        self.timings = TimingMetrics()
        self.db_path = db_path
        self._lock = Lock()

        if self.db_path:
            self._init_db()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    from core.settings import get_settings
                    cls._instance = cls(db_path=get_settings().metrics_db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Drop the singleton (used between tests)."""
        with cls._lock:
            cls._instance = None

    def _init_db(self):
        conn = sqlite3.connect(str(self.db_path))
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS metrics_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                metric_type TEXT NOT NULL,
                metric_name TEXT NOT NULL,
                metric_value REAL NOT NULL,
                labels TEXT
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_metrics_type_time
            ON metrics_snapshots(metric_type, timestamp)
        """)

        conn.commit()
        conn.close()

    # =========================================================================
    # Decision Metrics
    # =========================================================================

    def record_decision(
        self,
        decision: str,
        reason: str,
        tier: Optional[str] = None,
        duration_ms: float = None,
    ):
        """Record one classified candidate pair."""
        with self._lock:
            self.decisions.evaluated += 1
            self.decisions.by_decision[decision] += 1
            self.decisions.by_reason[reason] += 1
            if tier:
                self.decisions.by_tier[tier] += 1
            if reason in ("VinMatch", "ExternalIdMatch"):
                self.decisions.key_matches += 1
            if duration_ms:
                self.timings.add_sample(duration_ms, "decision")

        self._persist_metric("decision", decision, 1, {"reason": reason, "tier": tier})

    # =========================================================================
    # Review Metrics
    # =========================================================================

    def record_review_created(self, priority: int):
        with self._lock:
            self.reviews.created += 1

        self._persist_metric("review", "created", 1, {"priority": priority})

    def record_review_resolved(self, status: str):
        with self._lock:
            self.reviews.resolved += 1
            self.reviews.by_status[status] += 1

        self._persist_metric("review", "resolved", 1, {"status": status})

    def record_review_conflict(self):
        """A resolution lost the compare-and-set race."""
        with self._lock:
            self.reviews.conflicts += 1

    # =========================================================================
    # Activity Metrics
    # =========================================================================

    def record_activity_started(self, activity_name: str):
        with self._lock:
            self.activities.started += 1
            self.activities.by_name[activity_name]["started"] += 1

    def record_activity_completed(self, activity_name: str, duration_ms: float = None):
        with self._lock:
            self.activities.completed += 1
            self.activities.by_name[activity_name]["completed"] += 1

            if duration_ms:
                self.timings.add_sample(duration_ms, f"activity.{activity_name}")

    def record_activity_failed(self, activity_name: str, error: str = None):
        with self._lock:
            self.activities.failed += 1
            self.activities.by_name[activity_name]["failed"] += 1

        self._persist_metric("activity", "failed", 1, {"name": activity_name, "error": error})

    def record_activity_retry(self, activity_name: str, attempt: int, error: str = None):
        with self._lock:
            self.activities.retries += 1
            self.activities.by_name[activity_name]["retries"] += 1

        self._persist_metric("activity", "retry", attempt, {"name": activity_name, "error": error})

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
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
                "decisions": {
                    "evaluated": self.decisions.evaluated,
                    "key_matches": self.decisions.key_matches,
                    "by_decision": dict(self.decisions.by_decision),
                    "by_reason": dict(self.decisions.by_reason),
                    "by_tier": dict(self.decisions.by_tier),
                },
                "reviews": {
                    "created": self.reviews.created,
                    "resolved": self.reviews.resolved,
                    "conflicts": self.reviews.conflicts,
                    "by_status": dict(self.reviews.by_status),
                },
                "activities": {
                    "started": self.activities.started,
                    "completed": self.activities.completed,
                    "failed": self.activities.failed,
                    "retries": self.activities.retries,
                    "by_name": dict(self.activities.by_name),
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

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist_metric(self, metric_type: str, metric_name: str, value: float, labels: Dict = None):
        """Append a metric event to the snapshot table, if configured."""
        if not self.db_path:
            return

        try:
            conn = sqlite3.connect(str(self.db_path))
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO metrics_snapshots (timestamp, metric_type, metric_name, metric_value, labels)
                VALUES (?, ?, ?, ?, ?)
            """, (
                datetime.utcnow().isoformat(),
                metric_type,
                metric_name,
                value,
                json.dumps(labels, default=str) if labels else None,
            ))

            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            # Metrics persistence must never fail a decision
            logger.warning(f"Failed to persist metric {metric_type}.{metric_name}: {e}")


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_decision(decision: str, reason: str, tier: Optional[str] = None, duration_ms: float = None):
    get_metrics().record_decision(decision, reason, tier, duration_ms)


def record_review_created(priority: int):
    get_metrics().record_review_created(priority)


def record_review_resolved(status: str):
    get_metrics().record_review_resolved(status)


def record_review_conflict():
    get_metrics().record_review_conflict()


def record_activity_started(activity_name: str):
    get_metrics().record_activity_started(activity_name)


def record_activity_completed(activity_name: str, duration_ms: float = None):
    get_metrics().record_activity_completed(activity_name, duration_ms)


def record_activity_failed(activity_name: str, error: str = None):
    get_metrics().record_activity_failed(activity_name, error)


def record_activity_retry(activity_name: str, attempt: int, error: str = None):
    get_metrics().record_activity_retry(activity_name, attempt, error)


def record_processing_time(stage: str, duration_ms: float):
    get_metrics().record_processing_time(stage, duration_ms)
