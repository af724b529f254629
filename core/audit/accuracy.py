"""Accuracy metrics derived from the audit trail.

Only automatic entries are measured; corrective entries are the ground truth
that sets the flags, not predictions themselves.

Confusion matrix:
- predicted positive: Duplicate or NearMatch
- true positive:  predicted positive, not flagged false positive
- false positive: predicted positive, flagged false positive
- true negative:  NewListing, not flagged false negative
- false negative: NewListing, flagged false negative

Precision and recall default to 1.0 when nothing was predicted/missed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional

from core.audit.entries import AuditDecision, AuditEntry
from core.audit.trail import AuditTrail


POSITIVE_DECISIONS = (AuditDecision.DUPLICATE, AuditDecision.NEAR_MATCH)

ANALYSIS_THRESHOLDS = [0.50, 0.60, 0.70, 0.75, 0.80, 0.85, 0.90, 0.95]


class TrendGranularity(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class AccuracyMetrics:
    """Confusion-matrix counts and the rates derived from them."""
    total_decisions: int = 0
    true_positives: int = 0
    true_negatives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None

    @property
    def precision(self) -> float:
        denominator = self.true_positives + self.false_positives
        return self.true_positives / denominator if denominator else 1.0

    @property
    def recall(self) -> float:
        denominator = self.true_positives + self.false_negatives
        return self.true_positives / denominator if denominator else 1.0

    @property
    def f1_score(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if (p + r) else 0.0

    @property
    def accuracy(self) -> float:
        if not self.total_decisions:
            return 1.0
        return (self.true_positives + self.true_negatives) / self.total_decisions

    def to_dict(self) -> Dict:
        return {
            "total_decisions": self.total_decisions,
            "true_positives": self.true_positives,
            "true_negatives": self.true_negatives,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "accuracy": self.accuracy,
        }


@dataclass
class AccuracyTrendPoint:
    period_start: datetime
    metrics: AccuracyMetrics = field(default_factory=AccuracyMetrics)


@dataclass
class ThresholdAnalysis:
    """Precision/recall if the auto threshold were set at `threshold`."""
    threshold: float
    total_at_or_above: int
    true_positives: int
    false_positives: int
    precision: float
    cumulative_recall: float


def calculate_confusion_matrix(
    entries: Iterable[AuditEntry],
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
) -> AccuracyMetrics:
    """Build AccuracyMetrics from automatic entries (others are ignored)."""
    metrics = AccuracyMetrics(from_date=from_date, to_date=to_date)

    for entry in entries:
        if not entry.was_automatic:
            continue
        metrics.total_decisions += 1

        if entry.decision in POSITIVE_DECISIONS:
            if entry.is_false_positive:
                metrics.false_positives += 1
            else:
                metrics.true_positives += 1
        elif entry.decision == AuditDecision.NEW_LISTING:
            if entry.is_false_negative:
                metrics.false_negatives += 1
            else:
                metrics.true_negatives += 1

    return metrics


def _period_start(moment: datetime, granularity: TrendGranularity) -> datetime:
    day = datetime(moment.year, moment.month, moment.day)
    if granularity == TrendGranularity.WEEKLY:
        return day - timedelta(days=day.weekday())
    if granularity == TrendGranularity.MONTHLY:
        return datetime(moment.year, moment.month, 1)
    return day


def accuracy_trend(
    entries: Iterable[AuditEntry],
    granularity: TrendGranularity = TrendGranularity.DAILY,
) -> List[AccuracyTrendPoint]:
    """Group automatic entries by day/week (Monday)/month, oldest first."""
    buckets: Dict[datetime, List[AuditEntry]] = {}
    for entry in entries:
        if not entry.was_automatic:
            continue
        buckets.setdefault(_period_start(entry.created_at, granularity), []).append(entry)

    return [
        AccuracyTrendPoint(period_start=start, metrics=calculate_confusion_matrix(buckets[start]))
        for start in sorted(buckets)
    ]


def metrics_by_reason(entries: Iterable[AuditEntry]) -> Dict[str, AccuracyMetrics]:
    grouped: Dict[str, List[AuditEntry]] = {}
    for entry in entries:
        if entry.was_automatic:
            grouped.setdefault(entry.reason.value, []).append(entry)
    return {reason: calculate_confusion_matrix(group) for reason, group in grouped.items()}


def threshold_analysis(
    entries: Iterable[AuditEntry],
    thresholds: Optional[List[float]] = None,
) -> List[ThresholdAnalysis]:
    """Replay scored positive decisions against candidate auto thresholds."""
    scored = [
        e for e in entries
        if e.was_automatic and e.confidence_score is not None
    ]
    if not scored:
        return []

    total_true = sum(
        1 for e in scored if e.decision in POSITIVE_DECISIONS and not e.is_false_positive
    )

    results = []
    for threshold in thresholds or ANALYSIS_THRESHOLDS:
        at_or_above = [e for e in scored if e.confidence_score >= threshold]
        tp = sum(1 for e in at_or_above if e.decision in POSITIVE_DECISIONS and not e.is_false_positive)
        fp = sum(1 for e in at_or_above if e.decision in POSITIVE_DECISIONS and e.is_false_positive)

        results.append(ThresholdAnalysis(
            threshold=threshold,
            total_at_or_above=len(at_or_above),
            true_positives=tp,
            false_positives=fp,
            precision=tp / (tp + fp) if (tp + fp) else 1.0,
            cumulative_recall=tp / total_true if total_true else 1.0,
        ))

    return results


class AccuracyMetricsService:
    """Tenant/date-scoped accuracy reporting on top of an AuditTrail."""

    def __init__(self, trail: AuditTrail):
        self.trail = trail

    def calculate_metrics(
        self,
        tenant_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> AccuracyMetrics:
        entries = self.trail.list_entries(tenant_id, from_date, to_date)
        return calculate_confusion_matrix(entries, from_date, to_date)

    def get_metrics_by_reason(
        self,
        tenant_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> Dict[str, AccuracyMetrics]:
        return metrics_by_reason(self.trail.list_entries(tenant_id, from_date, to_date))

    def get_accuracy_trend(
        self,
        tenant_id: str,
        from_date: datetime,
        to_date: datetime,
        granularity: TrendGranularity = TrendGranularity.DAILY,
    ) -> List[AccuracyTrendPoint]:
        return accuracy_trend(self.trail.list_entries(tenant_id, from_date, to_date), granularity)

    def get_threshold_analysis(
        self,
        tenant_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[ThresholdAnalysis]:
        return threshold_analysis(self.trail.list_entries(tenant_id, from_date, to_date))
