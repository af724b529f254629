"""
Observability Module for the Deduplication Engine

Provides:
- Structured logging with correlation IDs (tenant, dealer, listing pair, batch)
- Metrics collection (decisions, reviews, activities, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_decision,
    record_review_created,
    record_review_resolved,
    record_review_conflict,
    record_activity_started,
    record_activity_completed,
    record_activity_failed,
    record_activity_retry,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_decision",
    "record_review_created",
    "record_review_resolved",
    "record_review_conflict",
    "record_activity_started",
    "record_activity_completed",
    "record_activity_failed",
    "record_activity_retry",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
