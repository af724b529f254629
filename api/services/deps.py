"""Dependency providers for the API routes.

Routes never build stores themselves; tests swap these providers out with
``app.dependency_overrides``.
"""

from fastapi import Depends

from core.audit.accuracy import AccuracyMetricsService
from core.audit.trail import AuditTrail
from dedup_engine.services import DeduplicationServices, get_services
from review_queue.manager import ReviewQueueManager


def get_dedup_services() -> DeduplicationServices:
    """Services bound to DEDUP_DB_PATH."""
    return get_services()


def get_review_manager(
    services: DeduplicationServices = Depends(get_dedup_services),
) -> ReviewQueueManager:
    return services.review_manager


def get_audit_trail(
    services: DeduplicationServices = Depends(get_dedup_services),
) -> AuditTrail:
    return services.audit_trail


def get_accuracy_service(
    services: DeduplicationServices = Depends(get_dedup_services),
) -> AccuracyMetricsService:
    return services.accuracy
