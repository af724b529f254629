"""API Services Package."""

from api.services.deps import (
    get_dedup_services,
    get_review_manager,
    get_audit_trail,
    get_accuracy_service,
)

__all__ = [
    "get_dedup_services",
    "get_review_manager",
    "get_audit_trail",
    "get_accuracy_service",
]
