"""Deduplication events - one-way notifications for downstream consumers.

Publishing is fire-and-forget: a sink that raises is logged and ignored so a
notification problem never changes a decision.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.observability.logging import get_logger

logger = get_logger(__name__)


class DeduplicationEventType(str, Enum):
    DUPLICATE_FOUND = "DuplicateFound"
    REVIEW_REQUIRED = "ReviewRequired"
    DEDUPLICATION_COMPLETED = "DeduplicationCompleted"


class DeduplicationEvent(BaseModel):
    """A decision notification."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: DeduplicationEventType
    tenant_id: str
    source_listing_id: str
    target_listing_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)


def duplicate_found(
    tenant_id: str,
    source_listing_id: str,
    target_listing_id: str,
    match_id: str,
    reason: str,
    score: Optional[float],
) -> DeduplicationEvent:
    return DeduplicationEvent(
        event_type=DeduplicationEventType.DUPLICATE_FOUND,
        tenant_id=tenant_id,
        source_listing_id=source_listing_id,
        target_listing_id=target_listing_id,
        details={"duplicate_match_id": match_id, "reason": reason, "score": score},
    )


def review_required(
    tenant_id: str,
    source_listing_id: str,
    target_listing_id: str,
    review_item_id: str,
    priority: int,
    score: float,
) -> DeduplicationEvent:
    return DeduplicationEvent(
        event_type=DeduplicationEventType.REVIEW_REQUIRED,
        tenant_id=tenant_id,
        source_listing_id=source_listing_id,
        target_listing_id=target_listing_id,
        details={"review_item_id": review_item_id, "priority": priority, "score": score},
    )


def deduplication_completed(
    tenant_id: str,
    source_listing_id: str,
    pairs_evaluated: int,
    duplicates: int,
    near_matches: int,
) -> DeduplicationEvent:
    return DeduplicationEvent(
        event_type=DeduplicationEventType.DEDUPLICATION_COMPLETED,
        tenant_id=tenant_id,
        source_listing_id=source_listing_id,
        details={
            "pairs_evaluated": pairs_evaluated,
            "duplicates": duplicates,
            "near_matches": near_matches,
        },
    )


# =============================================================================
# Sinks
# =============================================================================

class EventSink(ABC):
    """Abstract event sink."""

    @abstractmethod
    def publish(self, event: DeduplicationEvent) -> None:
        pass


class InMemoryEventSink(EventSink):
    """Collects events for tests."""

    def __init__(self):
        self.events: List[DeduplicationEvent] = []
        self._lock = Lock()

    def publish(self, event):
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: DeduplicationEventType) -> List[DeduplicationEvent]:
        return [e for e in self.events if e.event_type == event_type]


class LoggingEventSink(EventSink):
    """Writes each event as a structured log line."""

    def publish(self, event):
        logger.info(
            f"Event {event.event_type.value} for {event.source_listing_id}",
            extra_fields={"event": event.model_dump(mode="json")},
        )


def publish_safely(sink: Optional[EventSink], event: DeduplicationEvent) -> None:
    """Publish without letting sink failures escape."""
    if sink is None:
        return
    try:
        sink.publish(event)
    except Exception as e:
        logger.warning(
            f"Event sink failed for {event.event_type.value}: {e}",
            extra_fields={"event_id": event.id},
        )
