"""SQLite-backed service wiring shared by the Temporal activities and the API.

All stores point at one database file so the match store's per-pair and
per-resolution transactions cover the audit_entries, duplicate_matches and
review_items tables together.
"""

from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Dict, Optional

from core.audit.accuracy import AccuracyMetricsService
from core.audit.backends import SQLiteAuditBackend
from core.audit.trail import AuditTrail
from core.settings import get_settings
from dedup_config.resolver import DealerRuleResolver
from dedup_config.store import SQLiteConfigStore
from dedup_engine.engine import MatchDecisionEngine
from dedup_engine.events import LoggingEventSink
from dedup_engine.store import SQLiteMatchStore
from review_queue.manager import ReviewQueueManager
from review_queue.store import SQLiteReviewStore


@dataclass
class DeduplicationServices:
    """Wired collaborators for one database."""
    config_store: SQLiteConfigStore
    match_store: SQLiteMatchStore
    audit_trail: AuditTrail
    review_manager: ReviewQueueManager
    engine: MatchDecisionEngine
    accuracy: AccuracyMetricsService


def build_sqlite_services(db_path: Path) -> DeduplicationServices:
    """Create every store on db_path and wire the engine and review manager."""
    config_store = SQLiteConfigStore(db_path)
    match_store = SQLiteMatchStore(db_path)
    audit_trail = AuditTrail(SQLiteAuditBackend(db_path))

    engine = MatchDecisionEngine(
        DealerRuleResolver(config_store),
        match_store,
        event_sink=LoggingEventSink(),
    )
    review_manager = ReviewQueueManager(SQLiteReviewStore(db_path), match_store)
    return DeduplicationServices(
        config_store=config_store,
        match_store=match_store,
        audit_trail=audit_trail,
        review_manager=review_manager,
        engine=engine,
        accuracy=AccuracyMetricsService(audit_trail),
    )


_services: Dict[str, DeduplicationServices] = {}
_services_lock = Lock()


def get_services(db_path: Optional[Path] = None) -> DeduplicationServices:
    """Cached services for db_path (defaults to DEDUP_DB_PATH)."""
    path = Path(db_path or get_settings().db_path)
    key = str(path.resolve())
    with _services_lock:
        if key not in _services:
            _services[key] = build_sqlite_services(path)
        return _services[key]


def reset_services() -> None:
    with _services_lock:
        _services.clear()
