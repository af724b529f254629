"""Deduplication engine - scoring, classification and adjudication of candidate pairs.

Usage:
    from dedup_engine import MatchDecisionEngine, InMemoryMatchStore
    from dedup_config import DealerRuleResolver, InMemoryConfigStore

    engine = MatchDecisionEngine(DealerRuleResolver(InMemoryConfigStore()), InMemoryMatchStore())
    outcome = engine.evaluate_pair(CandidatePair(source=incoming, target=existing))
"""

from dedup_engine.models import (
    ConfidenceLevel,
    MatchDecision,
    ScoreBreakdown,
    MatchScore,
    DuplicateMatch,
    DecisionRecord,
    DecisionOutcome,
)
from dedup_engine.classifier import classify_confidence, determine_decision, review_priority
from dedup_engine.scorer import MatchScorer, composite_score
from dedup_engine.store import MatchStore, InMemoryMatchStore, SQLiteMatchStore, init_match_db
from dedup_engine.events import (
    DeduplicationEvent,
    DeduplicationEventType,
    EventSink,
    InMemoryEventSink,
    LoggingEventSink,
)
from dedup_engine.engine import MatchDecisionEngine
from dedup_engine.batch import BatchResult, PairFailure, evaluate_pairs

__all__ = [
    # Models
    "ConfidenceLevel",
    "MatchDecision",
    "ScoreBreakdown",
    "MatchScore",
    "DuplicateMatch",
    "DecisionRecord",
    "DecisionOutcome",
    # Classification
    "classify_confidence",
    "determine_decision",
    "review_priority",
    # Scoring
    "MatchScorer",
    "composite_score",
    # Persistence
    "MatchStore",
    "InMemoryMatchStore",
    "SQLiteMatchStore",
    "init_match_db",
    # Events
    "DeduplicationEvent",
    "DeduplicationEventType",
    "EventSink",
    "InMemoryEventSink",
    "LoggingEventSink",
    # Orchestration
    "MatchDecisionEngine",
    "BatchResult",
    "PairFailure",
    "evaluate_pairs",
]
