"""
Match Decision Engine

Adjudicates candidate pairs:
1. Resolve the effective config (tenant config + dealer rule)
2. Score the pair
3. Apply thresholds → NewListing / Duplicate / NearMatch
4. Commit audit entry, DuplicateMatch and ReviewItem through the match store
5. Publish events (fire-and-forget)

The engine performs no retries. Collaborator failures propagate as
CollaboratorUnavailableError for the caller (or Temporal) to retry.
"""

import time
from typing import List, Optional, Tuple

from core.audit.entries import AuditReason, create_automatic_entry
from core.models import CandidatePair, Listing
from core.observability.logging import get_logger, log_decision, with_correlation
from core.observability.metrics import record_decision, record_review_created
from dedup_config.models import EffectiveConfig
from dedup_config.resolver import DealerRuleResolver
from dedup_engine.classifier import determine_decision
from dedup_engine.events import (
    EventSink,
    deduplication_completed,
    duplicate_found,
    publish_safely,
    review_required,
)
from dedup_engine.models import (
    DecisionOutcome,
    DecisionRecord,
    DuplicateMatch,
    MatchDecision,
    MatchScore,
)
from dedup_engine.scorer import MatchScorer
from dedup_engine.store import MatchStore
from review_queue.models import ReviewItem

logger = get_logger(__name__)

KEY_MATCH_SCORE = 1.0


class MatchDecisionEngine:
    """
    Orchestrates scoring, classification and persistence for candidate pairs.

    Usage:
        engine = MatchDecisionEngine(DealerRuleResolver(config_store), SQLiteMatchStore(db_path))
        outcome = engine.evaluate_pair(CandidatePair(source=new_listing, target=existing))
        outcome.decision, outcome.reason, outcome.review_item
    """

    def __init__(
        self,
        resolver: DealerRuleResolver,
        store: MatchStore,
        scorer: Optional[MatchScorer] = None,
        event_sink: Optional[EventSink] = None,
    ):
        self.resolver = resolver
        self.store = store
        self.scorer = scorer or MatchScorer()
        self.event_sink = event_sink

    def evaluate_pair(self, pair: CandidatePair) -> DecisionOutcome:
        """
        Evaluate one candidate pair and commit its decision.

        Args:
            pair: Source (incoming) and target (existing) listings

        Returns:
            DecisionOutcome with the audit entry and any match/review item

        Raises:
            ValueError: If the listings belong to different tenants or are the same listing
            AmbiguousConfigError: If the tenant has several active configs
            CollaboratorUnavailableError: If the config or match store failed
        """
        source, target = pair.source, pair.target
        if source.tenant_id != target.tenant_id:
            raise ValueError(f"Listings {source.id} and {target.id} belong to different tenants")
        if source.id == target.id:
            raise ValueError(f"Cannot compare listing {source.id} with itself")

        tenant_id = pair.tenant_id
        start = time.time()

        with with_correlation(
            tenant_id=tenant_id,
            dealer_id=source.dealer_id,
            source_listing_id=source.id,
            target_listing_id=target.id,
            stage="evaluate",
        ):
            config = self.resolver.resolve(tenant_id, source.dealer_id, source)
            score = self.scorer.score(source, target, config)
            decision, reason = self._decide(score, config)

            entry = create_automatic_entry(
                tenant_id,
                source.id,
                target.id,
                decision.audit_decision,
                reason,
                confidence_score=None if score.is_key_decision else score.overall_score,
                score_breakdown_json=score.breakdown_json(),
            )
            record = DecisionRecord(audit_entry=entry)
            match = None

            if decision in (MatchDecision.DUPLICATE, MatchDecision.NEAR_MATCH):
                match = self._attach_match(record, source, target, score)
                if decision == MatchDecision.NEAR_MATCH:
                    self._attach_review(record, match, score)

            self.store.commit_decision(record)

            duration_ms = (time.time() - start) * 1000
            record_decision(decision.value, reason.value, score.confidence.value, duration_ms)
            if record.review_item is not None:
                record_review_created(record.review_item.priority)

            log_decision(
                decision.value,
                reason.value,
                score.overall_score,
                confidence=score.confidence.value,
                applied_rule_id=config.applied_rule_id,
                audit_entry_id=entry.id,
            )

            self._publish(tenant_id, source, target, decision, reason, score, match, record.review_item)

        return DecisionOutcome(
            decision=decision,
            reason=reason,
            score=score,
            audit_entry=entry,
            match=match,
            review_item=record.review_item,
            applied_rule_id=config.applied_rule_id,
        )

    def evaluate_listing(self, listing: Listing, candidates: List[Listing]) -> List[DecisionOutcome]:
        """Evaluate a listing against each candidate, skipping itself.

        Publishes DeduplicationCompleted once every pair has been committed.
        """
        outcomes = []
        for candidate in candidates:
            if candidate.id == listing.id:
                continue
            outcomes.append(self.evaluate_pair(CandidatePair(source=listing, target=candidate)))

        publish_safely(self.event_sink, deduplication_completed(
            listing.tenant_id,
            listing.id,
            pairs_evaluated=len(outcomes),
            duplicates=sum(1 for o in outcomes if o.decision == MatchDecision.DUPLICATE),
            near_matches=sum(1 for o in outcomes if o.decision == MatchDecision.NEAR_MATCH),
        ))
        return outcomes

    # =========================================================================
    # Decision
    # =========================================================================

    def _decide(self, score: MatchScore, config: EffectiveConfig) -> Tuple[MatchDecision, AuditReason]:
        if score.key_match:
            return MatchDecision.DUPLICATE, score.reason
        if score.key_non_match:
            return MatchDecision.NEW_LISTING, AuditReason.NO_MATCH

        decision = determine_decision(
            score.overall_score,
            config.overall_match_threshold,
            config.review_threshold,
            score.image_gate_failed,
        )
        if decision == MatchDecision.NEW_LISTING:
            return decision, AuditReason.NO_MATCH
        return decision, score.reason

    def _attach_match(
        self,
        record: DecisionRecord,
        source: Listing,
        target: Listing,
        score: MatchScore,
    ) -> DuplicateMatch:
        """Reuse the pair's existing match (either order) or create one."""
        existing = self.store.find_match_for_pair(source.tenant_id, source.id, target.id)
        if existing is not None:
            logger.debug(f"Reusing duplicate match {existing.id}")
            return existing

        match = DuplicateMatch(
            tenant_id=source.tenant_id,
            source_listing_id=source.id,
            target_listing_id=target.id,
            overall_score=KEY_MATCH_SCORE if score.key_match else score.overall_score,
            confidence=score.confidence,
            breakdown=score.breakdown,
        )
        record.match = match
        record.new_match = True
        return match

    def _attach_review(self, record: DecisionRecord, match: DuplicateMatch, score: MatchScore) -> None:
        """Enqueue a review item unless the match is already linked to one."""
        if match.review_item_id is not None:
            logger.debug(f"Match {match.id} already has review item {match.review_item_id}")
            return

        item = ReviewItem.create(
            tenant_id=match.tenant_id,
            duplicate_match_id=match.id,
            source_listing_id=record.audit_entry.source_listing_id,
            target_listing_id=record.audit_entry.target_listing_id,
            match_score=score.overall_score,
            audit_entry_id=record.audit_entry.id,
        )
        match.link_to_review(item.id)
        record.match = match
        record.review_item = item

    def _publish(self, tenant_id, source, target, decision, reason, score, match, review_item) -> None:
        if decision == MatchDecision.DUPLICATE and match is not None:
            publish_safely(self.event_sink, duplicate_found(
                tenant_id,
                source.id,
                target.id,
                match.id,
                reason.value,
                score.overall_score,
            ))
        elif review_item is not None:
            publish_safely(self.event_sink, review_required(
                tenant_id,
                source.id,
                target.id,
                review_item.id,
                review_item.priority,
                review_item.match_score,
            ))
