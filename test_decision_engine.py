"""
Decision Engine Tests

End-to-end adjudication of candidate pairs against in-memory and SQLite
collaborators:
1. Key matches, near matches and new listings produce the right records
2. Existing matches are reused and never get a second review item
3. Dealer rules change the outcome and are reported on it
4. Events are fire-and-forget
5. Per-pair commits are atomic in SQLite
"""

from decimal import Decimal

import pytest


VIN = "1HGCM82633A004352"


def make_listing(listing_id, tenant_id="t-1", **overrides):
    from core.models import Listing
    data = {"id": listing_id, "tenant_id": tenant_id, "dealer_id": "dealer-9"}
    data.update(overrides)
    return Listing(**data)


def camry(listing_id, trim="LE", price="25000"):
    return make_listing(listing_id, title=f"2020 Toyota Camry {trim}", price=Decimal(price))


def pair(source, target):
    from core.models import CandidatePair
    return CandidatePair(source=source, target=target)


@pytest.fixture
def wiring():
    """In-memory engine plus its peers."""
    from core.audit import AuditTrail, InMemoryAuditBackend
    from dedup_config import DealerRuleResolver, InMemoryConfigStore
    from dedup_engine import InMemoryEventSink, InMemoryMatchStore, MatchDecisionEngine
    from review_queue import InMemoryReviewStore, ReviewQueueManager

    audit_backend = InMemoryAuditBackend()
    review_store = InMemoryReviewStore()
    match_store = InMemoryMatchStore(audit_backend, review_store)
    config_store = InMemoryConfigStore()
    sink = InMemoryEventSink()
    engine = MatchDecisionEngine(DealerRuleResolver(config_store), match_store, event_sink=sink)
    trail = AuditTrail(audit_backend)

    class Wiring:
        pass

    w = Wiring()
    w.engine = engine
    w.match_store = match_store
    w.review_store = review_store
    w.config_store = config_store
    w.audit_backend = audit_backend
    w.trail = trail
    w.sink = sink
    w.manager = ReviewQueueManager(review_store, match_store)
    return w


class TestDecisions:

    def test_vin_match_is_duplicate_without_review(self, wiring):
        from core.audit import AuditDecision, AuditReason
        from dedup_engine import DeduplicationEventType, MatchDecision

        outcome = wiring.engine.evaluate_pair(pair(
            make_listing("L-1", vin=VIN, title="Camry"),
            make_listing("L-2", vin=VIN.lower(), title="Accord"),
        ))

        assert outcome.decision == MatchDecision.DUPLICATE
        assert outcome.reason == AuditReason.VIN_MATCH
        assert outcome.review_item is None
        assert outcome.match.overall_score == 1.0
        assert outcome.confidence_score is None
        assert outcome.audit_entry.decision == AuditDecision.DUPLICATE
        assert outcome.audit_entry.was_automatic

        assert wiring.match_store.get_match("t-1", outcome.match.id) is not None
        found = wiring.sink.of_type(DeduplicationEventType.DUPLICATE_FOUND)
        assert len(found) == 1
        assert found[0].details["duplicate_match_id"] == outcome.match.id

    def test_vin_match_despite_price_and_attribute_conflicts(self, wiring):
        from core.audit import AuditReason
        from dedup_engine import MatchDecision
        vin = "1HGCM82633A123456"

        outcome = wiring.engine.evaluate_pair(pair(
            make_listing("L-1", vin=vin, year=2020, make="Honda", price=Decimal("30000")),
            make_listing("L-2", vin=vin, year=2019, make="Acura", price=Decimal("35000")),
        ))

        assert outcome.decision == MatchDecision.DUPLICATE
        assert outcome.reason == AuditReason.VIN_MATCH
        assert outcome.review_item is None

    def test_near_match_enqueues_review(self, wiring):
        from core.audit import AuditReason
        from dedup_engine import DeduplicationEventType, MatchDecision

        outcome = wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))

        assert outcome.decision == MatchDecision.NEAR_MATCH
        assert outcome.reason == AuditReason.FUZZY_MATCH
        assert outcome.review_item is not None
        assert outcome.review_item.priority == 5
        assert outcome.review_item.audit_entry_id == outcome.audit_entry.id
        assert outcome.confidence_score == pytest.approx(outcome.score.overall_score)

        stored = wiring.match_store.get_match("t-1", outcome.match.id)
        assert stored.review_item_id == outcome.review_item.id
        assert wiring.manager.pending_count("t-1") == 1
        assert len(wiring.sink.of_type(DeduplicationEventType.REVIEW_REQUIRED)) == 1

    def test_unrelated_listing_is_new(self, wiring):
        from core.audit import AuditReason
        from dedup_engine import MatchDecision

        outcome = wiring.engine.evaluate_pair(pair(
            camry("L-1"),
            make_listing("L-2", title="2015 Ford F-150 XLT", price=Decimal("60000")),
        ))

        assert outcome.decision == MatchDecision.NEW_LISTING
        assert outcome.reason == AuditReason.NO_MATCH
        assert outcome.match is None
        assert outcome.review_item is None
        assert outcome.audit_entry.confidence_score is not None
        assert wiring.match_store.list_matches("t-1") == []

    def test_every_evaluation_writes_one_audit_entry(self, wiring):
        wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))
        wiring.engine.evaluate_pair(pair(camry("L-1"), make_listing("L-3", title="Ford")))

        assert len(wiring.trail.list_entries("t-1")) == 2
        assert len(wiring.trail.get_entries_for_listing("t-1", "L-3")) == 1

    def test_outcome_serializes(self, wiring):
        outcome = wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))
        data = outcome.to_dict()
        assert data["decision"] == "NearMatch"
        assert data["review_item_id"] == outcome.review_item.id
        assert data["duplicate_match_id"] == outcome.match.id


class TestMatchReuse:

    def test_reverse_order_reuses_match_and_review(self, wiring):
        first = wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))
        second = wiring.engine.evaluate_pair(pair(camry("L-2", "SE", "25750"), camry("L-1")))

        assert second.match.id == first.match.id
        assert second.review_item is None
        assert len(wiring.match_store.list_matches("t-1")) == 1
        assert wiring.manager.pending_count("t-1") == 1
        assert len(wiring.trail.list_entries("t-1")) == 2

    def test_resolved_review_not_recreated(self, wiring):
        first = wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))
        wiring.manager.skip("t-1", first.review_item.id, "analyst")

        again = wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))

        assert again.review_item is None
        assert wiring.manager.pending_count("t-1") == 0


class TestValidation:

    def test_cross_tenant_pair_rejected(self, wiring):
        with pytest.raises(ValueError):
            wiring.engine.evaluate_pair(pair(camry("L-1"), make_listing("L-2", tenant_id="t-2")))
        assert wiring.trail.list_entries("t-1") == []

    def test_self_pair_rejected(self, wiring):
        with pytest.raises(ValueError):
            wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-1")))

    def test_ambiguous_config_propagates(self, wiring):
        from core.errors import AmbiguousConfigError
        from dedup_config import DeduplicationConfig
        wiring.config_store.save_config(DeduplicationConfig(tenant_id="t-1"))
        wiring.config_store.save_config(DeduplicationConfig(tenant_id="t-1"))

        with pytest.raises(AmbiguousConfigError):
            wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2")))


class TestDealerRules:

    def test_strict_vin_rule_rejects_mismatched_vins(self, wiring):
        from core.audit import AuditReason
        from dedup_config import DealerDeduplicationRule
        from dedup_engine import MatchDecision
        rule = DealerDeduplicationRule.strict_vin_only("t-1", "dealer-9")
        wiring.config_store.save_rule(rule)

        outcome = wiring.engine.evaluate_pair(pair(
            make_listing("L-1", vin=VIN, title="2020 Toyota Camry LE"),
            make_listing("L-2", vin="WBA3A5C55CF256789", title="2020 Toyota Camry LE"),
        ))

        assert outcome.decision == MatchDecision.NEW_LISTING
        assert outcome.reason == AuditReason.NO_MATCH
        assert outcome.confidence_score is None
        assert outcome.applied_rule_id == rule.id

    def test_relaxed_rule_promotes_near_match(self, wiring):
        from dedup_config import DealerDeduplicationRule
        from dedup_engine import MatchDecision
        rule = DealerDeduplicationRule.relaxed("t-1", "dealer-9")
        rule.set_thresholds(auto_match_threshold=70, review_threshold=50)
        wiring.config_store.save_rule(rule)

        outcome = wiring.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))

        assert outcome.decision == MatchDecision.DUPLICATE
        assert outcome.review_item is None

    def test_rule_deleted_mid_resolution_still_decides(self, wiring):
        from dedup_config import DealerDeduplicationRule, DealerRuleResolver, InMemoryConfigStore
        from dedup_engine import MatchDecision, MatchDecisionEngine

        class VanishingRuleStore(InMemoryConfigStore):
            """Deletes each rule right after handing it out."""

            def list_rules(self, *args, **kwargs):
                rules = super().list_rules(*args, **kwargs)
                for rule in rules:
                    self.delete_rule(rule.tenant_id, rule.id)
                return rules

        store = VanishingRuleStore()
        rule = DealerDeduplicationRule.relaxed("t-1", "dealer-9")
        rule.set_thresholds(auto_match_threshold=70, review_threshold=50)
        store.save_rule(rule)
        engine = MatchDecisionEngine(DealerRuleResolver(store), wiring.match_store)

        outcome = engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))

        assert outcome.decision == MatchDecision.DUPLICATE
        assert outcome.applied_rule_id == rule.id
        assert wiring.audit_backend.get("t-1", outcome.audit_entry.id) is not None
        assert store.get_rule("t-1", rule.id) is None


class TestEvents:

    def test_evaluate_listing_skips_itself_and_reports_completion(self, wiring):
        from dedup_engine import DeduplicationEventType
        listing = camry("L-1")

        outcomes = wiring.engine.evaluate_listing(listing, [
            listing,
            camry("L-2", "SE", "25750"),
            make_listing("L-3", title="2015 Ford F-150 XLT", price=Decimal("60000")),
        ])

        assert len(outcomes) == 2
        completed = wiring.sink.of_type(DeduplicationEventType.DEDUPLICATION_COMPLETED)
        assert completed[0].details == {"pairs_evaluated": 2, "duplicates": 0, "near_matches": 1}

    def test_sink_failure_does_not_fail_decision(self, wiring):
        from dedup_engine import EventSink, MatchDecision

        class BrokenSink(EventSink):
            def publish(self, event):
                raise RuntimeError("broker down")

        wiring.engine.event_sink = BrokenSink()
        outcome = wiring.engine.evaluate_pair(pair(
            make_listing("L-1", vin=VIN),
            make_listing("L-2", vin=VIN),
        ))

        assert outcome.decision == MatchDecision.DUPLICATE
        assert wiring.match_store.get_match("t-1", outcome.match.id) is not None


class TestSQLiteEngine:

    def test_near_match_then_review_confirms_match(self, tmp_path):
        from dedup_engine import MatchDecision
        from dedup_engine.services import build_sqlite_services
        from review_queue import Resolved
        services = build_sqlite_services(tmp_path / "dedup.db")

        outcome = services.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))
        assert outcome.decision == MatchDecision.NEAR_MATCH

        pending = services.review_manager.get_pending("t-1")
        assert [i.id for i in pending] == [outcome.review_item.id]
        assert services.audit_trail.get_entry("t-1", outcome.audit_entry.id) is not None

        result = services.review_manager.confirm_as_duplicate("t-1", outcome.review_item.id, "analyst")
        assert isinstance(result, Resolved)

        match = services.match_store.get_match("t-1", outcome.match.id)
        assert match.is_confirmed
        assert match.confirmed_by == "analyst"
        assert match.review_item_id == outcome.review_item.id

    def test_reuse_persists_across_connections(self, tmp_path):
        from dedup_engine.services import build_sqlite_services
        services = build_sqlite_services(tmp_path / "dedup.db")

        first = services.engine.evaluate_pair(pair(camry("L-1"), camry("L-2", "SE", "25750")))
        second = services.engine.evaluate_pair(pair(camry("L-2", "SE", "25750"), camry("L-1")))

        assert second.match.id == first.match.id
        assert services.review_manager.pending_count("t-1") == 1

    def test_commit_is_atomic(self, tmp_path):
        from core.audit import SQLiteAuditBackend, create_automatic_entry, AuditDecision, AuditReason
        from core.errors import CollaboratorUnavailableError
        from dedup_engine import ConfidenceLevel, DecisionRecord, DuplicateMatch, SQLiteMatchStore
        from review_queue import ReviewItem
        db_path = tmp_path / "dedup.db"
        store = SQLiteMatchStore(db_path)

        def record(source_id):
            entry = create_automatic_entry(
                "t-1", source_id, "L-9", AuditDecision.NEAR_MATCH, AuditReason.FUZZY_MATCH, 0.75,
            )
            match = DuplicateMatch(
                tenant_id="t-1", source_listing_id=source_id, target_listing_id="L-9",
                overall_score=0.75, confidence=ConfidenceLevel.MEDIUM,
            )
            return DecisionRecord(audit_entry=entry, match=match, new_match=True)

        first = record("L-1")
        item = ReviewItem.create(
            tenant_id="t-1", duplicate_match_id=first.match.id, source_listing_id="L-1",
            target_listing_id="L-9", match_score=0.75, audit_entry_id=first.audit_entry.id,
        )
        first.review_item = item
        store.commit_decision(first)

        # Same review item id again: the insert fails after the audit and match rows
        second = record("L-2")
        second.review_item = item
        with pytest.raises(CollaboratorUnavailableError):
            store.commit_decision(second)

        audit = SQLiteAuditBackend(db_path)
        assert audit.get("t-1", first.audit_entry.id) is not None
        assert audit.get("t-1", second.audit_entry.id) is None
        assert store.get_match("t-1", second.match.id) is None
