"""
Review Queue Tests

Validates human adjudication of near matches:
1. Queue ordering and paging (priority, then score, then age)
2. Resolution actions and the corrective audit entries they write
3. Exactly-once resolution (compare-and-set) under concurrent reviewers
4. Atomic resolution: a failed commit leaves the item Pending and retryable
5. Queue statistics and status-filtered listings
6. SQLite review store parity with the in-memory store
"""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest


def make_item(score, tenant_id="t-1", audit_entry_id=None, created_at=None, match_id=None):
    from review_queue import ReviewItem
    item = ReviewItem.create(
        tenant_id=tenant_id,
        duplicate_match_id=match_id or f"match-{score}",
        source_listing_id="L-1",
        target_listing_id="L-2",
        match_score=score,
        audit_entry_id=audit_entry_id,
    )
    if created_at is not None:
        item.created_at = created_at
    return item


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    """Review store, audit backend and match store sharing one backend."""
    from core.audit import InMemoryAuditBackend, SQLiteAuditBackend
    from dedup_engine import InMemoryMatchStore, SQLiteMatchStore
    from review_queue import InMemoryReviewStore, SQLiteReviewStore

    if request.param == "memory":
        review_store = InMemoryReviewStore()
        audit_backend = InMemoryAuditBackend()
        return review_store, audit_backend, InMemoryMatchStore(audit_backend, review_store)

    db_path = tmp_path / "reviews.db"
    return SQLiteReviewStore(db_path), SQLiteAuditBackend(db_path), SQLiteMatchStore(db_path)


@pytest.fixture
def review_store(backend):
    return backend[0]


@pytest.fixture
def audit_backend(backend):
    return backend[1]


@pytest.fixture
def match_store(backend):
    return backend[2]


@pytest.fixture
def manager(review_store, match_store):
    from review_queue import ReviewQueueManager
    return ReviewQueueManager(review_store, match_store)


def seed_automatic_entry(audit_backend):
    from core.audit import AuditDecision, AuditReason, create_automatic_entry
    entry = create_automatic_entry("t-1", "L-1", "L-2", AuditDecision.NEAR_MATCH, AuditReason.FUZZY_MATCH, 0.78)
    audit_backend.append(entry)
    return entry


def seed_near_match(match_store, score=0.78):
    """Commit a NearMatch decision the way the engine does: entry, match and review item."""
    from core.audit import AuditDecision, AuditReason, create_automatic_entry
    from dedup_engine import ConfidenceLevel, DecisionRecord, DuplicateMatch

    entry = create_automatic_entry("t-1", "L-1", "L-2", AuditDecision.NEAR_MATCH, AuditReason.FUZZY_MATCH, score)
    match = DuplicateMatch(
        tenant_id="t-1",
        source_listing_id="L-1",
        target_listing_id="L-2",
        overall_score=score,
        confidence=ConfidenceLevel.MEDIUM,
    )
    item = make_item(score, audit_entry_id=entry.id, match_id=match.id)
    match.link_to_review(item.id)
    match_store.commit_decision(DecisionRecord(audit_entry=entry, match=match, new_match=True, review_item=item))
    return entry, match, item

class TestReviewItem:

    def test_priority_from_score(self):
        assert make_item(0.93).priority == 1
        assert make_item(0.72).priority == 5

    def test_status_terminality(self):
        from review_queue import ReviewStatus
        assert not ReviewStatus.PENDING.is_terminal
        assert ReviewStatus.SKIPPED.is_terminal

    def test_action_targets(self):
        from review_queue import ResolutionAction, ReviewStatus
        assert ResolutionAction.CONFIRM_DUPLICATE.target_status == ReviewStatus.CONFIRMED_DUPLICATE
        assert ResolutionAction("skip").target_status == ReviewStatus.SKIPPED


class TestQueueOrdering:

    def test_priority_then_score_then_age(self, review_store, manager):
        now = datetime.utcnow()
        older = make_item(0.78, created_at=now - timedelta(hours=1), match_id="older")
        newer = make_item(0.78, created_at=now, match_id="newer")
        urgent = make_item(0.95)
        high_in_band = make_item(0.89)
        low_in_band = make_item(0.86)
        for item in (newer, low_in_band, older, urgent, high_in_band):
            review_store.add(item)

        ids = [i.id for i in manager.get_pending("t-1")]
        assert ids == [urgent.id, high_in_band.id, low_in_band.id, older.id, newer.id]

    def test_paging_and_priority_filter(self, review_store, manager):
        for score in (0.95, 0.87, 0.82, 0.77, 0.71):
            review_store.add(make_item(score))

        assert [i.match_score for i in manager.get_pending("t-1", skip=1, take=2)] == [0.87, 0.82]
        assert [i.priority for i in manager.get_by_priority("t-1", 2)] == [1, 2]
        assert [i.match_score for i in manager.get_by_priority("t-1", 4, skip=1, take=2)] == [0.87, 0.82]
        assert manager.get_by_priority("t-1", 4, skip=4) == []
        assert manager.pending_count("t-1") == 5

    def test_tenant_isolation(self, review_store, manager):
        item = make_item(0.8, tenant_id="t-2")
        review_store.add(item)

        assert manager.get_pending("t-1") == []
        assert manager.get_item("t-1", item.id) is None
        assert manager.get_item("t-2", item.id) is not None


class TestResolution:

    def test_confirm_duplicate_writes_correction(self, review_store, manager, audit_backend):
        from core.audit import AuditDecision, AuditReason
        from review_queue import Resolved, ReviewStatus
        original = seed_automatic_entry(audit_backend)
        item = make_item(0.78, audit_entry_id=original.id)
        review_store.add(item)

        result = manager.confirm_as_duplicate("t-1", item.id, "analyst", notes="Same stock number")

        assert isinstance(result, Resolved)
        assert result.item.status == ReviewStatus.CONFIRMED_DUPLICATE
        assert result.item.reviewed_by == "analyst"

        correction = audit_backend.get("t-1", result.corrective_audit_entry_id)
        assert correction.decision == AuditDecision.DUPLICATE
        assert correction.reason == AuditReason.MANUAL_REVIEW
        assert correction.override_reason == "Same stock number"
        assert correction.original_audit_entry_id == original.id
        assert not correction.was_automatic
        assert not audit_backend.get("t-1", original.id).is_false_positive

        stored = review_store.get("t-1", item.id)
        assert stored.status == ReviewStatus.CONFIRMED_DUPLICATE
        assert stored.reviewed_at is not None

    def test_not_duplicate_flags_original_false_positive(self, review_store, manager, audit_backend):
        from core.audit import AuditDecision
        original = seed_automatic_entry(audit_backend)
        item = make_item(0.78, audit_entry_id=original.id)
        review_store.add(item)

        result = manager.confirm_as_not_duplicate("t-1", item.id, "analyst")

        correction = audit_backend.get("t-1", result.corrective_audit_entry_id)
        assert correction.decision == AuditDecision.NEW_LISTING
        assert correction.override_reason == "Confirmed as not duplicate in review"
        assert audit_backend.get("t-1", original.id).is_false_positive

    def test_skip_records_manual_override(self, review_store, manager, audit_backend):
        from core.audit import AuditDecision
        from review_queue import ReviewStatus
        item = make_item(0.78)
        review_store.add(item)

        result = manager.skip("t-1", item.id, "analyst")

        assert result.item.status == ReviewStatus.SKIPPED
        correction = audit_backend.get("t-1", result.corrective_audit_entry_id)
        assert correction.decision == AuditDecision.MANUAL_OVERRIDE
        assert manager.pending_count("t-1") == 0

    def test_confirm_duplicate_confirms_match(self, manager, match_store):
        _, match, item = seed_near_match(match_store)

        manager.confirm_as_duplicate("t-1", item.id, "analyst")

        confirmed = match_store.get_match("t-1", match.id)
        assert confirmed.is_confirmed
        assert confirmed.confirmed_by == "analyst"

    def test_not_duplicate_leaves_match_unconfirmed(self, manager, match_store):
        _, match, item = seed_near_match(match_store)

        manager.confirm_as_not_duplicate("t-1", item.id, "analyst")

        assert not match_store.get_match("t-1", match.id).is_confirmed

    def test_second_resolution_is_already_resolved(self, review_store, manager, audit_backend):
        from review_queue import AlreadyResolved, ReviewStatus
        item = make_item(0.78)
        review_store.add(item)
        manager.confirm_as_duplicate("t-1", item.id, "first")
        entries_before = len(audit_backend.list_entries("t-1"))

        result = manager.confirm_as_not_duplicate("t-1", item.id, "second")

        assert isinstance(result, AlreadyResolved)
        assert result.item.status == ReviewStatus.CONFIRMED_DUPLICATE
        assert result.item.reviewed_by == "first"
        assert len(audit_backend.list_entries("t-1")) == entries_before

    def test_unknown_item(self, manager):
        from review_queue import ReviewNotFound
        assert isinstance(manager.skip("t-1", "missing", "analyst"), ReviewNotFound)

    def test_reviewer_required(self, review_store, manager):
        item = make_item(0.78)
        review_store.add(item)
        with pytest.raises(ValueError):
            manager.skip("t-1", item.id, "   ")
        assert manager.pending_count("t-1") == 1

    def test_concurrent_reviewers_resolve_once(self, review_store, manager, audit_backend):
        from review_queue import AlreadyResolved, Resolved
        item = make_item(0.78)
        review_store.add(item)

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(
                lambda n: manager.confirm_as_duplicate("t-1", item.id, f"reviewer-{n}"),
                range(6),
            ))

        assert sum(isinstance(r, Resolved) for r in results) == 1
        assert sum(isinstance(r, AlreadyResolved) for r in results) == 5
        # Exactly one corrective entry
        assert len(audit_backend.list_entries("t-1")) == 1

    def test_has_review_for_match(self, review_store, manager):
        review_store.add(make_item(0.8, match_id="match-7"))
        assert manager.has_review_for_match("t-1", "match-7")
        assert not manager.has_review_for_match("t-1", "match-8")


def flaky_audit_backend(failures=1):
    """In-memory audit backend whose first `failures` corrections raise."""
    from core.audit import InMemoryAuditBackend
    from core.errors import CollaboratorUnavailableError

    class FlakyAuditBackend(InMemoryAuditBackend):
        def append_correction(self, entry, mark_false_positive=False, mark_false_negative=False):
            if self.failures > 0:
                self.failures -= 1
                raise CollaboratorUnavailableError("audit store", "connection reset")
            super().append_correction(entry, mark_false_positive, mark_false_negative)

    backend = FlakyAuditBackend()
    backend.failures = failures
    return backend


class TestAtomicResolution:

    def test_failed_correction_leaves_item_pending_in_memory(self):
        from core.errors import CollaboratorUnavailableError
        from dedup_engine import InMemoryMatchStore
        from review_queue import InMemoryReviewStore, Resolved, ReviewQueueManager, ReviewStatus

        audit_backend = flaky_audit_backend()
        review_store = InMemoryReviewStore()
        match_store = InMemoryMatchStore(audit_backend, review_store)
        manager = ReviewQueueManager(review_store, match_store)
        original, _, item = seed_near_match(match_store)

        with pytest.raises(CollaboratorUnavailableError):
            manager.confirm_as_not_duplicate("t-1", item.id, "analyst")

        assert review_store.get("t-1", item.id).status == ReviewStatus.PENDING
        assert not audit_backend.get("t-1", original.id).is_false_positive
        assert len(audit_backend.list_entries("t-1")) == 1

        retry = manager.confirm_as_not_duplicate("t-1", item.id, "analyst")

        assert isinstance(retry, Resolved)
        assert audit_backend.get("t-1", retry.corrective_audit_entry_id) is not None
        assert audit_backend.get("t-1", original.id).is_false_positive
        assert review_store.get("t-1", item.id).status == ReviewStatus.CONFIRMED_NOT_DUPLICATE

    def test_failed_commit_rolls_back_sqlite(self, tmp_path, monkeypatch):
        import dedup_engine.store as match_store_module
        from core.audit import SQLiteAuditBackend
        from core.errors import CollaboratorUnavailableError
        from dedup_engine import SQLiteMatchStore
        from review_queue import Resolved, ReviewQueueManager, ReviewStatus, SQLiteReviewStore

        db_path = tmp_path / "dedup.db"
        match_store = SQLiteMatchStore(db_path)
        review_store = SQLiteReviewStore(db_path)
        audit_backend = SQLiteAuditBackend(db_path)
        manager = ReviewQueueManager(review_store, match_store)
        _, match, item = seed_near_match(match_store)

        real_confirm = match_store_module.confirm_match_row
        calls = {"n": 0}

        def confirm_fails_once(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise sqlite3.OperationalError("database is locked")
            return real_confirm(*args, **kwargs)

        monkeypatch.setattr(match_store_module, "confirm_match_row", confirm_fails_once)

        with pytest.raises(CollaboratorUnavailableError):
            manager.confirm_as_duplicate("t-1", item.id, "analyst")

        # Status change and corrective entry were rolled back with the failed confirmation
        assert review_store.get("t-1", item.id).status == ReviewStatus.PENDING
        assert len(audit_backend.list_entries("t-1")) == 1
        assert not match_store.get_match("t-1", match.id).is_confirmed

        retry = manager.confirm_as_duplicate("t-1", item.id, "analyst")

        assert isinstance(retry, Resolved)
        assert review_store.get("t-1", item.id).status == ReviewStatus.CONFIRMED_DUPLICATE
        assert audit_backend.get("t-1", retry.corrective_audit_entry_id) is not None
        assert match_store.get_match("t-1", match.id).is_confirmed

    def test_lost_race_writes_nothing(self, review_store, match_store, audit_backend):
        from review_queue import ResolutionCommit, ReviewStatus
        from core.audit import AuditDecision, AuditReason, create_manual_override_entry
        item = make_item(0.78)
        review_store.add(item)
        review_store.transition("t-1", item.id, ReviewStatus.SKIPPED, "first", None, datetime.utcnow())

        correction = create_manual_override_entry(
            "t-1", "L-1", "L-2", AuditDecision.DUPLICATE, AuditReason.MANUAL_REVIEW,
            "Late reviewer", None, "second",
        )
        committed = match_store.commit_resolution(ResolutionCommit(
            tenant_id="t-1",
            review_item_id=item.id,
            new_status=ReviewStatus.CONFIRMED_DUPLICATE,
            reviewed_by="second",
            notes=None,
            reviewed_at=datetime.utcnow(),
            correction=correction,
        ))

        assert not committed
        assert audit_backend.get("t-1", correction.id) is None
        assert review_store.get("t-1", item.id).reviewed_by == "first"


class TestQueueStats:

    def test_counts_by_status_and_priority(self, review_store, manager):
        for score in (0.95, 0.93, 0.87, 0.72):
            review_store.add(make_item(score))
        skipped = make_item(0.81)
        review_store.add(skipped)
        review_store.add(make_item(0.9, tenant_id="t-2"))
        manager.skip("t-1", skipped.id, "analyst")

        stats = manager.get_stats("t-1")

        assert stats.total_count == 5
        assert stats.pending_count == 4
        assert stats.resolved_count == 1
        assert stats.by_status["Skipped"] == 1
        assert stats.by_status["ConfirmedDuplicate"] == 0
        assert stats.pending_by_priority == {1: 2, 2: 1, 5: 1}
        assert stats.average_match_score == pytest.approx((0.95 + 0.93 + 0.87 + 0.72 + 0.81) / 5, abs=1e-4)

    def test_empty_queue(self, manager):
        stats = manager.get_stats("t-1")
        assert stats.total_count == 0
        assert stats.pending_count == 0
        assert stats.pending_by_priority == {}
        assert stats.average_match_score == 0.0

    def test_list_by_status(self, review_store, manager):
        from review_queue import ReviewStatus
        first, second, third = make_item(0.95), make_item(0.85), make_item(0.75)
        for item in (first, second, third):
            review_store.add(item)
        manager.confirm_as_duplicate("t-1", second.id, "analyst")

        pending = manager.list_items("t-1", status=ReviewStatus.PENDING)
        confirmed = manager.list_items("t-1", status=ReviewStatus.CONFIRMED_DUPLICATE)
        everything = manager.list_items("t-1")

        assert [i.id for i in pending] == [first.id, third.id]
        assert [i.id for i in confirmed] == [second.id]
        assert [i.id for i in everything] == [first.id, second.id, third.id]
        assert [i.id for i in manager.list_items("t-1", skip=1, take=1)] == [second.id]
