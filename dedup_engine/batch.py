"""Concurrent evaluation of candidate pairs.

Pairs are independent, so a batch is a bounded worker pool over the engine:
at most `max_concurrency` evaluations run at once, in no particular order.
A failed pair is recorded in the BatchResult and the rest continue.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.models import CandidatePair
from core.observability.logging import get_logger
from core.observability.metrics import record_processing_time
from core.settings import get_settings
from dedup_engine.engine import MatchDecisionEngine
from dedup_engine.models import DecisionOutcome, MatchDecision

logger = get_logger(__name__)


@dataclass
class PairFailure:
    source_listing_id: str
    target_listing_id: str
    error_type: str
    message: str


@dataclass
class BatchResult:
    """Aggregate of one batch run."""
    outcomes: List[DecisionOutcome] = field(default_factory=list)
    failures: List[PairFailure] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def evaluated(self) -> int:
        return len(self.outcomes)

    def count(self, decision: MatchDecision) -> int:
        return sum(1 for o in self.outcomes if o.decision == decision)

    @property
    def review_items_created(self) -> int:
        return sum(1 for o in self.outcomes if o.review_item is not None)

    def summary(self) -> Dict:
        return {
            "evaluated": self.evaluated,
            "failed": len(self.failures),
            "duplicates": self.count(MatchDecision.DUPLICATE),
            "near_matches": self.count(MatchDecision.NEAR_MATCH),
            "new_listings": self.count(MatchDecision.NEW_LISTING),
            "review_items_created": self.review_items_created,
            "duration_ms": round(self.duration_ms, 2),
        }


async def evaluate_pairs(
    engine: MatchDecisionEngine,
    pairs: List[CandidatePair],
    max_concurrency: Optional[int] = None,
) -> BatchResult:
    """
    Evaluate pairs concurrently.

    The engine is synchronous (sqlite3 collaborators), so each evaluation runs
    in a worker thread.

    Args:
        engine: Decision engine
        pairs: Candidate pairs
        max_concurrency: Parallel evaluations (defaults to DEDUP_MAX_CONCURRENCY)

    Returns:
        BatchResult with outcomes and per-pair failures
    """
    limit = max_concurrency or get_settings().max_concurrency
    semaphore = asyncio.Semaphore(max(1, limit))
    result = BatchResult()
    start = time.time()

    async def run(pair: CandidatePair):
        async with semaphore:
            try:
                outcome = await asyncio.to_thread(engine.evaluate_pair, pair)
                result.outcomes.append(outcome)
            except Exception as e:
                logger.warning(
                    f"Pair {pair.source.id}~{pair.target.id} failed: {e}",
                    extra_fields={"error_type": type(e).__name__},
                )
                result.failures.append(PairFailure(
                    source_listing_id=pair.source.id,
                    target_listing_id=pair.target.id,
                    error_type=type(e).__name__,
                    message=str(e),
                ))

    await asyncio.gather(*[run(pair) for pair in pairs])

    result.duration_ms = (time.time() - start) * 1000
    record_processing_time("batch", result.duration_ms)
    logger.info(f"Batch complete: {result.summary()}")
    return result
