"""Start a deduplication batch workflow.

Reads candidate pairs from a JSON file shaped as
[{"source": {...listing...}, "target": {...listing...}}, ...],
starts DeduplicationBatchWorkflow and prints the decision summary.
"""

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.models.listing import CandidatePair
from core.settings import get_settings
from temporal_client import get_temporal_client
from workflows.deduplication_workflow import DeduplicationBatchWorkflow, DeduplicationBatchInput


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def load_pairs(pairs_path: Path) -> list:
    """Load and validate candidate pairs; all must belong to one tenant."""
    raw = json.loads(pairs_path.read_text())
    pairs = [CandidatePair.model_validate(p) for p in raw]
    tenants = {p.tenant_id for p in pairs}
    if len(tenants) > 1:
        raise ValueError(f"Batch spans several tenants: {sorted(tenants)}")
    return [p.model_dump(mode="json") for p in pairs]


async def start_dedup_batch(pairs_path: Path, chunk_size: int = 20, queue: str = None):
    """Start the batch workflow and wait for its output."""
    pairs = load_pairs(pairs_path)
    if not pairs:
        raise ValueError(f"No pairs in {pairs_path}")

    batch_id = f"dedup-{uuid.uuid4().hex[:8]}"
    task_queue = queue or get_settings().task_queue
    logger.info(f"Starting batch {batch_id} with {len(pairs)} pairs...")

    try:
        client = await get_temporal_client()
        logger.info(f"Connected to Temporal: {client.namespace}")

        handle = await client.start_workflow(
            DeduplicationBatchWorkflow.run,
            DeduplicationBatchInput(
                batch_id=batch_id,
                tenant_id=pairs[0]["source"]["tenant_id"],
                pairs=pairs,
                chunk_size=chunk_size,
            ),
            task_queue=task_queue,
            id=batch_id,
        )
        logger.info(f"Workflow started: {handle.id}")

        result = await handle.result()
        logger.info("Workflow completed successfully")
        return result

    except Exception as e:
        logger.error(f"Workflow failed: {e}", exc_info=True)
        raise


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Start a deduplication batch")
    parser.add_argument("pairs", type=Path, help="JSON file of candidate pairs")
    parser.add_argument("--chunk-size", type=int, default=20, help="Concurrent evaluations per chunk")
    parser.add_argument("--queue", "-q", default=None, help="Task queue (default: DEDUP_TASK_QUEUE)")
    args = parser.parse_args()

    try:
        result = asyncio.run(start_dedup_batch(args.pairs, args.chunk_size, args.queue))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Batch {result.batch_id}: {result.evaluated} evaluated")
    print(f"  Duplicates:   {result.duplicates}")
    print(f"  Near matches: {result.near_matches}")
    print(f"  New listings: {result.new_listings}")
    print(f"  Review items: {len(result.review_item_ids)}")
    for failure in result.failures:
        print(f"  FAILED {failure.source_listing_id} -> {failure.target_listing_id}: {failure.error}")
    return 1 if result.failures else 0


if __name__ == "__main__":
    sys.exit(main())
