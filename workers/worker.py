"""Worker for the deduplication service.

Connects to Temporal, listens on the deduplication task queue and executes
the batch workflow and its activities.

Run with --queue <name> to poll a queue other than DEDUP_TASK_QUEUE.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.observability.logging import configure_from_settings
from core.settings import get_settings
from temporal_client import get_temporal_client
from workflows.deduplication_workflow import DeduplicationBatchWorkflow
from activities.deduplicate import evaluate_candidate_pair, resolve_review_item


logger = logging.getLogger(__name__)

WORKFLOWS = [DeduplicationBatchWorkflow]

ACTIVITIES = [
    evaluate_candidate_pair,
    resolve_review_item,
]


async def run_worker(queue: str = None, max_concurrency: int = None):
    """Start a worker on the task queue.

    Args:
        queue: Task queue to poll (defaults to DEDUP_TASK_QUEUE)
        max_concurrency: Concurrent activity executions (defaults to DEDUP_MAX_CONCURRENCY)

    Raises:
        Exception: If connection to Temporal fails
    """
    settings = get_settings()
    task_queue = queue or settings.task_queue
    client = None

    try:
        client = await get_temporal_client()
        logger.info(f"Connected to Temporal: {client.namespace}")

        worker = Worker(
            client,
            task_queue=task_queue,
            workflows=WORKFLOWS,
            activities=ACTIVITIES,
            max_concurrent_activities=max_concurrency or settings.max_concurrency,
        )

        logger.info(f"Worker created for queue '{task_queue}':")
        logger.info(f"  - Workflows: {len(WORKFLOWS)}")
        logger.info(f"  - Activities: {len(ACTIVITIES)}")
        logger.info(f"  - Database: {settings.db_path}")

        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Listing Deduplication Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=None,
        help="Task queue to poll (default: DEDUP_TASK_QUEUE or dedup-default)"
    )
    parser.add_argument(
        "--max-concurrency", "-c",
        type=int,
        default=None,
        help="Concurrent activity executions (default: DEDUP_MAX_CONCURRENCY)"
    )

    args = parser.parse_args()
    configure_from_settings()
    asyncio.run(run_worker(queue=args.queue, max_concurrency=args.max_concurrency))


if __name__ == "__main__":
    main()
