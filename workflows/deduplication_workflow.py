"""Deduplication Batch Workflow.

Fans a batch of candidate pairs out to the evaluate_candidate_pair activity in
bounded chunks. The workflow owns retries through its RetryPolicy; a pair that
still fails after retries is reported, not fatal to the batch.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from activities.deduplicate import (
        evaluate_candidate_pair,
        EvaluatePairInput,
        EvaluatePairOutput,
    )
    from core.errors import NON_RETRYABLE_ERROR_TYPES


TASK_QUEUE_DEFAULT = "dedup-default"
DEFAULT_CHUNK_SIZE = 20


@dataclass
class DeduplicationBatchInput:
    """Input for DeduplicationBatchWorkflow.

    Attributes:
        batch_id: Identifier used for log correlation
        tenant_id: Tenant owning every listing in the batch
        pairs: Candidate pairs as {"source": {...}, "target": {...}}
        chunk_size: Maximum concurrent activity executions
    """
    batch_id: str
    tenant_id: str
    pairs: List[dict]
    chunk_size: int = DEFAULT_CHUNK_SIZE


@dataclass
class FailedPair:
    source_listing_id: Optional[str]
    target_listing_id: Optional[str]
    error: str


@dataclass
class DeduplicationBatchOutput:
    """Output from DeduplicationBatchWorkflow."""
    batch_id: str
    tenant_id: str
    evaluated: int = 0
    duplicates: int = 0
    near_matches: int = 0
    new_listings: int = 0
    review_item_ids: List[str] = field(default_factory=list)
    failures: List[FailedPair] = field(default_factory=list)
    results: List[EvaluatePairOutput] = field(default_factory=list)


@workflow.defn
class DeduplicationBatchWorkflow:
    """
    Evaluates a batch of candidate pairs.

    1. Split pairs into chunks of chunk_size
    2. Run each chunk's evaluations concurrently
    3. Aggregate decisions and failures
    """

    @workflow.run
    async def run(self, input: DeduplicationBatchInput) -> DeduplicationBatchOutput:
        workflow.logger.info(f"Starting deduplication batch {input.batch_id}: {len(input.pairs)} pairs")

        activity_options = {
            "start_to_close_timeout": timedelta(seconds=30),
            "retry_policy": RetryPolicy(
                maximum_attempts=5,
                initial_interval=timedelta(seconds=1),
                maximum_interval=timedelta(seconds=30),
                backoff_coefficient=2.0,
                # Bad input or ambiguous config will not self-heal
                non_retryable_error_types=NON_RETRYABLE_ERROR_TYPES,
            ),
        }

        output = DeduplicationBatchOutput(batch_id=input.batch_id, tenant_id=input.tenant_id)
        chunk_size = max(1, input.chunk_size)

        for offset in range(0, len(input.pairs), chunk_size):
            chunk = input.pairs[offset:offset + chunk_size]
            results = await asyncio.gather(
                *[
                    workflow.execute_activity(
                        evaluate_candidate_pair,
                        EvaluatePairInput(source=pair["source"], target=pair["target"], batch_id=input.batch_id),
                        **activity_options,
                    )
                    for pair in chunk
                ],
                return_exceptions=True,
            )

            for pair, result in zip(chunk, results):
                if isinstance(result, ActivityError):
                    workflow.logger.warning(f"Pair failed after retries: {result.cause or result}")
                    output.failures.append(FailedPair(
                        source_listing_id=pair["source"].get("id"),
                        target_listing_id=pair["target"].get("id"),
                        error=str(result.cause or result),
                    ))
                    continue
                if isinstance(result, BaseException):
                    raise result
                self._record(output, result)

            workflow.logger.info(
                f"Batch {input.batch_id}: {output.evaluated + len(output.failures)}/{len(input.pairs)} pairs processed"
            )

        workflow.logger.info(
            f"Batch {input.batch_id} complete: {output.duplicates} duplicates, "
            f"{output.near_matches} near matches, {output.new_listings} new, {len(output.failures)} failed"
        )
        return output

    def _record(self, output: DeduplicationBatchOutput, result: EvaluatePairOutput) -> None:
        output.evaluated += 1
        output.results.append(result)
        if result.decision == "Duplicate":
            output.duplicates += 1
        elif result.decision == "NearMatch":
            output.near_matches += 1
        else:
            output.new_listings += 1
        if result.review_item_id:
            output.review_item_ids.append(result.review_item_id)
