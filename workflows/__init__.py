"""Workflow definitions module."""

from workflows.deduplication_workflow import (
    DeduplicationBatchWorkflow,
    DeduplicationBatchInput,
    DeduplicationBatchOutput,
    TASK_QUEUE_DEFAULT,
)

__all__ = [
    "DeduplicationBatchWorkflow",
    "DeduplicationBatchInput",
    "DeduplicationBatchOutput",
    "TASK_QUEUE_DEFAULT",
]
