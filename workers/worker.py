"""Worker for the document ingestion pipeline.

Connects to Temporal, listens for tasks and executes workflows/activities.

Supports multiple task queues for separation of concerns:
- ingest-default: DB activities (entity resolution, commit) and workflows
- ingest-llm: extraction activities (model calls, rate-limited)

Run with --queue <name> to specify which queue to poll.
Run with --all to poll all queues (for local development).
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.document_import_workflow import (
    DocumentImportWorkflow,
    TASK_QUEUE_DEFAULT,
    TASK_QUEUE_LLM,
)
from activities.ingest import classify_document, resolve_document, commit_document


logger = get_logger(__name__)

# =============================================================================
# Activity Groupings by Task Queue
# =============================================================================

# Default queue: registry reads and commits (fast, local DB)
DEFAULT_QUEUE_ACTIVITIES = [
    resolve_document,
    commit_document,
]

# LLM queue: extraction (slow, high-cost, rate-limited)
LLM_QUEUE_ACTIVITIES = [
    classify_document,
]

ALL_ACTIVITIES = DEFAULT_QUEUE_ACTIVITIES + LLM_QUEUE_ACTIVITIES

WORKFLOWS = [DocumentImportWorkflow]


def build_workers(client, queue: str = None, all_queues: bool = False) -> list:
    """Create Worker instances for the requested queue(s).

    Args:
        client: Connected Temporal client
        queue: Specific queue to poll (ingest-default, ingest-llm)
        all_queues: If True, poll every queue with every activity (local dev mode)
    """
    if all_queues:
        return [
            Worker(
                client,
                task_queue=task_queue,
                workflows=WORKFLOWS if task_queue == TASK_QUEUE_DEFAULT else [],
                activities=ALL_ACTIVITIES,
            )
            for task_queue in [TASK_QUEUE_DEFAULT, TASK_QUEUE_LLM]
        ]

    task_queue = queue or TASK_QUEUE_DEFAULT
    if task_queue == TASK_QUEUE_LLM:
        activities, workflows = LLM_QUEUE_ACTIVITIES, []
    else:
        activities, workflows = DEFAULT_QUEUE_ACTIVITIES, WORKFLOWS

    logger.info(
        f"Worker created for queue '{task_queue}'",
        extra_fields={"workflows": len(workflows), "activities": len(activities)},
    )
    return [Worker(client, task_queue=task_queue, workflows=workflows, activities=activities)]


async def run_worker(queue: str = None, all_queues: bool = False):
    """Start worker listening on task queue(s).

    Raises:
        Exception: If connection to Temporal fails
    """
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    if all_queues:
        logger.info("Running in ALL-QUEUES mode (local development)")
    workers = build_workers(client, queue, all_queues)

    logger.info("Worker(s) running... (Ctrl+C to stop)")
    try:
        await asyncio.gather(*[w.run() for w in workers])
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Document Ingestion Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        choices=[TASK_QUEUE_DEFAULT, TASK_QUEUE_LLM],
        default=TASK_QUEUE_DEFAULT,
        help="Task queue to poll (default: ingest-default)"
    )
    parser.add_argument(
        "--all", "-a",
        action="store_true",
        dest="all_queues",
        help="Poll all queues (local development mode)"
    )

    args = parser.parse_args()
    configure_logging()
    asyncio.run(run_worker(queue=args.queue, all_queues=args.all_queues))


if __name__ == "__main__":
    main()
