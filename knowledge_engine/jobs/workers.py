"""Queue consumers for crawl and training jobs."""

import logfire

from knowledge_engine.constants import CRAWL_QUEUE_NAME, TRAINING_QUEUE_NAME
from knowledge_engine.jobs.job_queue import AsyncioJobQueue, JobContext
from knowledge_engine.services.crawler import CrawlEngine
from knowledge_engine.services.training import TrainingOrchestrator


def register_workers(
    queue: AsyncioJobQueue,
    crawl_engine: CrawlEngine,
    orchestrator: TrainingOrchestrator,
) -> None:
    """Attach the crawl and training handlers to their queues."""

    async def handle_crawl(ctx: JobContext) -> None:
        job_id = ctx.payload["job_id"]
        logfire.info(
            "Processing crawl job",
            job_id=job_id,
            attempt=ctx.attempt,
            max_attempts=ctx.max_attempts,
        )
        await crawl_engine.process_crawl_job(
            job_id, final_attempt=ctx.is_final_attempt
        )

    async def handle_training(ctx: JobContext) -> None:
        logfire.info(
            "Processing training job",
            type=ctx.payload.get("type"),
            source_id=ctx.payload.get("source_id"),
            attempt=ctx.attempt,
            max_attempts=ctx.max_attempts,
        )
        await orchestrator.handle(ctx.payload)

    queue.register_handler(CRAWL_QUEUE_NAME, handle_crawl)
    queue.register_handler(TRAINING_QUEUE_NAME, handle_training)
