"""Caller-facing crawl operations: start, cancel, inspect, select pages."""

from typing import List

import logfire
from pydantic import BaseModel

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.constants import (
    CRAWL_QUEUE_NAME,
    DEFAULT_PAGE_SIZE,
    TRAINING_QUEUE_NAME,
    UNBOUNDED_CRAWL_DEPTH,
)
from knowledge_engine.db.repository import KnowledgeRepository
from knowledge_engine.exceptions import InvalidStateError, NotFoundError
from knowledge_engine.jobs.job_queue import BackoffPolicy, JobOptions, JobQueue
from knowledge_engine.models.crawl_models import (
    CrawledPage,
    CrawlJob,
    CrawlJobCreate,
    PageStatus,
)
from knowledge_engine.models.pagination import Paginated, page_offset
from knowledge_engine.services.training import CrawlPageTrainingJob
from knowledge_engine.services.url_normalizer import normalize_url


class PendingPages(BaseModel):
    """Crawled pages not yet selected for training."""

    pages: List[CrawledPage]
    count: int


class CrawlService:
    """Starts crawl jobs and exposes their results."""

    def __init__(
        self,
        repository: KnowledgeRepository,
        queue: JobQueue,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._repository = repository
        self._queue = queue

    def _crawl_job_options(self) -> JobOptions:
        return JobOptions(
            attempts=self._settings.crawl_job_attempts,
            backoff=BackoffPolicy(
                type="exponential",
                delay_seconds=self._settings.crawl_job_backoff_seconds,
            ),
        )

    def _training_job_options(self) -> JobOptions:
        return JobOptions(
            attempts=self._settings.training_job_attempts,
            backoff=BackoffPolicy(
                type="exponential",
                delay_seconds=self._settings.training_job_backoff_seconds,
            ),
        )

    async def start_crawl(
        self,
        chatbot_id: str,
        url: str,
        max_depth: int = UNBOUNDED_CRAWL_DEPTH,
        page_limit: int | None = None,
    ) -> CrawlJob:
        """
        Create a QUEUED crawl job for the seed URL and enqueue it.

        Raises:
            InvalidURLError: If the seed URL is not an absolute http(s) URL
        """
        seed = normalize_url(url)
        job = await self._repository.create_crawl_job(
            CrawlJobCreate(
                chatbot_id=chatbot_id,
                url=seed,
                max_depth=max_depth,
                page_limit=page_limit or self._settings.crawler_default_page_limit,
            )
        )
        await self._queue.enqueue(
            CRAWL_QUEUE_NAME, {"job_id": job.id}, self._crawl_job_options()
        )
        logfire.info(
            "Crawl job queued",
            job_id=job.id,
            chatbot_id=chatbot_id,
            url=seed,
            max_depth=job.max_depth,
            page_limit=job.page_limit,
        )
        return job

    async def cancel_crawl(self, job_id: str) -> CrawlJob:
        """
        Cancel a QUEUED or PROCESSING job.

        Raises:
            NotFoundError: If the job does not exist
            InvalidStateError: If the job already finished or was cancelled
        """
        job = await self._repository.get_crawl_job(job_id)
        if job is None:
            raise NotFoundError(f"Crawl job not found: {job_id}")
        if job.status.is_terminal:
            raise InvalidStateError(
                f"Cannot cancel crawl job {job_id} with status {job.status.value}"
            )
        cancelled = await self._repository.cancel_crawl_job(job_id)
        if cancelled is None:
            # Finished between the read and the conditional update
            current = await self._repository.get_crawl_job(job_id)
            status = current.status.value if current else "deleted"
            raise InvalidStateError(
                f"Cannot cancel crawl job {job_id} with status {status}"
            )
        logfire.info("Crawl job cancelled", job_id=job_id)
        return cancelled

    async def get_crawl_job(self, job_id: str) -> CrawlJob:
        job = await self._repository.get_crawl_job(job_id)
        if job is None:
            raise NotFoundError(f"Crawl job not found: {job_id}")
        return job

    async def list_crawl_jobs(
        self, chatbot_id: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> Paginated[CrawlJob]:
        jobs, total = await self._repository.list_crawl_jobs(
            chatbot_id, page_offset(page, limit), limit
        )
        return Paginated[CrawlJob].build(jobs, total, page, limit)

    async def get_crawled_pages(
        self, job_id: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> Paginated[CrawledPage]:
        await self.get_crawl_job(job_id)
        pages, total = await self._repository.list_crawled_pages(
            job_id, page_offset(page, limit), limit
        )
        return Paginated[CrawledPage].build(pages, total, page, limit)

    async def get_pending_pages(self, job_id: str) -> PendingPages:
        """Successfully crawled pages not yet selected for training, oldest first."""
        await self.get_crawl_job(job_id)
        pages = await self._repository.list_pending_pages(job_id)
        return PendingPages(pages=pages, count=len(pages))

    async def select_pages_for_training(
        self, job_id: str, page_ids: List[str]
    ) -> List[str]:
        """
        Mark crawled pages as selected and enqueue a training job per page.

        Every page must belong to the job and have been crawled successfully;
        otherwise nothing is selected or enqueued.

        Returns:
            The enqueued queue job ids, one per selected page

        Raises:
            NotFoundError: If the job does not exist
            InvalidStateError: If a page is missing, belongs to another job,
                or failed to crawl
        """
        job = await self.get_crawl_job(job_id)
        unique_ids = list(dict.fromkeys(page_ids))
        if not unique_ids:
            raise InvalidStateError("No pages given for training")

        pages = await self._repository.get_job_pages(job_id, unique_ids)
        found = {page.id: page for page in pages}
        missing = [page_id for page_id in unique_ids if page_id not in found]
        if missing:
            raise InvalidStateError(
                f"Pages do not belong to crawl job {job_id}: {', '.join(missing)}"
            )
        failed = [p.id for p in pages if p.status != PageStatus.SUCCEEDED]
        if failed:
            raise InvalidStateError(
                f"Pages were not crawled successfully: {', '.join(failed)}"
            )

        await self._repository.mark_pages_selected(unique_ids)
        queue_job_ids: List[str] = []
        options = self._training_job_options()
        for page_id in unique_ids:
            training_job = CrawlPageTrainingJob(
                chatbot_id=job.chatbot_id, source_id=page_id
            )
            queue_job_ids.append(
                await self._queue.enqueue(
                    TRAINING_QUEUE_NAME, training_job.model_dump(), options
                )
            )
        logfire.info(
            "Crawled pages selected for training",
            job_id=job_id,
            page_count=len(unique_ids),
        )
        return queue_job_ids
