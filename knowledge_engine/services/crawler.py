"""Breadth-first crawl traversal for one crawl job."""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, List, Tuple

import logfire

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.db.repository import KnowledgeRepository
from knowledge_engine.exceptions import PageFetchError
from knowledge_engine.models.crawl_models import (
    CrawlCounters,
    CrawledPageCreate,
    CrawlJob,
    CrawlStatus,
    CrawlSummary,
    PageStatus,
)
from knowledge_engine.services.page_fetcher import (
    HttpxPageFetcher,
    PageFetcher,
    extract_page,
)
from knowledge_engine.services.url_normalizer import normalize_url


class CrawlEngine:
    """
    Runs crawl jobs: fetch, extract and persist pages reachable from the seed.

    The frontier and seen-set live only for the duration of one run; a
    retried job starts again from the seed.
    """

    def __init__(
        self,
        repository: KnowledgeRepository,
        fetcher: PageFetcher | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._settings = settings or get_settings()
        self._repository = repository
        self._fetcher = fetcher or HttpxPageFetcher(
            timeout=self._settings.crawler_timeout_seconds,
            user_agent=self._settings.crawler_user_agent,
        )
        self._sleep = sleep or asyncio.sleep

    async def process_crawl_job(
        self, job_id: str, *, final_attempt: bool = True
    ) -> CrawlSummary | None:
        """
        Crawl a job's site breadth-first within its depth and page limits.

        Per-page fetch failures are recorded as failed pages and do not stop
        the crawl. Any other error stops the run and is re-raised; the job is
        marked FAILED only when `final_attempt` is set, otherwise the error is
        recorded and the job stays PROCESSING for the next queue attempt.
        That attempt keeps the persisted counters and only adds pages it
        records itself.

        Args:
            job_id: Crawl job UUID
            final_attempt: Whether the job queue will not retry this job again

        Returns:
            CrawlSummary of this run, or None when the job was missing,
            already terminal, or taken by another worker before it started
        """
        job = await self._repository.get_crawl_job(job_id)
        if job is None:
            logfire.info("Crawl job not found, skipping", job_id=job_id)
            return None
        if job.status.is_terminal:
            logfire.info(
                "Crawl job already finished, skipping",
                job_id=job_id,
                status=job.status.value,
            )
            return None
        if not await self._repository.start_crawl_job(job_id):
            logfire.info("Crawl job no longer startable, skipping", job_id=job_id)
            return None

        totals = CrawlCounters()
        pending = CrawlCounters()
        start_time = time.time()

        with logfire.span(
            "crawl_job",
            job_id=job_id,
            url=job.url,
            max_depth=job.max_depth,
            page_limit=job.page_limit,
        ):
            try:
                status = await self._traverse(job, totals, pending)
                await self._flush(job_id, pending)
            except Exception as e:
                await self._flush_after_error(job_id, pending)
                await self._record_failure(job_id, e, final_attempt)
                raise

            if status == CrawlStatus.COMPLETED:
                finished = await self._repository.finish_crawl_job(
                    job_id, CrawlStatus.COMPLETED
                )
                if not finished:
                    # Cancelled between the last check and completion
                    status = CrawlStatus.CANCELLED

        elapsed_ms = int((time.time() - start_time) * 1000)
        logfire.info(
            "Crawl job finished",
            job_id=job_id,
            status=status.value,
            pages_found=totals.found,
            pages_crawled=totals.crawled,
            pages_failed=totals.failed,
            elapsed_ms=elapsed_ms,
        )
        return CrawlSummary(
            job_id=job_id,
            status=status,
            pages_found=totals.found,
            pages_crawled=totals.crawled,
            pages_failed=totals.failed,
        )

    async def _traverse(
        self, job: CrawlJob, totals: CrawlCounters, pending: CrawlCounters
    ) -> CrawlStatus:
        seed = normalize_url(job.url)
        frontier: Deque[Tuple[str, int]] = deque([(seed, 0)])
        queued: set[str] = {seed}
        seen: set[str] = set()
        attempted = 0

        while frontier and totals.crawled < job.page_limit:
            url, depth = frontier.popleft()
            if url in seen:
                continue

            if attempted and attempted % self._settings.crawler_cancel_check_interval == 0:
                if await self._is_cancelled(job.id):
                    logfire.info(
                        "Crawl job cancelled, stopping traversal",
                        job_id=job.id,
                        pages_attempted=attempted,
                    )
                    return CrawlStatus.CANCELLED

            seen.add(url)
            attempted += 1
            links = await self._visit(job, url, totals, pending)

            can_follow = job.depth_unbounded or depth < job.max_depth
            if can_follow and totals.crawled < job.page_limit:
                for link in links:
                    if link not in seen and link not in queued:
                        queued.add(link)
                        frontier.append((link, depth + 1))

            if attempted % self._settings.crawler_progress_interval == 0:
                await self._flush(job.id, pending)

            delay = self._settings.crawler_request_delay_seconds
            if frontier and delay > 0:
                await self._sleep(delay)

        return CrawlStatus.COMPLETED

    async def _visit(
        self,
        job: CrawlJob,
        url: str,
        totals: CrawlCounters,
        pending: CrawlCounters,
    ) -> List[str]:
        """Fetch, extract and record one URL. Returns its same-origin links."""
        totals.found += 1
        try:
            fetched = await self._fetcher.fetch(url)
        except PageFetchError as e:
            logfire.warning(
                "Page fetch failed", job_id=job.id, url=url, error=e.message
            )
            page_create = CrawledPageCreate(
                job_id=job.id,
                url=url,
                status=PageStatus.FAILED,
                error_message=e.message,
            )
            totals.failed += 1
            if await self._record(page_create, pending):
                pending.failed += 1
            return []

        if not fetched.is_html:
            logfire.debug(
                "Skipping non-HTML response",
                job_id=job.id,
                url=url,
                content_type=fetched.content_type,
            )
            pending.found += 1
            return []

        page = extract_page(fetched.html, url)
        if page.text:
            page_create = CrawledPageCreate(
                job_id=job.id,
                url=url,
                status=PageStatus.SUCCEEDED,
                title=page.title,
                content=page.text,
                content_hash=page.content_hash,
            )
            totals.crawled += 1
            if await self._record(page_create, pending):
                pending.crawled += 1
        else:
            logfire.debug("Skipping page with no text", job_id=job.id, url=url)
            pending.found += 1
        return page.links

    async def _record(self, page: CrawledPageCreate, pending: CrawlCounters) -> bool:
        """Insert a page row. A URL an earlier attempt already recorded is not persisted twice."""
        if await self._repository.create_crawled_page(page) is None:
            return False
        pending.found += 1
        return True

    async def _is_cancelled(self, job_id: str) -> bool:
        current = await self._repository.get_crawl_job(job_id)
        return current is None or current.status == CrawlStatus.CANCELLED

    async def _flush(self, job_id: str, pending: CrawlCounters) -> None:
        if pending.is_empty():
            return
        await self._repository.increment_crawl_counters(
            job_id, pending.found, pending.crawled, pending.failed
        )
        pending.reset()

    async def _flush_after_error(self, job_id: str, pending: CrawlCounters) -> None:
        try:
            await self._flush(job_id, pending)
        except Exception as e:
            logfire.warning(
                "Could not persist crawl counters after error",
                job_id=job_id,
                error=str(e),
            )

    async def _record_failure(
        self, job_id: str, error: Exception, final_attempt: bool
    ) -> None:
        message = str(error) or type(error).__name__
        logfire.error(
            "Crawl job failed",
            job_id=job_id,
            error=message,
            error_type=type(error).__name__,
            final_attempt=final_attempt,
        )
        try:
            if final_attempt:
                await self._repository.finish_crawl_job(
                    job_id, CrawlStatus.FAILED, error_message=message
                )
            else:
                await self._repository.record_crawl_error(job_id, message)
        except Exception as e:
            logfire.warning(
                "Could not record crawl job failure",
                job_id=job_id,
                error=str(e),
            )
