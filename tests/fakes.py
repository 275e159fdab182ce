"""In-memory stand-ins for the store, embedder and job queue used in tests."""

import math
import re
import uuid
import zlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from knowledge_engine.jobs.job_queue import JobOptions
from knowledge_engine.models.crawl_models import (
    CANCELLABLE_CRAWL_STATUSES,
    CrawledPage,
    CrawledPageCreate,
    CrawlJob,
    CrawlJobCreate,
    CrawlStatus,
    PageStatus,
)
from knowledge_engine.models.retrieval_models import RetrievedContext
from knowledge_engine.models.training_models import (
    EmbeddingRecordCreate,
    QnaPair,
    QnaPairCreate,
    SourceType,
    TextTraining,
    TrainingStatus,
)

FAKE_DIMENSIONS = 16


class _Clock:
    """Strictly increasing timestamps so newest-first ordering is stable."""

    def __init__(self):
        self._now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


def _cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeKnowledgeRepository:
    """Dict-backed KnowledgeRepository with the same conditional-update rules."""

    def __init__(self):
        self.crawl_jobs: Dict[str, CrawlJob] = {}
        self.pages: Dict[str, CrawledPage] = {}
        self.qna_pairs: Dict[str, QnaPair] = {}
        self.text_trainings: Dict[str, TextTraining] = {}
        self.embeddings: List[Dict[str, Any]] = []
        self.counter_increments: List[Tuple[int, int, int]] = []
        self._now = _Clock()

    # Crawl jobs

    async def create_crawl_job(self, job: CrawlJobCreate) -> CrawlJob:
        record = CrawlJob(
            id=str(uuid.uuid4()),
            chatbot_id=job.chatbot_id,
            url=job.url,
            max_depth=job.max_depth,
            page_limit=job.page_limit,
            created_at=self._now(),
        )
        self.crawl_jobs[record.id] = record
        return record

    async def get_crawl_job(self, job_id: str) -> Optional[CrawlJob]:
        job = self.crawl_jobs.get(job_id)
        return job.model_copy() if job else None

    async def list_crawl_jobs(
        self, chatbot_id: str, offset: int, limit: int
    ) -> Tuple[List[CrawlJob], int]:
        jobs = [j for j in self.crawl_jobs.values() if j.chatbot_id == chatbot_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[offset : offset + limit], len(jobs)

    async def start_crawl_job(self, job_id: str) -> bool:
        job = self.crawl_jobs.get(job_id)
        if job is None or job.status not in CANCELLABLE_CRAWL_STATUSES:
            return False
        update = {"error_message": None}
        if job.status == CrawlStatus.QUEUED:
            update.update(
                {
                    "status": CrawlStatus.PROCESSING,
                    "pages_found": 0,
                    "pages_crawled": 0,
                    "pages_failed": 0,
                    "started_at": self._now(),
                }
            )
        self.crawl_jobs[job_id] = job.model_copy(update=update)
        return True

    async def increment_crawl_counters(
        self, job_id: str, found: int, crawled: int, failed: int
    ) -> None:
        self.counter_increments.append((found, crawled, failed))
        job = self.crawl_jobs[job_id]
        self.crawl_jobs[job_id] = job.model_copy(
            update={
                "pages_found": job.pages_found + found,
                "pages_crawled": job.pages_crawled + crawled,
                "pages_failed": job.pages_failed + failed,
            }
        )

    async def finish_crawl_job(
        self, job_id: str, status: CrawlStatus, error_message: str | None = None
    ) -> bool:
        job = self.crawl_jobs.get(job_id)
        if job is None or job.status != CrawlStatus.PROCESSING:
            return False
        update: Dict[str, Any] = {"status": status, "completed_at": self._now()}
        if error_message is not None:
            update["error_message"] = error_message
        self.crawl_jobs[job_id] = job.model_copy(update=update)
        return True

    async def record_crawl_error(self, job_id: str, error_message: str) -> None:
        job = self.crawl_jobs[job_id]
        self.crawl_jobs[job_id] = job.model_copy(update={"error_message": error_message})

    async def cancel_crawl_job(self, job_id: str) -> Optional[CrawlJob]:
        job = self.crawl_jobs.get(job_id)
        if job is None or job.status not in CANCELLABLE_CRAWL_STATUSES:
            return None
        cancelled = job.model_copy(
            update={"status": CrawlStatus.CANCELLED, "completed_at": self._now()}
        )
        self.crawl_jobs[job_id] = cancelled
        return cancelled

    # Crawled pages

    async def create_crawled_page(self, page: CrawledPageCreate) -> Optional[str]:
        if any(p.job_id == page.job_id and p.url == page.url for p in self.pages.values()):
            return None
        record = CrawledPage(
            id=str(uuid.uuid4()), created_at=self._now(), **page.model_dump()
        )
        self.pages[record.id] = record
        return record.id

    async def get_crawled_page(self, page_id: str) -> Optional[CrawledPage]:
        return self.pages.get(page_id)

    def job_pages(self, job_id: str) -> List[CrawledPage]:
        """Pages of a job in insertion (crawl) order."""
        return sorted(
            (p for p in self.pages.values() if p.job_id == job_id),
            key=lambda p: p.created_at,
        )

    async def list_crawled_pages(
        self, job_id: str, offset: int, limit: int
    ) -> Tuple[List[CrawledPage], int]:
        pages = list(reversed(self.job_pages(job_id)))
        return pages[offset : offset + limit], len(pages)

    async def list_pending_pages(self, job_id: str) -> List[CrawledPage]:
        return [
            p
            for p in self.job_pages(job_id)
            if p.status == PageStatus.SUCCEEDED and not p.is_selected
        ]

    async def get_job_pages(self, job_id: str, page_ids: List[str]) -> List[CrawledPage]:
        return [
            self.pages[page_id]
            for page_id in page_ids
            if page_id in self.pages and self.pages[page_id].job_id == job_id
        ]

    async def mark_pages_selected(self, page_ids: List[str]) -> None:
        for page_id in page_ids:
            self.pages[page_id] = self.pages[page_id].model_copy(
                update={"is_selected": True}
            )

    # Q&A pairs

    async def create_qna_pairs(
        self, chatbot_id: str, pairs: List[QnaPairCreate]
    ) -> List[QnaPair]:
        created = []
        for pair in pairs:
            record = QnaPair(
                id=str(uuid.uuid4()),
                chatbot_id=chatbot_id,
                question=pair.question,
                answer=pair.answer,
                created_at=self._now(),
            )
            self.qna_pairs[record.id] = record
            created.append(record)
        return created

    async def get_qna_pair(self, qna_id: str) -> Optional[QnaPair]:
        return self.qna_pairs.get(qna_id)

    async def list_qna_pairs(
        self,
        chatbot_id: str,
        offset: int,
        limit: int,
        search: str | None = None,
        status: TrainingStatus | None = None,
    ) -> Tuple[List[QnaPair], int]:
        pairs = [p for p in self.qna_pairs.values() if p.chatbot_id == chatbot_id]
        if status is not None:
            pairs = [p for p in pairs if p.training_status == status]
        if search:
            term = search.lower()
            pairs = [
                p for p in pairs if term in p.question.lower() or term in p.answer.lower()
            ]
        pairs.sort(key=lambda p: p.created_at, reverse=True)
        return pairs[offset : offset + limit], len(pairs)

    async def update_qna_pair(self, qna_id: str, fields: dict[str, Any]) -> QnaPair:
        updated = self.qna_pairs[qna_id].model_copy(
            update={**fields, "updated_at": self._now()}
        )
        self.qna_pairs[qna_id] = updated
        return updated

    async def set_qna_training_status(self, qna_id: str, status: TrainingStatus) -> None:
        if qna_id in self.qna_pairs:
            self.qna_pairs[qna_id] = self.qna_pairs[qna_id].model_copy(
                update={"training_status": status}
            )

    async def delete_qna_pair(self, qna_id: str) -> None:
        self.qna_pairs.pop(qna_id, None)

    # Text training

    async def get_text_training(self, chatbot_id: str) -> Optional[TextTraining]:
        return next(
            (t for t in self.text_trainings.values() if t.chatbot_id == chatbot_id),
            None,
        )

    async def get_text_training_by_id(
        self, text_training_id: str
    ) -> Optional[TextTraining]:
        return self.text_trainings.get(text_training_id)

    async def create_text_training(self, chatbot_id: str, content: str) -> TextTraining:
        record = TextTraining(
            id=str(uuid.uuid4()),
            chatbot_id=chatbot_id,
            content=content,
            created_at=self._now(),
        )
        self.text_trainings[record.id] = record
        return record

    async def replace_text_training(self, chatbot_id: str, content: str) -> TextTraining:
        existing = await self.get_text_training(chatbot_id)
        updated = existing.model_copy(
            update={"content": content, "training_status": TrainingStatus.PENDING}
        )
        self.text_trainings[updated.id] = updated
        return updated

    async def set_text_training_status(
        self, text_training_id: str, status: TrainingStatus
    ) -> None:
        if text_training_id in self.text_trainings:
            self.text_trainings[text_training_id] = self.text_trainings[
                text_training_id
            ].model_copy(update={"training_status": status})

    async def delete_text_training(self, chatbot_id: str) -> None:
        existing = await self.get_text_training(chatbot_id)
        if existing is not None:
            del self.text_trainings[existing.id]

    # Embeddings

    async def insert_embeddings(self, rows: List[EmbeddingRecordCreate]) -> int:
        for row in rows:
            self.embeddings.append({"id": str(uuid.uuid4()), **row.model_dump()})
        return len(rows)

    async def delete_embeddings(
        self, chatbot_id: str, source_type: SourceType, source_id: str
    ) -> int:
        keep = [
            e
            for e in self.embeddings
            if not (
                e["chatbot_id"] == chatbot_id
                and e["source_type"] == source_type
                and e["source_id"] == source_id
            )
        ]
        deleted = len(self.embeddings) - len(keep)
        self.embeddings = keep
        return deleted

    async def match_embeddings(
        self, chatbot_id: str, query_embedding: List[float], top_k: int
    ) -> List[RetrievedContext]:
        scored = [
            RetrievedContext(
                content=e["content"],
                score=_cosine(query_embedding, e["embedding"]),
                metadata=e["metadata"],
            )
            for e in self.embeddings
            if e["chatbot_id"] == chatbot_id
        ]
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:top_k]

    def vectors_for(self, source_type: SourceType, source_id: str) -> List[Dict[str, Any]]:
        return [
            e
            for e in self.embeddings
            if e["source_type"] == source_type and e["source_id"] == source_id
        ]


class FakeEmbedder:
    """Deterministic bag-of-words embedder: similar words give similar vectors."""

    def __init__(self, dimensions: int = FAKE_DIMENSIONS):
        self.dimensions = dimensions
        self.embed_calls: List[List[str]] = []
        self.query_calls: List[str] = []

    def vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for word in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(word.encode()) % self.dimensions] += 1.0
        return vector

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.embed_calls.append(list(texts))
        return [self.vector(text) for text in texts]

    async def embed_query(self, query: str) -> List[float]:
        self.query_calls.append(query)
        return self.vector(query)


class RecordingJobQueue:
    """JobQueue that only records what was enqueued."""

    def __init__(self, fail_with: Exception | None = None):
        self.jobs: List[Tuple[str, Dict[str, Any], JobOptions | None]] = []
        self._fail_with = fail_with

    async def enqueue(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        options: JobOptions | None = None,
    ) -> str:
        if self._fail_with is not None:
            raise self._fail_with
        self.jobs.append((queue_name, dict(payload), options))
        return f"job-{len(self.jobs)}"

    def payloads(self, queue_name: str) -> List[Dict[str, Any]]:
        return [payload for name, payload, _ in self.jobs if name == queue_name]
