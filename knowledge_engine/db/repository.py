"""Crawl job, training source and embedding repository.

`KnowledgeRepository` is the store contract the crawler, training
orchestrator and services depend on. `SupabaseKnowledgeRepository`
implements it on Supabase/Postgres (pgvector for the embeddings table).
The supabase client is synchronous, so every call runs in a worker thread
to keep the event loop free.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Protocol, Tuple, TypeVar

import logfire
from supabase import Client

from knowledge_engine.db.client import get_supabase_client
from knowledge_engine.db.query_executor import timed_query
from knowledge_engine.exceptions import RepositoryError
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

T = TypeVar("T")


class KnowledgeRepository(Protocol):
    """Durable store for crawl jobs, pages, training sources and vectors."""

    # Crawl jobs
    async def create_crawl_job(self, job: CrawlJobCreate) -> CrawlJob: ...

    async def get_crawl_job(self, job_id: str) -> Optional[CrawlJob]: ...

    async def list_crawl_jobs(
        self, chatbot_id: str, offset: int, limit: int
    ) -> Tuple[List[CrawlJob], int]: ...

    async def start_crawl_job(self, job_id: str) -> bool:
        """Move a QUEUED job to PROCESSING with zeroed counters, or re-enter a
        PROCESSING job with its counters kept.

        Returns False if the job is no longer eligible (terminal).
        """
        ...

    async def increment_crawl_counters(
        self, job_id: str, found: int, crawled: int, failed: int
    ) -> None: ...

    async def finish_crawl_job(
        self, job_id: str, status: CrawlStatus, error_message: str | None = None
    ) -> bool:
        """Set a terminal status, only if the job is still PROCESSING."""
        ...

    async def record_crawl_error(self, job_id: str, error_message: str) -> None: ...

    async def cancel_crawl_job(self, job_id: str) -> Optional[CrawlJob]:
        """Cancel a QUEUED/PROCESSING job. Returns None if not cancellable."""
        ...

    # Crawled pages
    async def create_crawled_page(self, page: CrawledPageCreate) -> Optional[str]: ...

    async def get_crawled_page(self, page_id: str) -> Optional[CrawledPage]: ...

    async def list_crawled_pages(
        self, job_id: str, offset: int, limit: int
    ) -> Tuple[List[CrawledPage], int]: ...

    async def list_pending_pages(self, job_id: str) -> List[CrawledPage]: ...

    async def get_job_pages(
        self, job_id: str, page_ids: List[str]
    ) -> List[CrawledPage]: ...

    async def mark_pages_selected(self, page_ids: List[str]) -> None: ...

    # Q&A pairs
    async def create_qna_pairs(
        self, chatbot_id: str, pairs: List[QnaPairCreate]
    ) -> List[QnaPair]: ...

    async def get_qna_pair(self, qna_id: str) -> Optional[QnaPair]: ...

    async def list_qna_pairs(
        self,
        chatbot_id: str,
        offset: int,
        limit: int,
        search: str | None = None,
        status: TrainingStatus | None = None,
    ) -> Tuple[List[QnaPair], int]: ...

    async def update_qna_pair(self, qna_id: str, fields: dict[str, Any]) -> QnaPair: ...

    async def set_qna_training_status(
        self, qna_id: str, status: TrainingStatus
    ) -> None: ...

    async def delete_qna_pair(self, qna_id: str) -> None: ...

    # Text training
    async def get_text_training(self, chatbot_id: str) -> Optional[TextTraining]: ...

    async def get_text_training_by_id(
        self, text_training_id: str
    ) -> Optional[TextTraining]: ...

    async def create_text_training(
        self, chatbot_id: str, content: str
    ) -> TextTraining: ...

    async def replace_text_training(
        self, chatbot_id: str, content: str
    ) -> TextTraining: ...

    async def set_text_training_status(
        self, text_training_id: str, status: TrainingStatus
    ) -> None: ...

    async def delete_text_training(self, chatbot_id: str) -> None: ...

    # Embeddings
    async def insert_embeddings(self, rows: List[EmbeddingRecordCreate]) -> int: ...

    async def delete_embeddings(
        self, chatbot_id: str, source_type: SourceType, source_id: str
    ) -> int: ...

    async def match_embeddings(
        self, chatbot_id: str, query_embedding: List[float], top_k: int
    ) -> List[RetrievedContext]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _embedding_to_text(embedding: List[float]) -> str:
    """Format embedding list as pgvector text literal '[a,b,c,...]'."""
    return "[" + ",".join(str(x) for x in embedding) + "]"


class SupabaseKnowledgeRepository:
    """KnowledgeRepository backed by Supabase tables and RPC functions."""

    CRAWL_JOBS = "crawl_jobs"
    CRAWLED_PAGES = "crawled_pages"
    QNA_PAIRS = "qna_pairs"
    TEXT_TRAININGS = "text_trainings"
    EMBEDDINGS = "embeddings"

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def _run(self, fn: Callable[[], T]) -> T:
        return await asyncio.to_thread(fn)

    # =========================================================================
    # Crawl jobs
    # =========================================================================

    async def create_crawl_job(self, job: CrawlJobCreate) -> CrawlJob:
        now = _now()
        data = {
            "id": str(uuid.uuid4()),
            "chatbot_id": job.chatbot_id,
            "url": job.url,
            "max_depth": job.max_depth,
            "page_limit": job.page_limit,
            "status": CrawlStatus.QUEUED.value,
            "pages_found": 0,
            "pages_crawled": 0,
            "pages_failed": 0,
            "created_at": now,
            "updated_at": now,
        }
        with timed_query("create_crawl_job", chatbot_id=job.chatbot_id, url=job.url):
            result = await self._run(
                lambda: self.client.table(self.CRAWL_JOBS).insert(data).execute()
            )
        if not result.data:
            raise RepositoryError("Failed to create crawl job")
        return CrawlJob(**result.data[0])

    async def get_crawl_job(self, job_id: str) -> Optional[CrawlJob]:
        with timed_query("get_crawl_job", job_id=job_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWL_JOBS)
                .select("*")
                .eq("id", job_id)
                .execute()
            )
        if not result.data:
            return None
        return CrawlJob(**result.data[0])

    async def list_crawl_jobs(
        self, chatbot_id: str, offset: int, limit: int
    ) -> Tuple[List[CrawlJob], int]:
        with timed_query("list_crawl_jobs", chatbot_id=chatbot_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWL_JOBS)
                .select("*", count="exact")
                .eq("chatbot_id", chatbot_id)
                .order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        jobs = [CrawlJob(**row) for row in result.data or []]
        return jobs, result.count or 0

    async def start_crawl_job(self, job_id: str) -> bool:
        """
        Move a job into PROCESSING for a new attempt.

        Counters are zeroed only on the QUEUED -> PROCESSING transition. A job
        re-entered by a retry keeps its counters so observers never see them
        go backwards; only the stale error message is cleared.
        """
        started = {
            "status": CrawlStatus.PROCESSING.value,
            "pages_found": 0,
            "pages_crawled": 0,
            "pages_failed": 0,
            "error_message": None,
            "started_at": _now(),
            "updated_at": _now(),
        }
        with timed_query("start_crawl_job", job_id=job_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWL_JOBS)
                .update(started)
                .eq("id", job_id)
                .eq("status", CrawlStatus.QUEUED.value)
                .execute()
            )
        if result.data:
            return True

        resumed = {"error_message": None, "updated_at": _now()}
        with timed_query("resume_crawl_job", job_id=job_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWL_JOBS)
                .update(resumed)
                .eq("id", job_id)
                .eq("status", CrawlStatus.PROCESSING.value)
                .execute()
            )
        return bool(result.data)

    async def increment_crawl_counters(
        self, job_id: str, found: int, crawled: int, failed: int
    ) -> None:
        # Increment server-side so concurrent writers never clobber each other
        params = {
            "target_job_id": job_id,
            "found_delta": found,
            "crawled_delta": crawled,
            "failed_delta": failed,
        }
        with timed_query(
            "increment_crawl_counters",
            job_id=job_id,
            found=found,
            crawled=crawled,
            failed=failed,
        ):
            await self._run(
                lambda: self.client.rpc("increment_crawl_job_counters", params).execute()
            )

    async def finish_crawl_job(
        self, job_id: str, status: CrawlStatus, error_message: str | None = None
    ) -> bool:
        data: dict[str, Any] = {
            "status": status.value,
            "completed_at": _now(),
            "updated_at": _now(),
        }
        if error_message is not None:
            data["error_message"] = error_message
        with timed_query("finish_crawl_job", job_id=job_id, status=status.value):
            result = await self._run(
                lambda: self.client.table(self.CRAWL_JOBS)
                .update(data)
                .eq("id", job_id)
                .eq("status", CrawlStatus.PROCESSING.value)
                .execute()
            )
        return bool(result.data)

    async def record_crawl_error(self, job_id: str, error_message: str) -> None:
        data = {"error_message": error_message, "updated_at": _now()}
        with timed_query("record_crawl_error", job_id=job_id):
            await self._run(
                lambda: self.client.table(self.CRAWL_JOBS)
                .update(data)
                .eq("id", job_id)
                .execute()
            )

    async def cancel_crawl_job(self, job_id: str) -> Optional[CrawlJob]:
        data = {
            "status": CrawlStatus.CANCELLED.value,
            "completed_at": _now(),
            "updated_at": _now(),
        }
        eligible = [s.value for s in CANCELLABLE_CRAWL_STATUSES]
        with timed_query("cancel_crawl_job", job_id=job_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWL_JOBS)
                .update(data)
                .eq("id", job_id)
                .in_("status", eligible)
                .execute()
            )
        if not result.data:
            return None
        return CrawlJob(**result.data[0])

    # =========================================================================
    # Crawled pages
    # =========================================================================

    async def create_crawled_page(self, page: CrawledPageCreate) -> Optional[str]:
        """
        Insert a crawled page row.

        (job_id, url) is unique: a page already recorded by an earlier
        attempt of the same job is left untouched and None is returned.
        """
        data = page.model_dump(mode="json")
        data.update(
            {
                "id": str(uuid.uuid4()),
                "is_selected": False,
                "created_at": _now(),
            }
        )
        with timed_query(
            "create_crawled_page",
            job_id=page.job_id,
            url=page.url,
            status=page.status.value,
        ):
            result = await self._run(
                lambda: self.client.table(self.CRAWLED_PAGES)
                .upsert(data, on_conflict="job_id,url", ignore_duplicates=True)
                .execute()
            )
        if not result.data:
            logfire.info(
                "Crawled page already recorded for job",
                job_id=page.job_id,
                url=page.url,
            )
            return None
        return result.data[0]["id"]

    async def get_crawled_page(self, page_id: str) -> Optional[CrawledPage]:
        with timed_query("get_crawled_page", page_id=page_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWLED_PAGES)
                .select("*")
                .eq("id", page_id)
                .execute()
            )
        if not result.data:
            return None
        return CrawledPage(**result.data[0])

    async def list_crawled_pages(
        self, job_id: str, offset: int, limit: int
    ) -> Tuple[List[CrawledPage], int]:
        with timed_query("list_crawled_pages", job_id=job_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWLED_PAGES)
                .select("*", count="exact")
                .eq("job_id", job_id)
                .order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        pages = [CrawledPage(**row) for row in result.data or []]
        return pages, result.count or 0

    async def list_pending_pages(self, job_id: str) -> List[CrawledPage]:
        with timed_query("list_pending_pages", job_id=job_id):
            result = await self._run(
                lambda: self.client.table(self.CRAWLED_PAGES)
                .select("*")
                .eq("job_id", job_id)
                .eq("status", PageStatus.SUCCEEDED.value)
                .eq("is_selected", False)
                .order("created_at")
                .execute()
            )
        return [CrawledPage(**row) for row in result.data or []]

    async def get_job_pages(
        self, job_id: str, page_ids: List[str]
    ) -> List[CrawledPage]:
        if not page_ids:
            return []
        with timed_query("get_job_pages", job_id=job_id, page_count=len(page_ids)):
            result = await self._run(
                lambda: self.client.table(self.CRAWLED_PAGES)
                .select("*")
                .eq("job_id", job_id)
                .in_("id", page_ids)
                .execute()
            )
        return [CrawledPage(**row) for row in result.data or []]

    async def mark_pages_selected(self, page_ids: List[str]) -> None:
        if not page_ids:
            return
        with timed_query("mark_pages_selected", page_count=len(page_ids)):
            await self._run(
                lambda: self.client.table(self.CRAWLED_PAGES)
                .update({"is_selected": True})
                .in_("id", page_ids)
                .execute()
            )

    # =========================================================================
    # Q&A pairs
    # =========================================================================

    async def create_qna_pairs(
        self, chatbot_id: str, pairs: List[QnaPairCreate]
    ) -> List[QnaPair]:
        if not pairs:
            return []
        now = _now()
        rows = [
            {
                "id": str(uuid.uuid4()),
                "chatbot_id": chatbot_id,
                "question": pair.question,
                "answer": pair.answer,
                "is_active": True,
                "training_status": TrainingStatus.PENDING.value,
                "created_at": now,
                "updated_at": now,
            }
            for pair in pairs
        ]
        # A single multi-row insert is atomic in Postgres
        with timed_query("create_qna_pairs", chatbot_id=chatbot_id, count=len(rows)):
            result = await self._run(
                lambda: self.client.table(self.QNA_PAIRS).insert(rows).execute()
            )
        if not result.data or len(result.data) != len(rows):
            raise RepositoryError("Failed to create QnA pairs")
        return [QnaPair(**row) for row in result.data]

    async def get_qna_pair(self, qna_id: str) -> Optional[QnaPair]:
        with timed_query("get_qna_pair", qna_id=qna_id):
            result = await self._run(
                lambda: self.client.table(self.QNA_PAIRS)
                .select("*")
                .eq("id", qna_id)
                .execute()
            )
        if not result.data:
            return None
        return QnaPair(**result.data[0])

    async def list_qna_pairs(
        self,
        chatbot_id: str,
        offset: int,
        limit: int,
        search: str | None = None,
        status: TrainingStatus | None = None,
    ) -> Tuple[List[QnaPair], int]:
        def query():
            q = (
                self.client.table(self.QNA_PAIRS)
                .select("*", count="exact")
                .eq("chatbot_id", chatbot_id)
            )
            if status is not None:
                q = q.eq("training_status", status.value)
            if search:
                pattern = f"%{search}%"
                q = q.or_(f"question.ilike.{pattern},answer.ilike.{pattern}")
            return (
                q.order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )

        with timed_query("list_qna_pairs", chatbot_id=chatbot_id, search=search):
            result = await self._run(query)
        pairs = [QnaPair(**row) for row in result.data or []]
        return pairs, result.count or 0

    async def update_qna_pair(self, qna_id: str, fields: dict[str, Any]) -> QnaPair:
        data = {
            key: value.value if isinstance(value, TrainingStatus) else value
            for key, value in fields.items()
        }
        data["updated_at"] = _now()
        with timed_query("update_qna_pair", qna_id=qna_id, fields=sorted(fields)):
            result = await self._run(
                lambda: self.client.table(self.QNA_PAIRS)
                .update(data)
                .eq("id", qna_id)
                .execute()
            )
        if not result.data:
            raise RepositoryError(f"Failed to update QnA pair {qna_id}")
        return QnaPair(**result.data[0])

    async def set_qna_training_status(
        self, qna_id: str, status: TrainingStatus
    ) -> None:
        data = {"training_status": status.value, "updated_at": _now()}
        with timed_query("set_qna_training_status", qna_id=qna_id, status=status.value):
            await self._run(
                lambda: self.client.table(self.QNA_PAIRS)
                .update(data)
                .eq("id", qna_id)
                .execute()
            )

    async def delete_qna_pair(self, qna_id: str) -> None:
        with timed_query("delete_qna_pair", qna_id=qna_id):
            await self._run(
                lambda: self.client.table(self.QNA_PAIRS)
                .delete()
                .eq("id", qna_id)
                .execute()
            )

    # =========================================================================
    # Text training
    # =========================================================================

    async def get_text_training(self, chatbot_id: str) -> Optional[TextTraining]:
        with timed_query("get_text_training", chatbot_id=chatbot_id):
            result = await self._run(
                lambda: self.client.table(self.TEXT_TRAININGS)
                .select("*")
                .eq("chatbot_id", chatbot_id)
                .execute()
            )
        if not result.data:
            return None
        return TextTraining(**result.data[0])

    async def get_text_training_by_id(
        self, text_training_id: str
    ) -> Optional[TextTraining]:
        with timed_query("get_text_training_by_id", text_training_id=text_training_id):
            result = await self._run(
                lambda: self.client.table(self.TEXT_TRAININGS)
                .select("*")
                .eq("id", text_training_id)
                .execute()
            )
        if not result.data:
            return None
        return TextTraining(**result.data[0])

    async def create_text_training(
        self, chatbot_id: str, content: str
    ) -> TextTraining:
        now = _now()
        data = {
            "id": str(uuid.uuid4()),
            "chatbot_id": chatbot_id,
            "content": content,
            "training_status": TrainingStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        with timed_query("create_text_training", chatbot_id=chatbot_id):
            result = await self._run(
                lambda: self.client.table(self.TEXT_TRAININGS).insert(data).execute()
            )
        if not result.data:
            raise RepositoryError("Failed to create text training")
        return TextTraining(**result.data[0])

    async def replace_text_training(
        self, chatbot_id: str, content: str
    ) -> TextTraining:
        data = {
            "content": content,
            "training_status": TrainingStatus.PENDING.value,
            "updated_at": _now(),
        }
        with timed_query("replace_text_training", chatbot_id=chatbot_id):
            result = await self._run(
                lambda: self.client.table(self.TEXT_TRAININGS)
                .update(data)
                .eq("chatbot_id", chatbot_id)
                .execute()
            )
        if not result.data:
            raise RepositoryError(
                f"Failed to update text training for chatbot {chatbot_id}"
            )
        return TextTraining(**result.data[0])

    async def set_text_training_status(
        self, text_training_id: str, status: TrainingStatus
    ) -> None:
        data = {"training_status": status.value, "updated_at": _now()}
        with timed_query(
            "set_text_training_status",
            text_training_id=text_training_id,
            status=status.value,
        ):
            await self._run(
                lambda: self.client.table(self.TEXT_TRAININGS)
                .update(data)
                .eq("id", text_training_id)
                .execute()
            )

    async def delete_text_training(self, chatbot_id: str) -> None:
        with timed_query("delete_text_training", chatbot_id=chatbot_id):
            await self._run(
                lambda: self.client.table(self.TEXT_TRAININGS)
                .delete()
                .eq("chatbot_id", chatbot_id)
                .execute()
            )

    # =========================================================================
    # Embeddings
    # =========================================================================

    async def insert_embeddings(self, rows: List[EmbeddingRecordCreate]) -> int:
        """Batch insert embedding rows. Returns the number of rows stored."""
        if not rows:
            return 0
        now = _now()
        payload: List[dict[str, Any]] = []
        for row in rows:
            payload.append(
                {
                    "id": str(uuid.uuid4()),
                    "chatbot_id": row.chatbot_id,
                    "source_type": row.source_type.value,
                    "source_id": row.source_id,
                    "content": row.content,
                    "embedding": row.embedding,  # Supabase accepts list for vector column
                    "metadata": row.metadata,
                    "created_at": now,
                }
            )
        with timed_query(
            "insert_embeddings",
            chatbot_id=rows[0].chatbot_id,
            source_type=rows[0].source_type.value,
            source_id=rows[0].source_id,
            count=len(payload),
        ):
            result = await self._run(
                lambda: self.client.table(self.EMBEDDINGS).insert(payload).execute()
            )
        if not result.data:
            raise RepositoryError("Failed to insert embeddings")
        return len(result.data)

    async def delete_embeddings(
        self, chatbot_id: str, source_type: SourceType, source_id: str
    ) -> int:
        with timed_query(
            "delete_embeddings",
            chatbot_id=chatbot_id,
            source_type=source_type.value,
            source_id=source_id,
        ):
            result = await self._run(
                lambda: self.client.table(self.EMBEDDINGS)
                .delete()
                .eq("chatbot_id", chatbot_id)
                .eq("source_type", source_type.value)
                .eq("source_id", source_id)
                .execute()
            )
        return len(result.data or [])

    async def match_embeddings(
        self, chatbot_id: str, query_embedding: List[float], top_k: int
    ) -> List[RetrievedContext]:
        """
        Cosine-similarity search over a chatbot's embeddings.

        Ranking happens in the match_embeddings SQL function
        (score = 1 - cosine distance, highest first).
        """
        params = {
            "query_embedding_text": _embedding_to_text(query_embedding),
            "match_chatbot_id": chatbot_id,
            "match_count": top_k,
        }
        with timed_query("match_embeddings", chatbot_id=chatbot_id, top_k=top_k):
            result = await self._run(
                lambda: self.client.rpc("match_embeddings", params).execute()
            )
        return [
            RetrievedContext(
                content=row["content"],
                score=float(row["score"]),
                metadata=row.get("metadata") or {},
            )
            for row in result.data or []
        ]
