"""Q&A pair and free-text training management.

Every write that changes trainable text enqueues a training job before
returning; a failed enqueue fails the call. Deletes remove vectors first,
then the source record.
"""

from typing import List

import logfire

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.constants import DEFAULT_PAGE_SIZE, TRAINING_QUEUE_NAME
from knowledge_engine.db.repository import KnowledgeRepository
from knowledge_engine.exceptions import NotFoundError
from knowledge_engine.jobs.job_queue import BackoffPolicy, JobOptions, JobQueue
from knowledge_engine.models.pagination import Paginated, page_offset
from knowledge_engine.models.training_models import (
    QnaPair,
    QnaPairCreate,
    QnaPairUpdate,
    SourceType,
    TextTraining,
    TrainingStatus,
)
from knowledge_engine.services.training import QnaTrainingJob, TextTrainingJob
from knowledge_engine.services.vector_store import VectorStore


class KnowledgeService:
    """Creates, updates and deletes Q&A pairs and text training blocks."""

    def __init__(
        self,
        repository: KnowledgeRepository,
        vector_store: VectorStore,
        queue: JobQueue,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._repository = repository
        self._vector_store = vector_store
        self._queue = queue

    def _job_options(self) -> JobOptions:
        return JobOptions(
            attempts=self._settings.training_job_attempts,
            backoff=BackoffPolicy(
                type="exponential",
                delay_seconds=self._settings.training_job_backoff_seconds,
            ),
        )

    async def _enqueue_qna(self, pair: QnaPair) -> None:
        job = QnaTrainingJob(chatbot_id=pair.chatbot_id, source_id=pair.id)
        await self._queue.enqueue(
            TRAINING_QUEUE_NAME, job.model_dump(), self._job_options()
        )

    # =========================================================================
    # Q&A pairs
    # =========================================================================

    async def create_qna(self, chatbot_id: str, data: QnaPairCreate) -> QnaPair:
        pairs = await self.bulk_create_qna(chatbot_id, [data])
        return pairs[0]

    async def bulk_create_qna(
        self, chatbot_id: str, items: List[QnaPairCreate]
    ) -> List[QnaPair]:
        """Create pairs in one insert, then enqueue one training job per pair."""
        if not items:
            return []
        pairs = await self._repository.create_qna_pairs(chatbot_id, items)
        for pair in pairs:
            await self._enqueue_qna(pair)
        logfire.info(
            "QnA pairs created", chatbot_id=chatbot_id, count=len(pairs)
        )
        return pairs

    async def get_qna(self, qna_id: str) -> QnaPair:
        pair = await self._repository.get_qna_pair(qna_id)
        if pair is None:
            raise NotFoundError(f"QnA pair not found: {qna_id}")
        return pair

    async def list_qna(
        self,
        chatbot_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
        status: TrainingStatus | None = None,
    ) -> Paginated[QnaPair]:
        term = search.strip() if search else None
        pairs, total = await self._repository.list_qna_pairs(
            chatbot_id,
            page_offset(page, limit),
            limit,
            search=term or None,
            status=status,
        )
        return Paginated[QnaPair].build(pairs, total, page, limit)

    async def update_qna(self, qna_id: str, data: QnaPairUpdate) -> QnaPair:
        """
        Apply a partial update.

        When the question or answer text changes, the pair's vectors are
        deleted and a training job is enqueued. Toggling is_active alone
        never retrains.
        """
        existing = await self.get_qna(qna_id)
        fields = data.model_dump(exclude_none=True)
        text_changed = (
            "question" in fields and fields["question"] != existing.question
        ) or ("answer" in fields and fields["answer"] != existing.answer)

        if text_changed:
            fields["training_status"] = TrainingStatus.PENDING
        updated = await self._repository.update_qna_pair(qna_id, fields)

        if text_changed:
            await self._vector_store.delete_by_source(
                updated.chatbot_id, SourceType.QNA, qna_id
            )
            await self._enqueue_qna(updated)
        logfire.info(
            "QnA pair updated",
            qna_id=qna_id,
            fields=sorted(data.model_dump(exclude_none=True)),
            retrain=text_changed,
        )
        return updated

    async def delete_qna(self, qna_id: str) -> None:
        pair = await self.get_qna(qna_id)
        await self._vector_store.delete_by_source(pair.chatbot_id, SourceType.QNA, qna_id)
        await self._repository.delete_qna_pair(qna_id)
        logfire.info("QnA pair deleted", qna_id=qna_id, chatbot_id=pair.chatbot_id)

    # =========================================================================
    # Text training
    # =========================================================================

    async def get_text_training(self, chatbot_id: str) -> TextTraining | None:
        return await self._repository.get_text_training(chatbot_id)

    async def upsert_text_training(self, chatbot_id: str, content: str) -> TextTraining:
        """
        Create or replace the chatbot's text block and enqueue its training.

        Replacing a block deletes its old vectors first.
        """
        if not content or not content.strip():
            raise ValueError("Text training content must not be empty")

        existing = await self._repository.get_text_training(chatbot_id)
        if existing is not None:
            await self._vector_store.delete_by_source(
                chatbot_id, SourceType.TEXT, existing.id
            )
            block = await self._repository.replace_text_training(chatbot_id, content)
        else:
            block = await self._repository.create_text_training(chatbot_id, content)

        job = TextTrainingJob(chatbot_id=chatbot_id, source_id=block.id)
        await self._queue.enqueue(
            TRAINING_QUEUE_NAME, job.model_dump(), self._job_options()
        )
        logfire.info(
            "Text training saved",
            chatbot_id=chatbot_id,
            text_training_id=block.id,
            replaced=existing is not None,
            content_length=len(content),
        )
        return block

    async def delete_text_training(self, chatbot_id: str) -> None:
        existing = await self._repository.get_text_training(chatbot_id)
        if existing is None:
            raise NotFoundError(f"No text training for chatbot: {chatbot_id}")
        await self._vector_store.delete_by_source(
            chatbot_id, SourceType.TEXT, existing.id
        )
        await self._repository.delete_text_training(chatbot_id)
        logfire.info(
            "Text training deleted",
            chatbot_id=chatbot_id,
            text_training_id=existing.id,
        )
