"""Training jobs: turn Q&A pairs, text blocks and crawled pages into vectors.

A training job payload is one of three variants, discriminated by `type`.
Each variant knows how to load its source, mark its status and store its
vectors, so the orchestrator never switches on the source type itself.
"""

from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

import logfire
from pydantic import BaseModel, Field, TypeAdapter

from knowledge_engine.models.training_models import (
    SourceType,
    TrainingOutcome,
    TrainingStatus,
)

if TYPE_CHECKING:
    from knowledge_engine.db.repository import KnowledgeRepository
    from knowledge_engine.services.vector_store import VectorStore


class _TrainingJobBase(BaseModel):
    chatbot_id: str
    source_id: str

    def _skipped(self, source_type: SourceType, reason: str) -> TrainingOutcome:
        logfire.info(
            "Training source skipped",
            source_type=source_type.value,
            source_id=self.source_id,
            chatbot_id=self.chatbot_id,
            reason=reason,
        )
        return TrainingOutcome(
            source_type=source_type,
            source_id=self.source_id,
            trained=False,
            reason=reason,
        )

    async def _replace_vectors(
        self, store: "VectorStore", source_type: SourceType, text: str
    ) -> int:
        # Redelivered jobs must not duplicate vectors
        await store.delete_by_source(self.chatbot_id, source_type, self.source_id)
        return await store.store(self.chatbot_id, source_type, self.source_id, [text])


class QnaTrainingJob(_TrainingJobBase):
    """Embed one Q&A pair as "Question: ...\\nAnswer: ..."."""

    type: Literal["qna"] = "qna"

    async def train(
        self, repository: "KnowledgeRepository", store: "VectorStore"
    ) -> TrainingOutcome:
        pair = await repository.get_qna_pair(self.source_id)
        if pair is None:
            return self._skipped(SourceType.QNA, "Q&A pair not found")

        await repository.set_qna_training_status(self.source_id, TrainingStatus.PROCESSING)
        stored = await self._replace_vectors(store, SourceType.QNA, pair.combined_text)
        await repository.set_qna_training_status(self.source_id, TrainingStatus.TRAINED)
        return TrainingOutcome(
            source_type=SourceType.QNA,
            source_id=self.source_id,
            trained=True,
            vectors_stored=stored,
        )

    async def mark_failed(self, repository: "KnowledgeRepository") -> None:
        await repository.set_qna_training_status(self.source_id, TrainingStatus.FAILED)


class TextTrainingJob(_TrainingJobBase):
    """Embed a chatbot's free-text block (chunked by the vector store)."""

    type: Literal["text"] = "text"

    async def train(
        self, repository: "KnowledgeRepository", store: "VectorStore"
    ) -> TrainingOutcome:
        block = await repository.get_text_training_by_id(self.source_id)
        if block is None:
            return self._skipped(SourceType.TEXT, "Text training not found")

        await repository.set_text_training_status(
            self.source_id, TrainingStatus.PROCESSING
        )
        stored = await self._replace_vectors(store, SourceType.TEXT, block.content)
        await repository.set_text_training_status(self.source_id, TrainingStatus.TRAINED)
        return TrainingOutcome(
            source_type=SourceType.TEXT,
            source_id=self.source_id,
            trained=True,
            vectors_stored=stored,
        )

    async def mark_failed(self, repository: "KnowledgeRepository") -> None:
        await repository.set_text_training_status(self.source_id, TrainingStatus.FAILED)


class CrawlPageTrainingJob(_TrainingJobBase):
    """Embed the extracted text of a crawled page. Pages have no training status."""

    type: Literal["crawl-page"] = "crawl-page"

    async def train(
        self, repository: "KnowledgeRepository", store: "VectorStore"
    ) -> TrainingOutcome:
        page = await repository.get_crawled_page(self.source_id)
        if page is None:
            return self._skipped(SourceType.CRAWL, "Crawled page not found")
        if not page.content or not page.content.strip():
            return self._skipped(SourceType.CRAWL, "Crawled page has no text")

        stored = await self._replace_vectors(store, SourceType.CRAWL, page.content)
        return TrainingOutcome(
            source_type=SourceType.CRAWL,
            source_id=self.source_id,
            trained=True,
            vectors_stored=stored,
        )

    async def mark_failed(self, repository: "KnowledgeRepository") -> None:
        return None


TrainingJob = Annotated[
    Union[QnaTrainingJob, TextTrainingJob, CrawlPageTrainingJob],
    Field(discriminator="type"),
]

_training_job_adapter: TypeAdapter[TrainingJob] = TypeAdapter(TrainingJob)


def parse_training_job(payload: dict[str, Any]) -> TrainingJob:
    """Validate a queue payload into its training job variant."""
    return _training_job_adapter.validate_python(payload)


class TrainingOrchestrator:
    """Runs training jobs delivered by the training queue."""

    def __init__(self, repository: "KnowledgeRepository", vector_store: "VectorStore"):
        self._repository = repository
        self._vector_store = vector_store

    async def handle(self, payload: dict[str, Any]) -> TrainingOutcome:
        """
        Train one source.

        A source deleted after the job was enqueued is skipped (trained=False).
        Any other failure marks the source FAILED where it has a status, then
        re-raises so the queue retries.
        """
        job = parse_training_job(payload)
        with logfire.span(
            "training_job",
            type=job.type,
            chatbot_id=job.chatbot_id,
            source_id=job.source_id,
        ):
            try:
                outcome = await job.train(self._repository, self._vector_store)
            except Exception as e:
                logfire.error(
                    "Training job failed",
                    type=job.type,
                    source_id=job.source_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                try:
                    await job.mark_failed(self._repository)
                except Exception as mark_error:
                    logfire.warning(
                        "Could not mark training source as failed",
                        source_id=job.source_id,
                        error=str(mark_error),
                    )
                raise

        if outcome.trained:
            logfire.info(
                "Training job completed",
                type=job.type,
                source_id=job.source_id,
                vectors_stored=outcome.vectors_stored,
            )
        return outcome
