"""Training source models: Q&A pairs, free-text blocks and embedding rows."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class TrainingStatus(str, Enum):
    """Training lifecycle of a source: PENDING -> PROCESSING -> TRAINED | FAILED."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    TRAINED = "TRAINED"
    FAILED = "FAILED"


class SourceType(str, Enum):
    """Kind of source an embedding row was generated from."""

    QNA = "QNA"
    TEXT = "TEXT"
    CRAWL = "CRAWL"


class QnaPair(BaseModel):
    """A question/answer pair used as training data."""

    id: str
    chatbot_id: str
    question: str
    answer: str
    is_active: bool = True
    training_status: TrainingStatus = TrainingStatus.PENDING
    created_at: datetime
    updated_at: datetime | None = None

    @property
    def combined_text(self) -> str:
        return f"Question: {self.question}\nAnswer: {self.answer}"


class QnaPairCreate(BaseModel):
    """Parameters for creating a Q&A pair."""

    question: str = Field(..., min_length=1, description="Question text")
    answer: str = Field(..., min_length=1, description="Answer text")


class QnaPairUpdate(BaseModel):
    """Partial update of a Q&A pair. Unset fields are left unchanged."""

    question: str | None = Field(default=None, min_length=1)
    answer: str | None = Field(default=None, min_length=1)
    is_active: bool | None = None

    @model_validator(mode="after")
    def _require_a_field(self) -> "QnaPairUpdate":
        if self.question is None and self.answer is None and self.is_active is None:
            raise ValueError("At least one of question, answer, is_active is required")
        return self


class TextTraining(BaseModel):
    """The free-text training block of a chatbot (at most one per chatbot)."""

    id: str
    chatbot_id: str
    content: str
    training_status: TrainingStatus = TrainingStatus.PENDING
    created_at: datetime
    updated_at: datetime | None = None


class EmbeddingRecordCreate(BaseModel):
    """One chunk's vector, ready to insert into the embeddings table."""

    chatbot_id: str
    source_type: SourceType
    source_id: str
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)


class TrainingOutcome(BaseModel):
    """Result of running one training job."""

    source_type: SourceType
    source_id: str
    trained: bool = Field(
        ..., description="False when the source was gone or had no content"
    )
    vectors_stored: int = 0
    reason: str | None = None
