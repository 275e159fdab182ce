"""Retrieval results and augmented prompt models."""

from typing import Any

from pydantic import BaseModel, Field


class RetrievedContext(BaseModel):
    """One stored chunk matched against a query."""

    content: str
    score: float = Field(..., description="Cosine similarity (1 - cosine distance)")
    metadata: dict[str, Any] = Field(default_factory=dict)


class RagResult(BaseModel):
    """Augmented system prompt plus the contexts used to build it."""

    augmented_prompt: str
    contexts: list[RetrievedContext] = Field(default_factory=list)


class ChatMessage(BaseModel):
    """One turn of chat history passed to the generation model."""

    role: str = Field(..., pattern="^(user|assistant)$")
    content: str
