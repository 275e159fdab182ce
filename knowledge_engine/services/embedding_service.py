"""Embedding generation via PydanticAI Gateway."""

import re
from typing import List, Protocol

import logfire
from pydantic_ai import Embedder

from knowledge_engine.config import get_settings
from knowledge_engine.exceptions import EmbeddingError


class TextEmbedder(Protocol):
    """Turns texts into fixed-dimension vectors."""

    async def embed(self, texts: List[str]) -> List[List[float]]: ...

    async def embed_query(self, query: str) -> List[float]: ...


def _clean(text: str) -> str:
    """Collapse whitespace (newlines included) to single spaces."""
    return re.sub(r"\s+", " ", text or "").strip()


def _check_dimensions(vectors: List[List[float]], dimensions: int) -> None:
    for vector in vectors:
        if len(vector) != dimensions:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {dimensions}"
            )


async def generate_embeddings(
    texts: List[str], batch_size: int | None = None
) -> List[List[float]]:
    """
    Generate embeddings for a list of texts via PydanticAI Gateway.

    Texts are sent in batches of settings.embedding_batch_size to respect
    provider rate limits; output order matches input order. Provider errors
    propagate so the job queue can retry.

    Args:
        texts: List of strings to embed (e.g. chunk contents).
        batch_size: Override for the configured batch size.

    Returns:
        List of embedding vectors (each a list of floats).

    Raises:
        EmbeddingError: If a text is empty after whitespace normalization,
            or the provider returns the wrong number or size of vectors.
    """
    if not texts:
        return []
    cleaned = [_clean(text) for text in texts]
    for index, text in enumerate(cleaned):
        if not text:
            raise EmbeddingError(
                f"Cannot generate embedding for empty text (index {index})"
            )

    settings = get_settings()
    size = batch_size or settings.embedding_batch_size
    embedder = Embedder(settings.embedding_model)

    vectors: List[List[float]] = []
    for start in range(0, len(cleaned), size):
        batch = cleaned[start : start + size]
        with logfire.span(
            "embedding_generate",
            text_count=len(batch),
            batch_start=start,
            total_texts=len(cleaned),
        ):
            result = await embedder.embed_documents(batch)
        batch_vectors = [list(v) for v in result.embeddings]
        if len(batch_vectors) != len(batch):
            raise EmbeddingError(
                f"Provider returned {len(batch_vectors)} embeddings for {len(batch)} texts"
            )
        vectors.extend(batch_vectors)

    _check_dimensions(vectors, settings.embedding_dimensions)
    return vectors


async def embed_query(query: str) -> List[float]:
    """
    Generate a single embedding for a search query via PydanticAI Gateway.

    Args:
        query: Search query string.

    Returns:
        Single embedding vector (list of floats).

    Raises:
        EmbeddingError: If the query is empty or no embedding comes back.
    """
    cleaned = _clean(query)
    if not cleaned:
        raise EmbeddingError("Cannot generate embedding for empty query")
    settings = get_settings()
    embedder = Embedder(settings.embedding_model)
    with logfire.span("embedding_query"):
        result = await embedder.embed_query(cleaned)
    if not result.embeddings:
        raise EmbeddingError("Provider returned no embedding for query")
    vector = list(result.embeddings[0])
    _check_dimensions([vector], settings.embedding_dimensions)
    return vector


class GatewayEmbedder:
    """TextEmbedder backed by the module-level gateway functions."""

    def __init__(self, batch_size: int | None = None):
        self._batch_size = batch_size

    async def embed(self, texts: List[str]) -> List[List[float]]:
        return await generate_embeddings(texts, batch_size=self._batch_size)

    async def embed_query(self, query: str) -> List[float]:
        return await embed_query(query)
