"""Vector storage keyed by (chatbot, source type, source id)."""

from typing import List

import logfire

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.db.repository import KnowledgeRepository
from knowledge_engine.models.retrieval_models import RetrievedContext
from knowledge_engine.models.training_models import EmbeddingRecordCreate, SourceType
from knowledge_engine.services.chunker import chunk_text
from knowledge_engine.services.embedding_service import GatewayEmbedder, TextEmbedder


class VectorStore:
    """Chunks, embeds and persists source texts; searches them by similarity."""

    def __init__(
        self,
        repository: KnowledgeRepository,
        embedder: TextEmbedder | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._repository = repository
        self._embedder = embedder or GatewayEmbedder(
            batch_size=self._settings.embedding_batch_size
        )

    async def store(
        self,
        chatbot_id: str,
        source_type: SourceType,
        source_id: str,
        texts: List[str],
    ) -> int:
        """
        Chunk every text, embed the chunks in batches and persist them.

        Each row carries {"chunk_index", "total_chunks"} metadata, indexed
        across all texts of the source.

        Returns:
            Number of vectors stored (0 if the texts produce no chunks)
        """
        chunks: List[str] = []
        for text in texts:
            chunks.extend(
                chunk_text(
                    text,
                    chunk_size=self._settings.chunk_size_words,
                    overlap=self._settings.chunk_overlap_words,
                )
            )

        if not chunks:
            logfire.warning(
                "No chunks generated for source",
                chatbot_id=chatbot_id,
                source_type=source_type.value,
                source_id=source_id,
            )
            return 0

        logfire.info(
            "Generating embeddings for source",
            chatbot_id=chatbot_id,
            source_type=source_type.value,
            source_id=source_id,
            chunk_count=len(chunks),
        )

        stored = 0
        batch_size = self._settings.embedding_batch_size
        for start in range(0, len(chunks), batch_size):
            batch = chunks[start : start + batch_size]
            vectors = await self._embedder.embed(batch)
            rows = [
                EmbeddingRecordCreate(
                    chatbot_id=chatbot_id,
                    source_type=source_type,
                    source_id=source_id,
                    content=content,
                    embedding=vector,
                    metadata={
                        "chunk_index": start + offset,
                        "total_chunks": len(chunks),
                    },
                )
                for offset, (content, vector) in enumerate(zip(batch, vectors))
            ]
            stored += await self._repository.insert_embeddings(rows)

        logfire.info(
            "Stored embeddings for source",
            chatbot_id=chatbot_id,
            source_type=source_type.value,
            source_id=source_id,
            stored=stored,
        )
        return stored

    async def delete_by_source(
        self, chatbot_id: str, source_type: SourceType, source_id: str
    ) -> int:
        """Remove every vector of a source. Returns 0 when there were none."""
        deleted = await self._repository.delete_embeddings(
            chatbot_id, source_type, source_id
        )
        logfire.info(
            "Deleted embeddings for source",
            chatbot_id=chatbot_id,
            source_type=source_type.value,
            source_id=source_id,
            deleted=deleted,
        )
        return deleted

    async def search(
        self, chatbot_id: str, query: str, top_k: int
    ) -> List[RetrievedContext]:
        """
        Rank a chatbot's vectors by cosine similarity to the query.

        Embeds the query once and returns the top_k best matches, highest
        score first. No relevance filtering happens here.
        """
        query_embedding = await self._embedder.embed_query(query)
        results = await self._repository.match_embeddings(
            chatbot_id, query_embedding, top_k
        )
        return sorted(results, key=lambda r: r.score, reverse=True)[:top_k]
