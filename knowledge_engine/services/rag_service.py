"""Retrieval-augmented prompt composition."""

from typing import List

import logfire

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.models.retrieval_models import RagResult, RetrievedContext
from knowledge_engine.services.vector_store import VectorStore

RAG_INSTRUCTIONS = (
    "Use the following knowledge base context to answer the user's question.",
    "If the context is relevant, incorporate it into your response.",
    "If the context is not relevant to the question, rely on your general knowledge.",
    "When using information from the context, be accurate and helpful.",
)
CONTEXT_BEGIN_MARKER = "--- Knowledge Base Context ---"
CONTEXT_END_MARKER = "--- End Context ---"


def build_augmented_prompt(
    base_prompt: str | None, contexts: List[RetrievedContext]
) -> RagResult:
    """
    Prepend retrieved context to a chatbot's system prompt.

    With no contexts the base prompt is returned unchanged. Otherwise the
    grounding instructions and numbered "[Source N]" blocks come first and
    the base prompt follows on the next line, so a custom prompt cannot
    displace the grounding instructions.
    """
    base = base_prompt or ""
    if not contexts:
        return RagResult(augmented_prompt=base, contexts=[])

    context_block = "\n\n".join(
        f"[Source {index}] {ctx.content}" for index, ctx in enumerate(contexts, start=1)
    )
    prefix = "\n".join(
        [
            *RAG_INSTRUCTIONS,
            "",
            CONTEXT_BEGIN_MARKER,
            context_block,
            CONTEXT_END_MARKER,
            "",
        ]
    )
    augmented = f"{prefix}\n{base}" if base else prefix
    return RagResult(augmented_prompt=augmented, contexts=list(contexts))


class RagService:
    """Retrieves relevant chunks for a query and builds the augmented prompt."""

    def __init__(self, vector_store: VectorStore, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self._vector_store = vector_store

    async def retrieve_context(
        self, chatbot_id: str, query: str, top_k: int | None = None
    ) -> List[RetrievedContext]:
        """
        Search the chatbot's vectors and drop low-confidence matches.

        Only results scoring strictly above the relevance threshold are kept.
        """
        limit = top_k or self._settings.rag_top_k
        threshold = self._settings.rag_relevance_threshold
        results = await self._vector_store.search(chatbot_id, query, limit)
        relevant = [r for r in results if r.score > threshold]
        logfire.debug(
            "RAG context retrieved",
            chatbot_id=chatbot_id,
            relevant=len(relevant),
            retrieved=len(results),
            threshold=threshold,
        )
        return relevant

    async def retrieve_and_augment(
        self,
        chatbot_id: str,
        query: str,
        base_prompt: str | None,
        top_k: int | None = None,
    ) -> RagResult:
        contexts = await self.retrieve_context(chatbot_id, query, top_k)
        return build_augmented_prompt(base_prompt, contexts)
