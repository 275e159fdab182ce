"""Chat turns grounded in a chatbot's knowledge base, via PydanticAI Gateway."""

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List

import logfire
from pydantic import BaseModel
from pydantic_ai import Agent, RunContext
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.models.retrieval_models import (
    ChatMessage,
    RagResult,
    RetrievedContext,
)
from knowledge_engine.services.rag_service import RagService

logger = logging.getLogger(__name__)


class ChatDeps(BaseModel):
    """Dependencies passed to the chat agent at runtime."""

    system_prompt: str


@dataclass
class ChatTurn:
    """Everything needed to generate one reply."""

    chatbot_id: str
    user_message: str
    system_prompt: str
    contexts: List[RetrievedContext] = field(default_factory=list)
    message_history: List[ModelMessage] = field(default_factory=list)


def to_model_messages(history: List[ChatMessage]) -> List[ModelMessage]:
    """Convert stored chat history to PydanticAI messages, oldest first."""
    messages: List[ModelMessage] = []
    for message in history:
        if message.role == "user":
            messages.append(ModelRequest(parts=[UserPromptPart(content=message.content)]))
        else:
            messages.append(ModelResponse(parts=[TextPart(content=message.content)]))
    return messages


class ChatService:
    """Retrieves context for a user message and streams the model's reply."""

    def __init__(
        self,
        rag_service: RagService,
        model: Model | str | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize chat service.

        Args:
            rag_service: Retrieval/augmentation service
            model: Model or model string (e.g. 'gateway/anthropic:claude-3-5-sonnet-latest').
                   Defaults to settings.chat_model
            settings: Settings override
        """
        self._settings = settings or get_settings()
        self._rag_service = rag_service
        model_name = model or self._settings.chat_model

        self.agent = Agent(model_name, deps_type=ChatDeps)
        self.agent.instructions(self._instructions)

        logger.info(f"ChatService initialized with model: {model_name}")

    def _instructions(self, ctx: RunContext[ChatDeps]) -> str:
        return ctx.deps.system_prompt

    async def prepare_turn(
        self,
        chatbot_id: str,
        user_message: str,
        base_prompt: str | None = None,
        history: List[ChatMessage] | None = None,
    ) -> ChatTurn:
        """
        Retrieve context for the user message and build the system prompt.

        Retrieval failures fail the turn unless rag_fail_open is set, in
        which case the base prompt is used and a warning is logged.
        """
        try:
            rag = await self._rag_service.retrieve_and_augment(
                chatbot_id, user_message, base_prompt
            )
        except Exception as e:
            if not self._settings.rag_fail_open:
                raise
            logfire.warning(
                "Retrieval failed, answering without knowledge base context",
                chatbot_id=chatbot_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            rag = RagResult(augmented_prompt=base_prompt or "", contexts=[])

        return ChatTurn(
            chatbot_id=chatbot_id,
            user_message=user_message,
            system_prompt=rag.augmented_prompt,
            contexts=rag.contexts,
            message_history=to_model_messages(history or []),
        )

    async def stream_reply(self, turn: ChatTurn) -> AsyncIterator[str]:
        """Yield the reply text as it is generated."""
        with logfire.span(
            "chat_reply",
            chatbot_id=turn.chatbot_id,
            context_count=len(turn.contexts),
            history_length=len(turn.message_history),
        ):
            async with self.agent.run_stream(
                turn.user_message,
                deps=ChatDeps(system_prompt=turn.system_prompt),
                message_history=turn.message_history,
                model_settings={"temperature": self._settings.chat_temperature},
            ) as result:
                async for delta in result.stream_text(delta=True):
                    yield delta
