"""Tests for ChatService."""

from typing import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic_ai.messages import ModelMessage, ModelRequest, ModelResponse
from pydantic_ai.models.function import AgentInfo, FunctionModel
from pydantic_ai.models.test import TestModel

from knowledge_engine.models.retrieval_models import ChatMessage, RagResult, RetrievedContext
from knowledge_engine.services.chat_service import ChatService, to_model_messages


def stub_rag_service(result=None, error=None):
    rag = MagicMock()
    rag.retrieve_and_augment = AsyncMock(return_value=result, side_effect=error)
    return rag


async def collect(stream) -> str:
    return "".join([delta async for delta in stream])


class TestToModelMessages:
    """Test chat history conversion."""

    def test_roles_map_to_requests_and_responses(self):
        history = [
            ChatMessage(role="user", content="Hi"),
            ChatMessage(role="assistant", content="Hello!"),
        ]

        messages = to_model_messages(history)

        assert isinstance(messages[0], ModelRequest)
        assert messages[0].parts[0].content == "Hi"
        assert isinstance(messages[1], ModelResponse)
        assert messages[1].parts[0].content == "Hello!"

    def test_empty_history(self):
        assert to_model_messages([]) == []


class TestPrepareTurn:
    """Test ChatService.prepare_turn()."""

    @pytest.mark.asyncio
    async def test_turn_uses_augmented_prompt(self, test_settings):
        contexts = [RetrievedContext(content="Ships in 5 days.", score=0.8)]
        rag = stub_rag_service(RagResult(augmented_prompt="AUGMENTED", contexts=contexts))
        service = ChatService(rag, model=TestModel(), settings=test_settings)

        turn = await service.prepare_turn(
            "bot-1",
            "How long is shipping?",
            base_prompt="Base",
            history=[ChatMessage(role="user", content="Hi")],
        )

        assert turn.system_prompt == "AUGMENTED"
        assert turn.contexts == contexts
        assert len(turn.message_history) == 1
        rag.retrieve_and_augment.assert_awaited_once_with(
            "bot-1", "How long is shipping?", "Base"
        )

    @pytest.mark.asyncio
    async def test_retrieval_failure_fails_closed_by_default(self, test_settings):
        rag = stub_rag_service(error=RuntimeError("vector store down"))
        service = ChatService(rag, model=TestModel(), settings=test_settings)

        with pytest.raises(RuntimeError, match="vector store down"):
            await service.prepare_turn("bot-1", "Question?", base_prompt="Base")

    @pytest.mark.asyncio
    async def test_retrieval_failure_can_fail_open(self, test_settings, logfire_capture):
        settings = test_settings.model_copy(update={"rag_fail_open": True})
        rag = stub_rag_service(error=RuntimeError("vector store down"))
        service = ChatService(rag, model=TestModel(), settings=settings)

        turn = await service.prepare_turn("bot-1", "Question?", base_prompt="Base")

        assert turn.system_prompt == "Base"
        assert turn.contexts == []
        assert any(level == "warning" for level, _, _ in logfire_capture)


class TestStreamReply:
    """Test ChatService.stream_reply()."""

    @pytest.mark.asyncio
    async def test_reply_is_streamed(self, test_settings):
        rag = stub_rag_service(RagResult(augmented_prompt="Prompt", contexts=[]))
        service = ChatService(
            rag, model=TestModel(custom_output_text="Thirty days."), settings=test_settings
        )

        turn = await service.prepare_turn("bot-1", "Return policy?")
        reply = await collect(service.stream_reply(turn))

        assert reply == "Thirty days."

    @pytest.mark.asyncio
    async def test_system_prompt_and_history_reach_the_model(self, test_settings):
        seen = {}

        async def stream_fn(messages: list[ModelMessage], info: AgentInfo) -> AsyncIterator[str]:
            seen["history_length"] = len(messages)
            seen["instructions"] = messages[-1].instructions
            yield "ok"

        rag = stub_rag_service(RagResult(augmented_prompt="GROUNDED PROMPT", contexts=[]))
        service = ChatService(
            rag, model=FunctionModel(stream_function=stream_fn), settings=test_settings
        )

        turn = await service.prepare_turn(
            "bot-1",
            "And now?",
            history=[
                ChatMessage(role="user", content="Hi"),
                ChatMessage(role="assistant", content="Hello!"),
            ],
        )
        reply = await collect(service.stream_reply(turn))

        assert reply == "ok"
        assert seen["instructions"] == "GROUNDED PROMPT"
        # two history messages plus the new request
        assert seen["history_length"] == 3
