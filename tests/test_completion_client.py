"""Tests for the langchain-backed completion client."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from shopagent.schemas.session import ConversationMessage, MessageRole, ToolCallDescriptor
from shopagent.services.completion_client import (
    OpenAICompletionClient,
    from_langchain_response,
    to_langchain_messages,
)


class TestMessageConversion:
    def test_roles_map_to_langchain_types(self) -> None:
        messages = [
            ConversationMessage(role=MessageRole.SYSTEM, content="sys"),
            ConversationMessage(role=MessageRole.USER, content="hi"),
            ConversationMessage(
                role=MessageRole.ASSISTANT,
                tool_calls=[ToolCallDescriptor(id="c1", name="product_search", arguments='{"query": "boots"}')],
            ),
            ConversationMessage(role=MessageRole.TOOL, content='{"items": []}', tool_call_id="c1"),
        ]

        converted = to_langchain_messages(messages)

        assert [type(m) for m in converted] == [SystemMessage, HumanMessage, AIMessage, ToolMessage]
        assert converted[2].tool_calls[0]["args"] == {"query": "boots"}
        assert converted[3].tool_call_id == "c1"

    def test_unparseable_stored_arguments_kept_as_invalid(self) -> None:
        message = ConversationMessage(
            role=MessageRole.ASSISTANT,
            tool_calls=[ToolCallDescriptor(id="c1", name="product_get", arguments="{oops")],
        )

        converted = to_langchain_messages([message])[0]

        assert converted.tool_calls == []
        assert converted.invalid_tool_calls[0]["args"] == "{oops"


class TestResponseConversion:
    def test_tool_calls_serialized(self) -> None:
        response = AIMessage(
            content="",
            tool_calls=[{"id": "c1", "name": "product_search", "args": {"query": "boots"}}],
            response_metadata={"finish_reason": "tool_calls"},
        )

        result = from_langchain_response(response)

        assert result.finish_reason == "tool_calls"
        assert result.tool_calls[0].name == "product_search"
        assert json.loads(result.tool_calls[0].arguments) == {"query": "boots"}

    def test_invalid_tool_calls_keep_raw_text(self) -> None:
        response = AIMessage(
            content="",
            invalid_tool_calls=[{"id": "c2", "name": "product_get", "args": "{bad", "error": "parse"}],
        )

        result = from_langchain_response(response)

        assert result.tool_calls[0].arguments == "{bad"

    def test_text_response(self) -> None:
        result = from_langchain_response(AIMessage(content="Hello"))
        assert result.content == "Hello"
        assert result.tool_calls == []


class TestOpenAICompletionClient:
    @pytest.mark.asyncio
    async def test_binds_tools_and_invokes(self) -> None:
        bound = MagicMock()
        bound.ainvoke = AsyncMock(return_value=AIMessage(content="Hi"))
        llm = MagicMock()
        llm.bind_tools.return_value = bound
        definitions = [{"type": "function", "function": {"name": "cart_get", "parameters": {}}}]

        with patch("shopagent.services.completion_client.ChatOpenAI", return_value=llm) as chat_cls:
            client = OpenAICompletionClient(api_key="sk-test", model="gpt-4o-mini")
            first = await client.run_with_tools(
                [ConversationMessage(role=MessageRole.USER, content="hi")], definitions
            )
            await client.run_with_tools([ConversationMessage(role=MessageRole.USER, content="again")], definitions)

        assert first.content == "Hi"
        chat_cls.assert_called_once()
        assert chat_cls.call_args.kwargs["model"] == "gpt-4o-mini"
        llm.bind_tools.assert_called_with(definitions)
        sent = bound.ainvoke.await_args_list[0].args[0]
        assert isinstance(sent[0], HumanMessage)

    @pytest.mark.asyncio
    async def test_model_override(self) -> None:
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=AIMessage(content="ok"))

        with patch("shopagent.services.completion_client.ChatOpenAI", return_value=llm) as chat_cls:
            client = OpenAICompletionClient(api_key="sk-test", model="gpt-4o-mini")
            await client.run_with_tools([ConversationMessage(role=MessageRole.USER, content="hi")], [], "gpt-4o")

        assert chat_cls.call_args.kwargs["model"] == "gpt-4o"
        llm.bind_tools.assert_not_called()
