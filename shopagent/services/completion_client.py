"""LLM completion client used by the agent loop.

The loop only needs one capability: given the conversation and the tool
definitions, return the assistant's text and any tool calls. The OpenAI
implementation goes through langchain's ChatOpenAI so that tool binding
and message conversion stay in one place.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI

from shopagent.schemas.session import ConversationMessage, MessageRole

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A tool call requested by the model; ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass
class CompletionResponse:
    """Normalized model response."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None


class CompletionClient(Protocol):
    async def run_with_tools(
        self,
        messages: list[ConversationMessage],
        tool_definitions: list[dict[str, Any]],
        model: str | None = None,
    ) -> CompletionResponse: ...


def _assistant_tool_calls(message: ConversationMessage) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    valid: list[dict[str, Any]] = []
    invalid: list[dict[str, Any]] = []
    for call in message.tool_calls or []:
        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError:
            args = None
        if isinstance(args, dict):
            valid.append({"id": call.id, "name": call.name, "args": args})
        else:
            invalid.append({"id": call.id, "name": call.name, "args": call.arguments, "error": None})
    return valid, invalid


def to_langchain_messages(messages: list[ConversationMessage]) -> list[BaseMessage]:
    """Convert stored conversation messages to langchain message objects."""
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == MessageRole.SYSTEM:
            converted.append(SystemMessage(content=message.content))
        elif message.role == MessageRole.USER:
            converted.append(HumanMessage(content=message.content))
        elif message.role == MessageRole.ASSISTANT:
            valid, invalid = _assistant_tool_calls(message)
            converted.append(AIMessage(content=message.content, tool_calls=valid, invalid_tool_calls=invalid))
        else:
            converted.append(ToolMessage(content=message.content, tool_call_id=message.tool_call_id or ""))
    return converted


def from_langchain_response(response: AIMessage) -> CompletionResponse:
    """Flatten an AIMessage into a CompletionResponse.

    Calls langchain could not parse keep their raw argument text so the
    loop can report them as malformed.
    """
    tool_calls = [
        ToolCall(id=tc.get("id") or "", name=tc["name"], arguments=json.dumps(tc.get("args") or {}))
        for tc in response.tool_calls
    ]
    tool_calls.extend(
        ToolCall(id=tc.get("id") or "", name=tc.get("name") or "", arguments=tc.get("args") or "")
        for tc in response.invalid_tool_calls
    )
    return CompletionResponse(
        content=response.content if isinstance(response.content, str) else "",
        tool_calls=tool_calls,
        finish_reason=response.response_metadata.get("finish_reason"),
    )


class OpenAICompletionClient:
    """CompletionClient backed by ChatOpenAI."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 120.0,
        max_retries: int = 2,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._llms: dict[str, ChatOpenAI] = {}

    def _get_llm(self, model: str) -> ChatOpenAI:
        if model not in self._llms:
            self._llms[model] = ChatOpenAI(
                model=model,
                api_key=self._api_key,
                temperature=0.2,
                timeout=self._timeout,
                max_retries=self._max_retries,
            )
        return self._llms[model]

    async def run_with_tools(
        self,
        messages: list[ConversationMessage],
        tool_definitions: list[dict[str, Any]],
        model: str | None = None,
    ) -> CompletionResponse:
        llm = self._get_llm(model or self.model)
        bound_llm = llm.bind_tools(tool_definitions) if tool_definitions else llm
        response: AIMessage = await bound_llm.ainvoke(to_langchain_messages(messages))
        result = from_langchain_response(response)
        logger.debug(
            "Completion finished: finish_reason=%s, tool_calls=%d",
            result.finish_reason,
            len(result.tool_calls),
        )
        return result
