"""Pytest configuration and fixtures for the shopagent test suite.

Provides:
- A scripted completion client standing in for the LLM
- A commerce client whose backend tool calls are answered from a dict
- Fake Redis (fakeredis) and in-memory session stores
- Disabled rate limiting
- An ASGI test client with the chat service dependencies overridden
"""

import json
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shopagent.core.deps import get_chat_service, get_session_store
from shopagent.core.rate_limit import limiter
from shopagent.integrations.commerce.client import CommerceClient
from shopagent.main import app
from shopagent.schemas.session import ConversationMessage
from shopagent.services.agent.confirmation import ConfirmationGate
from shopagent.services.agent.runner import AgentRunner
from shopagent.services.agent.state import TurnLimits
from shopagent.services.chat_service import ChatService
from shopagent.services.completion_client import CompletionResponse, ToolCall
from shopagent.services.session_store import InMemorySessionStore
from shopagent.services.tools.base import ToolRegistry
from shopagent.services.tools.registry import create_commerce_tools

# ---------------------------------------------------------------------------
# Disable rate limiting globally for tests
# ---------------------------------------------------------------------------
limiter.enabled = False

TEST_APPLICATION_ID = "test-app"


# ---------------------------------------------------------------------------
# Scripted LLM
# ---------------------------------------------------------------------------


class ScriptedCompletionClient:
    """Completion client replaying a fixed list of responses.

    Every call records the messages it was given so tests can assert on
    what the model saw.
    """

    def __init__(self, responses: list[CompletionResponse] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[list[ConversationMessage]] = []

    def queue(self, *responses: CompletionResponse) -> None:
        self.responses.extend(responses)

    async def run_with_tools(
        self,
        messages: list[ConversationMessage],
        tool_definitions: list[dict[str, Any]],  # noqa: ARG002
        model: str | None = None,  # noqa: ARG002
    ) -> CompletionResponse:
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("ScriptedCompletionClient ran out of responses")
        return self.responses.pop(0)


def text_response(content: str) -> CompletionResponse:
    return CompletionResponse(content=content, finish_reason="stop")


def tool_response(*calls: tuple[str, dict[str, Any] | str]) -> CompletionResponse:
    """Model response requesting ``calls`` as ``(tool_name, arguments)`` pairs."""
    return CompletionResponse(
        tool_calls=[
            ToolCall(
                id=f"call_{i}",
                name=name,
                arguments=args if isinstance(args, str) else json.dumps(args),
            )
            for i, (name, args) in enumerate(calls, start=1)
        ],
        finish_reason="tool_calls",
    )


# ---------------------------------------------------------------------------
# Backend payloads
# ---------------------------------------------------------------------------


def make_search_payload(*products: tuple[str, str], price: float = 199.0) -> dict[str, Any]:
    """A product.search result for ``(product_id, name)`` pairs, all in stock."""
    return {
        "items": [
            {
                "productId": product_id,
                "name": name,
                "priceIncVat": price,
                "currencyCode": "SEK",
                "manufacturerName": "Acme",
                "onHand": {"value": 5, "isActive": True},
            }
            for product_id, name in products
        ],
        "totalCount": len(products),
    }


def make_variant(
    product_id: str,
    part_no: str | None,
    size: str,
    *,
    buyable: bool = True,
    on_hand: float = 3,
) -> dict[str, Any]:
    return {
        "productId": product_id,
        "partNo": part_no,
        "name": f"Slipper {size}",
        "isBuyable": buyable,
        "onHand": {"value": on_hand, "isActive": True},
        "variantParametrics": [{"name": "Size", "value": size, "code": "size", "isPrimary": True}],
    }


def make_product_payload(
    product_id: str,
    name: str,
    variants: list[dict[str, Any]] | None = None,
    *,
    buyable: bool = True,
) -> dict[str, Any]:
    return {
        "productId": product_id,
        "name": name,
        "partNo": f"P-{product_id}",
        "priceIncVat": 299.0,
        "attributes": {"isBuyable": buyable},
        "onHand": {"value": 10, "isActive": True},
        "variants": variants or [],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Provide a fresh fakeredis instance per test."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore(ttl_seconds=3600, lock_timeout_seconds=1.0)


@pytest.fixture
def backend_results() -> dict[str, Any]:
    """Backend tool name -> result (or exception) returned by the mock client."""
    return {}


@pytest.fixture
def commerce_client(backend_results: dict[str, Any]) -> MagicMock:
    """CommerceClient whose call_tool answers from ``backend_results``."""

    async def _call_tool(state: Any, name: str, arguments: dict[str, Any], application_id: str) -> Any:  # noqa: ARG001
        result = backend_results.get(name, {})
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(arguments)
        return result

    client = MagicMock(spec=CommerceClient)
    client.call_tool = AsyncMock(side_effect=_call_tool)
    return client


@pytest.fixture
def tools(commerce_client: MagicMock) -> ToolRegistry:
    return create_commerce_tools(commerce_client)


@pytest.fixture
def completion() -> ScriptedCompletionClient:
    return ScriptedCompletionClient()


@pytest.fixture
def runner(completion: ScriptedCompletionClient, tools: ToolRegistry) -> AgentRunner:
    return AgentRunner(
        completion, tools, model="test-model", limits=TurnLimits(max_rounds=4, max_tool_calls_per_round=2)
    )


@pytest.fixture
def chat_service(session_store: InMemorySessionStore, runner: AgentRunner) -> ChatService:
    return ChatService(session_store, runner, ConfirmationGate(), debug=True)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    chat_service: ChatService,
    session_store: InMemorySessionStore,
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with the chat service and session store overridden."""
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    app.dependency_overrides[get_session_store] = lambda: session_store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def plain_client() -> AsyncGenerator[AsyncClient, None]:
    """Minimal async test client with NO dependency overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
