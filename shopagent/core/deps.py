"""Dependency injection for FastAPI routes."""

from functools import lru_cache
from typing import Annotated

import redis.asyncio as aioredis
from fastapi import Depends

from shopagent.core.config import settings
from shopagent.integrations.commerce.client import CommerceClient
from shopagent.services.agent.confirmation import ConfirmationGate
from shopagent.services.agent.runner import AgentRunner
from shopagent.services.agent.state import TurnLimits
from shopagent.services.chat_service import ChatService
from shopagent.services.completion_client import CompletionClient, OpenAICompletionClient
from shopagent.services.session_store import InMemorySessionStore, RedisSessionStore, SessionStore
from shopagent.services.tools.registry import create_commerce_tools

# Shared Redis connection pool
_redis_pool: aioredis.ConnectionPool | None = None


def _get_redis_pool() -> aioredis.ConnectionPool:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.ConnectionPool.from_url(
            str(settings.redis_url), decode_responses=True
        )
    return _redis_pool


def get_redis() -> aioredis.Redis:
    """Redis client on the shared connection pool."""
    return aioredis.Redis(connection_pool=_get_redis_pool())


@lru_cache
def get_session_store() -> SessionStore:
    """Session store selected by ``settings.session_store``."""
    if settings.session_store == "redis":
        return RedisSessionStore(
            get_redis(),
            prefix=settings.redis_prefix,
            ttl_seconds=settings.session_ttl_seconds,
            lock_timeout_seconds=settings.session_lock_timeout_seconds,
        )
    return InMemorySessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        lock_timeout_seconds=settings.session_lock_timeout_seconds,
    )


@lru_cache
def get_commerce_client() -> CommerceClient:
    return CommerceClient(
        base_url=settings.commerce_rpc_url,
        api_token=settings.commerce_api_token,
        timeout=settings.commerce_timeout_seconds,
    )


@lru_cache
def get_completion_client() -> CompletionClient:
    return OpenAICompletionClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.openai_timeout_seconds,
        max_retries=settings.openai_max_retries,
    )


def get_agent_runner(
    completion_client: Annotated[CompletionClient, Depends(get_completion_client)],
    commerce_client: Annotated[CommerceClient, Depends(get_commerce_client)],
) -> AgentRunner:
    return AgentRunner(
        completion_client,
        create_commerce_tools(commerce_client),
        model=settings.openai_model,
        limits=TurnLimits(
            max_rounds=settings.agent_max_rounds,
            max_tool_calls_per_round=settings.agent_max_tool_calls_per_round,
        ),
    )


def get_chat_service(
    store: Annotated[SessionStore, Depends(get_session_store)],
    runner: Annotated[AgentRunner, Depends(get_agent_runner)],
) -> ChatService:
    return ChatService(store, runner, ConfirmationGate())


SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]


__all__ = [
    "ChatServiceDep",
    "SessionStoreDep",
    "get_agent_runner",
    "get_chat_service",
    "get_commerce_client",
    "get_completion_client",
    "get_redis",
    "get_session_store",
]
