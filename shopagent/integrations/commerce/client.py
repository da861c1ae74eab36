"""Commerce backend client speaking JSON-RPC 2.0 over streamable HTTP."""

import json
import logging
from typing import Any

import httpx

from shopagent.core.config import settings
from shopagent.schemas.session import BackendState

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "shopagent", "version": settings.version}
SESSION_HEADER = "mcp-session-id"
MAX_ERROR_BODY = 2000

# Backend tool names
PRODUCT_SEARCH = "product.search"
PRODUCT_GET = "product.get"
CART_GET = "cart.get"
CART_ADD_ITEM = "cart.addItem"
CART_SET_ITEM_QUANTITY = "cart.setItemQuantity"
CART_REMOVE_ITEM = "cart.removeItem"


class CommerceBackendError(Exception):
    """Raised when the backend rejects a request or returns an unusable body."""


class CommerceClient:
    """Async client for the commerce backend tool endpoint.

    Backend session continuity lives in the caller-owned ``BackendState``:
    the first call performs the initialize handshake and stores the session
    id, and every request consumes the next JSON-RPC id from the state.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        self._transport = transport

    async def call_tool(
        self,
        state: BackendState,
        name: str,
        arguments: dict[str, Any],
        application_id: str,
    ) -> Any:
        """Invoke a backend tool and return its JSON-RPC result."""
        await self.ensure_initialized(state, application_id)
        request = {
            "jsonrpc": "2.0",
            "id": self._next_id(state),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        response = await self._send(request, state, application_id)
        if "error" in response:
            error = response["error"]
            raise CommerceBackendError(
                f"Tool call {name} failed: {error.get('message')} (code: {error.get('code')})"
            )
        return response.get("result")

    async def ensure_initialized(self, state: BackendState, application_id: str) -> None:
        """Perform the initialize handshake once per backend session."""
        if state.session_id:
            return

        request = {
            "jsonrpc": "2.0",
            "id": self._next_id(state),
            "method": "initialize",
            "params": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        }
        response = await self._send(request, state, application_id)
        if "error" in response:
            raise CommerceBackendError(f"Initialize failed: {response['error'].get('message')}")

        await self._send({"jsonrpc": "2.0", "method": "notifications/initialized"}, state, application_id)
        logger.info("Commerce backend session initialized: %s", state.session_id)

    @staticmethod
    def _next_id(state: BackendState) -> int:
        rpc_id = state.next_rpc_id
        state.next_rpc_id += 1
        return rpc_id

    async def _send(
        self, request: dict[str, Any], state: BackendState, application_id: str
    ) -> dict[str, Any]:
        headers = {**self.headers, "application-id": application_id}
        if state.session_id:
            headers[SESSION_HEADER] = state.session_id

        async with httpx.AsyncClient(
            headers=headers, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.post(self.base_url, json=request)

        session_id = response.headers.get(SESSION_HEADER)
        if session_id and not state.session_id:
            state.session_id = session_id

        if response.status_code == 202:
            return {"jsonrpc": "2.0", "result": {"accepted": True}}

        if response.is_error:
            raise CommerceBackendError(
                f"Backend request {request['method']} failed: "
                f"status={response.status_code}, body={response.text[:MAX_ERROR_BODY]}"
            )

        content_type = response.headers.get("content-type", "")
        try:
            if "text/event-stream" in content_type:
                return self._parse_event_stream(response.text, request.get("id"))
            parsed: dict[str, Any] = response.json()
            return parsed
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(
                "Failed to parse backend response: method=%s status=%s content_type=%s",
                request["method"],
                response.status_code,
                content_type,
            )
            raise CommerceBackendError(
                f"Failed to parse backend response for {request['method']}: {e}"
            ) from e

    @staticmethod
    def _parse_event_stream(body: str, rpc_id: int | None) -> dict[str, Any]:
        """Pick the JSON-RPC message matching ``rpc_id`` out of an SSE body."""
        messages: list[dict[str, Any]] = []
        for line in body.splitlines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if not data:
                continue
            message = json.loads(data)
            if isinstance(message, dict):
                messages.append(message)

        for message in messages:
            if message.get("id") == rpc_id:
                return message
        if messages:
            return messages[-1]
        raise ValueError("No JSON-RPC message found in event stream")
