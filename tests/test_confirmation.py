"""Tests for the cart confirmation gate."""

from typing import Any
from unittest.mock import MagicMock

import pytest

from shopagent.integrations.commerce.client import CART_ADD_ITEM, CART_REMOVE_ITEM, CommerceBackendError
from shopagent.schemas.session import (
    BackendState,
    CartMutationKind,
    InvalidTransitionError,
    PendingAction,
    PendingActionStatus,
    ToolContext,
)
from shopagent.services.agent.confirmation import (
    ConfirmationGate,
    ReplyKind,
    classify_reply,
    is_affirmation,
    is_cart_mutation_tool,
    is_rejection,
)
from shopagent.services.agent.state import BlockedMutation
from shopagent.services.tools.base import ToolRegistry

CONTEXT = ToolContext(client_ip="203.0.113.7")


def _cart_payload(basket_id: int = 55) -> dict[str, Any]:
    return {
        "basket": {
            "basketId": basket_id,
            "items": [{"productId": "101-38", "partNo": "SKU-38", "name": "Slipper 38", "quantity": 1}],
            "totalIncVat": 299.0,
            "currencyCode": "SEK",
        }
    }


def _pending(kind: CartMutationKind = CartMutationKind.CART_ADD_ITEM, **args: Any) -> PendingAction:
    return PendingAction(kind=kind, args=args or {"part_no": "SKU-38", "quantity": 1})


# ---------------------------------------------------------------------------
# Reply classification
# ---------------------------------------------------------------------------


class TestClassifyReply:
    @pytest.mark.parametrize("message", ["yes", "Yes", "  OK ", "go ahead", "ja", "Kör", "självklart"])
    def test_affirmations(self, message: str) -> None:
        assert classify_reply(message) == ReplyKind.AFFIRM
        assert is_affirmation(message)

    @pytest.mark.parametrize("message", ["no", "Cancel", "never mind", "nej", "Avbryt", "glöm det"])
    def test_rejections(self, message: str) -> None:
        assert classify_reply(message) == ReplyKind.REJECT
        assert is_rejection(message)

    @pytest.mark.parametrize("message", ["yes please add two", "what about boots?", "", "nejdå"])
    def test_anything_else_is_other(self, message: str) -> None:
        assert classify_reply(message) == ReplyKind.OTHER

    def test_mutating_tools(self) -> None:
        assert is_cart_mutation_tool("cart_add_item")
        assert is_cart_mutation_tool("cart_set_item_quantity")
        assert is_cart_mutation_tool("cart_remove_item")
        assert not is_cart_mutation_tool("cart_get")
        assert not is_cart_mutation_tool("product_search")


# ---------------------------------------------------------------------------
# Pending action lifecycle
# ---------------------------------------------------------------------------


class TestPendingAction:
    def test_consume_sets_timestamp(self) -> None:
        action = _pending()
        action.consume()
        assert action.status == PendingActionStatus.CONSUMED
        assert action.consumed_at is not None
        assert action.is_pending is False

    def test_cancel_clears_args(self) -> None:
        action = _pending()
        action.cancel()
        assert action.status == PendingActionStatus.CANCELLED
        assert action.args == {}

    def test_terminal_status_cannot_change(self) -> None:
        action = _pending()
        action.consume()
        with pytest.raises(InvalidTransitionError):
            action.cancel()
        with pytest.raises(InvalidTransitionError):
            action.consume()


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class TestConfirmationGate:
    """Resolving user replies against a pending action."""

    def test_open_copies_blocked_args(self) -> None:
        args = {"part_no": "SKU-38", "quantity": 2}
        action = ConfirmationGate().open(BlockedMutation(kind=CartMutationKind.CART_ADD_ITEM, args=args))
        assert action.kind == CartMutationKind.CART_ADD_ITEM
        assert action.args == args
        assert action.args is not args
        assert action.is_pending

    def test_confirmation_block_localized(self) -> None:
        action = _pending()
        block = ConfirmationGate().confirmation_block(action, "sv-SE")
        assert block.id == action.id
        assert block.prompt == "Jag kan lägga till 1 st av artikel SKU-38 i din varukorg. Bekräfta? (ja/nej)"
        assert [o.value for o in block.options] == ["ja", "nej"]

    @pytest.mark.asyncio
    async def test_no_action_defers_to_agent(self, tools: ToolRegistry) -> None:
        outcome = await ConfirmationGate().resolve(None, "yes", tools, BackendState(), CONTEXT, "app")
        assert outcome is None

    @pytest.mark.asyncio
    async def test_affirm_executes_once(
        self,
        tools: ToolRegistry,
        commerce_client: MagicMock,
        backend_results: dict[str, Any],
    ) -> None:
        backend_results[CART_ADD_ITEM] = _cart_payload()
        action = _pending()
        state = BackendState()

        outcome = await ConfirmationGate().resolve(action, "yes", tools, state, CONTEXT, "app")

        assert outcome is not None
        assert outcome.text == "Done! Your cart has been updated."
        assert outcome.record_exchange is True
        assert outcome.result["basket_id"] == "55"
        assert outcome.tool_trace[0].pending_action_executed is True
        assert action.status == PendingActionStatus.CONSUMED
        assert state.basket_id == "55"
        commerce_client.call_tool.assert_awaited_once()
        _, method, arguments, _ = commerce_client.call_tool.await_args.args
        assert method == CART_ADD_ITEM
        assert arguments == {"partNo": "SKU-38", "quantity": 1, "clientIpAddress": "203.0.113.7"}

    @pytest.mark.asyncio
    async def test_repeated_yes_does_not_execute_again(
        self,
        tools: ToolRegistry,
        commerce_client: MagicMock,
        backend_results: dict[str, Any],
    ) -> None:
        backend_results[CART_ADD_ITEM] = _cart_payload()
        gate = ConfirmationGate()
        action = _pending()

        await gate.resolve(action, "yes", tools, BackendState(), CONTEXT, "app")
        outcome = await gate.resolve(action, "yes", tools, BackendState(), CONTEXT, "app")

        assert outcome is not None
        assert outcome.text == "That action has already been completed."
        assert outcome.record_exchange is False
        assert commerce_client.call_tool.await_count == 1

    @pytest.mark.asyncio
    async def test_reject_cancels(self, tools: ToolRegistry, commerce_client: MagicMock) -> None:
        action = _pending()

        outcome = await ConfirmationGate().resolve(action, "nej", tools, BackendState(), CONTEXT, "app")

        assert outcome is not None
        assert outcome.reply_kind == ReplyKind.REJECT
        assert outcome.text == "Okay, I've cancelled that. Your cart was not changed."
        assert action.status == PendingActionStatus.CANCELLED
        commerce_client.call_tool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_yes_after_cancel_reports_cancelled(self, tools: ToolRegistry) -> None:
        gate = ConfirmationGate()
        action = _pending()
        await gate.resolve(action, "no", tools, BackendState(), CONTEXT, "app")

        outcome = await gate.resolve(action, "ja", tools, BackendState(), ToolContext(culture_code="sv"), "app")

        assert outcome is not None
        assert outcome.text == "Den åtgärden är redan avbruten."

    @pytest.mark.asyncio
    async def test_settled_action_lets_other_messages_through(self, tools: ToolRegistry) -> None:
        action = _pending()
        action.cancel()

        outcome = await ConfirmationGate().resolve(action, "show me boots", tools, BackendState(), CONTEXT, "app")

        assert outcome is None

    @pytest.mark.asyncio
    async def test_unrelated_message_gets_reminder(self, tools: ToolRegistry, commerce_client: MagicMock) -> None:
        action = _pending(CartMutationKind.CART_REMOVE_ITEM, product_id="101")

        outcome = await ConfirmationGate().resolve(action, "show me boots", tools, BackendState(), CONTEXT, "app")

        assert outcome is not None
        assert outcome.reply_kind == ReplyKind.OTHER
        assert outcome.record_exchange is False
        assert outcome.text.startswith("I have a pending action: I can remove item 101 from your cart.")
        assert outcome.confirmation is not None
        assert outcome.confirmation.id == action.id
        assert action.is_pending
        commerce_client.call_tool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_execution_is_consumed(
        self,
        tools: ToolRegistry,
        backend_results: dict[str, Any],
    ) -> None:
        backend_results[CART_REMOVE_ITEM] = CommerceBackendError("line not found")
        action = _pending(CartMutationKind.CART_REMOVE_ITEM, product_id="101")

        outcome = await ConfirmationGate().resolve(action, "yes", tools, BackendState(), CONTEXT, "app")

        assert outcome is not None
        assert outcome.text == "Sorry, I couldn't complete the action. Error: line not found"
        assert outcome.tool_trace[0].error == "line not found"
        assert action.status == PendingActionStatus.CONSUMED

    @pytest.mark.asyncio
    async def test_missing_tool_fails_cleanly(self) -> None:
        action = _pending()

        outcome = await ConfirmationGate().resolve(action, "yes", ToolRegistry([]), BackendState(), CONTEXT, "app")

        assert outcome is not None
        assert outcome.text.startswith("Sorry, I couldn't complete the action.")
        assert action.status == PendingActionStatus.CONSUMED
