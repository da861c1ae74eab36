"""Chat service orchestrating one conversational turn per request."""

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status

from shopagent.core.config import settings
from shopagent.core.logging_config import session_key_var
from shopagent.schemas.chat import (
    CartLine,
    CartSummary,
    ChatDebug,
    ChatRequest,
    ChatResponse,
    ConfirmationBlock,
    PendingActionInfo,
    ToolTraceItem,
    VariantChoiceSet,
)
from shopagent.schemas.product import ProductCard, VariantSummary
from shopagent.schemas.session import (
    ConversationMessage,
    MessageRole,
    PendingAction,
    SearchCandidate,
    SessionState,
    ToolContext,
)
from shopagent.services.agent.confirmation import ConfirmationGate, ConfirmationOutcome
from shopagent.services.agent.i18n import status_message
from shopagent.services.agent.memory import update_working_memory
from shopagent.services.agent.runner import AgentRunner, MalformedToolArgumentsError
from shopagent.services.agent.state import ToolTraceEntry, TurnResult
from shopagent.services.session_store import SessionLockError, SessionStore, session_key

logger = logging.getLogger(__name__)


def build_response_cards(
    selected_product_ids: list[str],
    cards: list[ProductCard],
    candidates: list[SearchCandidate],
    variant_summaries: dict[str, VariantSummary],
) -> list[ProductCard]:
    """Cards to show the user for a turn.

    Products the agent looked at in detail win over everything it merely
    found; search candidates stand in for missing cards. In-stock products
    sort first once variant stock is known.
    """
    if selected_product_ids:
        by_id = {card.product_id: card for card in cards}
        candidates_by_id = {c.product_id: c for c in candidates}
        result: list[ProductCard] = []
        for product_id in selected_product_ids:
            if product_id in by_id:
                result.append(by_id[product_id])
            elif product_id in candidates_by_id:
                candidate = candidates_by_id[product_id]
                result.append(
                    ProductCard(
                        product_id=candidate.product_id,
                        title=candidate.title,
                        price=candidate.price,
                        currency=candidate.currency,
                        image_url=candidate.image_url,
                        attributes=candidate.attributes,
                    )
                )
    else:
        result = list(cards)

    if variant_summaries:
        result.sort(
            key=lambda card: 0
            if (summary := variant_summaries.get(card.product_id)) and summary.in_stock_buyable_variant_count > 0
            else 1
        )
    return result


def build_cart_summary(result: Any) -> CartSummary | None:
    """Cart summary from a normalized cart tool result, or None if ``result`` isn't one."""
    if not isinstance(result, dict) or not isinstance(result.get("items"), list):
        return None
    return CartSummary(
        cart_id=result.get("basket_id"),
        item_count=result.get("item_count") or 0,
        items=[
            CartLine(
                product_id=item.get("product_id") or "",
                part_no=item.get("part_no"),
                name=item.get("name"),
                quantity=int(item.get("quantity") or 0),
                price=item.get("price"),
            )
            for item in result["items"]
            if isinstance(item, dict)
        ],
        total=result.get("total"),
        currency=result.get("currency"),
    )


def _trace_items(trace: list[ToolTraceEntry]) -> list[ToolTraceItem]:
    return [
        ToolTraceItem(
            tool=entry.tool,
            args=entry.args,
            result=entry.result,
            error=entry.error,
            blocked_by_policy=entry.blocked_by_policy,
            pending_action_created=entry.pending_action_created,
            pending_action_executed=entry.pending_action_executed,
        )
        for entry in trace
    ]


def _pending_info(action: PendingAction | None) -> PendingActionInfo | None:
    if action is None or not action.is_pending:
        return None
    return PendingActionInfo(id=action.id, kind=action.kind.value, status=action.status)


class ChatService:
    """Runs chat turns against persisted sessions.

    Each turn holds the session lock from load to save, so confirmations
    and agent turns for one conversation are strictly sequential.
    """

    def __init__(
        self,
        store: SessionStore,
        runner: AgentRunner,
        gate: ConfirmationGate | None = None,
        debug: bool | None = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.gate = gate or ConfirmationGate()
        self.debug = settings.debug if debug is None else debug

    def _check_request(self, request: ChatRequest) -> None:
        allowed = settings.allowed_application_ids
        if allowed and request.application_id not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Unknown application",
            )
        if len(request.message) > settings.max_message_chars:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"Message exceeds {settings.max_message_chars} characters",
            )

    async def process_message(self, request: ChatRequest, client_ip: str | None = None) -> ChatResponse:
        """Process a chat message and generate a response.

        This is the main entry point for chat. It:
        1. Loads (or starts) the session under its lock
        2. Answers an outstanding cart confirmation, if there is one
        3. Otherwise runs an agent turn and folds its results into memory
        4. Saves the session and returns the response

        Raises:
            HTTPException: 403 for unknown applications, 413 for oversized
                messages, 409 if the session is busy, 422 for malformed tool
                arguments and 503 when the model is unavailable.
        """
        self._check_request(request)

        session_id = request.session_id or str(uuid.uuid4())
        key = session_key(request.application_id, session_id)
        token = session_key_var.set(key)
        try:
            async with self.store.lock(key):
                return await self._process_locked(request, session_id, key, client_ip)
        except SessionLockError as e:
            logger.warning("Session %s is busy", key)
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This conversation is still processing a previous message.",
            ) from e
        finally:
            session_key_var.reset(token)

    async def delete_session(self, application_id: str, session_id: str) -> bool:
        key = session_key(application_id, session_id)
        async with self.store.lock(key):
            deleted = await self.store.delete(key)
        logger.info("Session %s deleted=%s", key, deleted)
        return deleted

    async def _process_locked(
        self, request: ChatRequest, session_id: str, key: str, client_ip: str | None
    ) -> ChatResponse:
        state = await self.store.get(key) or SessionState()
        context = self._build_context(request, state, client_ip)
        turn_id = str(uuid.uuid4())

        outcome = await self.gate.resolve(
            state.pending_action,
            request.message,
            self.runner.tools,
            state.backend,
            context,
            request.application_id,
        )
        if outcome is not None:
            return await self._respond_to_confirmation(turn_id, session_id, key, request, state, context, outcome)

        try:
            result = await self.runner.run_turn(
                request.message,
                state.conversation,
                state.backend,
                context=context,
                application_id=request.application_id,
                working_memory=state.working_memory,
                on_status=lambda stage: logger.debug("Status: %s", status_message(stage, context.culture_code)),
            )
        except MalformedToolArgumentsError as e:
            logger.warning("Malformed arguments for tool %s: %s", e.tool_name, e.detail)
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={
                    "error": "malformed_tool_arguments",
                    "tool": e.tool_name,
                    "message": e.detail,
                },
            ) from e
        except Exception as e:
            logger.exception("Failed to generate AI response: %s", e)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="AI service is temporarily unavailable. Please try again.",
            ) from e

        return await self._finish_turn(turn_id, session_id, key, request, state, context, result)

    def _build_context(self, request: ChatRequest, state: SessionState, client_ip: str | None) -> ToolContext:
        context = request.context or ToolContext()
        return context.model_copy(
            update={
                "client_ip": client_ip,
                "basket_id": state.backend.basket_id or context.basket_id,
            }
        )

    async def _save(self, key: str, state: SessionState) -> None:
        state.updated_at = datetime.now(UTC)
        await self.store.set(key, state)

    async def _respond_to_confirmation(
        self,
        turn_id: str,
        session_id: str,
        key: str,
        request: ChatRequest,
        state: SessionState,
        context: ToolContext,
        outcome: ConfirmationOutcome,
    ) -> ChatResponse:
        if outcome.record_exchange:
            state.conversation.append(ConversationMessage(role=MessageRole.USER, content=request.message))
            state.conversation.append(ConversationMessage(role=MessageRole.ASSISTANT, content=outcome.text))
        await self._save(key, state)

        debug = None
        if self.debug:
            debug = ChatDebug(rounds_used=0, hit_max_rounds=False, tool_trace=_trace_items(outcome.tool_trace))

        return ChatResponse(
            turn_id=turn_id,
            session_id=session_id,
            text=outcome.text,
            cart=build_cart_summary(outcome.result),
            pending_action=_pending_info(state.pending_action),
            confirmation=outcome.confirmation,
            debug=debug,
        )

    async def _finish_turn(
        self,
        turn_id: str,
        session_id: str,
        key: str,
        request: ChatRequest,
        state: SessionState,
        context: ToolContext,
        result: TurnResult,
    ) -> ChatResponse:
        memory = state.working_memory
        update_working_memory(
            memory,
            cards=result.collected_cards,
            search_candidates=result.search_candidates,
            selected_product_ids=result.selected_product_ids,
            variant_summaries=result.variant_summaries,
        )

        if result.resolved_variant_choice:
            memory.clear_variant_choices()
            result.conversation.append(ConversationMessage(role=MessageRole.USER, content=request.message))
            result.conversation.append(ConversationMessage(role=MessageRole.ASSISTANT, content=result.message))

        confirmation: ConfirmationBlock | None = None
        if result.blocked_mutation is not None:
            state.pending_action = self.gate.open(result.blocked_mutation)
            confirmation = self.gate.confirmation_block(state.pending_action, context.culture_code)

        choice_set: VariantChoiceSet | None = None
        if result.variant_disambiguation is not None:
            disambiguation = result.variant_disambiguation
            memory.variant_choices = list(disambiguation.variant_choices)
            memory.variant_choices_parent_product_id = disambiguation.parent_product_id
            choice_set = VariantChoiceSet(
                parent_product_id=disambiguation.parent_product_id,
                product_name=disambiguation.product_name,
                choices=disambiguation.variant_choices,
            )

        state.conversation = result.conversation
        await self._save(key, state)

        logger.info(
            "Turn %s finished: rounds=%d, hit_max_rounds=%s, tool_calls=%d",
            turn_id,
            result.rounds_used,
            result.hit_max_rounds,
            len(result.tool_trace),
        )

        debug = None
        if self.debug:
            debug = ChatDebug(
                rounds_used=result.rounds_used,
                hit_max_rounds=result.hit_max_rounds,
                tool_trace=_trace_items(result.tool_trace),
            )

        return ChatResponse(
            turn_id=turn_id,
            session_id=session_id,
            text=result.message,
            cards=build_response_cards(
                result.selected_product_ids,
                result.collected_cards,
                memory.search_candidates,
                result.variant_summaries,
            ),
            comparison=result.comparison,
            cart=build_cart_summary(result.cart),
            pending_action=_pending_info(state.pending_action) if confirmation else None,
            confirmation=confirmation,
            variant_choices=choice_set,
            debug=debug,
        )
