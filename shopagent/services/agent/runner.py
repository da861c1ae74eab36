"""Bounded tool-calling loop for one conversational turn.

A turn runs at most ``max_rounds`` model calls. Each round either ends the
turn with a text answer or proposes tool calls, of which at most
``max_tool_calls_per_round`` are executed in order. Cart mutations never
run here: they end the turn with a ``BlockedMutation`` that the caller
turns into a pending action awaiting the user's consent.

When two or more products are fetched in one turn, the result also carries
a comparison table of them.
"""

import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from shopagent.schemas.product import ComparisonBlock, NormalizedProduct, ProductCard, VariantSummary
from shopagent.schemas.session import (
    AvailabilityStatus,
    BackendState,
    CartMutationKind,
    ConversationMessage,
    MessageRole,
    SearchCandidate,
    ToolCallDescriptor,
    ToolContext,
    WorkingMemory,
)
from shopagent.services.agent.compare import (
    build_compare_hint,
    build_turn_comparison,
    looks_like_compare_intent,
    select_compare_candidates,
)
from shopagent.services.agent.confirmation import is_cart_mutation_tool
from shopagent.services.agent.i18n import build_confirmation_prompt
from shopagent.services.agent.memory import PRODUCT_MEMORY_LABEL, build_product_memory_context
from shopagent.services.agent.preflight import (
    PreflightDisambiguate,
    PreflightNotBuyable,
    PreflightProceed,
    check_preflight,
)
from shopagent.services.agent.prompts import (
    MAX_ROUNDS_FALLBACK_RESPONSE,
    MISSING_PART_NUMBER_MESSAGE,
    PENDING_CONFIRMATION_TOOL_RESULT,
    SKIPPED_TOOL_RESULT,
    SYSTEM_PROMPT,
    TRUNCATED_TOOL_CALLS_NOTE,
)
from shopagent.services.agent.resolver import (
    build_resolver_hint,
    build_variant_resolver_hint,
    looks_like_selection_intent,
    resolve_candidate,
    resolve_variant_choice,
)
from shopagent.services.agent.state import (
    BlockedMutation,
    ToolTraceEntry,
    TurnLimits,
    TurnResult,
    VariantDisambiguation,
)
from shopagent.services.completion_client import CompletionClient, ToolCall
from shopagent.services.tools.base import CommerceTool, ToolRegistry

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

VARIANT_DISAMBIGUATION_TOOL_RESULT = {
    "status": "variant_disambiguation_required",
    "message": "Multiple variants available. Please choose one.",
}

_CANDIDATE_ID_FIELDS = ("productId", "id", "partNo", "productNumber", "sku", "code")
_CANDIDATE_TITLE_FIELDS = ("name", "title", "productName", "displayName")


class MalformedToolArgumentsError(Exception):
    """The model produced arguments that are not valid for the named tool."""

    def __init__(self, tool_name: str, raw_arguments: str, detail: str) -> None:
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments
        self.detail = detail
        super().__init__(f"Malformed arguments for tool {tool_name}: {detail}")


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in issue['loc'])}: {issue['msg']}" if issue["loc"] else issue["msg"]
        for issue in error.errors()
    )


def _first_str(item: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = item.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return str(value)
    return None


def _card_from_dict(raw: Any) -> ProductCard | None:
    if not isinstance(raw, dict) or not raw.get("product_id") or not raw.get("title"):
        return None
    try:
        return ProductCard.model_validate(raw)
    except ValidationError:
        logger.warning("Skipping malformed product card: %r", raw)
        return None


def _candidate_from_item(item: dict[str, Any]) -> SearchCandidate | None:
    product_id = _first_str(item, _CANDIDATE_ID_FIELDS)
    title = _first_str(item, _CANDIDATE_TITLE_FIELDS)
    if not product_id or not title:
        return None

    price = item.get("priceIncVat", item.get("price"))
    availability = item.get("availability") if isinstance(item.get("availability"), dict) else {}
    try:
        status = AvailabilityStatus(availability.get("status"))
    except ValueError:
        status = None
    attributes = {
        key: str(item[key])
        for key in ("brand", "color", "size", "category")
        if item.get(key) not in (None, "")
    }
    return SearchCandidate(
        product_id=product_id,
        title=title,
        variant_name=item.get("variantName") if isinstance(item.get("variantName"), str) else None,
        currency=item.get("currency") or item.get("currencyCode"),
        price=str(price) if price is not None else None,
        image_url=item.get("imageUrl") if isinstance(item.get("imageUrl"), str) else None,
        attributes=attributes or None,
        availability_status=status,
        on_hand_value=availability.get("onHandValue"),
    )


def _drop_memory_blocks(conversation: list[ConversationMessage]) -> None:
    """Remove earlier PRODUCT_MEMORY snapshots so only the current one is kept."""
    conversation[:] = [
        m
        for m in conversation
        if not (m.role == MessageRole.SYSTEM and (m.content or "").startswith(f"{PRODUCT_MEMORY_LABEL}:"))
    ]


class _TurnCollector:
    """Accumulates what successful tool calls surfaced during a turn."""

    def __init__(self) -> None:
        self.cards: list[ProductCard] = []
        self.selected_product_ids: list[str] = []
        self.search_candidates: list[SearchCandidate] = []
        self.variant_summaries: dict[str, VariantSummary] = {}
        self.product_details: dict[str, NormalizedProduct] = {}
        self.cart: dict[str, Any] | None = None

    def collect(self, tool_name: str, args: dict[str, Any], result: Any) -> None:
        if not isinstance(result, dict):
            return
        self._collect_cards(result)
        self._collect_candidates(result)
        if tool_name == "product_get":
            self._collect_product(args, result)
        elif tool_name == "cart_get":
            self.cart = result

    def _collect_cards(self, result: dict[str, Any]) -> None:
        raw_cards = result.get("cards") if isinstance(result.get("cards"), list) else []
        known = {card.product_id for card in self.cards}
        for raw in [*raw_cards, result.get("card")]:
            card = _card_from_dict(raw)
            if card and card.product_id not in known:
                known.add(card.product_id)
                self.cards.append(card)

    def _collect_candidates(self, result: dict[str, Any]) -> None:
        items = result.get("items")
        if not isinstance(items, list):
            return
        known = {c.product_id for c in self.search_candidates}
        for item in items:
            if not isinstance(item, dict):
                continue
            candidate = _candidate_from_item(item)
            if candidate and candidate.product_id not in known:
                known.add(candidate.product_id)
                self.search_candidates.append(candidate)

    def _collect_product(self, args: dict[str, Any], result: dict[str, Any]) -> None:
        requested = args.get("product_id") or args.get("part_no")
        if not requested:
            return
        requested = str(requested)
        if requested not in self.selected_product_ids:
            self.selected_product_ids.append(requested)

        if isinstance(result.get("variant_summary"), dict):
            self.variant_summaries[requested] = VariantSummary.model_validate(result["variant_summary"])

        if isinstance(result.get("normalized"), dict):
            product = NormalizedProduct.model_validate(result["normalized"])
            self.product_details[requested] = product
            if product.product_id and product.product_id != requested:
                self.product_details[product.product_id] = product

    def to_result(self, message: str, conversation: list[ConversationMessage], **kwargs: Any) -> TurnResult:
        return TurnResult(
            message=message,
            conversation=conversation,
            collected_cards=self.cards,
            selected_product_ids=self.selected_product_ids,
            search_candidates=self.search_candidates,
            variant_summaries=self.variant_summaries,
            product_details=self.product_details,
            cart=self.cart,
            **kwargs,
        )


class AgentRunner:
    """Runs one bounded agent turn against the completion client and tools."""

    def __init__(
        self,
        completion_client: CompletionClient,
        tools: ToolRegistry,
        model: str | None = None,
        limits: TurnLimits | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.completion_client = completion_client
        self.tools = tools
        self.model = model
        self.limits = limits or TurnLimits()
        self.system_prompt = system_prompt
        self._tool_definitions = tools.definitions()

    def _parse_arguments(self, call: ToolCall) -> dict[str, Any]:
        try:
            parsed = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            raise MalformedToolArgumentsError(call.name, call.arguments, str(e)) from e

        if not isinstance(parsed, dict):
            raise MalformedToolArgumentsError(call.name, call.arguments, "Arguments must be a JSON object")

        tool = self.tools.get(call.name)
        if tool is None:
            return parsed
        try:
            return tool.parse_args(parsed)
        except ValidationError as e:
            raise MalformedToolArgumentsError(call.name, call.arguments, _format_validation_error(e)) from e

    def _model_messages(self, conversation: list[ConversationMessage]) -> list[ConversationMessage]:
        return [ConversationMessage(role=MessageRole.SYSTEM, content=self.system_prompt), *conversation]

    async def run_turn(
        self,
        user_message: str,
        conversation: list[ConversationMessage],
        tool_state: BackendState,
        context: ToolContext | None = None,
        application_id: str = "",
        working_memory: WorkingMemory | None = None,
        limits: TurnLimits | None = None,
        on_status: StatusCallback | None = None,
    ) -> TurnResult:
        """Run one turn, appending to ``conversation`` in place.

        Raises:
            MalformedToolArgumentsError: A tool call's arguments could not be
                parsed or validated. The turn is aborted.
        """
        limits = limits or self.limits
        culture_code = context.culture_code if context else None
        collector = _TurnCollector()
        trace: list[ToolTraceEntry] = []

        def status(stage: str) -> None:
            if on_status is not None:
                on_status(stage)

        memory_context = build_product_memory_context(working_memory)
        if memory_context:
            _drop_memory_blocks(conversation)
            conversation.append(ConversationMessage(role=MessageRole.SYSTEM, content=memory_context))

        if working_memory and working_memory.variant_choices:
            variant = resolve_variant_choice(user_message, working_memory)
            if variant:
                logger.info("Variant choice resolved: %s (%s)", variant.variant_product_id, variant.reason)
                conversation.append(
                    ConversationMessage(role=MessageRole.SYSTEM, content=build_variant_resolver_hint(variant))
                )
                if not variant.part_no:
                    return collector.to_result(
                        MISSING_PART_NUMBER_MESSAGE, conversation, tool_trace=trace, resolved_variant_choice=True
                    )
                args = {"part_no": variant.part_no, "quantity": 1}
                return collector.to_result(
                    build_confirmation_prompt(CartMutationKind.CART_ADD_ITEM, args, culture_code),
                    conversation,
                    tool_trace=trace,
                    blocked_mutation=BlockedMutation(kind=CartMutationKind.CART_ADD_ITEM, args=args),
                    resolved_variant_choice=True,
                )

        if working_memory and looks_like_selection_intent(user_message):
            resolved = resolve_candidate(user_message, working_memory)
            if resolved:
                logger.info("Reference resolved: %s (%s)", resolved.product_id, resolved.reason)
                conversation.append(
                    ConversationMessage(role=MessageRole.SYSTEM, content=build_resolver_hint(resolved))
                )

        compare_ids: list[str] = []
        if working_memory and looks_like_compare_intent(user_message):
            candidates = select_compare_candidates(user_message, working_memory)
            if candidates:
                compare_ids = candidates.product_ids
                logger.info("Compare intent: candidates=%s", compare_ids)
                conversation.append(
                    ConversationMessage(role=MessageRole.SYSTEM, content=build_compare_hint(candidates))
                )

        def comparison() -> ComparisonBlock | None:
            return build_turn_comparison(
                compare_ids,
                collector.selected_product_ids,
                collector.product_details,
                context.currency_code if context else None,
            )

        conversation.append(ConversationMessage(role=MessageRole.USER, content=user_message))

        for round_number in range(1, limits.max_rounds + 1):
            status("thinking")
            response = await self.completion_client.run_with_tools(
                self._model_messages(conversation), self._tool_definitions, self.model
            )

            if not response.tool_calls:
                logger.info("Round %d: no tool calls, returning text response", round_number)
                conversation.append(ConversationMessage(role=MessageRole.ASSISTANT, content=response.content))
                return collector.to_result(
                    response.content,
                    conversation,
                    tool_trace=trace,
                    rounds_used=round_number,
                    comparison=comparison(),
                )

            calls = response.tool_calls[: limits.max_tool_calls_per_round]
            skipped = len(response.tool_calls) - len(calls)
            logger.info("Round %d: tool calls=%s, skipped=%d", round_number, [c.name for c in calls], skipped)
            conversation.append(
                ConversationMessage(
                    role=MessageRole.ASSISTANT,
                    content=response.content,
                    tool_calls=[ToolCallDescriptor(id=c.id, name=c.name, arguments=c.arguments) for c in calls],
                )
            )

            for position, call in enumerate(calls):
                args = self._parse_arguments(call)
                entry = ToolTraceEntry(tool=call.name, args=args)
                tool = self.tools.get(call.name)

                if tool is None:
                    entry.error = f"Unknown tool: {call.name}"
                    logger.warning("Model requested unknown tool %r", call.name)
                    trace.append(entry)
                    self._append_tool_message(conversation, call, {"error": entry.error})
                    continue

                if is_cart_mutation_tool(call.name):
                    result = self._intercept_mutation(
                        call, args, entry, trace, conversation, collector, round_number, culture_code
                    )
                    for unanswered in calls[position + 1 :]:
                        self._append_tool_message(conversation, unanswered, SKIPPED_TOOL_RESULT)
                    return result

                await self._execute(
                    tool, call, args, entry, tool_state, context, application_id, conversation, collector, status
                )
                trace.append(entry)

            if skipped > 0:
                conversation.append(
                    ConversationMessage(
                        role=MessageRole.SYSTEM, content=TRUNCATED_TOOL_CALLS_NOTE.format(count=skipped)
                    )
                )

        logger.warning("Max rounds (%d) reached without a final answer", limits.max_rounds)
        conversation.append(ConversationMessage(role=MessageRole.ASSISTANT, content=MAX_ROUNDS_FALLBACK_RESPONSE))
        return collector.to_result(
            MAX_ROUNDS_FALLBACK_RESPONSE,
            conversation,
            tool_trace=trace,
            rounds_used=limits.max_rounds,
            hit_max_rounds=True,
            comparison=comparison(),
        )

    @staticmethod
    def _append_tool_message(
        conversation: list[ConversationMessage], call: ToolCall, payload: Any
    ) -> None:
        conversation.append(
            ConversationMessage(
                role=MessageRole.TOOL,
                content=json.dumps(payload, default=str, ensure_ascii=False),
                tool_call_id=call.id,
            )
        )

    async def _execute(
        self,
        tool: CommerceTool,
        call: ToolCall,
        args: dict[str, Any],
        entry: ToolTraceEntry,
        tool_state: BackendState,
        context: ToolContext | None,
        application_id: str,
        conversation: list[ConversationMessage],
        collector: _TurnCollector,
        status: StatusCallback,
    ) -> None:
        status(call.name)
        try:
            result = await tool.execute(args, tool_state, context, application_id)
        except Exception as e:
            logger.exception("Tool execution error: %s", call.name)
            entry.error = str(e)
            self._append_tool_message(conversation, call, {"error": str(e)})
            return

        entry.result = result
        collector.collect(call.name, args, result)
        self._append_tool_message(conversation, call, result)

    def _intercept_mutation(
        self,
        call: ToolCall,
        args: dict[str, Any],
        entry: ToolTraceEntry,
        trace: list[ToolTraceEntry],
        conversation: list[ConversationMessage],
        collector: _TurnCollector,
        round_number: int,
        culture_code: str | None,
    ) -> TurnResult:
        kind = CartMutationKind(call.name)
        entry.blocked_by_policy = True

        if kind == CartMutationKind.CART_ADD_ITEM:
            target = args.get("product_id")
            if not target and not args.get("part_no") and collector.product_details:
                target = next(reversed(collector.product_details))

            if target:
                outcome = check_preflight(str(target), collector.product_details)
                if isinstance(outcome, PreflightDisambiguate):
                    logger.info("Variant disambiguation required for %s", outcome.parent_product_id)
                    trace.append(entry)
                    self._append_tool_message(conversation, call, VARIANT_DISAMBIGUATION_TOOL_RESULT)
                    return collector.to_result(
                        outcome.message,
                        conversation,
                        tool_trace=trace,
                        rounds_used=round_number,
                        variant_disambiguation=VariantDisambiguation(
                            message=outcome.message,
                            parent_product_id=outcome.parent_product_id,
                            product_name=outcome.product_name,
                            variant_choices=outcome.variant_choices,
                        ),
                    )
                if isinstance(outcome, PreflightNotBuyable):
                    logger.info("Add to cart blocked, not buyable: %s", outcome.parent_product_id)
                    entry.error = outcome.message
                    trace.append(entry)
                    self._append_tool_message(
                        conversation, call, {"status": "not_buyable", "message": outcome.message}
                    )
                    return collector.to_result(
                        outcome.message, conversation, tool_trace=trace, rounds_used=round_number
                    )
                if isinstance(outcome, PreflightProceed) and outcome.rewritten and outcome.selected_variant:
                    logger.info(
                        "Rewrote add to cart for %s to part_no %s", target, outcome.selected_variant.part_no
                    )
                    args = {k: v for k, v in args.items() if k != "product_id"}
                    args["part_no"] = outcome.selected_variant.part_no
                    entry.args = args

        entry.pending_action_created = True
        trace.append(entry)
        self._append_tool_message(conversation, call, PENDING_CONFIRMATION_TOOL_RESULT)
        logger.info("Intercepted %s pending confirmation", kind.value)
        return collector.to_result(
            build_confirmation_prompt(kind, args, culture_code),
            conversation,
            tool_trace=trace,
            rounds_used=round_number,
            blocked_mutation=BlockedMutation(kind=kind, args=args),
        )
