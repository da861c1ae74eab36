"""Pydantic schemas for the chat API."""

from typing import Any, Literal

from pydantic import Field

from shopagent.schemas.common import BaseSchema
from shopagent.schemas.product import ComparisonBlock, ProductCard
from shopagent.schemas.session import PendingActionStatus, ToolContext, VariantChoice

# === Confirmation Schemas ===


class ConfirmationOption(BaseSchema):
    """One button in a confirmation prompt."""

    id: Literal["confirm", "cancel"]
    label: str
    value: str
    style: Literal["primary", "secondary"]


class ConfirmationBlock(BaseSchema):
    """Machine-readable confirmation request for a pending cart mutation."""

    id: str
    kind: Literal["cart_confirm"] = "cart_confirm"
    prompt: str
    options: list[ConfirmationOption]


class PendingActionInfo(BaseSchema):
    """Pending action summary returned to the client."""

    id: str
    kind: str
    status: PendingActionStatus


class VariantChoiceSet(BaseSchema):
    """Variant options the user must choose between."""

    parent_product_id: str
    product_name: str | None = None
    choices: list[VariantChoice]


# === Cart Schemas ===


class CartLine(BaseSchema):
    product_id: str
    part_no: str | None = None
    name: str | None = None
    quantity: int = 0
    price: float | str | None = None


class CartSummary(BaseSchema):
    """Cart state after a cart read or a confirmed cart change."""

    cart_id: str | None = None
    item_count: int = 0
    items: list[CartLine] = Field(default_factory=list)
    total: float | str | None = None
    currency: str | None = None


# === Chat API Schemas ===


class ChatRequest(BaseSchema):
    """Request for sending a chat message."""

    application_id: str = Field(..., min_length=1)
    session_id: str | None = None  # None = new conversation
    message: str = Field(..., min_length=1)
    context: ToolContext | None = None  # culture, currency, price lists, basket


class ToolTraceItem(BaseSchema):
    """Tool trace entry exposed in debug responses."""

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None
    blocked_by_policy: bool = False
    pending_action_created: bool = False
    pending_action_executed: bool = False


class ChatDebug(BaseSchema):
    """Debug information, only populated when settings.debug is on."""

    rounds_used: int
    hit_max_rounds: bool
    tool_trace: list[ToolTraceItem] = Field(default_factory=list)


class ChatResponse(BaseSchema):
    """Response from chat endpoint."""

    turn_id: str
    session_id: str
    text: str
    cards: list[ProductCard] = Field(default_factory=list)
    comparison: ComparisonBlock | None = None
    cart: CartSummary | None = None
    pending_action: PendingActionInfo | None = None
    confirmation: ConfirmationBlock | None = None
    variant_choices: VariantChoiceSet | None = None
    debug: ChatDebug | None = None
