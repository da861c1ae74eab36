"""Session state schemas: conversation, working memory, and pending actions.

Everything the orchestrator needs to remember between two HTTP calls for
one conversation lives in ``SessionState``. The session store serializes
it as JSON, so all members are plain pydantic models.
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from shopagent.schemas.common import BaseSchema

MAX_LAST_RESULTS = 10
MAX_SHORTLIST = 10


class MessageRole(str, enum.Enum):
    """Conversation message role."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class CartMutationKind(str, enum.Enum):
    """Cart tools that require explicit user confirmation."""

    CART_ADD_ITEM = "cart_add_item"
    CART_SET_ITEM_QUANTITY = "cart_set_item_quantity"
    CART_REMOVE_ITEM = "cart_remove_item"


class PendingActionStatus(str, enum.Enum):
    """Lifecycle of a pending action."""

    PENDING = "pending"
    CONSUMED = "consumed"
    CANCELLED = "cancelled"


class AvailabilityStatus(str, enum.Enum):
    """Product-level availability derived from on-hand data."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


class InvalidTransitionError(Exception):
    """Raised when a pending action is moved out of a terminal status."""

    def __init__(self, current: PendingActionStatus, target: PendingActionStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition pending action from {current.value} to {target.value}")


# === Conversation ===


class ToolCallDescriptor(BaseSchema):
    """A tool call proposed by the model, as stored in the conversation."""

    id: str
    name: str
    arguments: str = "{}"


class ConversationMessage(BaseSchema):
    """A single message in the conversation history."""

    role: MessageRole
    content: str = ""
    tool_calls: list[ToolCallDescriptor] | None = None
    tool_call_id: str | None = None


# === Tool context / backend state ===


class ToolContext(BaseSchema):
    """Caller-owned request context passed to tools, never to the model."""

    culture_code: str | None = None
    currency_code: str | None = None
    price_list_ids: list[int] | None = None
    sales_area_id: int | None = None
    customer_id: int | None = None
    company_id: int | None = None
    client_ip: str | None = None
    basket_id: str | None = None


class BackendState(BaseSchema):
    """Commerce backend session state threaded through tool calls."""

    session_id: str | None = None
    next_rpc_id: int = 1
    basket_id: str | None = None


# === Working memory ===


class LastResultItem(BaseSchema):
    """A search result remembered for ordinal reference resolution."""

    index: int
    product_id: str
    name: str
    part_no: str | None = None
    variant_name: str | None = None
    brand: str | None = None
    color: str | None = None
    price: float | None = None
    currency: str | None = None
    url: str | None = None
    availability_status: AvailabilityStatus | None = None
    on_hand_value: float | None = None
    buyable_variant_count: int | None = None
    in_stock_buyable_variant_count: int | None = None
    available_dimension_values: dict[str, list[str]] | None = None


class ShortlistItem(BaseSchema):
    """A product the user has focused on during the conversation."""

    product_id: str
    name: str | None = None


class SearchCandidate(BaseSchema):
    """Compact record of a product.search hit, used when no cards were built."""

    product_id: str
    title: str
    variant_name: str | None = None
    currency: str | None = None
    price: str | None = None
    image_url: str | None = None
    attributes: dict[str, str] | None = None
    availability_status: AvailabilityStatus | None = None
    on_hand_value: float | None = None


class VariantChoice(BaseSchema):
    """One option in an outstanding variant disambiguation."""

    index: int
    variant_product_id: str
    label: str
    variant_name: str | None = None
    dims_map: dict[str, str] = Field(default_factory=dict)
    on_hand: float | None = None
    is_buyable: bool = False
    part_no: str | None = None
    ean_code: str | None = None
    unique_name: str | None = None


class WorkingMemory(BaseSchema):
    """Short-lived per-conversation recall used for reference resolution."""

    last_results: list[LastResultItem] = Field(default_factory=list)
    shortlist: list[ShortlistItem] = Field(default_factory=list)
    search_candidates: list[SearchCandidate] = Field(default_factory=list)
    variant_choices: list[VariantChoice] = Field(default_factory=list)
    variant_choices_parent_product_id: str | None = None

    def clear_variant_choices(self) -> None:
        self.variant_choices = []
        self.variant_choices_parent_product_id = None


# === Pending action ===


class PendingAction(BaseSchema):
    """A cart mutation awaiting explicit user consent."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: CartMutationKind
    args: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: PendingActionStatus = PendingActionStatus.PENDING
    consumed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == PendingActionStatus.PENDING

    def _transition(self, target: PendingActionStatus) -> None:
        if self.status != PendingActionStatus.PENDING:
            raise InvalidTransitionError(self.status, target)
        self.status = target

    def consume(self) -> None:
        """Mark the action as executed."""
        self._transition(PendingActionStatus.CONSUMED)
        self.consumed_at = datetime.now(UTC)

    def cancel(self) -> None:
        """Mark the action as rejected and drop its arguments."""
        self._transition(PendingActionStatus.CANCELLED)
        self.args = {}


# === Session ===


class SessionState(BaseSchema):
    """Everything persisted for one conversation between turns."""

    conversation: list[ConversationMessage] = Field(default_factory=list)
    backend: BackendState = Field(default_factory=BackendState)
    working_memory: WorkingMemory = Field(default_factory=WorkingMemory)
    pending_action: PendingAction | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
