"""Result types shared by the agent loop and the confirmation gate."""

from dataclasses import dataclass, field
from typing import Any

from shopagent.schemas.product import ComparisonBlock, NormalizedProduct, ProductCard, VariantSummary
from shopagent.schemas.session import (
    CartMutationKind,
    ConversationMessage,
    SearchCandidate,
    VariantChoice,
)


@dataclass(frozen=True)
class TurnLimits:
    """Per-turn bounds on model rounds and tool calls."""

    max_rounds: int = 6
    max_tool_calls_per_round: int = 3

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {self.max_rounds}")
        if self.max_tool_calls_per_round < 1:
            raise ValueError(
                f"max_tool_calls_per_round must be >= 1, got {self.max_tool_calls_per_round}"
            )


@dataclass
class ToolTraceEntry:
    """One attempted tool call and what happened to it."""

    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    blocked_by_policy: bool = False
    pending_action_created: bool = False
    pending_action_executed: bool = False


@dataclass(frozen=True)
class BlockedMutation:
    """A cart mutation intercepted before execution, awaiting consent."""

    kind: CartMutationKind
    args: dict[str, Any]


@dataclass(frozen=True)
class VariantDisambiguation:
    """The user must choose a variant before anything is added to the cart."""

    message: str
    parent_product_id: str
    product_name: str | None
    variant_choices: list[VariantChoice]


@dataclass
class TurnResult:
    """Everything one agent turn produced."""

    message: str
    conversation: list[ConversationMessage]
    tool_trace: list[ToolTraceEntry] = field(default_factory=list)
    rounds_used: int = 0
    hit_max_rounds: bool = False
    collected_cards: list[ProductCard] = field(default_factory=list)
    selected_product_ids: list[str] = field(default_factory=list)
    search_candidates: list[SearchCandidate] = field(default_factory=list)
    blocked_mutation: BlockedMutation | None = None
    variant_disambiguation: VariantDisambiguation | None = None
    variant_summaries: dict[str, VariantSummary] = field(default_factory=dict)
    product_details: dict[str, NormalizedProduct] = field(default_factory=dict)
    resolved_variant_choice: bool = False
    comparison: ComparisonBlock | None = None
    cart: dict[str, Any] | None = None
