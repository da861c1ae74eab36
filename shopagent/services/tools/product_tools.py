"""Product search and lookup tools.

product_search simplifies the model's query before hitting the backend and
retries once with a broadened query when nothing matches.
"""

import logging
import re
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator, model_validator

from shopagent.core.config import settings
from shopagent.integrations.commerce.client import PRODUCT_GET, PRODUCT_SEARCH
from shopagent.schemas.session import BackendState, ToolContext
from shopagent.services.tools.base import CommerceTool, context_params
from shopagent.services.tools.normalize import (
    extract_variant_summary,
    normalize_product_get,
    normalize_search_result,
    product_to_card,
    search_items_to_cards,
    unwrap_content,
)

logger = logging.getLogger(__name__)

MAX_QUERY_TOKENS = 3
MAX_QUERY_LENGTH = 50

# Tokens that constrain a search rather than name a product type
_DROP_PATTERNS = [
    re.compile(r"^\d+[-–]\d+$"),
    re.compile(r"^\d+$"),
    re.compile(r"^(eu|cm|mm|m|kg|g|ml|l|inch|inches|ft|feet)$", re.IGNORECASE),
    re.compile(r"^(and|with|for|or|the|a|an|in|on|at|to|of)$", re.IGNORECASE),
    re.compile(
        r"^(men|mens|men's|women|womens|women's|male|female|unisex|kids|children|boys|girls)$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(red|blue|green|yellow|black|white|brown|grey|gray|pink|purple|orange|beige|navy)$",
        re.IGNORECASE,
    ),
    re.compile(r"^(stock|available|instock|in-stock)$", re.IGNORECASE),
    re.compile(r"^(under|over|below|above|cheap|expensive|budget|premium)$", re.IGNORECASE),
    re.compile(r"^(size|sizes|length|width|height|weight)$", re.IGNORECASE),
]


def simplify_query(query: str) -> str:
    """Keep the first few tokens that look like product words."""
    tokens = query.split()
    kept = [t for t in tokens if not any(p.match(t) for p in _DROP_PATTERNS)][:MAX_QUERY_TOKENS]
    simplified = " ".join(kept)
    if len(simplified) > MAX_QUERY_LENGTH:
        simplified = simplified[:MAX_QUERY_LENGTH].rsplit(" ", 1)[0]
    return simplified


def broaden_query(query: str) -> str | None:
    """First token of a multi-token query, or None if it can't be broadened."""
    tokens = query.split()
    if len(tokens) <= 1:
        return None
    return tokens[0]


# --- Input schemas ---


class ProductSearchInput(BaseModel):
    """Input for product search."""

    query: str = Field(min_length=1, description="Search query (e.g., 'running shoes')")
    filters: dict[str, Any] | None = Field(None, description="Optional backend search filters")
    page_size: int | None = Field(None, ge=1, le=50, description="Number of results to return")


class ProductGetInput(BaseModel):
    """Input for fetching product details."""

    product_id: str | None = Field(None, description="Product ID to look up")
    part_no: str | None = Field(None, description="Part number to look up")

    @field_validator("product_id", "part_no", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def require_identifier(self) -> "ProductGetInput":
        if not self.product_id and not self.part_no:
            raise ValueError("Either product_id or part_no is required")
        return self


# --- Tools ---


class ProductSearchTool(CommerceTool):
    name: ClassVar[str] = "product_search"
    description: ClassVar[str] = (
        "Search the product catalog. Use when the customer is looking for products "
        "or browsing. Returns up to 10 matching items."
    )
    args_schema: ClassVar[type[BaseModel]] = ProductSearchInput

    async def execute(
        self,
        args: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        params = ProductSearchInput.model_validate(args)
        effective_query = simplify_query(params.query) or params.query.strip()

        result = await self._search(effective_query, params, state, context, application_id)
        normalized = normalize_search_result(result)

        broadened = None
        if not normalized["items"]:
            broadened = broaden_query(effective_query)
            if broadened:
                logger.info("No results for %r, retrying with %r", effective_query, broadened)
                result = await self._search(broadened, params, state, context, application_id)
                normalized = normalize_search_result(result)

        return {
            **normalized,
            "cards": [card.model_dump(mode="json", exclude_none=True) for card in search_items_to_cards(normalized["items"])],
            "query": {
                "original": params.query,
                "effective": broadened or effective_query,
                "broadened": broadened is not None,
            },
        }

    async def _search(
        self,
        query: str,
        params: ProductSearchInput,
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> Any:
        arguments: dict[str, Any] = {"query": query, **context_params(context)}
        if params.filters:
            arguments["filters"] = params.filters
        if params.page_size is not None:
            arguments["pageSize"] = params.page_size
        if settings.commerce_status_seed.strip():
            arguments["statusSeed"] = settings.commerce_status_seed.strip()
        return await self.client.call_tool(state, PRODUCT_SEARCH, arguments, application_id)


class ProductGetTool(CommerceTool):
    name: ClassVar[str] = "product_get"
    description: ClassVar[str] = (
        "Get full details for one product, including its variants, stock and price. "
        "Provide product_id or part_no."
    )
    args_schema: ClassVar[type[BaseModel]] = ProductGetInput

    async def execute(
        self,
        args: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        params = ProductGetInput.model_validate(args)
        arguments: dict[str, Any] = {**context_params(context)}
        if params.product_id:
            arguments["productId"] = params.product_id
        if params.part_no:
            arguments["partNo"] = params.part_no

        result = await self.client.call_tool(state, PRODUCT_GET, arguments, application_id)
        normalized = normalize_product_get(result)
        if normalized is None:
            return {"product": unwrap_content(result), "card": None, "normalized": None, "variant_summary": None}

        card = product_to_card(normalized)
        summary = extract_variant_summary(normalized, params.product_id)
        return {
            "card": card.model_dump(mode="json", exclude_none=True) if card else None,
            "normalized": normalized.model_dump(mode="json", exclude_none=True),
            "variant_summary": summary.model_dump(mode="json", exclude_none=True),
        }
