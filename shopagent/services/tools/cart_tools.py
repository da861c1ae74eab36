"""Cart read and mutation tools.

The three mutating tools are never executed straight from a model tool
call: the agent loop intercepts them and the user must confirm first.
Their ``execute`` runs only from the confirmation handler, with the stored
arguments.
"""

import logging
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator

from shopagent.integrations.commerce.client import (
    CART_ADD_ITEM,
    CART_GET,
    CART_REMOVE_ITEM,
    CART_SET_ITEM_QUANTITY,
)
from shopagent.schemas.session import BackendState, ToolContext
from shopagent.services.tools.base import CommerceTool, context_params
from shopagent.services.tools.normalize import unwrap_content

logger = logging.getLogger(__name__)


def _coerce_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _basket_id_param(basket_id: str | None) -> int | None:
    """The backend expects numeric basket ids."""
    if not basket_id:
        return None
    try:
        return int(basket_id)
    except ValueError:
        logger.warning("Ignoring non-numeric basket id %r", basket_id)
        return None


def normalize_cart(result: Any) -> dict[str, Any]:
    """Flatten a cart payload into ``basket_id``/``items``/totals."""
    payload = unwrap_content(result)
    if not isinstance(payload, dict):
        return {"basket_id": None, "items": [], "item_count": 0}

    cart = payload.get("basket") or payload.get("cart") or payload
    basket_id = cart.get("basketId") or cart.get("id") or payload.get("basketId")
    raw_items = cart.get("items") or cart.get("lines") or []
    items = [
        {
            "product_id": str(item.get("productId") or item.get("id") or ""),
            "part_no": item.get("partNo"),
            "name": item.get("name") or item.get("title"),
            "quantity": item.get("quantity"),
            "price": item.get("priceIncVat", item.get("price")),
        }
        for item in raw_items
        if isinstance(item, dict)
    ]
    return {
        "basket_id": str(basket_id) if basket_id is not None else None,
        "items": items,
        "item_count": sum(int(i["quantity"] or 0) for i in items),
        "total": cart.get("totalIncVat", cart.get("total")),
        "currency": cart.get("currencyCode", cart.get("currency")),
    }


# --- Input schemas ---


class CartGetInput(BaseModel):
    """Input for reading the cart (no arguments)."""


class CartAddItemInput(BaseModel):
    """Input for adding an item to the cart."""

    part_no: str | None = Field(None, description="Part number of the variant to add")
    product_id: str | None = Field(
        None, description="Product ID, when the part number is not known yet"
    )
    quantity: int = Field(1, gt=0, description="Quantity to add (defaults to 1)")

    @field_validator("part_no", "product_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_str(value)


class CartSetItemQuantityInput(BaseModel):
    """Input for changing the quantity of a cart line."""

    product_id: str = Field(min_length=1, description="Product ID of the cart line")
    quantity: int = Field(gt=0, description="New quantity")

    @field_validator("product_id", mode="before")
    @classmethod
    def coerce_product_id(cls, value: Any) -> Any:
        return _coerce_str(value)


class CartRemoveItemInput(BaseModel):
    """Input for removing a cart line."""

    product_id: str = Field(min_length=1, description="Product ID of the cart line")

    @field_validator("product_id", mode="before")
    @classmethod
    def coerce_product_id(cls, value: Any) -> Any:
        return _coerce_str(value)


# --- Tools ---


class CartGetTool(CommerceTool):
    name: ClassVar[str] = "cart_get"
    description: ClassVar[str] = "Show the contents of the customer's cart."
    args_schema: ClassVar[type[BaseModel]] = CartGetInput

    async def execute(
        self,
        args: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        basket_id = _basket_id_param(state.basket_id or (context.basket_id if context else None))
        if basket_id is None:
            return {"basket_id": None, "items": [], "item_count": 0, "message": "No active basket yet"}

        result = await self.client.call_tool(
            state, CART_GET, {"basketId": basket_id, **context_params(context)}, application_id
        )
        return normalize_cart(result)


class _CartMutationTool(CommerceTool):
    """Mutating cart tool; remembers the basket id the backend hands back."""

    async def _call(
        self,
        method: str,
        arguments: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        basket_id = _basket_id_param(state.basket_id or (context.basket_id if context else None))
        if basket_id is not None:
            arguments["basketId"] = basket_id
        result = await self.client.call_tool(
            state, method, {**arguments, **context_params(context)}, application_id
        )
        cart = normalize_cart(result)
        if cart["basket_id"]:
            state.basket_id = cart["basket_id"]
        return cart


class CartAddItemTool(_CartMutationTool):
    name: ClassVar[str] = "cart_add_item"
    description: ClassVar[str] = (
        "Add a product variant to the cart. Requires user confirmation. "
        "Prefer part_no; pass product_id only when the part number is unknown."
    )
    args_schema: ClassVar[type[BaseModel]] = CartAddItemInput

    async def execute(
        self,
        args: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        params = CartAddItemInput.model_validate(args)
        identifier = params.part_no or params.product_id
        if not identifier:
            raise ValueError("Either part_no or product_id is required")
        arguments: dict[str, Any] = {
            "partNo": identifier,
            "quantity": params.quantity,
        }
        if context and context.client_ip:
            arguments["clientIpAddress"] = context.client_ip
        else:
            logger.warning("cart.addItem without client IP; the backend may ignore the add")
        return await self._call(CART_ADD_ITEM, arguments, state, context, application_id)


class CartSetItemQuantityTool(_CartMutationTool):
    name: ClassVar[str] = "cart_set_item_quantity"
    description: ClassVar[str] = "Change the quantity of an item in the cart. Requires user confirmation."
    args_schema: ClassVar[type[BaseModel]] = CartSetItemQuantityInput

    async def execute(
        self,
        args: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        params = CartSetItemQuantityInput.model_validate(args)
        return await self._call(
            CART_SET_ITEM_QUANTITY,
            {"productId": params.product_id, "quantity": params.quantity},
            state,
            context,
            application_id,
        )


class CartRemoveItemTool(_CartMutationTool):
    name: ClassVar[str] = "cart_remove_item"
    description: ClassVar[str] = "Remove an item from the cart. Requires user confirmation."
    args_schema: ClassVar[type[BaseModel]] = CartRemoveItemInput

    async def execute(
        self,
        args: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        params = CartRemoveItemInput.model_validate(args)
        return await self._call(
            CART_REMOVE_ITEM, {"productId": params.product_id}, state, context, application_id
        )
