"""Default commerce tool set."""

from shopagent.integrations.commerce.client import CommerceClient
from shopagent.services.tools.base import ToolRegistry
from shopagent.services.tools.cart_tools import (
    CartAddItemTool,
    CartGetTool,
    CartRemoveItemTool,
    CartSetItemQuantityTool,
)
from shopagent.services.tools.product_tools import ProductGetTool, ProductSearchTool


def create_commerce_tools(client: CommerceClient) -> ToolRegistry:
    """Create the registry of tools offered to the model."""
    return ToolRegistry(
        [
            ProductSearchTool(client),
            ProductGetTool(client),
            CartGetTool(client),
            CartAddItemTool(client),
            CartSetItemQuantityTool(client),
            CartRemoveItemTool(client),
        ]
    )
