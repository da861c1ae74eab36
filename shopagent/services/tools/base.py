"""Shared interface for commerce tools exposed to the model.

Each capability is one ``CommerceTool`` subclass. The pydantic
``args_schema`` is used twice: to build the function definition sent to
the model, and to validate whatever arguments the model proposes.
Request context (culture, currency, client IP, basket) never appears in
``args_schema``; tools receive it separately from the caller.
"""

import abc
from collections.abc import Iterable, Iterator
from typing import Any, ClassVar

from pydantic import BaseModel

from shopagent.integrations.commerce.client import CommerceClient
from shopagent.schemas.session import BackendState, ToolContext


class CommerceTool(abc.ABC):
    """A named capability backed by the commerce client."""

    name: ClassVar[str]
    description: ClassVar[str]
    args_schema: ClassVar[type[BaseModel]]

    def __init__(self, client: CommerceClient) -> None:
        self.client = client

    def definition(self) -> dict[str, Any]:
        """OpenAI function-tool definition for this tool."""
        parameters = self.args_schema.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

    def parse_args(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Validate raw model arguments; raises ``pydantic.ValidationError``."""
        return self.args_schema.model_validate(raw).model_dump(exclude_none=True)

    @abc.abstractmethod
    async def execute(
        self,
        args: dict[str, Any],
        state: BackendState,
        context: ToolContext | None,
        application_id: str,
    ) -> dict[str, Any]:
        """Run the tool. ``args`` must already have passed ``parse_args``."""


class ToolRegistry:
    """Tools keyed by name, for dispatch on model tool calls."""

    def __init__(self, tools: Iterable[CommerceTool]) -> None:
        self._tools: dict[str, CommerceTool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    def get(self, name: str) -> CommerceTool | None:
        return self._tools.get(name)

    def definitions(self) -> list[dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[CommerceTool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def context_params(context: ToolContext | None) -> dict[str, Any]:
    """Backend ``context`` argument built from the caller's request context."""
    if context is None:
        return {}
    params = context.model_dump(
        include={
            "culture_code",
            "currency_code",
            "price_list_ids",
            "sales_area_id",
            "customer_id",
            "company_id",
        },
        exclude_none=True,
    )
    if not params:
        return {}
    return {"context": {_camel(key): value for key, value in params.items()}}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
