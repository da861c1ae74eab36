"""Deterministic resolution of user references against working memory.

Two passes share one strategy: ordinal patterns ("option 2", "#3", "2nd",
a bare "2") first, then a case-insensitive identifier match anywhere in
the message. Descriptive references ("the blue one") are left to the model,
which sees the same candidates in the PRODUCT_MEMORY block.

Nothing here mutates working memory.
"""

import re
from dataclasses import dataclass

from shopagent.schemas.session import LastResultItem, VariantChoice, WorkingMemory

SELECTION_INTENT_MAX_LENGTH = 50
SELECTION_KEYWORDS = ("that", "this", "option", "#", "one", "number", "nr", "like")

ORDINAL_PATTERNS = [
    re.compile(r"^#(\d+)$", re.IGNORECASE),
    re.compile(r"\boption\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\bnumber\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\bnr\.?\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\b(\d+)(?:st|nd|rd|th)\b", re.IGNORECASE),
    re.compile(r"^(\d+)$"),
]


@dataclass(frozen=True)
class ResolvedProduct:
    """A lastResults entry the user most likely refers to."""

    product_id: str
    index: int
    reason: str


@dataclass(frozen=True)
class ResolvedVariant:
    """A variant choice the user picked."""

    variant_product_id: str
    part_no: str | None
    index: int
    reason: str
    parent_product_id: str | None = None


def _match_ordinal(text: str, size: int) -> tuple[int, str] | None:
    """First in-range ordinal in ``text`` as ``(1-based index, matched text)``."""
    for pattern in ORDINAL_PATTERNS:
        match = pattern.search(text)
        if match:
            index = int(match.group(1))
            if 1 <= index <= size:
                return index, match.group(0)
    return None


def resolve_candidate(message: str, memory: WorkingMemory | None) -> ResolvedProduct | None:
    """Resolve an ordinal or identifier reference to a lastResults entry."""
    if memory is None or not memory.last_results:
        return None

    text = message.strip()
    ordinal = _match_ordinal(text, len(memory.last_results))
    if ordinal:
        index, matched = ordinal
        item = memory.last_results[index - 1]
        return ResolvedProduct(
            product_id=item.product_id,
            index=item.index,
            reason=f'ordinal pattern "{matched}" matched index {index}',
        )

    return _match_result_identifier(text.lower(), memory.last_results)


def _match_result_identifier(text: str, results: list[LastResultItem]) -> ResolvedProduct | None:
    for item in results:
        if item.product_id and item.product_id.lower() in text:
            return ResolvedProduct(
                product_id=item.product_id,
                index=item.index,
                reason=f'exact productId "{item.product_id}" found in text',
            )
        if item.part_no and item.part_no.lower() in text:
            return ResolvedProduct(
                product_id=item.product_id,
                index=item.index,
                reason=f'exact partNo "{item.part_no}" found in text',
            )
    return None


def resolve_variant_choice(message: str, memory: WorkingMemory | None) -> ResolvedVariant | None:
    """Resolve the user's pick among outstanding variant choices."""
    if memory is None or not memory.variant_choices:
        return None

    text = message.strip()
    parent = memory.variant_choices_parent_product_id
    ordinal = _match_ordinal(text, len(memory.variant_choices))
    if ordinal:
        index, matched = ordinal
        choice = memory.variant_choices[index - 1]
        return ResolvedVariant(
            variant_product_id=choice.variant_product_id,
            part_no=choice.part_no,
            index=choice.index,
            reason=f'ordinal pattern "{matched}" matched variant index {index}',
            parent_product_id=parent,
        )

    return _match_variant_identifier(text.lower(), memory.variant_choices, parent)


def _match_variant_identifier(
    text: str, choices: list[VariantChoice], parent: str | None
) -> ResolvedVariant | None:
    for choice in choices:
        for field_name, value in (
            ("variantProductId", choice.variant_product_id),
            ("partNo", choice.part_no),
            ("eanCode", choice.ean_code),
            ("uniqueName", choice.unique_name),
        ):
            if value and value.lower() in text:
                return ResolvedVariant(
                    variant_product_id=choice.variant_product_id,
                    part_no=choice.part_no,
                    index=choice.index,
                    reason=f'exact {field_name} "{value}" found in text',
                    parent_product_id=parent,
                )
    return None


def looks_like_selection_intent(message: str) -> bool:
    """Cheap gate deciding whether reference resolution is worth attempting."""
    text = message.strip()
    if any(pattern.search(text) for pattern in ORDINAL_PATTERNS):
        return True
    if len(text) < SELECTION_INTENT_MAX_LENGTH:
        lowered = text.lower()
        return any(keyword in lowered for keyword in SELECTION_KEYWORDS)
    return False


def build_resolver_hint(result: ResolvedProduct) -> str:
    return (
        f'ResolverHint: user likely refers to productId="{result.product_id}" '
        f"from lastResults index={result.index} ({result.reason})"
    )


def build_variant_resolver_hint(result: ResolvedVariant) -> str:
    return (
        f'VariantResolverHint: user selected variantProductId="{result.variant_product_id}" '
        f"from variantChoices index={result.index} ({result.reason})"
    )
