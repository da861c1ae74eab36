"""Working memory fold-back and the PRODUCT_MEMORY context block.

After every turn the products the agent surfaced are folded into the
session's working memory, so that the next turn can resolve "option 2" or
"the black one" without searching again. Before a turn, the same memory is
rendered as a compact JSON system message for the model.
"""

import json
from typing import Any

from shopagent.schemas.product import ProductCard, VariantSummary
from shopagent.schemas.session import (
    MAX_LAST_RESULTS,
    MAX_SHORTLIST,
    LastResultItem,
    SearchCandidate,
    ShortlistItem,
    WorkingMemory,
)

PRODUCT_MEMORY_LABEL = "PRODUCT_MEMORY"
MAX_MEMORY_NAME_LENGTH = 50
MAX_MEMORY_DIMENSIONS = 4
MAX_MEMORY_DIMENSION_VALUES = 5


def _parse_price(price: str | None) -> float | None:
    if price is None:
        return None
    try:
        return float(price)
    except ValueError:
        return None


def _apply_summary(item: LastResultItem, summary: VariantSummary | None) -> LastResultItem:
    if summary is not None:
        item.buyable_variant_count = summary.buyable_variant_count
        item.in_stock_buyable_variant_count = summary.in_stock_buyable_variant_count
        item.available_dimension_values = summary.available_dimension_values
    return item


def card_to_last_result(card: ProductCard, index: int, summary: VariantSummary | None = None) -> LastResultItem:
    attributes = card.attributes or {}
    item = LastResultItem(
        index=index,
        product_id=card.product_id,
        name=card.title,
        part_no=card.part_no,
        variant_name=card.variant_name,
        brand=attributes.get("brand"),
        color=attributes.get("color"),
        price=_parse_price(card.price),
        currency=card.currency,
        url=card.url or card.image_url,
        availability_status=card.availability_status,
        on_hand_value=card.on_hand_value if card.availability_status else None,
    )
    return _apply_summary(item, summary)


def candidate_to_last_result(
    candidate: SearchCandidate, index: int, summary: VariantSummary | None = None
) -> LastResultItem:
    attributes = candidate.attributes or {}
    item = LastResultItem(
        index=index,
        product_id=candidate.product_id,
        name=candidate.title,
        variant_name=candidate.variant_name,
        brand=attributes.get("brand"),
        color=attributes.get("color"),
        price=_parse_price(candidate.price),
        currency=candidate.currency,
        url=candidate.image_url,
        availability_status=candidate.availability_status,
        on_hand_value=candidate.on_hand_value if candidate.availability_status else None,
    )
    return _apply_summary(item, summary)


def update_working_memory(
    memory: WorkingMemory,
    *,
    cards: list[ProductCard],
    search_candidates: list[SearchCandidate],
    selected_product_ids: list[str],
    variant_summaries: dict[str, VariantSummary],
) -> WorkingMemory:
    """Fold one turn's products into ``memory`` in place and return it.

    Cards win over raw search candidates when building ``last_results``; a
    turn that surfaced nothing leaves the previous results untouched. The
    shortlist only grows, dropping its oldest entries beyond MAX_SHORTLIST.
    """
    if search_candidates:
        memory.search_candidates = list(search_candidates)

    if cards:
        memory.last_results = [
            card_to_last_result(card, i, variant_summaries.get(card.product_id))
            for i, card in enumerate(cards[:MAX_LAST_RESULTS], start=1)
        ]
    elif search_candidates:
        memory.last_results = [
            candidate_to_last_result(candidate, i, variant_summaries.get(candidate.product_id))
            for i, candidate in enumerate(search_candidates[:MAX_LAST_RESULTS], start=1)
        ]

    if selected_product_ids:
        known = {item.product_id for item in memory.shortlist}
        names = {c.product_id: c.title for c in search_candidates}
        names.update({c.product_id: c.title for c in cards})
        for product_id in selected_product_ids:
            if product_id in known:
                continue
            known.add(product_id)
            memory.shortlist.append(ShortlistItem(product_id=product_id, name=names.get(product_id)))
        memory.shortlist = memory.shortlist[-MAX_SHORTLIST:]

    return memory


def _format_price(item: LastResultItem) -> str:
    price = f"{item.price:g}"
    return f"{price} {item.currency}" if item.currency else price


def _compact_result(item: LastResultItem) -> dict[str, Any]:
    compact: dict[str, Any] = {
        "i": item.index,
        "id": item.product_id,
        "name": item.name[:MAX_MEMORY_NAME_LENGTH],
    }
    if item.variant_name:
        compact["vn"] = item.variant_name[:MAX_MEMORY_NAME_LENGTH]
    if item.color:
        compact["color"] = item.color
    if item.brand:
        compact["brand"] = item.brand
    if item.price is not None:
        compact["price"] = _format_price(item)

    if item.availability_status is not None or item.buyable_variant_count is not None:
        avail: dict[str, Any] = {}
        if item.availability_status is not None:
            avail["st"] = item.availability_status.value
        if item.on_hand_value is not None:
            avail["oh"] = item.on_hand_value
        if item.buyable_variant_count is not None:
            avail["b"] = item.buyable_variant_count
            avail["s"] = item.in_stock_buyable_variant_count or 0
        compact["avail"] = avail

    if item.available_dimension_values:
        dimensions = list(item.available_dimension_values.items())[:MAX_MEMORY_DIMENSIONS]
        compact["dims"] = {name: values[:MAX_MEMORY_DIMENSION_VALUES] for name, values in dimensions}

    return compact


def build_product_memory_context(memory: WorkingMemory | None) -> str | None:
    """Render working memory as a ``PRODUCT_MEMORY`` system message body.

    Returns None when there is nothing worth telling the model.
    """
    if memory is None or (not memory.last_results and not memory.shortlist):
        return None

    payload: dict[str, Any] = {}
    if memory.last_results:
        payload["lastResults"] = [_compact_result(item) for item in memory.last_results]
    if memory.shortlist:
        payload["shortlist"] = [
            {"id": item.product_id, "name": item.name[:MAX_MEMORY_NAME_LENGTH]}
            if item.name
            else {"id": item.product_id}
            for item in memory.shortlist
        ]

    return f"{PRODUCT_MEMORY_LABEL}:\n{json.dumps(payload, separators=(',', ':'), ensure_ascii=False)}"
