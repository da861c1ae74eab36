"""Product comparison: intent detection, candidate selection and the table.

Compare intent is a cheap heuristic. When it fires and two or more
candidates resolve from working memory, the loop injects a CompareHint so
the model fetches exactly those products. Whatever ``product_get`` returned
during the turn is then laid out side by side.
"""

import re
from dataclasses import dataclass, field

from shopagent.schemas.product import (
    ComparisonBlock,
    ComparisonItem,
    ComparisonPrice,
    ComparisonRow,
    ComparisonTable,
    NormalizedProduct,
)
from shopagent.schemas.session import LastResultItem, ShortlistItem, WorkingMemory

MAX_COMPARE = 3
MAX_FEATURES = 8
MAX_HEADER_LENGTH = 30
MAX_ORDINAL = 10

FEATURE_PRIORITY = [
    "price",
    "brand",
    "material",
    "color",
    "size",
    "weight",
    "dimensions",
    "category",
    "manufacturer",
    "model",
    "warranty",
    "availability",
]

SHORTLIST_TRIGGERS = ("these", "those", "them", "both", "all")

_CONNECTOR = r"\s*(?:and|&|,|vs\.?|or)\s*"
MULTIPLE_ORDINAL_PATTERN = re.compile(rf"(?:#?\d+{_CONNECTOR})+#?\d+", re.IGNORECASE)
COMPARISON_QUESTION_PATTERN = re.compile(r"\b(?:difference|better|worse|prefer|versus|vs\.?)\b", re.IGNORECASE)
MULTIPLE_REFERENCE_PATTERN = re.compile(r"\b(?:these|those|them|both|two|three|2|3)\b", re.IGNORECASE)
COMPARE_KEYWORD_PATTERN = re.compile(r"\b(?:compare|jämför)\b", re.IGNORECASE)
MULTIPLE_ID_PATTERN = re.compile(
    rf"(?:[a-f0-9-]{{8,}}|[A-Z0-9]{{4,}}){_CONNECTOR}(?:[a-f0-9-]{{8,}}|[A-Z0-9]{{4,}})"
)

ORDINAL_PATTERNS = [
    re.compile(r"#(\d+)"),
    re.compile(r"\boption\s*(\d+)", re.IGNORECASE),
    re.compile(r"\bnumber\s*(\d+)", re.IGNORECASE),
    re.compile(r"\bnr\.?\s*(\d+)", re.IGNORECASE),
    re.compile(r"\b(\d+)(?:st|nd|rd|th)\b", re.IGNORECASE),
]
ORDINAL_SEQUENCE_PATTERN = re.compile(rf"\b\d+(?:{_CONNECTOR}\d+)+", re.IGNORECASE)


@dataclass(frozen=True)
class CompareReason:
    product_id: str
    source: str
    match_type: str
    index: int | None = None


@dataclass
class CompareCandidates:
    """Products the user most likely wants compared, in mention order."""

    product_ids: list[str] = field(default_factory=list)
    reasons: list[CompareReason] = field(default_factory=list)

    def add(self, reason: CompareReason) -> None:
        if reason.product_id not in self.product_ids and len(self.product_ids) < MAX_COMPARE:
            self.product_ids.append(reason.product_id)
            self.reasons.append(reason)

    @property
    def full(self) -> bool:
        return len(self.product_ids) >= MAX_COMPARE


def looks_like_compare_intent(message: str) -> bool:
    text = message.strip()
    if not text:
        return False
    if COMPARE_KEYWORD_PATTERN.search(text) or MULTIPLE_ORDINAL_PATTERN.search(text):
        return True
    if COMPARISON_QUESTION_PATTERN.search(text) and MULTIPLE_REFERENCE_PATTERN.search(text):
        return True
    return bool(MULTIPLE_ID_PATTERN.search(text))


def extract_ordinals(message: str) -> list[int]:
    """Sorted 1-based positions mentioned in ``message`` ("#1", "option 2", "1 and 3")."""
    found: set[int] = set()
    for pattern in ORDINAL_PATTERNS:
        found.update(int(m.group(1)) for m in pattern.finditer(message))
    for sequence in ORDINAL_SEQUENCE_PATTERN.finditer(message):
        found.update(int(n) for n in re.findall(r"\d+", sequence.group(0)))
    return sorted(n for n in found if 1 <= n <= MAX_ORDINAL)


def _from_ordinals(message: str, results: list[LastResultItem]) -> CompareCandidates:
    candidates = CompareCandidates()
    for ordinal in extract_ordinals(message):
        if ordinal <= len(results) and not candidates.full:
            item = results[ordinal - 1]
            candidates.add(CompareReason(item.product_id, "lastResults", "ordinal", ordinal))
    return candidates


def _from_identifiers(message: str, results: list[LastResultItem]) -> CompareCandidates:
    text = message.lower()
    candidates = CompareCandidates()
    for item in results:
        if candidates.full:
            break
        if item.product_id and item.product_id.lower() in text:
            candidates.add(CompareReason(item.product_id, "lastResults", "productId", item.index))
        elif item.part_no and item.part_no.lower() in text:
            candidates.add(CompareReason(item.product_id, "lastResults", "partNo", item.index))
    return candidates


def _from_shortlist(
    message: str, shortlist: list[ShortlistItem], results: list[LastResultItem]
) -> CompareCandidates:
    candidates = CompareCandidates()
    text = message.lower()
    if not any(trigger in text for trigger in SHORTLIST_TRIGGERS):
        return candidates
    if len(shortlist) >= 2:
        for item in shortlist:
            candidates.add(CompareReason(item.product_id, "shortlist", "shortlist"))
    elif 2 <= len(results) <= MAX_COMPARE:
        for item in results:
            candidates.add(CompareReason(item.product_id, "lastResults", "ordinal", item.index))
    return candidates


def select_compare_candidates(message: str, memory: WorkingMemory | None) -> CompareCandidates | None:
    """Pick up to three products to compare, or None when fewer than two resolve.

    Ordinals win over identifiers, identifiers over a "these"/"both"
    reference to the shortlist. Partial matches from every pass are merged
    as a last resort.
    """
    if memory is None:
        return None

    passes = [
        _from_ordinals(message, memory.last_results),
        _from_identifiers(message, memory.last_results),
        _from_shortlist(message, memory.shortlist, memory.last_results),
    ]
    for candidates in passes:
        if len(candidates.product_ids) >= 2:
            return candidates

    merged = CompareCandidates()
    for candidates in passes:
        for reason in candidates.reasons:
            merged.add(reason)
    return merged if len(merged.product_ids) >= 2 else None


def build_compare_hint(candidates: CompareCandidates) -> str:
    reasons = "; ".join(
        f"{r.product_id} ({r.match_type} from {r.source}{f' index {r.index}' if r.index else ''})"
        for r in candidates.reasons
    )
    return (
        f"CompareHint: user wants to compare {len(candidates.product_ids)} products. "
        f"Selected: {', '.join(candidates.product_ids)}. Reasons: {reasons}. "
        "Call product_get for each to get details for comparison."
    )


# --- Comparison table ---


def _availability(product: NormalizedProduct) -> str | None:
    if product.variants:
        if product.in_stock_buyable_variant_count:
            return f"In stock ({product.in_stock_buyable_variant_count} variants)"
        return "Out of stock" if product.buyable_variant_count else "Not buyable"
    if product.root_on_hand is None:
        return None
    return "In stock" if product.root_on_hand.in_stock else "Out of stock"


def comparison_item(product: NormalizedProduct, currency: str | None = None) -> ComparisonItem:
    """Comparison column for a fetched product."""
    amount = product.price_inc_vat if product.price_inc_vat is not None else product.price_ex_vat
    attributes = {
        name.lower(): ", ".join(values) for name, values in product.available_dimension_values.items() if values
    }
    availability = _availability(product)
    if availability:
        attributes["availability"] = availability
    return ComparisonItem(
        product_id=product.product_id,
        name=product.name or product.product_id,
        brand=product.manufacturer_name,
        price=ComparisonPrice(amount=amount, currency=currency) if amount is not None else None,
        attributes=attributes or None,
    )


def _feature_rank(key: str) -> tuple[int, str]:
    lowered = key.lower()
    if lowered in FEATURE_PRIORITY:
        return FEATURE_PRIORITY.index(lowered), ""
    return len(FEATURE_PRIORITY), lowered


def _feature_name(key: str) -> str:
    if key.lower() in ("sku", "id", "url"):
        return key.upper()
    spaced = re.sub(r"([A-Z])", r" \1", key).replace("_", " ")
    return " ".join(word.capitalize() for word in spaced.split())


def _feature_value(item: ComparisonItem, key: str) -> str:
    if key == "price":
        if item.price is None:
            return "-"
        if item.price.formatted:
            return item.price.formatted
        if item.price.amount is None:
            return "-"
        amount = f"{item.price.amount:g}"
        return f"{amount} {item.price.currency}" if item.price.currency else amount
    if key == "brand":
        return item.brand or "-"
    return (item.attributes or {}).get(key) or "-"


def _truncate(name: str, limit: int = MAX_HEADER_LENGTH) -> str:
    return name if len(name) <= limit else f"{name[: limit - 3]}..."


def build_comparison(items: list[ComparisonItem], title: str | None = None) -> ComparisonBlock:
    """Lay ``items`` out as a feature table.

    Raises:
        ValueError: fewer than two items were given.
    """
    if len(items) < 2:
        raise ValueError("At least 2 products are required for comparison")

    keys = {key for item in items for key in (item.attributes or {})}
    if any(item.price and (item.price.amount is not None or item.price.formatted) for item in items):
        keys.add("price")
    if any(item.brand for item in items):
        keys.add("brand")
    features = sorted(keys, key=_feature_rank)[:MAX_FEATURES]

    table = ComparisonTable(
        headers=["Feature", *(_truncate(item.name) for item in items)],
        rows=[
            ComparisonRow(feature=_feature_name(key), values=[_feature_value(item, key) for item in items])
            for key in features
        ],
    )
    return ComparisonBlock(
        title=title or f"Product Comparison ({len(items)} items)",
        product_ids=[item.product_id for item in items],
        items=items,
        table=table,
    )


def build_turn_comparison(
    candidate_ids: list[str],
    selected_product_ids: list[str],
    product_details: dict[str, NormalizedProduct],
    currency: str | None = None,
) -> ComparisonBlock | None:
    """Comparison of the products fetched this turn, when there are at least two.

    Products picked by compare intent take precedence; otherwise every
    product fetched during the turn is compared.
    """
    order = candidate_ids if len(candidate_ids) >= 2 else selected_product_ids
    products: dict[str, NormalizedProduct] = {}
    for product_id in order:
        product = product_details.get(product_id)
        if product is not None and product.product_id not in products:
            products[product.product_id] = product
    if len(products) < 2:
        return None
    return build_comparison([comparison_item(p, currency) for p in list(products.values())[:MAX_COMPARE]])
