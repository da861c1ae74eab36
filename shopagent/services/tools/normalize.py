"""Normalization of raw commerce backend payloads.

The backend returns loosely-shaped JSON, sometimes wrapped in an MCP
``content`` envelope of text parts. These helpers unwrap the envelope and
turn search hits and product details into the typed records the agent
works with.
"""

import json
import logging
from typing import Any

from shopagent.schemas.product import (
    NormalizedProduct,
    NormalizedVariant,
    OnHand,
    ProductCard,
    VariantDimension,
    VariantSummary,
)
from shopagent.schemas.session import AvailabilityStatus

logger = logging.getLogger(__name__)

MAX_SEARCH_ITEMS = 10
MAX_CARDS = 6
MAX_VARIANTS = 50
MAX_DIMENSION_VALUES = 20
MAX_LABEL_DIMENSIONS = 3


def unwrap_content(result: Any) -> Any:
    """Return the JSON payload inside an MCP ``content`` envelope, if any."""
    if not isinstance(result, dict) or not isinstance(result.get("content"), list):
        return result
    for part in result["content"]:
        if isinstance(part, dict) and part.get("type") == "text" and part.get("text"):
            try:
                return json.loads(part["text"])
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON content part")
    return result


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _float_or_none(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    return None


# === Availability ===


def normalize_on_hand(raw: Any) -> OnHand | None:
    """Coerce a raw onHand object, ignoring anything that is not a mapping."""
    if not isinstance(raw, dict):
        return None
    return OnHand(
        value=_float_or_none(raw.get("value")) or 0,
        is_active=raw.get("isActive") is True,
        incoming_value=_float_or_none(raw.get("incomingValue")),
        next_delivery_date=raw.get("nextDeliveryDate"),
        leadtime_day_count=raw.get("leadtimeDayCount"),
    )


def compute_availability(raw: Any) -> AvailabilityStatus:
    """Derive an availability status from raw onHand data."""
    if not isinstance(raw, dict):
        return AvailabilityStatus.UNKNOWN
    if raw.get("isActive") is False:
        return AvailabilityStatus.INACTIVE
    if (_float_or_none(raw.get("value")) or 0) > 0:
        return AvailabilityStatus.IN_STOCK
    return AvailabilityStatus.OUT_OF_STOCK


# === product.search ===


def normalize_search_result(result: Any) -> dict[str, Any]:
    """Normalize a product.search response into ``items``/``total_count``/``truncated``.

    Items stay as raw backend dicts, with an added ``availability`` block so
    downstream consumers don't need to re-derive stock status.
    """
    payload = unwrap_content(result)
    items: list[Any] = []
    total_count: int | None = None

    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        for key in ("items", "products"):
            if isinstance(payload.get(key), list):
                items = payload[key]
                total_count = payload.get("totalCount")
                break

    normalized: list[dict[str, Any]] = []
    for item in items[:MAX_SEARCH_ITEMS]:
        if not isinstance(item, dict):
            continue
        entry = dict(item)
        on_hand = item.get("onHand")
        entry["availability"] = {
            "status": compute_availability(on_hand).value,
            "onHandValue": _float_or_none(on_hand.get("value")) if isinstance(on_hand, dict) else None,
        }
        normalized.append(entry)

    return {
        "items": normalized,
        "total_count": total_count if total_count is not None else len(items),
        "truncated": len(items) > MAX_SEARCH_ITEMS,
    }


def _format_price(item: dict[str, Any]) -> tuple[str | None, str | None]:
    price = item.get("priceIncVat", item.get("price"))
    if price is None:
        return None, _str_or_none(item.get("currency") or item.get("currencyCode"))
    return str(price), _str_or_none(item.get("currency") or item.get("currencyCode"))


def _image_url(item: dict[str, Any]) -> str | None:
    images = item.get("images")
    if isinstance(images, list) and images:
        main = next((img for img in images if isinstance(img, dict) and img.get("type") == "main"), None)
        first = main or images[0]
        if isinstance(first, dict) and first.get("url"):
            return str(first["url"])
    return _str_or_none(item.get("imageUrl") or item.get("thumbnailImageKey"))


def search_item_to_card(item: dict[str, Any]) -> ProductCard | None:
    """Build a display card from one normalized search item."""
    product_id = _str_or_none(item.get("productId") or item.get("id"))
    title = item.get("name") or item.get("title")
    if not product_id or not isinstance(title, str):
        return None

    price, currency = _format_price(item)
    availability = item.get("availability") or {}
    attributes = {
        key: str(item[key])
        for key in ("brand", "color", "size", "category")
        if item.get(key) not in (None, "")
    }
    if not attributes.get("brand") and item.get("manufacturerName"):
        attributes["brand"] = str(item["manufacturerName"])

    return ProductCard(
        product_id=product_id,
        title=title,
        part_no=_str_or_none(item.get("partNo")),
        variant_name=item.get("variantName") if isinstance(item.get("variantName"), str) else None,
        price=price,
        currency=currency,
        image_url=_image_url(item),
        url=_str_or_none(item.get("url")),
        attributes=attributes or None,
        availability_status=availability.get("status"),
        on_hand_value=availability.get("onHandValue"),
    )


def search_items_to_cards(items: list[dict[str, Any]]) -> list[ProductCard]:
    cards = [card for item in items if (card := search_item_to_card(item)) is not None]
    return cards[:MAX_CARDS]


# === product.get ===


def extract_variant_dimensions(raw_variant: dict[str, Any]) -> list[VariantDimension]:
    """Collect dimensions from variantParametrics, then parametrics.

    Deduplicated by code (or name); primary dimensions sort first while
    otherwise keeping backend order.
    """
    dimensions: list[VariantDimension] = []
    seen: set[str] = set()
    for source in ("variantParametrics", "parametrics"):
        params = raw_variant.get(source)
        if not isinstance(params, list):
            continue
        for param in params:
            if not isinstance(param, dict) or not param.get("name") or not param.get("value"):
                continue
            key = param.get("code") or param["name"]
            if key in seen:
                continue
            seen.add(key)
            dimensions.append(
                VariantDimension(
                    name=str(param["name"]),
                    value=str(param["value"]),
                    code=_str_or_none(param.get("code")),
                    group_name=_str_or_none(param.get("groupName")),
                    is_primary=param.get("isPrimary"),
                )
            )
    dimensions.sort(key=lambda d: 0 if d.is_primary is True else 1)
    return dimensions


def build_variant_label(raw_variant: dict[str, Any], dimensions: list[VariantDimension]) -> str:
    primary = [d for d in dimensions if d.is_primary is True]
    if primary:
        return " - ".join(f"{d.name}: {d.value}" for d in primary[:MAX_LABEL_DIMENSIONS])
    if isinstance(raw_variant.get("variantName"), str) and raw_variant["variantName"]:
        return raw_variant["variantName"]
    return raw_variant.get("name") or "Unknown variant"


def normalize_variant(raw_variant: dict[str, Any]) -> NormalizedVariant:
    dimensions = extract_variant_dimensions(raw_variant)
    return NormalizedVariant(
        variant_product_id=str(raw_variant.get("productId") or ""),
        label=build_variant_label(raw_variant, dimensions),
        is_buyable=raw_variant.get("isBuyable") is True,
        unique_name=_str_or_none(raw_variant.get("uniqueName")),
        part_no=_str_or_none(raw_variant.get("partNo")),
        name=_str_or_none(raw_variant.get("name")),
        variant_name=raw_variant.get("variantName") if isinstance(raw_variant.get("variantName"), str) else None,
        on_hand=normalize_on_hand(raw_variant.get("onHand")),
        price_inc_vat=_float_or_none(raw_variant.get("priceIncVat")),
        price_ex_vat=_float_or_none(raw_variant.get("priceExVat")),
        ean_code=_str_or_none(raw_variant.get("eanCode")),
        dimensions=dimensions,
        dims_map={d.name: d.value for d in dimensions},
    )


def aggregate_dimension_values(variants: list[NormalizedVariant]) -> dict[str, list[str]]:
    values: dict[str, list[str]] = {}
    for variant in variants:
        for dim in variant.dimensions:
            bucket = values.setdefault(dim.name, [])
            if dim.value not in bucket and len(bucket) < MAX_DIMENSION_VALUES:
                bucket.append(dim.value)
    return values


def normalize_product_get(result: Any) -> NormalizedProduct | None:
    """Normalize a product.get response, or return None if it isn't a product."""
    raw = unwrap_content(result)
    if not isinstance(raw, dict) or ("productId" not in raw and "variants" not in raw):
        return None

    raw_variants = raw.get("variants") if isinstance(raw.get("variants"), list) else []
    variants = [normalize_variant(v) for v in raw_variants[:MAX_VARIANTS] if isinstance(v, dict)]
    buyable = [v for v in variants if v.is_buyable]
    attributes = raw.get("attributes") if isinstance(raw.get("attributes"), dict) else {}

    return NormalizedProduct(
        product_id=str(raw.get("productId") or ""),
        is_buyable=attributes.get("isBuyable") is True,
        unique_name=_str_or_none(raw.get("uniqueName")),
        part_no=_str_or_none(raw.get("partNo")),
        name=_str_or_none(raw.get("name")),
        variant_name=raw.get("variantName") if isinstance(raw.get("variantName"), str) else None,
        description=_str_or_none(raw.get("description")),
        price_inc_vat=_float_or_none(raw.get("priceIncVat")),
        price_ex_vat=_float_or_none(raw.get("priceExVat")),
        manufacturer_name=_str_or_none(raw.get("manufacturerName")),
        image_url=_image_url(raw),
        variants=variants,
        buyable_variant_count=len(buyable),
        in_stock_buyable_variant_count=sum(1 for v in buyable if v.on_hand and v.on_hand.in_stock),
        available_dimension_values=aggregate_dimension_values(variants),
        root_on_hand=normalize_on_hand(raw.get("onHand")),
    )


def extract_variant_summary(
    product: NormalizedProduct, requested_product_id: str | None = None
) -> VariantSummary:
    """Summarize variant availability, preferring the requested variant's stock."""
    on_hand = product.root_on_hand
    if requested_product_id:
        match = next(
            (v for v in product.variants if v.variant_product_id == str(requested_product_id)),
            None,
        )
        if match and match.on_hand:
            on_hand = match.on_hand
    return VariantSummary(
        buyable_variant_count=product.buyable_variant_count,
        in_stock_buyable_variant_count=product.in_stock_buyable_variant_count,
        available_dimension_values=product.available_dimension_values,
        on_hand=on_hand,
    )


def product_to_card(product: NormalizedProduct) -> ProductCard | None:
    if not product.product_id or not product.name:
        return None
    on_hand = product.root_on_hand
    if on_hand is None:
        status = AvailabilityStatus.UNKNOWN
    elif not on_hand.is_active:
        status = AvailabilityStatus.INACTIVE
    else:
        status = AvailabilityStatus.IN_STOCK if on_hand.value > 0 else AvailabilityStatus.OUT_OF_STOCK
    price = product.price_inc_vat if product.price_inc_vat is not None else product.price_ex_vat
    return ProductCard(
        product_id=product.product_id,
        title=product.name,
        part_no=product.part_no,
        variant_name=product.variant_name,
        subtitle=product.manufacturer_name,
        price=str(price) if price is not None else None,
        image_url=product.image_url,
        availability_status=status,
        on_hand_value=on_hand.value if on_hand else None,
    )
