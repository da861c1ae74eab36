"""Variant preflight for cart additions.

Before an add-to-cart call reaches the confirmation gate, the target
product is checked against the product details fetched earlier in the
turn. The outcome decides whether the call may go ahead (possibly with the
single buyable variant's part number substituted), must wait for the user
to choose a variant, or cannot succeed at all.
"""

from dataclasses import dataclass, field

from shopagent.schemas.product import NormalizedProduct, NormalizedVariant
from shopagent.schemas.session import VariantChoice

MAX_VARIANT_OPTIONS = 6
MAX_LABEL_DIMENSIONS = 3


@dataclass(frozen=True)
class PreflightProceed:
    """The call may proceed; ``selected_variant`` is set when rewritten."""

    product_id: str
    rewritten: bool = False
    selected_variant: NormalizedVariant | None = None


@dataclass(frozen=True)
class PreflightDisambiguate:
    """Several buyable variants; the user has to pick one."""

    message: str
    parent_product_id: str
    product_name: str | None = None
    variant_choices: list[VariantChoice] = field(default_factory=list)


@dataclass(frozen=True)
class PreflightNotBuyable:
    """Nothing about this product can be added to a cart."""

    message: str
    parent_product_id: str


@dataclass(frozen=True)
class PreflightNeedsFetch:
    """The product has not been fetched; the call proceeds unmodified."""

    product_id: str


PreflightResult = PreflightProceed | PreflightDisambiguate | PreflightNotBuyable | PreflightNeedsFetch


def build_choice_label(variant: NormalizedVariant) -> str:
    """Label such as ``Color: Brown - Size: 26 - (in stock: 4)``."""
    parts = [f"{name}: {value}" for name, value in list(variant.dims_map.items())[:MAX_LABEL_DIMENSIONS]]
    if not parts:
        parts.append(variant.name or "Variant")
    if variant.on_hand and variant.on_hand.in_stock:
        parts.append(f"(in stock: {variant.on_hand.value:g})")
    else:
        parts.append("(out of stock)")
    return " - ".join(parts)


def build_disambiguation_message(product_name: str | None, choices: list[VariantChoice]) -> str:
    lines = "\n".join(f"{choice.index}) {choice.label}" for choice in choices)
    return (
        f'"{product_name or "This product"}" comes in multiple variants. Which one would you like?\n\n'
        f"{lines}\n\n"
        'Please reply with the option number (e.g., "1" or "option 2").'
    )


def to_variant_choices(variants: list[NormalizedVariant]) -> list[VariantChoice]:
    """Numbered choices in backend order, capped at MAX_VARIANT_OPTIONS."""
    return [
        VariantChoice(
            index=i,
            variant_product_id=variant.variant_product_id,
            label=build_choice_label(variant),
            variant_name=variant.variant_name,
            dims_map=variant.dims_map,
            on_hand=variant.on_hand.value if variant.on_hand else 0,
            is_buyable=variant.is_buyable,
            part_no=variant.part_no,
            ean_code=variant.ean_code,
            unique_name=variant.unique_name,
        )
        for i, variant in enumerate(variants[:MAX_VARIANT_OPTIONS], start=1)
    ]


def _is_cart_ready(variant: NormalizedVariant) -> bool:
    return variant.is_buyable and bool(variant.part_no)


def check_preflight(
    target_product_id: str, known_products: dict[str, NormalizedProduct]
) -> PreflightResult:
    """Decide what an add-to-cart for ``target_product_id`` should do.

    Args:
        target_product_id: Product or variant id the model wants to add.
        known_products: Normalized product details fetched earlier, keyed by
            product id.

    Returns:
        One of PreflightProceed, PreflightDisambiguate, PreflightNotBuyable
        or PreflightNeedsFetch.
    """
    product = known_products.get(target_product_id)
    if product is None:
        return PreflightNeedsFetch(product_id=target_product_id)

    for variant in product.variants:
        if variant.variant_product_id == target_product_id:
            return PreflightProceed(product_id=target_product_id, selected_variant=variant)

    name = product.name or "This product"
    if not product.variants:
        if product.is_buyable:
            return PreflightProceed(product_id=target_product_id)
        return PreflightNotBuyable(
            message=f'"{name}" is not available for purchase.',
            parent_product_id=target_product_id,
        )

    buyable = [v for v in product.variants if _is_cart_ready(v)]
    if not buyable:
        if any(v.is_buyable for v in product.variants):
            reason = "Buyable variants exist but are missing part numbers required for cart operations."
        else:
            reason = "No buyable variants available for this product."
        return PreflightNotBuyable(message=f'"{name}": {reason}', parent_product_id=target_product_id)

    if len(buyable) == 1:
        return PreflightProceed(
            product_id=buyable[0].variant_product_id, rewritten=True, selected_variant=buyable[0]
        )

    choices = to_variant_choices(buyable)
    return PreflightDisambiguate(
        message=build_disambiguation_message(product.name, choices),
        parent_product_id=target_product_id,
        product_name=product.name,
        variant_choices=choices,
    )
