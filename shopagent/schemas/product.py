"""Pydantic schemas for normalized commerce product data."""

from pydantic import Field

from shopagent.schemas.common import BaseSchema
from shopagent.schemas.session import AvailabilityStatus


class ProductCard(BaseSchema):
    """A product card extracted from tool results for display."""

    product_id: str
    title: str
    part_no: str | None = None
    variant_name: str | None = None
    subtitle: str | None = None
    price: str | None = None
    currency: str | None = None
    image_url: str | None = None
    url: str | None = None
    attributes: dict[str, str] | None = None
    availability_status: AvailabilityStatus | None = None
    on_hand_value: float | None = None


class OnHand(BaseSchema):
    """Stock data from the backend, at product or variant level."""

    value: float = 0
    is_active: bool = False
    incoming_value: float | None = None
    next_delivery_date: str | None = None
    leadtime_day_count: int | None = None

    @property
    def in_stock(self) -> bool:
        return self.value > 0 and self.is_active


class VariantDimension(BaseSchema):
    """A single variant dimension such as Color or Size."""

    name: str
    value: str
    code: str | None = None
    group_name: str | None = None
    is_primary: bool | None = None


class NormalizedVariant(BaseSchema):
    """A buyable configuration of a product."""

    variant_product_id: str
    label: str
    is_buyable: bool = False
    unique_name: str | None = None
    part_no: str | None = None
    name: str | None = None
    variant_name: str | None = None
    on_hand: OnHand | None = None
    price_inc_vat: float | None = None
    price_ex_vat: float | None = None
    ean_code: str | None = None
    dimensions: list[VariantDimension] = Field(default_factory=list)
    dims_map: dict[str, str] = Field(default_factory=dict)


class NormalizedProduct(BaseSchema):
    """Product details including variant-level buyability and stock."""

    product_id: str
    is_buyable: bool = False
    unique_name: str | None = None
    part_no: str | None = None
    name: str | None = None
    variant_name: str | None = None
    description: str | None = None
    price_inc_vat: float | None = None
    price_ex_vat: float | None = None
    manufacturer_name: str | None = None
    image_url: str | None = None
    variants: list[NormalizedVariant] = Field(default_factory=list)
    buyable_variant_count: int = 0
    in_stock_buyable_variant_count: int = 0
    available_dimension_values: dict[str, list[str]] = Field(default_factory=dict)
    root_on_hand: OnHand | None = None


class VariantSummary(BaseSchema):
    """Compact variant availability kept in working memory."""

    buyable_variant_count: int = 0
    in_stock_buyable_variant_count: int = 0
    available_dimension_values: dict[str, list[str]] = Field(default_factory=dict)
    on_hand: OnHand | None = None


# === Comparison ===


class ComparisonPrice(BaseSchema):
    amount: float | None = None
    currency: str | None = None
    formatted: str | None = None


class ComparisonItem(BaseSchema):
    """One product column in a comparison."""

    product_id: str
    name: str
    brand: str | None = None
    price: ComparisonPrice | None = None
    attributes: dict[str, str] | None = None
    url: str | None = None


class ComparisonRow(BaseSchema):
    feature: str
    values: list[str]


class ComparisonTable(BaseSchema):
    headers: list[str]
    rows: list[ComparisonRow] = Field(default_factory=list)


class ComparisonBlock(BaseSchema):
    """Side-by-side comparison of the 2-3 products fetched in a turn."""

    title: str
    product_ids: list[str]
    items: list[ComparisonItem]
    table: ComparisonTable | None = None
