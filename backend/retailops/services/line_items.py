"""
Sale line items as a tagged variant.

A line is either a CatalogLineItem (references a Product; unit price may be
left out and is then taken from the product) or a ManualLineItem (free-text
name, explicit price, optional serial number). parse_line_item is the only
way request payloads become line items, so a line carrying both a
product_id and a product_name never reaches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from ..errors import ValidationError


ITEM_TYPE_CATALOG = "catalog"
ITEM_TYPE_MANUAL = "manual"


@dataclass(frozen=True)
class CatalogLineItem:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None

    item_type = ITEM_TYPE_CATALOG

    def priced(self, unit_price_cents: int) -> "CatalogLineItem":
        return CatalogLineItem(self.product_id, self.quantity, unit_price_cents)


@dataclass(frozen=True)
class ManualLineItem:
    product_name: str
    quantity: int
    unit_price_cents: int
    serial_number: str | None = None

    item_type = ITEM_TYPE_MANUAL


LineItem = Union[CatalogLineItem, ManualLineItem]


def line_total_cents(item: LineItem) -> int:
    if item.unit_price_cents is None:
        raise ValueError("line item has no unit price")
    return item.quantity * item.unit_price_cents


def _field(index: int, name: str) -> str:
    return f"items[{index}].{name}"


def _positive_int(payload: dict, key: str, index: int, *, required: bool = True) -> int | None:
    raw = payload.get(key)
    if raw is None:
        if required:
            raise ValidationError.for_field(_field(index, key), f"{key} is required")
        return None
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError.for_field(_field(index, key), f"{key} must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError.for_field(_field(index, key), f"{key} must be an integer")
    if value <= 0:
        raise ValidationError.for_field(_field(index, key), f"{key} must be positive")
    return value


def parse_line_item(payload: Any, index: int = 0) -> LineItem:
    """
    Build a line item from a request payload.

    Accepted keys: product_id | product_name, quantity, unit_price_cents,
    serial_number (manual only), and an optional "type" tag that must agree
    with the fields present.
    """
    if not isinstance(payload, dict):
        raise ValidationError.for_field(f"items[{index}]", "Each item must be an object")

    product_id = payload.get("product_id")
    product_name = payload.get("product_name")
    if isinstance(product_name, str):
        product_name = product_name.strip() or None

    if product_id is not None and product_name is not None:
        raise ValidationError.for_field(
            f"items[{index}]",
            "Item must reference either product_id or product_name, not both",
        )
    if product_id is None and product_name is None:
        raise ValidationError.for_field(
            f"items[{index}]",
            "Item must reference a product_id or carry a product_name",
        )

    tag = payload.get("type")
    inferred = ITEM_TYPE_CATALOG if product_id is not None else ITEM_TYPE_MANUAL
    if tag is not None and tag != inferred:
        raise ValidationError.for_field(
            _field(index, "type"),
            f"type '{tag}' does not match the fields provided",
        )

    quantity = _positive_int(payload, "quantity", index)

    if inferred == ITEM_TYPE_CATALOG:
        pid = _positive_int(payload, "product_id", index)
        price = _positive_int(payload, "unit_price_cents", index, required=False)
        return CatalogLineItem(product_id=pid, quantity=quantity, unit_price_cents=price)

    if not isinstance(product_name, str):
        raise ValidationError.for_field(_field(index, "product_name"), "product_name must be a string")
    price = _positive_int(payload, "unit_price_cents", index)
    serial = payload.get("serial_number")
    if serial is not None:
        serial = str(serial).strip() or None
    return ManualLineItem(
        product_name=product_name,
        quantity=quantity,
        unit_price_cents=price,
        serial_number=serial,
    )


def parse_line_items(payload: Any) -> list[LineItem]:
    if not isinstance(payload, list) or not payload:
        raise ValidationError.for_field("items", "At least one item is required")
    return [parse_line_item(entry, index) for index, entry in enumerate(payload)]
