"""Order line requests, the serialized/bulk line variants and the item diff."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Union

from posapp.errors import ValidationError
from posapp.models import Product

MAX_WARRANTY_MONTHS = 60


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    warranty: int | None = None
    price: Decimal | None = None


@dataclass(frozen=True)
class SerializedItem:
    """A unique unit; it is either on the order or not."""

    product_id: int
    warranty: int | None = None

    @property
    def quantity(self) -> int:
        return 1


@dataclass(frozen=True)
class BulkItem:
    product_id: int
    quantity: int
    warranty: int | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValidationError("Quantity must be at least 1.")


OrderLine = Union[SerializedItem, BulkItem]


@dataclass
class ItemDiff:
    added: set[int] = field(default_factory=set)
    removed: set[int] = field(default_factory=set)
    changed: set[int] = field(default_factory=set)

    @property
    def unchanged(self) -> bool:
        return not (self.added or self.removed or self.changed)


def parse_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{label} must be a whole number.")


def parse_warranty(value: Any) -> int | None:
    if value is None or value == "":
        return None
    months = parse_int(value, "Warranty")
    if months < 0 or months > MAX_WARRANTY_MONTHS:
        raise ValidationError(
            f"Warranty must be between 0 and {MAX_WARRANTY_MONTHS} months."
        )
    return months


def parse_amount(value: Any, label: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{label} must be a number.")
    if not amount.is_finite():
        raise ValidationError(f"{label} must be a number.")
    if amount < 0:
        raise ValidationError(f"{label} cannot be negative.")
    return amount


def _pick(entry: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry:
            return entry[key]
    return None


def parse_line_requests(raw_items: Any) -> list[LineRequest]:
    """Validate an incoming item list before any transaction is opened."""

    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        raise ValidationError("Items must be a list with at least one item.")

    lines: list[LineRequest] = []
    seen: set[int] = set()
    for index, entry in enumerate(raw_items, start=1):
        if isinstance(entry, LineRequest):
            line = entry
        elif isinstance(entry, Mapping):
            raw_product_id = _pick(entry, "productId", "product_id")
            if raw_product_id is None:
                raise ValidationError(f"Item {index} is missing a product id.")
            raw_quantity = _pick(entry, "quantity")
            if raw_quantity is None:
                raise ValidationError(f"Item {index} is missing a quantity.")
            raw_price = _pick(entry, "price")
            line = LineRequest(
                product_id=parse_int(raw_product_id, "Product ID"),
                quantity=parse_int(raw_quantity, "Quantity"),
                warranty=parse_warranty(_pick(entry, "warranty")),
                price=None if raw_price is None else parse_amount(raw_price, "Price"),
            )
        else:
            raise ValidationError(f"Item {index} must be an object.")

        if line.product_id <= 0:
            raise ValidationError("Product ID must be a positive integer.")
        if line.quantity <= 0:
            raise ValidationError("Quantity must be a positive integer.")
        if line.product_id in seen:
            raise ValidationError(f"Product {line.product_id} is listed more than once.")
        seen.add(line.product_id)
        lines.append(line)

    return lines


def build_line(product: Product, quantity: int, warranty: int | None = None) -> OrderLine:
    if product.is_serialized:
        if quantity != 1:
            raise ValidationError(
                f"{product.name} is a serialized unit; its quantity must be 1."
            )
        return SerializedItem(product_id=product.id, warranty=warranty)
    return BulkItem(product_id=product.id, quantity=quantity, warranty=warranty)


def _line_values(line: Any) -> tuple[int, int, int | None]:
    if isinstance(line, Mapping):
        product_id = _pick(line, "productId", "product_id")
        return int(product_id), int(line["quantity"]), line.get("warranty")
    return int(line.product_id), int(line.quantity), line.warranty


def allocation_map(lines: Iterable[Any]) -> dict[int, tuple[int, int | None]]:
    mapping: dict[int, tuple[int, int | None]] = {}
    for line in lines:
        product_id, quantity, warranty = _line_values(line)
        mapping[product_id] = (quantity, warranty)
    return mapping


def diff_items(original: Iterable[Any], new: Iterable[Any]) -> ItemDiff:
    before = allocation_map(original)
    after = allocation_map(new)

    diff = ItemDiff()
    diff.added = set(after) - set(before)
    diff.removed = set(before) - set(after)
    diff.changed = {
        product_id
        for product_id in set(before) & set(after)
        if before[product_id] != after[product_id]
    }
    return diff


def items_unchanged(original: Iterable[Any], new: Iterable[Any]) -> bool:
    return diff_items(original, new).unchanged
