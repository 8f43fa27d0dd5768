from decimal import Decimal
from types import SimpleNamespace

import pytest

from posapp.errors import ValidationError
from posapp.models import ProductCategory
from posapp.services.order_lines import (
    BulkItem,
    LineRequest,
    SerializedItem,
    build_line,
    diff_items,
    items_unchanged,
    parse_amount,
    parse_line_requests,
    parse_warranty,
)


def _product(product_id, category=ProductCategory.BULK):
    return SimpleNamespace(
        id=product_id,
        name=f"Product {product_id}",
        category=category,
        is_serialized=category == ProductCategory.SERIALIZED,
    )


def test_parse_line_requests_accepts_camel_and_snake_keys():
    lines = parse_line_requests(
        [
            {"productId": 1, "quantity": 2, "warranty": 12},
            {"product_id": "2", "quantity": "1", "price": "450.50"},
        ]
    )

    assert lines == [
        LineRequest(product_id=1, quantity=2, warranty=12),
        LineRequest(product_id=2, quantity=1, warranty=None, price=Decimal("450.50")),
    ]


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        "1x2",
        [{"quantity": 1}],
        [{"productId": 1}],
        [{"productId": 1, "quantity": 0}],
        [{"productId": 1, "quantity": -3}],
        [{"productId": 0, "quantity": 1}],
        [{"productId": "abc", "quantity": 1}],
        [{"productId": 1, "quantity": 1}, {"productId": 1, "quantity": 2}],
        [42],
    ],
)
def test_parse_line_requests_rejects_malformed_items(payload):
    with pytest.raises(ValidationError):
        parse_line_requests(payload)


def test_warranty_bounds():
    assert parse_warranty(None) is None
    assert parse_warranty("") is None
    assert parse_warranty(0) == 0
    assert parse_warranty("24") == 24
    with pytest.raises(ValidationError):
        parse_warranty(61)
    with pytest.raises(ValidationError):
        parse_warranty(-1)


def test_parse_amount_rejects_negative_and_garbage():
    assert parse_amount("12.5", "Price") == Decimal("12.5")
    for value in (-1, "nope", True, "NaN"):
        with pytest.raises(ValidationError):
            parse_amount(value, "Price")


def test_build_line_tags_serialized_and_bulk_products():
    phone = _product(1, ProductCategory.SERIALIZED)
    cable = _product(2)

    serialized = build_line(phone, 1, warranty=24)
    bulk = build_line(cable, 3)

    assert isinstance(serialized, SerializedItem)
    assert serialized.quantity == 1
    assert serialized.warranty == 24
    assert isinstance(bulk, BulkItem)
    assert bulk.quantity == 3


def test_serialized_units_cannot_be_sold_in_multiples():
    phone = _product(1, ProductCategory.SERIALIZED)

    with pytest.raises(ValidationError, match="serialized"):
        build_line(phone, 2)


def test_bulk_item_requires_positive_quantity():
    with pytest.raises(ValidationError):
        BulkItem(product_id=1, quantity=0)


def test_diff_detects_added_removed_and_changed_lines():
    original = [
        SimpleNamespace(product_id=1, quantity=2, warranty=None),
        SimpleNamespace(product_id=2, quantity=1, warranty=12),
        SimpleNamespace(product_id=3, quantity=1, warranty=None),
    ]
    new = [
        {"productId": 1, "quantity": 2, "warranty": None},
        {"productId": 2, "quantity": 1, "warranty": 24},
        {"productId": 4, "quantity": 5},
    ]

    diff = diff_items(original, new)

    assert diff.added == {4}
    assert diff.removed == {3}
    assert diff.changed == {2}
    assert not diff.unchanged


def test_diff_ignores_line_order():
    original = [
        SimpleNamespace(product_id=1, quantity=2, warranty=None),
        SimpleNamespace(product_id=2, quantity=1, warranty=None),
    ]
    new = [
        LineRequest(product_id=2, quantity=1),
        LineRequest(product_id=1, quantity=2),
    ]

    assert items_unchanged(original, new)


def test_quantity_change_counts_as_a_change():
    original = [SimpleNamespace(product_id=1, quantity=2, warranty=None)]

    assert not items_unchanged(original, [LineRequest(product_id=1, quantity=3)])
