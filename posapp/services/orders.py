"""Order transaction manager.

Every public operation runs inside exactly one unit of work: the order row,
its item rows and the stock ledger move together or not at all. Domain errors
raised half-way (missing product, not enough stock) roll back everything the
operation already did, including units released earlier in the same call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from posapp.errors import (
    InsufficientStock,
    OrderNotFound,
    ProductNotFound,
    ProductUnavailable,
    ValidationError,
)
from posapp.models import Order, OrderItem, OrderStatus, Product, ShopManager
from posapp.services import stock_ledger
from posapp.services.order_lines import (
    LineRequest,
    OrderLine,
    build_line,
    diff_items,
    parse_amount,
    parse_int,
    parse_line_requests,
)
from posapp.services.pricing import compute_totals, to_money
from posapp.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedLine:
    line: OrderLine
    price: Decimal
    name: str

    @property
    def product_id(self) -> int:
        return self.line.product_id

    @property
    def quantity(self) -> int:
        return self.line.quantity

    @property
    def warranty(self) -> int | None:
        return self.line.warranty


def _required_text(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required.")
    return value.strip()


def _optional_text(value: Any, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be text.")
    return value.strip() or None


def _validate_status(status: Any) -> str:
    if status not in OrderStatus.ALL_STATUSES:
        raise ValidationError("Status must be pending or completed")
    return status


def _discount_currency() -> str | None:
    return current_app.config.get("DISCOUNT_CURRENCY")


def _load_order(session: Session, order_id: int) -> Order:
    order = session.execute(
        select(Order).where(Order.id == order_id).with_for_update()
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def _default_warranty(product: Product) -> int | None:
    if product.archetype is not None:
        return product.archetype.warranty
    return None


def _plan_lines(
    requests: Iterable[LineRequest],
    products: dict[int, Product],
    existing: dict[int, OrderItem] | None = None,
) -> list[PlannedLine]:
    """Resolve requests against locked products into priced, tagged lines."""

    existing = existing or {}
    planned: list[PlannedLine] = []
    for request in requests:
        product = products.get(request.product_id)
        if product is None:
            raise ProductNotFound(request.product_id)

        current = existing.get(request.product_id)
        # Units already on the order may stay even if the product was
        # disabled since; new units must come from enabled stock.
        if current is None and not product.is_enabled:
            raise ProductUnavailable(product.id, product.name)

        warranty = request.warranty
        if warranty is None:
            warranty = current.warranty if current is not None else _default_warranty(product)

        if request.price is not None:
            price = request.price
        elif current is not None:
            price = current.price
        else:
            price = product.price

        planned.append(
            PlannedLine(
                line=build_line(product, request.quantity, warranty),
                price=to_money(price),
                name=product.name,
            )
        )
    return planned


def _resolved_for_diff(
    requests: Iterable[LineRequest], existing: dict[int, OrderItem]
) -> list[LineRequest]:
    resolved = []
    for request in requests:
        current = existing.get(request.product_id)
        if request.warranty is None and current is not None:
            request = LineRequest(
                product_id=request.product_id,
                quantity=request.quantity,
                warranty=current.warranty,
                price=request.price,
            )
        resolved.append(request)
    return resolved


def _guest_updates(
    guest_name: Any,
    guest_phone: Any,
    guest_note: Any,
    guest_embg: Any,
    guest_id_card: Any,
) -> dict[str, str | None]:
    updates: dict[str, str | None] = {}
    if guest_name is not None:
        updates["guest_name"] = _required_text(guest_name, "Guest name")
    if guest_phone is not None:
        updates["guest_phone"] = _required_text(guest_phone, "Guest phone")
    # Blank strings clear the optional fields; None leaves them untouched.
    if guest_note is not None:
        updates["guest_note"] = _optional_text(guest_note, "Guest note")
    if guest_embg is not None:
        updates["guest_embg"] = _optional_text(guest_embg, "Guest EMBG")
    if guest_id_card is not None:
        updates["guest_id_card"] = _optional_text(guest_id_card, "Guest ID card")
    return updates


def _apply_totals(order: Order, lines: Iterable[Any], discount: Any) -> None:
    totals = compute_totals(lines, discount)
    order.original_total = totals.raw_total
    order.total_amount = totals.effective_total


def create_order(
    items: Any,
    *,
    guest_name: Any,
    guest_phone: Any,
    manager_id: Any,
    status: Any = OrderStatus.PENDING,
    discount: Any = 0,
    guest_note: Any = None,
    guest_embg: Any = None,
    guest_id_card: Any = None,
    session: Session | None = None,
) -> dict[str, Any]:
    requests = parse_line_requests(items)
    guest_name = _required_text(guest_name, "Guest name")
    guest_phone = _required_text(guest_phone, "Guest phone")
    guest_note = _optional_text(guest_note, "Guest note")
    guest_embg = _optional_text(guest_embg, "Guest EMBG")
    guest_id_card = _optional_text(guest_id_card, "Guest ID card")
    status = _validate_status(status or OrderStatus.PENDING)
    discount_value = parse_amount(discount or 0, "Discount")
    manager_id = parse_int(manager_id, "Shop manager ID")

    with UnitOfWork(session) as uow:
        db_session = uow.session

        manager = db_session.get(ShopManager, manager_id)
        if manager is None or not manager.is_active:
            raise ValidationError(f"Shop manager {manager_id} does not exist or is inactive.")

        products = stock_ledger.lock_products(db_session, (r.product_id for r in requests))
        planned = _plan_lines(requests, products)
        for line in planned:
            product = products[line.product_id]
            if line.quantity > product.stock_quantity:
                raise InsufficientStock(
                    product.id,
                    available=product.stock_quantity,
                    requested=line.quantity,
                    name=product.name,
                )

        totals = compute_totals(planned, discount_value)
        order = Order(
            status=status,
            guest_name=guest_name,
            guest_phone=guest_phone,
            guest_note=guest_note,
            guest_embg=guest_embg,
            guest_id_card=guest_id_card,
            shop_manager_id=manager.id,
            total_amount=totals.effective_total,
            original_total=totals.raw_total,
            discount_amount=to_money(discount_value),
            discount_currency=_discount_currency(),
        )
        for line in planned:
            order.items.append(
                OrderItem(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price=line.price,
                    warranty=line.warranty,
                )
            )
        db_session.add(order)
        db_session.flush()

        for line in planned:
            stock_ledger.decrement(db_session, line.product_id, line.quantity, name=line.name)

        order_id = order.id

    logger.info(
        "Created order %s with %s line(s): original %s, discount %s, total %s",
        order_id,
        len(planned),
        totals.raw_total,
        totals.applied_discount,
        totals.effective_total,
    )
    return {
        "order_id": order_id,
        "total_amount": totals.effective_total,
        "original_total": totals.raw_total,
        "discount": totals.applied_discount,
    }


def _reallocate(
    db_session: Session,
    order: Order,
    original: list[OrderItem],
    requests: list[LineRequest],
) -> None:
    existing = {item.product_id: item for item in original}
    # Lock every product involved up front, in id order.
    product_ids = set(existing) | {request.product_id for request in requests}
    products = stock_ledger.lock_products(db_session, product_ids)
    planned = _plan_lines(requests, products, existing)

    for item in original:
        stock_ledger.increment(db_session, item.product_id, item.quantity)

    for line in planned:
        stock_ledger.decrement(db_session, line.product_id, line.quantity, name=line.name)

    order.items.clear()
    db_session.flush()
    for line in planned:
        order.items.append(
            OrderItem(
                product_id=line.product_id,
                quantity=line.quantity,
                price=line.price,
                warranty=line.warranty,
            )
        )
    db_session.flush()


def update_order(
    order_id: int,
    *,
    items: Any = None,
    status: Any = None,
    discount: Any = None,
    guest_name: Any = None,
    guest_phone: Any = None,
    guest_note: Any = None,
    guest_embg: Any = None,
    guest_id_card: Any = None,
    session: Session | None = None,
) -> dict[str, Any]:
    requests = parse_line_requests(items) if items is not None else None
    status = _validate_status(status) if status is not None else None
    discount_value = parse_amount(discount, "Discount") if discount is not None else None
    guest_updates = _guest_updates(
        guest_name, guest_phone, guest_note, guest_embg, guest_id_card
    )

    items_updated = False
    with UnitOfWork(session) as uow:
        db_session = uow.session
        order = _load_order(db_session, order_id)
        original = list(order.items)

        if requests is not None:
            existing = {item.product_id: item for item in original}
            diff = diff_items(original, _resolved_for_diff(requests, existing))
            if diff.unchanged:
                logger.info("Order %s items unchanged; stock left untouched", order_id)
            else:
                logger.info(
                    "Order %s items changed (added=%s removed=%s changed=%s); reallocating",
                    order_id,
                    sorted(diff.added),
                    sorted(diff.removed),
                    sorted(diff.changed),
                )
                _reallocate(db_session, order, original, requests)
                items_updated = True

        for column, value in guest_updates.items():
            setattr(order, column, value)
        if status is not None:
            order.status = status
        if discount_value is not None:
            order.discount_amount = to_money(discount_value)
            order.discount_currency = _discount_currency()

        if items_updated or discount_value is not None:
            _apply_totals(order, order.items, order.discount_amount)

        result_status = order.status

    return {"order_id": order_id, "status": result_status, "items_updated": items_updated}


def update_order_status(order_id: int, status: Any, *, session: Session | None = None) -> dict[str, Any]:
    status = _validate_status(status)
    with UnitOfWork(session) as uow:
        order = _load_order(uow.session, order_id)
        order.status = status

    logger.info("Order %s status set to %s", order_id, status)
    return {"order_id": order_id, "status": status}


def delete_order(order_id: int, *, session: Session | None = None) -> dict[str, Any]:
    with UnitOfWork(session) as uow:
        db_session = uow.session
        order = _load_order(db_session, order_id)
        items = list(order.items)

        for item in items:
            stock_ledger.increment(db_session, item.product_id, item.quantity)

        order.items.clear()
        db_session.flush()
        db_session.delete(order)

    logger.info("Deleted order %s and restored stock for %s line(s)", order_id, len(items))
    return {"order_id": order_id, "items_restored": len(items)}


def serialize_order(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "status": order.status,
        "guest_name": order.guest_name,
        "guest_phone": order.guest_phone,
        "guest_note": order.guest_note,
        "guest_embg": order.guest_embg,
        "guest_id_card": order.guest_id_card,
        "shop_manager_id": order.shop_manager_id,
        "total_amount": to_money(order.total_amount),
        "original_total": to_money(order.original_total),
        "discount_amount": to_money(order.discount_amount),
        "discount_currency": order.discount_currency,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "items": [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "price": to_money(item.price),
                "warranty": item.warranty,
            }
            for item in order.items
        ],
    }


def get_order(order_id: int, *, session: Session | None = None) -> dict[str, Any]:
    with UnitOfWork(session) as uow:
        order = uow.session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return serialize_order(order)
