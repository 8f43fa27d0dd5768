"""Authoritative unsold-unit counter per product.

Allocation is a single guarded statement (decrement only when enough stock is
left) so two transactions editing the same product cannot both read the same
count and oversell it. Callers pass the session of their unit of work; a later
failure in that transaction rolls the ledger change back too.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from posapp.errors import InsufficientStock, ProductNotFound, ValidationError
from posapp.models import Product

logger = logging.getLogger(__name__)


def _require_positive(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Stock quantities must be positive whole numbers.")


def current_stock(session: Session, product_id: int) -> int | None:
    return session.execute(
        select(Product.stock_quantity).where(Product.id == product_id)
    ).scalar_one_or_none()


def lock_products(session: Session, product_ids: Iterable[int]) -> dict[int, Product]:
    """Load products keyed by id, row-locked where the backend supports it."""

    ids = sorted({int(product_id) for product_id in product_ids})
    if not ids:
        return {}
    rows = session.execute(
        select(Product).where(Product.id.in_(ids)).order_by(Product.id).with_for_update()
    ).scalars()
    return {product.id: product for product in rows}


def decrement(session: Session, product_id: int, quantity: int, *, name: str | None = None) -> None:
    _require_positive(quantity)

    result = session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount == 1:
        logger.debug("Allocated %s unit(s) of product %s", quantity, product_id)
        return

    available = current_stock(session, product_id)
    if available is None:
        raise ProductNotFound(product_id)
    raise InsufficientStock(product_id, available=available, requested=quantity, name=name)


def increment(session: Session, product_id: int, quantity: int) -> None:
    # No upper bound: only call this with units an order actually held.
    _require_positive(quantity)

    result = session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + quantity)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise ProductNotFound(product_id)
    logger.debug("Released %s unit(s) of product %s", quantity, product_id)
