"""Domain errors raised by the order and catalog services.

Every error carries a machine-readable ``kind`` and a human message so the
calling layer can answer with a structured payload. Raising one inside a
unit of work rolls the whole transaction back.
"""

from __future__ import annotations

from typing import Any


class PosError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PosError):
    kind = "validation_error"
    status_code = 400


class ProductNotFound(PosError):
    kind = "product_not_found"
    status_code = 404

    def __init__(self, product_id: int):
        super().__init__(
            f"Product {product_id} not found", details={"product_id": product_id}
        )
        self.product_id = product_id


class OrderNotFound(PosError):
    kind = "order_not_found"
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found", details={"order_id": order_id})
        self.order_id = order_id


class InsufficientStock(PosError):
    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, *, available: int, requested: int, name: str | None = None):
        label = name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ProductUnavailable(PosError):
    kind = "product_unavailable"
    status_code = 409

    def __init__(self, product_id: int, name: str | None = None):
        label = name or f"Product {product_id}"
        super().__init__(f"{label} is not available", details={"product_id": product_id})
        self.product_id = product_id


class CatalogPropagationError(PosError):
    kind = "catalog_propagation_error"
    status_code = 500

    def __init__(self, job_id: int, message: str):
        super().__init__(
            f"Catalog propagation job {job_id} failed: {message}",
            details={"job_id": job_id},
        )
        self.job_id = job_id
