from __future__ import annotations

from typing import Any, Mapping

from flask import Blueprint, jsonify, request

from posapp.errors import ValidationError
from posapp.services import orders as order_service

bp = Blueprint("orders", __name__, url_prefix="/api/orders")

# Payload keys as the shop terminals send them, mapped to service arguments.
GUEST_FIELDS = {
    "guest_name": ("guestName", "guest_name"),
    "guest_phone": ("guestPhone", "guest_phone"),
    "guest_note": ("guestNote", "guest_note"),
    "guest_embg": ("guestEmbg", "guest_embg"),
    "guest_id_card": ("guestIdCard", "guest_id_card"),
}


def _payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _guest_arguments(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {name: _pick(payload, *keys) for name, keys in GUEST_FIELDS.items()}


@bp.post("")
def create_order():
    payload = _payload()
    result = order_service.create_order(
        payload.get("items"),
        manager_id=_pick(payload, "shopManagerId", "shop_manager_id"),
        status=payload.get("status"),
        discount=payload.get("discount"),
        **_guest_arguments(payload),
    )
    return jsonify(result), 201


@bp.get("/<int:order_id>")
def get_order(order_id: int):
    return jsonify(order_service.get_order(order_id))


@bp.put("/<int:order_id>")
def update_order(order_id: int):
    payload = _payload()
    result = order_service.update_order(
        order_id,
        items=payload.get("items"),
        status=payload.get("status"),
        discount=payload.get("discount"),
        **_guest_arguments(payload),
    )
    return jsonify(result)


@bp.put("/<int:order_id>/status")
def update_order_status(order_id: int):
    payload = _payload()
    return jsonify(order_service.update_order_status(order_id, payload.get("status")))


@bp.delete("/<int:order_id>")
def delete_order(order_id: int):
    return jsonify(order_service.delete_order(order_id))
