from __future__ import annotations

from flask import Blueprint, jsonify, request

from posapp.errors import ValidationError
from posapp.services import catalog as catalog_service

bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@bp.get("")
def get_catalog():
    return jsonify({"smartphone_models": catalog_service.get_catalog()})


@bp.put("")
def replace_catalog():
    payload = request.get_json(silent=True)
    # Terminals post the settings object; scripts may post the bare list.
    if isinstance(payload, dict):
        if "smartphone_models" not in payload:
            raise ValidationError("smartphone_models is required")
        payload = payload["smartphone_models"]
    result = catalog_service.replace_catalog(payload)
    return jsonify(
        {
            "smartphone_models": result["catalog"],
            "job_id": result["job_id"],
            "propagation": result["propagation"],
        }
    )
