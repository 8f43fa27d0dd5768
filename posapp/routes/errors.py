from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from posapp.errors import PosError
from posapp.extensions import db

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(PosError)
def handle_pos_error(error: PosError):
    # Services roll back their own unit of work; this drops whatever the
    # request session may still hold.
    db.session.rollback()
    log = current_app.logger.error if error.status_code >= 500 else current_app.logger.info
    log("%s %s -> %s: %s", request.method, request.path, error.kind, error.message)
    return jsonify(error.to_dict()), error.status_code


@bp.app_errorhandler(HTTPException)
def handle_http_error(error: HTTPException):
    return (
        jsonify(
            {
                "error": (error.name or "error").lower().replace(" ", "_"),
                "message": error.description or error.name,
            }
        ),
        error.code or 500,
    )


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    db.session.rollback()
    current_app.logger.exception("Unhandled exception", exc_info=error)
    return (
        jsonify({"error": "internal_error", "message": "Internal Server Error"}),
        500,
    )
