from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from .orders import get_services

bp = Blueprint("health", __name__)


@bp.get("/health")
def health():
    try:
        get_services().db.ping()
    except SQLAlchemyError as exc:
        current_app.logger.warning("Health check database ping failed: %s", exc)
        return jsonify({"status": "degraded", "database": "unreachable"}), 503
    return jsonify({"status": "ok", "database": "ok"})
