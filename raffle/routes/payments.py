from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..errors import ConflictError, NotFoundError, ValidationError
from .orders import get_services, transition_payload

bp = Blueprint("payments", __name__)


@bp.post("/webhook")
def payment_webhook():
    raw_body = request.get_data(cache=True)
    headers = {
        "x-signature": request.headers.get("x-signature", ""),
        "x-request-id": request.headers.get("x-request-id", ""),
    }
    try:
        result = get_services().reconciler.handle_payment_callback(headers, raw_body, request.args)
    except (ConflictError, NotFoundError, ValidationError) as exc:
        # A redelivery cannot change these outcomes; acknowledge so the gateway stops retrying.
        current_app.logger.warning("Payment callback not applied: %s %s", exc.message, exc.details)
        body = exc.to_dict()
        body["acknowledged"] = True
        return jsonify(body), 200

    if result is None:
        return jsonify({"message": "event received, no payment to process"}), 200
    return jsonify(transition_payload(result)), 200
