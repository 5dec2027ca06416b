from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request

from ..errors import AuthError
from ..schemas import SweepResponse
from ..services.auth import bearer_token
from .orders import get_services

bp = Blueprint("cron", __name__)


@bp.before_request
def verify_cron_secret():
    secret = current_app.config.get("CRON_SECRET")
    token = bearer_token(request.headers)
    if not secret or token is None or not hmac.compare_digest(token, secret):
        current_app.logger.warning("Unauthorized cron call from %s", request.remote_addr)
        raise AuthError("unauthorized")
    return None


@bp.post("/release-expired")
def release_expired():
    report = get_services().sweeper.run()
    response = SweepResponse(
        cancelled_orders=list(report.cancelled_orders),
        reminded_orders=list(report.reminded_orders),
        failures=report.failures,
    )
    current_app.logger.info(
        "Cron sweep: %s cancelled, %s reminded, %s failures",
        len(response.cancelled_orders), len(response.reminded_orders), response.failures,
    )
    return jsonify(response.dict())
