from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..errors import ValidationError
from ..schemas import MarkReadRequest
from .orders import current_principal, get_services

bp = Blueprint("notifications", __name__)


@bp.get("")
def list_notifications():
    principal = current_principal()
    return jsonify({"notifications": get_services().inbox.list_for_user(principal.user_id)})


@bp.put("")
def mark_notifications_read():
    principal = current_principal()
    payload = request.get_json(force=True, silent=True) or {}
    data = MarkReadRequest(**payload)
    inbox = get_services().inbox
    if data.mark_all_as_read:
        updated = inbox.mark_read(principal.user_id)
    elif data.notification_ids:
        updated = inbox.mark_read(principal.user_id, data.notification_ids)
    else:
        raise ValidationError("send notification_ids or mark_all_as_read")
    return jsonify({"updated": updated})
