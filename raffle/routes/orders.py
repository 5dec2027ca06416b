from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from ..schemas import (
    CheckoutResponse,
    FinalizeRequest,
    OrderTransitionResponse,
    ReserveRequest,
    ReserveResponse,
)
from ..services.auth import authenticate
from ..services.container import RaffleServices
from ..types import Principal, TransitionResult

bp = Blueprint("orders", __name__)


def get_services() -> RaffleServices:
    return current_app.extensions["raffle"]


def current_principal(role=None) -> Principal:
    principal = authenticate(get_services().auth, request.headers, role=role)
    g.principal = principal
    return principal


def transition_payload(result: TransitionResult) -> dict:
    return OrderTransitionResponse(
        order_id=result.order_id,
        previous_status=result.previous_status.value,
        status=result.status.value,
        applied=result.applied,
    ).dict()


@bp.post("")
def reserve_tickets():
    principal = current_principal()
    payload = request.get_json(force=True, silent=True) or {}
    data = ReserveRequest(**payload)

    result = get_services().reservations.reserve(
        principal.user_id, data.product_id, data.numbers, existing_order_id=data.order_id
    )
    response = ReserveResponse(
        order_id=result.order_id,
        total=f"{result.total:.2f}",
        numbers=list(result.numbers),
        reused_order=result.reused_order,
    )
    return jsonify(response.dict()), 201


@bp.get("/mine")
def list_my_orders():
    principal = current_principal()
    return jsonify({"orders": get_services().ledger.list_for_user(principal.user_id)})


@bp.get("/<int:order_id>")
def get_order(order_id: int):
    principal = current_principal()
    return jsonify(get_services().ledger.get_for_user(principal.user_id, order_id))


@bp.get("/<int:order_id>/status")
def get_order_status(order_id: int):
    principal = current_principal()
    order = get_services().ledger.get_for_user(principal.user_id, order_id)
    return jsonify({"order_id": order_id, "status": order["status"]})


@bp.post("/<int:order_id>/checkout")
def create_checkout(order_id: int):
    principal = current_principal()
    intent = get_services().checkout.create_checkout_intent(
        principal.user_id, order_id, payer_email=principal.email
    )
    response = CheckoutResponse(
        order_id=intent.order_id,
        preference_id=intent.preference_id,
        redirect_url=intent.redirect_url,
    )
    return jsonify(response.dict())


@bp.post("/<int:order_id>/finalize")
def finalize_order(order_id: int):
    principal = current_principal()
    payload = request.get_json(force=True, silent=True) or {}
    data = FinalizeRequest(**payload)
    payment_id = data.payment_id or request.args.get("payment_id")

    result = get_services().reconciler.finalize_order_as_user(principal.user_id, order_id, payment_id)
    return jsonify(transition_payload(result))
