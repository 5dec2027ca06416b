from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from ..schemas import DrawResponse, OrderStatusUpdateRequest, ProductCreateRequest, ProductUpdateRequest
from ..types import OrderStatus
from .orders import current_principal, get_services, transition_payload

bp = Blueprint("admin", __name__)


@bp.before_request
def verify_admin():
    current_principal(role="admin")
    return None


@bp.get("/products")
def list_products():
    return jsonify({"products": get_services().products.list_products()})


@bp.post("/products")
def create_product():
    payload = request.get_json(force=True, silent=True) or {}
    data = ProductCreateRequest(**payload)
    product = get_services().products.create_product(**data.dict())
    return jsonify(product), 201


@bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    return jsonify(get_services().products.get_product(product_id))


@bp.put("/products/<int:product_id>")
def update_product(product_id: int):
    payload = request.get_json(force=True, silent=True) or {}
    data = ProductUpdateRequest(**payload)
    product = get_services().products.update_product(product_id, **data.dict(exclude_unset=True))
    return jsonify({"message": "product updated", "product": product})


@bp.post("/products/<int:product_id>/draw")
def draw_product(product_id: int):
    result = get_services().draws.draw(product_id)
    response = DrawResponse(
        product_id=result.product_id,
        winning_number=result.winning_number,
        winner_user_id=result.winner_user_id,
        order_id=result.order_id,
    )
    return jsonify(response.dict())


@bp.get("/orders")
def list_orders():
    return jsonify({"orders": get_services().ledger.list_recent()})


@bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    return jsonify(get_services().ledger.detail(order_id))


@bp.put("/orders/<int:order_id>")
def update_order_status(order_id: int):
    payload = request.get_json(force=True, silent=True) or {}
    data = OrderStatusUpdateRequest(**payload)
    result = get_services().reconciler.apply_admin_status(
        order_id, OrderStatus(data.status), g.principal.user_id
    )
    return jsonify(transition_payload(result))


@bp.post("/orders/<int:order_id>/complete")
def complete_order(order_id: int):
    result = get_services().reconciler.apply_admin_status(
        order_id, OrderStatus.COMPLETED, g.principal.user_id
    )
    return jsonify(transition_payload(result))


@bp.post("/orders/<int:order_id>/notify-success")
def notify_success(order_id: int):
    delivered = get_services().reconciler.resend_payment_notice(order_id)
    return jsonify({"order_id": order_id, "delivered": delivered})


@bp.post("/orders/<int:order_id>/notify-winner")
def notify_winner(order_id: int):
    delivered = get_services().draws.resend_winner_notice(order_id)
    return jsonify({"order_id": order_id, "delivered": delivered})


@bp.post("/orders/<int:order_id>/remind")
def remind_order(order_id: int):
    delivered = get_services().sweeper.remind_order(order_id)
    return jsonify({"order_id": order_id, "delivered": delivered})
