from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..errors import ValidationError
from ..types import ProductStatus
from .orders import get_services

bp = Blueprint("products", __name__)


@bp.get("/products")
def list_products():
    products = get_services().products.list_products(ProductStatus.ACTIVE)
    return jsonify({"products": products})


@bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    return jsonify(get_services().products.get_public(product_id))


@bp.get("/products/<int:product_id>/availability")
def get_availability(product_id: int):
    raw = request.args.get("numbers", "")
    try:
        numbers = [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError("numbers must be a comma separated list of integers")
    if not numbers:
        raise ValidationError("numbers query parameter is required")
    get_services().products.get_public(product_id)
    return jsonify({"product_id": product_id, "numbers": get_services().inventory.availability(product_id, numbers)})


@bp.get("/winners")
def list_winners():
    return jsonify({"winners": get_services().products.list_winners()})
