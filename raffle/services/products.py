from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import desc, select

from ..db import Database
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Product
from ..types import ProductStatus
from .inventory import InventoryStore

logger = logging.getLogger("raffle.products")

MAX_LAST_NUMBER = 10000
CLEARABLE_FIELDS = frozenset({"description", "image_url", "discount_min_quantity", "discount_percentage"})


def _validate_last_number(value: int) -> int:
    if value < 1 or value > MAX_LAST_NUMBER:
        raise ValidationError(f"last number must be between 1 and {MAX_LAST_NUMBER}", total_numbers=value)
    return value


class ProductRepository:
    def __init__(self, db: Database, inventory: InventoryStore) -> None:
        self._db = db
        self._inventory = inventory

    def create_product(
        self,
        name: str,
        price_per_number: Decimal,
        total_numbers: int,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        discount_min_quantity: Optional[int] = None,
        discount_percentage: Optional[int] = None,
    ) -> Dict[str, object]:
        _validate_last_number(total_numbers)
        with self._db.session_scope() as session:
            product = Product(
                name=name,
                description=description,
                image_url=image_url,
                price_per_number=price_per_number,
                total_numbers=total_numbers,
                status=ProductStatus.UPCOMING,
                discount_min_quantity=discount_min_quantity,
                discount_percentage=discount_percentage,
            )
            session.add(product)
            session.flush()
            created = self._inventory.create_numbers(session, product.id, total_numbers)
            logger.info("Product %s created with %s numbers", product.id, created)
            return product.to_dict()

    def update_product(self, product_id: int, **changes) -> Dict[str, object]:
        with self._db.session_scope() as session:
            product = session.scalars(
                select(Product).where(Product.id == product_id).with_for_update()
            ).first()
            if product is None:
                raise NotFoundError(f"product {product_id} not found", product_id=product_id)

            new_last = changes.pop("total_numbers", None)
            if new_last is not None and new_last != product.total_numbers:
                _validate_last_number(new_last)
                if product.status is not ProductStatus.UPCOMING:
                    raise ConflictError(
                        "the number range can only change while the raffle is upcoming",
                        current_status=product.status.value,
                    )
                self._inventory.delete_numbers(session, product.id)
                self._inventory.create_numbers(session, product.id, new_last)
                product.total_numbers = new_last
                logger.info("Product %s numbers regenerated as 0..%s", product.id, new_last)

            new_status = changes.pop("status", None)
            if new_status is not None:
                target = ProductStatus(new_status)
                if product.status.check_admin_transition(target):
                    logger.info("Product %s status %s -> %s", product.id, product.status.value, target.value)
                    product.status = target

            for key, value in changes.items():
                if value is not None or key in CLEARABLE_FIELDS:
                    setattr(product, key, value)
            session.flush()
            return product.to_dict()

    def get_product(self, product_id: int) -> Dict[str, object]:
        with self._db.session_scope() as session:
            product = session.get(Product, product_id)
            if product is None:
                raise NotFoundError(f"product {product_id} not found", product_id=product_id)
            record = product.to_dict()
            record["ticket_counts"] = self._inventory.count_by_status(session, product_id)
            return record

    def get_public(self, product_id: int) -> Dict[str, object]:
        with self._db.session_scope() as session:
            product = session.get(Product, product_id)
            if product is None or product.status in (ProductStatus.UPCOMING, ProductStatus.CANCELLED):
                raise NotFoundError("product not found or unavailable", product_id=product_id)
            record = product.to_dict()
        return {"product": record, "numbers": self._inventory.board(product_id)}

    def list_products(self, status: Optional[ProductStatus] = None) -> List[Dict[str, object]]:
        with self._db.session_scope() as session:
            stmt = select(Product)
            if status is not None:
                stmt = stmt.where(Product.status == status)
            products = session.scalars(stmt.order_by(desc(Product.created_at), desc(Product.id))).all()
            return [product.to_dict() for product in products]

    def list_winners(self) -> List[Dict[str, object]]:
        with self._db.session_scope() as session:
            products = session.scalars(
                select(Product)
                .where(Product.status == ProductStatus.DRAWN)
                .order_by(desc(Product.updated_at))
            ).all()
            return [
                {
                    "product_id": p.id,
                    "product_name": p.name,
                    "image_url": p.image_url,
                    "winning_number": p.winning_number,
                    "winner_user_id": p.winner_user_id,
                    "drawn_at": p.updated_at.isoformat() if p.updated_at else None,
                }
                for p in products
            ]
