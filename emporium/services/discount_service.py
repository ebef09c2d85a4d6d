"""Discount codes and automatic discounts.

Percentage values are stored in basis points (1000 = 10%); every other
amount is in minor currency units.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import or_

from ..app.config import Config
from ..data.models import Discount, DiscountCollection, DiscountProduct, DiscountUsage, ProductCollection
from ..schemas.io_models import ServiceResult
from ..utils.timeutils import utcnow
from .base_service import BaseService

DEFAULT_SHIPPING_METHOD = "express"


def cart_total(items: Iterable) -> int:
    return sum(item.price * item.quantity for item in items)


def shipping_fee(method: Optional[str]) -> int:
    methods = Config.SHIPPING_METHODS
    return methods.get(method or DEFAULT_SHIPPING_METHOD, methods[DEFAULT_SHIPPING_METHOD])["price"]


class DiscountService(BaseService):
    name = "discounts"

    def _live(self):
        now = utcnow()
        return self.db.query(Discount).filter(
            Discount.status == "active",
            or_(Discount.starts_at.is_(None), Discount.starts_at <= now),
            or_(Discount.ends_at.is_(None), Discount.ends_at >= now),
        )

    def eligible_product_ids(self, discount: Discount) -> Optional[Set[int]]:
        """Product ids the discount is restricted to, or None for all products."""
        if discount.applies_to == "products":
            ids = {row.product_id for row in
                   self.db.query(DiscountProduct).filter(DiscountProduct.discount_id == discount.id)}
        elif discount.applies_to == "collections":
            collection_ids = [row.collection_id for row in
                              self.db.query(DiscountCollection).filter(DiscountCollection.discount_id == discount.id)]
            ids = set()
            if collection_ids:
                ids = {row.product_id for row in self.db.query(ProductCollection).filter(
                    ProductCollection.collection_id.in_(collection_ids))}
        else:
            return None
        # a restriction with nothing attached applies to everything
        return ids or None

    def eligible_items(self, discount: Discount, items: Sequence) -> List:
        allowed = self.eligible_product_ids(discount)
        if allowed is None:
            return list(items)
        return [item for item in items if item.product_id in allowed]

    def calculate_discount_amount(self, discount: Discount, items: Sequence,
                                  shipping_method: Optional[str] = None) -> int:
        eligible = self.eligible_items(discount, items)
        total = cart_total(eligible)

        if discount.type == "percentage":
            amount = (total * discount.value) // 10000
            if discount.maximum_amount:
                amount = min(amount, discount.maximum_amount)
            return amount

        if discount.type == "fixed_amount":
            return min(discount.value, total)

        if discount.type == "free_shipping":
            return shipping_fee(shipping_method)

        if discount.type == "buy_x_get_y":
            if not discount.prerequisite_quantity or not discount.entitled_quantity:
                return 0
            quantity = sum(item.quantity for item in eligible)
            if quantity < discount.prerequisite_quantity:
                return 0
            free_units = (quantity // discount.prerequisite_quantity) * discount.entitled_quantity
            unit_prices = sorted(p for item in eligible for p in [item.price] * item.quantity)
            return sum(unit_prices[:free_units])

        return 0

    def validate_discount_code(self, code: str, items: Sequence,
                               shipping_method: Optional[str] = None) -> ServiceResult:
        code = (code or "").strip()
        if not code:
            return self._fail("Please enter a discount code")

        discount = self._live().filter(Discount.code == code.upper()).first()
        if discount is None:
            return self._fail("Invalid or expired discount code", code="not_found")

        if discount.usage_limit and (discount.current_usage or 0) >= discount.usage_limit:
            return self._fail("This discount code has reached its usage limit")

        total = cart_total(items)
        if discount.minimum_amount and total < discount.minimum_amount:
            return self._fail(f"Minimum order amount of {Config.CURRENCY} {discount.minimum_amount / 100:.2f} required")

        amount = self.calculate_discount_amount(discount, items, shipping_method)
        if amount <= 0:
            return self._fail("This discount is not applicable to your current cart")

        return self._ok("Discount applied", discount_id=discount.id, code=discount.code, title=discount.title,
                        type=discount.type, discount_amount=amount)

    def get_automatic_discounts(self, items: Sequence, shipping_method: Optional[str] = None) -> List[Dict[str, Any]]:
        total = cart_total(items)
        candidates = self._live().filter(
            or_(Discount.code.is_(None), Discount.code == ""),
            or_(Discount.minimum_amount.is_(None), Discount.minimum_amount <= total),
        ).all()
        applied = []
        for discount in candidates:
            if discount.usage_limit and (discount.current_usage or 0) >= discount.usage_limit:
                continue
            amount = self.calculate_discount_amount(discount, items, shipping_method)
            if amount > 0:
                applied.append({"discount_id": discount.id, "code": discount.code or "AUTO",
                                "title": discount.title, "type": discount.type, "discount_amount": amount})
        return applied

    def get_available_discounts(self, cart_total_amount: Optional[int] = None) -> List[Dict[str, Any]]:
        query = self._live().filter(
            Discount.code.isnot(None), Discount.code != "",
            or_(Discount.usage_limit.is_(None), Discount.current_usage < Discount.usage_limit),
        )
        if cart_total_amount:
            query = query.filter(or_(Discount.minimum_amount.is_(None),
                                     Discount.minimum_amount <= cart_total_amount))
        return [
            {"code": d.code, "title": d.title, "type": d.type, "value": d.value, "minimum_amount": d.minimum_amount}
            for d in query.order_by(Discount.created_at).limit(5).all()
        ]

    def record_discount_usage(self, discount_id: int, customer_id: Optional[int], order_id: Optional[int],
                              amount: int) -> None:
        """Count one redemption. Joins the caller's transaction."""
        self.db.add(DiscountUsage(discount_id=discount_id, customer_id=customer_id, order_id=order_id,
                                  amount=amount, used_at=utcnow()))
        self.db.query(Discount).filter(Discount.id == discount_id).update(
            {Discount.current_usage: Discount.current_usage + 1}, synchronize_session=False)
