"""Checkout: turning a cart into an order, plus customer-facing order lookups."""
import random
from typing import Any, Dict, List, Optional

from ..app.config import Config
from ..data.models import Cart, Customer, Order, OrderItem, Payment, User
from ..schemas.io_models import ServiceResult
from ..schemas.order_models import AddressIn, CheckoutRequest
from ..utils.security import hash_password
from ..utils.timeutils import utcnow
from .base_service import BaseService
from .cart_service import sellable_quantity
from .discount_service import DiscountService
from .inventory import reserve_order_inventory
from .order_state import record_status_change, set_order_status
from .serializers import serialize_order

PAYMENT_METHODS = ("razorpay", "cod")


def generate_order_number() -> str:
    """ORD-YYYYMMDD-NNNN with a random four digit suffix."""
    return f"ORD-{utcnow():%Y%m%d}-{random.randint(0, 9999):04d}"


def _address_dict(address: AddressIn, first_name: str, last_name: Optional[str], phone: Optional[str]) -> Dict[str, Any]:
    data = address.model_dump()
    data["first_name"] = data.get("first_name") or first_name
    data["last_name"] = data.get("last_name") or last_name
    data["phone"] = data.get("phone") or phone
    return data


class OrderService(BaseService):
    name = "orders"

    def _unique_order_number(self) -> str:
        for _ in range(10):
            number = generate_order_number()
            if not self.db.query(Order.id).filter(Order.order_number == number).first():
                return number
        raise RuntimeError("Could not allocate a unique order number")

    def _find_or_create_customer(self, form: CheckoutRequest) -> Customer:
        email = form.email.lower()
        customer = self.db.query(Customer).filter(Customer.email == email).first()
        if customer is None:
            customer = Customer(email=email, first_name=form.first_name, last_name=form.last_name,
                                phone=form.phone, accepts_marketing=form.accepts_marketing, tags=[])
            self.db.add(customer)
            self.db.flush()
        if form.create_account and form.password and customer.user_id is None:
            existing_user = self.db.query(User).filter(User.email == email).first()
            if existing_user is None:
                user = User(email=email, name=f"{form.first_name} {form.last_name or ''}".strip(),
                            password_hash=hash_password(form.password), role="customer")
                self.db.add(user)
                self.db.flush()
                customer.user_id = user.id
        return customer

    def create_order(self, cart_token: Optional[str], form: CheckoutRequest, customer_id: Optional[int] = None,
                     ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> ServiceResult:
        cart = self.db.query(Cart).filter(Cart.token == cart_token, Cart.status == "active").first() if cart_token else None
        if cart is None or not cart.items:
            return self._fail("Your cart is empty")
        if form.shipping_method not in Config.SHIPPING_METHODS:
            return self._fail(f"Unknown shipping method: {form.shipping_method}")
        if form.payment_method not in PAYMENT_METHODS:
            return self._fail(f"Unsupported payment method: {form.payment_method}")
        if not form.same_billing_address and form.billing_address is None:
            return self._fail("Billing address is required")

        for item in cart.items:
            stock = sellable_quantity(item.variant)
            if stock is not None and item.quantity > stock:
                return self._fail(f"{item.product_title} only has {max(stock, 0)} left in stock",
                                  data={"item_id": item.id, "available": max(stock, 0)})

        discounts = DiscountService(self.db)
        subtotal = sum(i.price * i.quantity for i in cart.items)
        applied: List[Dict[str, Any]] = []
        for code in cart.discount_codes or []:
            check = discounts.validate_discount_code(code, cart.items, form.shipping_method)
            if check.success:
                applied.append(check.data)
        applied.extend(discounts.get_automatic_discounts(cart.items, form.shipping_method))

        shipping = Config.SHIPPING_METHODS[form.shipping_method]["price"]
        free_shipping = any(d["type"] == "free_shipping" for d in applied)
        merchandise_discount = min(subtotal, sum(d["discount_amount"] for d in applied if d["type"] != "free_shipping"))
        if free_shipping:
            shipping = 0
        tax = round((subtotal - merchandise_discount) * Config.TAX_RATE_BPS / 10000)
        total = subtotal - merchandise_discount + tax + shipping

        shipping_address = _address_dict(form.shipping_address, form.first_name, form.last_name, form.phone)
        billing_address = shipping_address if form.same_billing_address else _address_dict(
            form.billing_address, form.first_name, form.last_name, form.phone)

        try:
            customer_id = customer_id or cart.customer_id
            if customer_id is None or form.create_account:
                customer_id = self._find_or_create_customer(form).id

            order = Order(
                order_number=self._unique_order_number(),
                customer_id=customer_id,
                email=form.email.lower(),
                phone=form.phone,
                currency=cart.currency or Config.CURRENCY,
                subtotal_price=subtotal,
                total_discounts=merchandise_discount,
                total_tax=tax,
                shipping_price=shipping,
                total_price=total,
                discount_codes=[d["code"] for d in applied],
                shipping_method=form.shipping_method,
                shipping_address=shipping_address,
                billing_address=billing_address,
                notes=form.notes,
                ip_address=ip_address,
                user_agent=user_agent,
                status="pending",
                payment_status="pending",
                fulfillment_status="unfulfilled",
            )
            order.items = [
                OrderItem(product_id=i.product_id, variant_id=i.variant_id, title=i.product_title,
                          variant_title=i.variant_title, sku=i.sku, quantity=i.quantity, price=i.price)
                for i in cart.items
            ]
            self.db.add(order)
            self.db.flush()

            self.db.add(Payment(order_id=order.id, amount=total, currency=order.currency, status="pending",
                                gateway=form.payment_method, payment_method=form.payment_method))
            for d in applied:
                discounts.record_discount_usage(d["discount_id"], customer_id, order.id, d["discount_amount"])
            record_status_change(self.db, order, "pending", "order", notes="Order placed")

            cart.status = "converted"
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.logger.exception("[ORDERS] checkout failed for cart %s", cart_token)
            raise

        self.logger.info("[ORDERS] created %s total=%s items=%s", order.order_number, total, len(order.items))
        if form.payment_method == "cod":
            self.process_cod_payment(order.id)
        return self._ok("Order created", order=serialize_order(order, detail=True))

    def process_cod_payment(self, order_id: int) -> ServiceResult:
        """Cash on delivery: confirm the order straight away and hold stock."""
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            return self._fail("Order not found", code="not_found")
        if order.status != "pending":
            return self._fail("Order has already been processed")
        set_order_status(self.db, order, "processing", notes="Cash on delivery")
        reserve_order_inventory(self.db, order)
        self._commit()
        return self._ok("Order confirmed", order=serialize_order(order))

    def get_order(self, reference: str, email: Optional[str] = None, customer_id: Optional[int] = None) -> Optional[Order]:
        """
        Look an order up by number, falling back to its numeric id.

        The caller must prove ownership with the signed-in customer or the
        order email; anonymous lookups find nothing.
        """
        email = (email or "").strip().lower()
        if customer_id is None and not email:
            return None
        order = self.db.query(Order).filter(Order.order_number == reference).first()
        if order is None and str(reference).isdigit():
            order = self.db.query(Order).filter(Order.id == int(reference)).first()
        if order is None:
            return None
        owned = customer_id is not None and order.customer_id == customer_id
        if not owned and not (email and order.email == email):
            return None
        return order

    def list_customer_orders(self, customer_id: int) -> List[Dict[str, Any]]:
        orders = self.db.query(Order).filter(Order.customer_id == customer_id).order_by(Order.created_at.desc()).all()
        return [serialize_order(o) for o in orders]


def get_shipping_methods() -> List[Dict[str, Any]]:
    return list(Config.SHIPPING_METHODS.values())
