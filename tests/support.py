"""Shared fixtures: a fresh database per test plus small factories."""
import hashlib
import hmac
import json
import unittest
from typing import Optional

from fastapi.testclient import TestClient

from emporium.app import rate_limit, session
from emporium.app.config import Config
from emporium.app.main import app
from emporium.data.database import SessionLocal, create_tables, drop_tables
from emporium.data.models import (
    Customer, InventoryLevel, Order, OrderItem, Payment, Product, ProductVariant, User,
)
from emporium.services import security_events
from emporium.services.inventory import reserve_order_inventory
from emporium.utils.security import hash_password

WEBHOOK_IP = "54.251.82.10"
ADDRESS = {"address1": "12 MG Road", "city": "Bengaluru", "state": "Karnataka", "zip_code": "560001",
           "country": "India"}


class StoreTestCase(unittest.TestCase):
    """Each test gets empty tables, a fresh rate limiter and session store, and a client."""

    def setUp(self):
        drop_tables()
        create_tables()
        rate_limit._limiter = None
        session._session_manager = None
        security_events.clear_security_events()
        self.db = SessionLocal()
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        self.db.close()

    def refresh(self, obj):
        self.db.expire_all()
        return self.db.get(type(obj), obj.id)


def make_product(db, title="Linen Shirt", price=50000, quantity=10, status="active", track_inventory=True,
                 vendor="Loomcraft", product_type="Shirts", tags=None, sku=None) -> Product:
    handle = title.lower().replace(" ", "-")
    product = Product(title=title, handle=handle, price=price, status=status, vendor=vendor,
                      product_type=product_type, tags=tags or [], track_inventory=track_inventory,
                      description=f"{title} in a relaxed fit")
    variant = ProductVariant(title="Default", sku=sku or handle.upper(), price=price, inventory_quantity=quantity)
    variant.inventory_level = InventoryLevel(available=quantity, reserved=0, committed=0)
    product.variants = [variant]
    db.add(product)
    db.commit()
    return product


def make_user(db, email="admin@example.com", role="admin", password="password123", status="active",
              name="Test User") -> User:
    user = User(email=email, name=name, role=role, status=status, password_hash=hash_password(password))
    db.add(user)
    db.commit()
    return user


def sign_in(client: TestClient, user: User) -> str:
    session_id = session.get_session_manager().create_session(user.id, user.email, user.role, user.name)
    client.cookies.set(Config.SESSION_COOKIE, session_id)
    return session_id


def make_order(db, product: Product, quantity=1, email="buyer@example.com", gateway_order_id="order_TEST1",
               status="pending", payment_status="pending", payment="pending", gateway_payment_id=None,
               reserve=False, customer: Optional[Customer] = None, gateway="razorpay") -> Order:
    variant = product.variants[0]
    subtotal = variant.price * quantity
    tax = round(subtotal * Config.TAX_RATE_BPS / 10000)
    order = Order(order_number=f"ORD-TEST-{gateway_order_id}", email=email, subtotal_price=subtotal,
                  total_tax=tax, total_price=subtotal + tax, status=status, payment_status=payment_status,
                  shipping_address=dict(ADDRESS), billing_address=dict(ADDRESS),
                  customer_id=customer.id if customer else None)
    order.items = [OrderItem(product_id=product.id, variant_id=variant.id, title=product.title,
                             sku=variant.sku, quantity=quantity, price=variant.price)]
    db.add(order)
    db.flush()
    db.add(Payment(order_id=order.id, amount=order.total_price, status=payment, gateway=gateway,
                   payment_method=gateway, gateway_transaction_id=gateway_order_id,
                   gateway_payment_id=gateway_payment_id))
    if reserve:
        reserve_order_inventory(db, order)
    db.commit()
    return order


def sign_webhook(body: bytes, secret: str = "whsec_test") -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def sign_payment(order_id: str, payment_id: str, secret: str = "rzp_test_secret") -> str:
    return hmac.new(secret.encode("utf-8"), f"{order_id}|{payment_id}".encode("utf-8"),
                    hashlib.sha256).hexdigest()


def webhook_body(event: str, entity_kind: str = "payment", **entity) -> bytes:
    return json.dumps({"event": event, "payload": {entity_kind: {"entity": entity}}}).encode("utf-8")
