from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, Float, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from .database import Base
from ..utils.timeutils import utcnow
import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    staff = "staff"
    customer = "customer"

class ProductStatus(str, enum.Enum):
    draft = "draft"
    active = "active"
    archived = "archived"

class OrderStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    payment_failed = "payment_failed"
    failed = "failed"

class PaymentStatus(str, enum.Enum):
    pending = "pending"
    authorized = "authorized"
    captured = "captured"
    paid = "paid"
    failed = "failed"
    cancelled = "cancelled"
    refunded = "refunded"
    partially_refunded = "partially_refunded"

class FulfillmentStatus(str, enum.Enum):
    unfulfilled = "unfulfilled"
    partial = "partial"
    fulfilled = "fulfilled"

class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"
    free_shipping = "free_shipping"
    buy_x_get_y = "buy_x_get_y"


# ---------------------------------------------------------------- accounts

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255))
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.customer.value)
    status = Column(String(20), nullable=False, default="active")
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="user", uselist=False)

class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(30))
    accepts_marketing = Column(Boolean, default=False)
    tags = Column(JSON, default=list)
    notes = Column(Text)
    status = Column(String(20), default="active")
    total_spent = Column(Integer, default=0)
    total_orders = Column(Integer, default=0)
    last_order_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="customer")
    addresses = relationship("Address", back_populates="customer", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="customer")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    address1 = Column(String(255), nullable=False)
    address2 = Column(String(255))
    city = Column(String(100), nullable=False)
    province = Column(String(100))
    country = Column(String(100), default="India")
    zip = Column(String(20))
    phone = Column(String(30))
    is_default = Column(Boolean, default=False)

    customer = relationship("Customer", back_populates="addresses")


# ---------------------------------------------------------------- catalog

class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    name = Column(String(255), nullable=False)
    handle = Column(String(255), unique=True, index=True, nullable=False)
    description = Column(Text)
    path = Column(String(1024), nullable=False)
    level = Column(Integer, nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")

class Collection(Base):
    __tablename__ = "collections"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    handle = Column(String(255), unique=True, index=True, nullable=False)
    description = Column(Text)
    status = Column(String(20), default="active")
    sort_order = Column(String(30), default="manual")
    created_at = Column(DateTime, default=utcnow)

    products = relationship("ProductCollection", back_populates="collection", cascade="all, delete-orphan")

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    handle = Column(String(255), unique=True, index=True, nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default=ProductStatus.draft.value)
    vendor = Column(String(255))
    product_type = Column(String(255))
    tags = Column(JSON, default=list)
    price = Column(Integer, nullable=False, default=0)
    compare_at_price = Column(Integer, nullable=True)
    taxable = Column(Boolean, default=True)
    track_inventory = Column(Boolean, default=True)
    continue_selling_when_out_of_stock = Column(Boolean, default=False)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan",
                            order_by="ProductVariant.position")
    images = relationship("ProductImage", back_populates="product", cascade="all, delete-orphan",
                          order_by="ProductImage.position")
    categories = relationship("ProductCategory", back_populates="product", cascade="all, delete-orphan")
    collections = relationship("ProductCollection", back_populates="product", cascade="all, delete-orphan")

class ProductCategory(Base):
    __tablename__ = "product_categories"
    __table_args__ = (UniqueConstraint("product_id", "category_id"),)

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)

    product = relationship("Product", back_populates="categories")
    category = relationship("Category")

class ProductCollection(Base):
    __tablename__ = "product_collections"
    __table_args__ = (UniqueConstraint("product_id", "collection_id"),)

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    collection_id = Column(Integer, ForeignKey("collections.id"), nullable=False)
    position = Column(Integer, default=0)

    product = relationship("Product", back_populates="collections")
    collection = relationship("Collection", back_populates="products")

class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    title = Column(String(255), nullable=False, default="Default")
    sku = Column(String(255), unique=True, index=True, nullable=True)
    price = Column(Integer, nullable=False, default=0)
    compare_at_price = Column(Integer, nullable=True)
    inventory_quantity = Column(Integer, nullable=False, default=0)
    inventory_policy = Column(String(20), default="deny")
    weight = Column(Float, nullable=True)
    position = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product", back_populates="variants")
    inventory_level = relationship("InventoryLevel", back_populates="variant", uselist=False,
                                   cascade="all, delete-orphan")

class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    url = Column(String(1024), nullable=False)
    alt_text = Column(String(255))
    position = Column(Integer, default=0)

    product = relationship("Product", back_populates="images")

class InventoryLevel(Base):
    __tablename__ = "inventory_levels"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), unique=True, nullable=False)
    available = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    committed = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    variant = relationship("ProductVariant", back_populates="inventory_level")


# ---------------------------------------------------------------- cart

class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), unique=True, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    currency = Column(String(3), default="INR")
    subtotal_price = Column(Integer, default=0)
    total_tax = Column(Integer, default=0)
    total_discount = Column(Integer, default=0)
    total_price = Column(Integer, default=0)
    discount_codes = Column(JSON, default=list)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan",
                         order_by="CartItem.id")

class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False)
    product_title = Column(String(255))
    variant_title = Column(String(255))
    product_image = Column(String(1024))
    sku = Column(String(255))
    created_at = Column(DateTime, default=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")


# ---------------------------------------------------------------- orders & payments

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    email = Column(String(255), nullable=False)
    phone = Column(String(30))
    currency = Column(String(3), default="INR")
    subtotal_price = Column(Integer, nullable=False, default=0)
    total_tax = Column(Integer, nullable=False, default=0)
    total_discounts = Column(Integer, nullable=False, default=0)
    shipping_price = Column(Integer, nullable=False, default=0)
    total_price = Column(Integer, nullable=False, default=0)
    discount_codes = Column(JSON, default=list)
    shipping_method = Column(String(30), default="standard")
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    shipping_address = Column(JSON)
    billing_address = Column(JSON)
    notes = Column(Text)
    status = Column(String(30), nullable=False, default=OrderStatus.pending.value)
    payment_status = Column(String(30), nullable=False, default=PaymentStatus.pending.value)
    fulfillment_status = Column(String(30), nullable=False, default=FulfillmentStatus.unfulfilled.value)
    cancel_reason = Column(Text)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(255), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="order", order_by="Payment.id")
    refunds = relationship("Refund", back_populates="order")
    status_history = relationship("OrderStatusHistory", back_populates="order",
                                  order_by="OrderStatusHistory.id")

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    title = Column(String(255), nullable=False)
    variant_title = Column(String(255))
    sku = Column(String(255))
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    total_discount = Column(Integer, default=0)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    from_status = Column(String(30))
    to_status = Column(String(30), nullable=False)
    status_type = Column(String(20), default="order")  # order | payment | fulfillment | note
    notes = Column(Text)
    changed_by = Column(String(255), default="system")
    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="status_history")

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), default="INR")
    status = Column(String(30), nullable=False, default=PaymentStatus.pending.value)
    gateway = Column(String(30), nullable=False, default="razorpay")
    gateway_transaction_id = Column(String(255), index=True)
    gateway_payment_id = Column(String(255), index=True)
    gateway_response = Column(JSON)
    payment_method = Column(String(50))
    card_last4 = Column(String(4))
    card_brand = Column(String(50))
    idempotency_key = Column(String(255))
    failure_reason = Column(Text)
    fraud_risk_score = Column(Integer)
    fraud_risk_level = Column(String(20))
    authorized_at = Column(DateTime)
    captured_at = Column(DateTime)
    failed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="payments")
    refunds = relationship("Refund", back_populates="payment")

class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    reason = Column(Text)
    status = Column(String(20), default="pending")
    gateway_refund_id = Column(String(255), index=True)
    gateway_response = Column(JSON)
    processed_by = Column(String(255))
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime)

    order = relationship("Order", back_populates="refunds")
    payment = relationship("Payment", back_populates="refunds")


# ---------------------------------------------------------------- wishlist

class Wishlist(Base):
    __tablename__ = "wishlists"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    session_id = Column(String(64), index=True, nullable=True)
    name = Column(String(255), default="My Wishlist")
    is_default = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    items = relationship("WishlistItem", back_populates="wishlist", cascade="all, delete-orphan",
                         order_by="WishlistItem.id")

class WishlistItem(Base):
    __tablename__ = "wishlist_items"
    __table_args__ = (UniqueConstraint("wishlist_id", "product_id", "variant_id"),)

    id = Column(Integer, primary_key=True, index=True)
    wishlist_id = Column(Integer, ForeignKey("wishlists.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    added_at = Column(DateTime, default=utcnow)

    wishlist = relationship("Wishlist", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")


# ---------------------------------------------------------------- discounts

class Discount(Base):
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), index=True, default="")
    title = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)
    value = Column(Integer, nullable=False, default=0)  # bps for percentage, minor units otherwise
    applies_to = Column(String(20), default="all")
    minimum_amount = Column(Integer, nullable=True)
    maximum_amount = Column(Integer, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    current_usage = Column(Integer, default=0)
    prerequisite_quantity = Column(Integer, nullable=True)
    entitled_quantity = Column(Integer, nullable=True)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    status = Column(String(20), default="active")
    created_at = Column(DateTime, default=utcnow)

    products = relationship("DiscountProduct", cascade="all, delete-orphan")
    collections = relationship("DiscountCollection", cascade="all, delete-orphan")

class DiscountProduct(Base):
    __tablename__ = "discount_products"

    id = Column(Integer, primary_key=True)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

class DiscountCollection(Base):
    __tablename__ = "discount_collections"

    id = Column(Integer, primary_key=True)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False)
    collection_id = Column(Integer, ForeignKey("collections.id"), nullable=False)

class DiscountUsage(Base):
    __tablename__ = "discount_usage"

    id = Column(Integer, primary_key=True, index=True)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    amount = Column(Integer, nullable=False, default=0)
    used_at = Column(DateTime, default=utcnow)


# ---------------------------------------------------------------- back office

class Setting(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), unique=True, index=True, nullable=False)
    value = Column(Text)
    type = Column(String(20), default="string")
    category = Column(String(50))
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True)
    user_email = Column(String(255))
    user_name = Column(String(255))
    user_role = Column(String(20))
    action = Column(String(64), index=True, nullable=False)
    resource_type = Column(String(64), index=True, nullable=False)
    resource_id = Column(String(64))
    resource_title = Column(String(255))
    changes = Column(JSON)
    details = Column(JSON)
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    request_id = Column(String(64))
    status = Column(String(20), default="success")
    error_message = Column(Text)
    duration_ms = Column(Integer)
    created_at = Column(DateTime, default=utcnow, index=True)

    bulk_items = relationship("AuditLogBulkItem", back_populates="audit_log", cascade="all, delete-orphan")

class AuditLogBulkItem(Base):
    __tablename__ = "audit_log_bulk_items"

    id = Column(Integer, primary_key=True)
    audit_log_id = Column(Integer, ForeignKey("audit_logs.id"), nullable=False)
    resource_id = Column(String(64), nullable=False)
    resource_title = Column(String(255))
    status = Column(String(20), default="success")
    error_message = Column(Text)

    audit_log = relationship("AuditLog", back_populates="bulk_items")

class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(String(64), primary_key=True)
    source = Column(String(30), default="razorpay")
    event_type = Column(String(64), index=True)
    payload = Column(JSON)
    status = Column(String(20), default="pending")
    response = Column(JSON)
    attempts = Column(Integer, default=1)
    processing_time_ms = Column(Integer)
    created_at = Column(DateTime, default=utcnow, index=True)
    completed_at = Column(DateTime)

class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    id = Column(Integer, primary_key=True)
    key = Column(String(255), unique=True, index=True, nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending | success | error
    result = Column(JSON)
    error = Column(Text)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
