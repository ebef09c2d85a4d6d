"""Shopping cart backed by the ``carts`` table and identified by a cookie token."""
import secrets
from datetime import timedelta
from typing import Optional

from ..app.config import Config
from ..data.models import Cart, CartItem, Product, ProductVariant
from ..schemas.io_models import ServiceResult
from ..utils.timeutils import utcnow
from .base_service import BaseService
from .discount_service import DiscountService
from .serializers import serialize_cart


def new_cart_token() -> str:
    return secrets.token_urlsafe(24)


def sellable_quantity(variant: ProductVariant) -> Optional[int]:
    """Units that can still be sold, or None when stock is not enforced."""
    product = variant.product
    if variant.inventory_policy == "continue" or (product is not None and (
            not product.track_inventory or product.continue_selling_when_out_of_stock)):
        return None
    level = variant.inventory_level
    return level.available if level is not None else (variant.inventory_quantity or 0)


class CartService(BaseService):
    name = "cart"

    def get_cart(self, token: Optional[str]) -> Optional[Cart]:
        if not token:
            return None
        cart = self.db.query(Cart).filter(Cart.token == token, Cart.status == "active").first()
        if cart is not None and cart.expires_at and cart.expires_at < utcnow():
            cart.status = "abandoned"
            self._commit()
            return None
        return cart

    def get_or_create_cart(self, token: Optional[str], customer_id: Optional[int] = None) -> Cart:
        cart = self.get_cart(token)
        if cart is None:
            cart = Cart(token=new_cart_token(), status="active", currency=Config.CURRENCY,
                        customer_id=customer_id, discount_codes=[])
            self.db.add(cart)
        elif customer_id and not cart.customer_id:
            cart.customer_id = customer_id
        cart.expires_at = utcnow() + timedelta(days=Config.CART_TTL_DAYS)
        self.db.flush()
        return cart

    def recalculate(self, cart: Cart) -> Cart:
        """Refresh line and cart totals, re-validating any applied code."""
        for item in cart.items:
            item.total_price = item.price * item.quantity
        subtotal = sum(item.total_price for item in cart.items)

        discounts = DiscountService(self.db)
        discount_total = 0
        valid_codes = []
        for code in cart.discount_codes or []:
            check = discounts.validate_discount_code(code, cart.items)
            if not check.success:
                continue
            valid_codes.append(check.data["code"])
            # free shipping is settled at checkout, not against merchandise
            if check.data["type"] != "free_shipping":
                discount_total += check.data["discount_amount"]
        for auto in discounts.get_automatic_discounts(cart.items) if cart.items else []:
            if auto["type"] != "free_shipping":
                discount_total += auto["discount_amount"]

        discount_total = min(discount_total, subtotal)
        taxable = subtotal - discount_total
        cart.discount_codes = valid_codes
        cart.subtotal_price = subtotal
        cart.total_discount = discount_total
        cart.total_tax = round(taxable * Config.TAX_RATE_BPS / 10000)
        cart.total_price = taxable + cart.total_tax
        return cart

    def _load_variant(self, product_id: int, variant_id: Optional[int]):
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None or product.status != "active":
            return None, None
        if variant_id is None:
            variant = product.variants[0] if product.variants else None
        else:
            variant = self.db.query(ProductVariant).filter(
                ProductVariant.id == variant_id, ProductVariant.product_id == product.id).first()
        return product, variant

    def add_to_cart(self, token: Optional[str], product_id: int, variant_id: Optional[int] = None,
                    quantity: int = 1, customer_id: Optional[int] = None) -> ServiceResult:
        if quantity < 1:
            return self._fail("Quantity must be at least 1")

        product, variant = self._load_variant(product_id, variant_id)
        if product is None:
            return self._fail("Product not found", code="not_found")
        if variant is None:
            return self._fail("Product variant not found", code="not_found")

        cart = self.get_or_create_cart(token, customer_id)
        existing = next((i for i in cart.items if i.variant_id == variant.id), None)
        wanted = quantity + (existing.quantity if existing else 0)

        stock = sellable_quantity(variant)
        if stock is not None and wanted > stock:
            self.db.rollback()
            if stock <= 0:
                return self._fail("This item is out of stock")
            return self._fail(f"Only {stock} items available in stock", data={"available": stock})

        if existing:
            existing.quantity = wanted
        else:
            cart.items.append(CartItem(
                product_id=product.id,
                variant_id=variant.id,
                quantity=quantity,
                price=variant.price,
                total_price=variant.price * quantity,
                product_title=product.title,
                variant_title=variant.title,
                product_image=product.images[0].url if product.images else None,
                sku=variant.sku,
            ))
        self.recalculate(cart)
        self._commit()
        return self._ok("Item added to cart", cart=serialize_cart(cart))

    def update_cart_item(self, token: Optional[str], item_id: int, quantity: int) -> ServiceResult:
        if quantity <= 0:
            return self.remove_from_cart(token, item_id)

        cart = self.get_cart(token)
        if cart is None:
            return self._fail("Cart not found", code="not_found")
        item = next((i for i in cart.items if i.id == item_id), None)
        if item is None:
            return self._fail("Cart item not found", code="not_found")

        stock = sellable_quantity(item.variant)
        if stock is not None and quantity > stock:
            return self._fail(f"Only {stock} items available in stock", data={"available": stock})

        item.quantity = quantity
        self.recalculate(cart)
        self._commit()
        return self._ok("Cart updated", cart=serialize_cart(cart))

    def remove_from_cart(self, token: Optional[str], item_id: int) -> ServiceResult:
        cart = self.get_cart(token)
        if cart is None:
            return self._fail("Cart not found", code="not_found")
        item = next((i for i in cart.items if i.id == item_id), None)
        if item is None:
            return self._fail("Cart item not found", code="not_found")
        cart.items.remove(item)
        self.recalculate(cart)
        self._commit()
        return self._ok("Item removed from cart", cart=serialize_cart(cart))

    def clear_cart(self, token: Optional[str]) -> ServiceResult:
        cart = self.get_cart(token)
        if cart is None:
            return self._fail("Cart not found", code="not_found")
        cart.items.clear()
        cart.discount_codes = []
        self.recalculate(cart)
        self._commit()
        return self._ok("Cart cleared", cart=serialize_cart(cart))

    def get_cart_item_count(self, token: Optional[str]) -> int:
        cart = self.get_cart(token)
        return sum(i.quantity for i in cart.items) if cart else 0

    def apply_discount_code(self, token: Optional[str], code: str) -> ServiceResult:
        cart = self.get_cart(token)
        if cart is None or not cart.items:
            return self._fail("Your cart is empty")
        check = DiscountService(self.db).validate_discount_code(code, cart.items)
        if not check.success:
            return check
        # one code per cart
        cart.discount_codes = [check.data["code"]]
        self.recalculate(cart)
        self._commit()
        return self._ok(check.message, cart=serialize_cart(cart), discount=check.data)

    def remove_discount_code(self, token: Optional[str]) -> ServiceResult:
        cart = self.get_cart(token)
        if cart is None:
            return self._fail("Cart not found", code="not_found")
        cart.discount_codes = []
        self.recalculate(cart)
        self._commit()
        return self._ok("Discount removed", cart=serialize_cart(cart))
