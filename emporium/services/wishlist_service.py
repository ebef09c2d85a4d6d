"""Wishlists for guests (keyed by a cookie) and signed-in customers."""
import secrets
from typing import Any, Dict, Optional

from ..data.models import Product, ProductVariant, Wishlist, WishlistItem
from ..schemas.io_models import ServiceResult
from .base_service import BaseService
from .cart_service import CartService
from .serializers import serialize_variant


def new_wishlist_session() -> str:
    return secrets.token_urlsafe(24)


def serialize_wishlist(wishlist: Optional[Wishlist]) -> Dict[str, Any]:
    if wishlist is None:
        return {"id": None, "name": "My Wishlist", "items": [], "item_count": 0}
    items = []
    for item in wishlist.items:
        product = item.product
        items.append({
            "id": item.id,
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "title": product.title if product else None,
            "handle": product.handle if product else None,
            "image": product.images[0].url if product and product.images else None,
            "price": item.variant.price if item.variant else (product.price if product else None),
            "variant": serialize_variant(item.variant) if item.variant else None,
            "added_at": item.added_at.isoformat() if item.added_at else None,
        })
    return {"id": wishlist.id, "name": wishlist.name, "items": items, "item_count": len(items)}


class WishlistService(BaseService):
    name = "wishlist"

    def _find(self, customer_id: Optional[int], session_id: Optional[str]) -> Optional[Wishlist]:
        query = self.db.query(Wishlist).filter(Wishlist.is_default.is_(True))
        if customer_id is not None:
            return query.filter(Wishlist.customer_id == customer_id).first()
        if session_id:
            return query.filter(Wishlist.session_id == session_id, Wishlist.customer_id.is_(None)).first()
        return None

    def _get_or_create(self, customer_id: Optional[int], session_id: Optional[str]) -> Wishlist:
        wishlist = self._find(customer_id, session_id)
        if wishlist is None:
            wishlist = Wishlist(customer_id=customer_id,
                                session_id=None if customer_id is not None else session_id,
                                name="My Wishlist", is_default=True)
            self.db.add(wishlist)
            self.db.flush()
        return wishlist

    def get_wishlist(self, customer_id: Optional[int] = None, session_id: Optional[str] = None) -> Dict[str, Any]:
        return serialize_wishlist(self._find(customer_id, session_id))

    def add_to_wishlist(self, product_id: int, variant_id: Optional[int] = None,
                        customer_id: Optional[int] = None, session_id: Optional[str] = None) -> ServiceResult:
        if customer_id is None and not session_id:
            return self._fail("A wishlist session is required")

        product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            return self._fail("Product not found", code="not_found")
        if variant_id is None:
            variant = product.variants[0] if product.variants else None
        else:
            variant = self.db.query(ProductVariant).filter(
                ProductVariant.id == variant_id, ProductVariant.product_id == product.id).first()
            if variant is None:
                return self._fail("Product variant not found", code="not_found")

        wishlist = self._get_or_create(customer_id, session_id)
        resolved_variant_id = variant.id if variant else None
        if any(i.product_id == product.id and i.variant_id == resolved_variant_id for i in wishlist.items):
            self.db.rollback()
            return self._fail("Item is already in your wishlist", code="conflict")

        wishlist.items.append(WishlistItem(product_id=product.id, variant_id=resolved_variant_id))
        self._commit()
        return self._ok("Added to wishlist", wishlist=serialize_wishlist(wishlist))

    def remove_from_wishlist(self, item_id: int, customer_id: Optional[int] = None,
                             session_id: Optional[str] = None) -> ServiceResult:
        wishlist = self._find(customer_id, session_id)
        item = next((i for i in wishlist.items if i.id == item_id), None) if wishlist else None
        if item is None:
            return self._fail("Wishlist item not found", code="not_found")
        wishlist.items.remove(item)
        self._commit()
        return self._ok("Removed from wishlist", wishlist=serialize_wishlist(wishlist))

    def move_to_cart(self, item_id: int, cart_token: Optional[str], customer_id: Optional[int] = None,
                     session_id: Optional[str] = None) -> ServiceResult:
        """Add a wishlist item to the cart, then drop it from the wishlist."""
        wishlist = self._find(customer_id, session_id)
        item = next((i for i in wishlist.items if i.id == item_id), None) if wishlist else None
        if item is None:
            return self._fail("Wishlist item not found", code="not_found")

        added = CartService(self.db).add_to_cart(cart_token, item.product_id, item.variant_id, 1, customer_id)
        if not added.success:
            return added

        # the cart commit expired our instances
        wishlist = self._find(customer_id, session_id)
        item = next((i for i in wishlist.items if i.id == item_id), None)
        if item is not None:
            wishlist.items.remove(item)
            self._commit()
        return self._ok("Moved to cart", cart=added.data["cart"], wishlist=serialize_wishlist(wishlist))

    def is_in_wishlist(self, product_id: int, customer_id: Optional[int] = None,
                       session_id: Optional[str] = None) -> bool:
        wishlist = self._find(customer_id, session_id)
        return bool(wishlist and any(i.product_id == product_id for i in wishlist.items))

    def merge_guest_wishlist(self, session_id: Optional[str], customer_id: int) -> int:
        """Fold a guest wishlist into the customer's. Returns the number of items moved."""
        guest = self._find(None, session_id)
        if guest is None:
            return 0
        target = self._get_or_create(customer_id, None)
        existing = {(i.product_id, i.variant_id) for i in target.items}
        moved = 0
        for item in list(guest.items):
            if (item.product_id, item.variant_id) not in existing:
                target.items.append(WishlistItem(product_id=item.product_id, variant_id=item.variant_id,
                                                 added_at=item.added_at))
                existing.add((item.product_id, item.variant_id))
                moved += 1
        self.db.delete(guest)
        self._commit()
        self.logger.info("[WISHLIST] merged %s guest items into customer %s", moved, customer_id)
        return moved
