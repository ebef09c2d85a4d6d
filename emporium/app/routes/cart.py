"""Cart endpoints. The cart is identified by the ``cart_token`` cookie."""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...data.models import User
from ...schemas.order_models import AddToCartRequest, DiscountCodeRequest, UpdateCartItemRequest
from ...services.account_service import AccountService
from ...services.cart_service import CartService
from ...services.discount_service import DiscountService
from ...services.serializers import serialize_cart
from ..auth import get_optional_user
from ..config import Config
from .common import CART_COOKIE, rate_limit, set_cookie, unwrap

router = APIRouter(prefix="/api/cart", tags=["cart"])

CART_COOKIE_MAX_AGE = Config.CART_TTL_DAYS * 24 * 60 * 60


def remember_cart(response: Response, body: dict) -> dict:
    cart = body.get("cart")
    if cart:
        set_cookie(response, CART_COOKIE, cart["token"], CART_COOKIE_MAX_AGE)
    return body


@router.get("")
def get_cart(request: Request, db: Session = Depends(get_db)):
    cart = CartService(db).get_cart(request.cookies.get(CART_COOKIE))
    if cart is None:
        return {"cart": None, "item_count": 0}
    return {"cart": serialize_cart(cart), "item_count": sum(i.quantity for i in cart.items)}


@router.get("/count")
def cart_count(request: Request, db: Session = Depends(get_db)):
    return {"count": CartService(db).get_cart_item_count(request.cookies.get(CART_COOKIE))}


@router.post("/items", dependencies=[Depends(rate_limit("cart"))])
def add_item(body: AddToCartRequest, request: Request, response: Response, db: Session = Depends(get_db),
             user: Optional[User] = Depends(get_optional_user)):
    customer = AccountService(db).customer_for(user)
    result = CartService(db).add_to_cart(request.cookies.get(CART_COOKIE), body.product_id, body.variant_id,
                                         body.quantity, customer.id if customer else None)
    return remember_cart(response, unwrap(result))


@router.patch("/items/{item_id}", dependencies=[Depends(rate_limit("cart"))])
def update_item(item_id: int, body: UpdateCartItemRequest, request: Request, db: Session = Depends(get_db)):
    return unwrap(CartService(db).update_cart_item(request.cookies.get(CART_COOKIE), item_id, body.quantity))


@router.delete("/items/{item_id}", dependencies=[Depends(rate_limit("cart"))])
def remove_item(item_id: int, request: Request, db: Session = Depends(get_db)):
    return unwrap(CartService(db).remove_from_cart(request.cookies.get(CART_COOKIE), item_id))


@router.delete("", dependencies=[Depends(rate_limit("cart"))])
def clear_cart(request: Request, db: Session = Depends(get_db)):
    return unwrap(CartService(db).clear_cart(request.cookies.get(CART_COOKIE)))


@router.post("/discount", dependencies=[Depends(rate_limit("cart"))])
def apply_discount(body: DiscountCodeRequest, request: Request, db: Session = Depends(get_db)):
    return unwrap(CartService(db).apply_discount_code(request.cookies.get(CART_COOKIE), body.code))


@router.delete("/discount", dependencies=[Depends(rate_limit("cart"))])
def remove_discount(request: Request, db: Session = Depends(get_db)):
    return unwrap(CartService(db).remove_discount_code(request.cookies.get(CART_COOKIE)))


@router.get("/discounts")
def available_discounts(request: Request, db: Session = Depends(get_db)):
    cart = CartService(db).get_cart(request.cookies.get(CART_COOKIE))
    total = cart.subtotal_price if cart is not None else None
    return {"discounts": DiscountService(db).get_available_discounts(total)}
