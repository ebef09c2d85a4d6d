"""Wishlist endpoints for guests (cookie) and signed-in customers."""
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...data.models import User
from ...schemas.order_models import WishlistAddRequest
from ...services.account_service import AccountService
from ...services.wishlist_service import WishlistService, new_wishlist_session
from ..auth import get_optional_user
from .cart import CART_COOKIE_MAX_AGE, remember_cart
from .common import CART_COOKIE, WISHLIST_COOKIE, set_cookie, unwrap

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])


def _owner(request: Request, db: Session, user: Optional[User]) -> Tuple[Optional[int], Optional[str]]:
    customer = AccountService(db).customer_for(user)
    if customer is not None:
        return customer.id, None
    return None, request.cookies.get(WISHLIST_COOKIE)


@router.get("")
def get_wishlist(request: Request, db: Session = Depends(get_db), user: Optional[User] = Depends(get_optional_user)):
    customer_id, session_id = _owner(request, db, user)
    return {"wishlist": WishlistService(db).get_wishlist(customer_id, session_id)}


@router.post("/items")
def add_item(body: WishlistAddRequest, request: Request, response: Response, db: Session = Depends(get_db),
             user: Optional[User] = Depends(get_optional_user)):
    customer_id, session_id = _owner(request, db, user)
    if customer_id is None and not session_id:
        session_id = new_wishlist_session()
        set_cookie(response, WISHLIST_COOKIE, session_id, CART_COOKIE_MAX_AGE)
    return unwrap(WishlistService(db).add_to_wishlist(body.product_id, body.variant_id, customer_id, session_id))


@router.delete("/items/{item_id}")
def remove_item(item_id: int, request: Request, db: Session = Depends(get_db),
                user: Optional[User] = Depends(get_optional_user)):
    customer_id, session_id = _owner(request, db, user)
    return unwrap(WishlistService(db).remove_from_wishlist(item_id, customer_id, session_id))


@router.post("/items/{item_id}/move-to-cart")
def move_to_cart(item_id: int, request: Request, response: Response, db: Session = Depends(get_db),
                 user: Optional[User] = Depends(get_optional_user)):
    customer_id, session_id = _owner(request, db, user)
    result = WishlistService(db).move_to_cart(item_id, request.cookies.get(CART_COOKIE), customer_id, session_id)
    return remember_cart(response, unwrap(result))


@router.get("/contains/{product_id}")
def contains(product_id: int, request: Request, db: Session = Depends(get_db),
             user: Optional[User] = Depends(get_optional_user)):
    customer_id, session_id = _owner(request, db, user)
    return {"product_id": product_id,
            "in_wishlist": WishlistService(db).is_in_wishlist(product_id, customer_id, session_id)}
