"""Checkout, order lookup and online payment endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...data.models import Order, User
from ...schemas.order_models import CheckoutRequest, PaymentVerifyRequest
from ...services.account_service import AccountService
from ...services.order_service import OrderService
from ...services.payment_service import PaymentService
from ...services.serializers import serialize_order
from ..auth import get_current_user, get_optional_user, get_request_context
from .common import CART_COOKIE, rate_limit, unwrap

router = APIRouter(prefix="/api", tags=["orders"])


@router.post("/checkout", dependencies=[Depends(rate_limit("order_creation"))])
def checkout(form: CheckoutRequest, request: Request, response: Response, db: Session = Depends(get_db),
             user: Optional[User] = Depends(get_optional_user)):
    customer = AccountService(db).customer_for(user)
    context = get_request_context(request)
    result = OrderService(db).create_order(
        request.cookies.get(CART_COOKIE), form, customer_id=customer.id if customer else None,
        ip_address=context.ip_address, user_agent=context.user_agent,
    )
    body = unwrap(result)
    response.delete_cookie(CART_COOKIE)
    return body


def _owned_order(reference: str, email: Optional[str], db: Session, user: Optional[User]) -> Order:
    """The order, if the signed-in customer owns it or ``email`` matches."""
    customer = AccountService(db).customer_for(user)
    order = OrderService(db).get_order(reference, email=email, customer_id=customer.id if customer else None)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("/orders/{reference}")
def get_order(reference: str, email: Optional[str] = Query(None), db: Session = Depends(get_db),
              user: Optional[User] = Depends(get_optional_user)):
    order = _owned_order(reference, email, db, user)
    return {"order": serialize_order(order, detail=True)}


@router.get("/account/orders")
def my_orders(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    customer = AccountService(db).customer_for(user)
    if customer is None:
        return {"orders": []}
    return {"orders": OrderService(db).list_customer_orders(customer.id)}


@router.post("/orders/{order_id}/payment", dependencies=[Depends(rate_limit("order_creation"))])
def create_payment(order_id: int, email: Optional[str] = Query(None), db: Session = Depends(get_db),
                   user: Optional[User] = Depends(get_optional_user)):
    order = _owned_order(str(order_id), email, db, user)
    return unwrap(PaymentService(db).create_order_payment(order.id))


@router.get("/orders/{order_id}/payment")
def payment_status(order_id: int, email: Optional[str] = Query(None), db: Session = Depends(get_db),
                   user: Optional[User] = Depends(get_optional_user)):
    order = _owned_order(str(order_id), email, db, user)
    return unwrap(PaymentService(db).get_payment_status(order.id))


@router.post("/payments/verify", dependencies=[Depends(rate_limit("payment"))])
def verify_payment(body: PaymentVerifyRequest, request: Request, db: Session = Depends(get_db)):
    status_code, payload = PaymentService(db).verify_payment(body, get_request_context(request))
    return JSONResponse(status_code=status_code, content=payload)
