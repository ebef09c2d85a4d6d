"""Back-office orders and customers."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...data.models import User
from ...schemas.admin_models import (
    CancelOrderRequest, CustomerUpdate, OrderNoteRequest, OrderStatusUpdate, RefundRequest,
)
from ...services.admin.customer_admin_service import CustomerAdminService, CustomerFilters
from ...services.admin.order_admin_service import OrderAdminService, OrderFilters
from ..auth import actor_for, get_request_context, require_permission
from .common import rate_limit, unwrap

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(rate_limit("admin"))])


def _orders(request: Request, db: Session, user: User) -> OrderAdminService:
    return OrderAdminService(db, actor_for(user), get_request_context(request))


@router.get("/orders")
def list_orders(filters: OrderFilters = Depends(), db: Session = Depends(get_db),
                user: User = Depends(require_permission("view_orders"))):
    return OrderAdminService(db).list_orders(filters)


@router.get("/orders/stats")
def order_stats(days: Optional[int] = Query(None, ge=1), db: Session = Depends(get_db),
                user: User = Depends(require_permission("view_orders"))):
    return OrderAdminService(db).get_order_stats(days)


@router.get("/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db), user: User = Depends(require_permission("view_orders"))):
    order = OrderAdminService(db).get_order_detail(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order": order}


@router.patch("/orders/{order_id}/status")
def update_status(order_id: int, body: OrderStatusUpdate, request: Request, db: Session = Depends(get_db),
                  user: User = Depends(require_permission("manage_orders"))):
    return unwrap(_orders(request, db, user).update_order_status(order_id, body))


@router.post("/orders/{order_id}/cancel")
def cancel_order(order_id: int, body: CancelOrderRequest, request: Request, db: Session = Depends(get_db),
                 user: User = Depends(require_permission("manage_orders"))):
    return unwrap(_orders(request, db, user).cancel_order(order_id, body.reason))


@router.post("/orders/{order_id}/refund")
def refund_order(order_id: int, body: RefundRequest, request: Request, db: Session = Depends(get_db),
                 user: User = Depends(require_permission("manage_orders"))):
    return unwrap(_orders(request, db, user).refund_order(order_id, body.amount, body.reason))


@router.post("/orders/{order_id}/notes")
def add_note(order_id: int, body: OrderNoteRequest, request: Request, db: Session = Depends(get_db),
             user: User = Depends(require_permission("manage_orders"))):
    return unwrap(_orders(request, db, user).add_order_note(order_id, body.note))


@router.get("/customers")
def list_customers(filters: CustomerFilters = Depends(), db: Session = Depends(get_db),
                   user: User = Depends(require_permission("view_customers"))):
    return CustomerAdminService(db).list_customers(filters)


@router.get("/customers/stats")
def customer_stats(db: Session = Depends(get_db), user: User = Depends(require_permission("view_customers"))):
    return CustomerAdminService(db).get_customer_stats()


@router.get("/customers/{customer_id}")
def get_customer(customer_id: int, db: Session = Depends(get_db),
                 user: User = Depends(require_permission("view_customers"))):
    customer = CustomerAdminService(db).get_customer(customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return {"customer": customer}


@router.put("/customers/{customer_id}")
def update_customer(customer_id: int, body: CustomerUpdate, request: Request, db: Session = Depends(get_db),
                    user: User = Depends(require_permission("manage_customers"))):
    service = CustomerAdminService(db, actor_for(user), get_request_context(request))
    return unwrap(service.update_customer(customer_id, body))
