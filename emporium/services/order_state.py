"""Order status bookkeeping shared by checkout, payments and the admin."""
from typing import Optional

from sqlalchemy.orm import Session

from ..data.models import Customer, Order, OrderStatusHistory
from ..utils.timeutils import utcnow


def record_status_change(db: Session, order: Order, to_status: str, status_type: str = "order",
                         from_status: Optional[str] = None, notes: Optional[str] = None,
                         changed_by: str = "system") -> OrderStatusHistory:
    entry = OrderStatusHistory(order_id=order.id, from_status=from_status, to_status=to_status,
                               status_type=status_type, notes=notes, changed_by=changed_by,
                               created_at=utcnow())
    db.add(entry)
    return entry


def set_order_status(db: Session, order: Order, status: str, notes: Optional[str] = None,
                     changed_by: str = "system") -> bool:
    """Move the order status and log it. Returns False when nothing changed."""
    if order.status == status:
        return False
    previous = order.status
    order.status = status
    now = utcnow()
    if status == "processing" and order.processed_at is None:
        order.processed_at = now
    elif status == "shipped":
        order.shipped_at = now
    elif status == "delivered":
        order.delivered_at = now
    record_status_change(db, order, status, "order", previous, notes, changed_by)
    return True


def set_payment_status(db: Session, order: Order, status: str, notes: Optional[str] = None,
                       changed_by: str = "system") -> bool:
    """Move the payment status and log it. Only the first move to paid credits the customer."""
    if order.payment_status == status:
        return False
    previous = order.payment_status
    first_payment = status == "paid" and not _was_paid(db, order)
    order.payment_status = status
    record_status_change(db, order, status, "payment", previous, notes, changed_by)
    if first_payment:
        credit_customer(db, order)
    return True


def _was_paid(db: Session, order: Order) -> bool:
    db.flush()
    return db.query(OrderStatusHistory.id).filter(
        OrderStatusHistory.order_id == order.id,
        OrderStatusHistory.status_type == "payment",
        OrderStatusHistory.to_status == "paid",
    ).first() is not None


def credit_customer(db: Session, order: Order) -> None:
    """Fold a paid order into the customer's lifetime totals."""
    if order.customer_id is None:
        return
    customer = db.query(Customer).filter(Customer.id == order.customer_id).first()
    if customer is None:
        return
    customer.total_spent = (customer.total_spent or 0) + order.total_price
    customer.total_orders = (customer.total_orders or 0) + 1
    customer.last_order_date = order.created_at or utcnow()
