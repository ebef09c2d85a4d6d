"""Back-office order management: listing, status changes, cancellation and refunds."""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy import func, or_

from ...app.gateway import GatewayError, get_gateway
from ...data.models import FulfillmentStatus, Order, OrderStatus, PaymentStatus, Refund
from ...schemas.admin_models import OrderStatusUpdate
from ...schemas.io_models import Actor, RequestContext, ServiceResult
from ...utils.timeutils import utcnow
from ..base_service import BaseService
from ..inventory import release_order_inventory
from ..order_state import record_status_change, set_order_status, set_payment_status
from ..pagination import paginate
from ..serializers import serialize_order
from .audit_service import log_audit_action

ORDER_STATUSES = {s.value for s in OrderStatus}
PAYMENT_STATUSES = {s.value for s in PaymentStatus}
FULFILLMENT_STATUSES = {s.value for s in FulfillmentStatus}


class OrderFilters(BaseModel):
    status: Optional[str] = None
    payment_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


_SORTABLE = {
    "created_at": Order.created_at,
    "total_amount": Order.total_price,
    "order_number": Order.order_number,
}


def _holds_reservation(order: Order) -> bool:
    """Unpaid orders that were confirmed (COD or authorized) still hold reserved stock."""
    if order.fulfillment_status != "unfulfilled":
        return False
    return order.payment_status == "authorized" or (
        order.payment_status == "pending" and order.status == "processing")


class OrderAdminService(BaseService):
    name = "admin_orders"

    def __init__(self, db, actor: Optional[Actor] = None, context: Optional[RequestContext] = None):
        super().__init__(db)
        self.actor = actor or Actor()
        self.context = context

    def _get(self, order_id: int) -> Optional[Order]:
        return self.db.query(Order).filter(Order.id == order_id).first()

    def _audit(self, action: str, order: Order, changes: Dict[str, Any]) -> None:
        log_audit_action(self.db, action, "order", actor=self.actor, context=self.context,
                         resource_id=order.id, resource_title=order.order_number, changes=changes, commit=False)

    def list_orders(self, filters: OrderFilters) -> Dict[str, Any]:
        query = self.db.query(Order)
        if filters.status:
            query = query.filter(Order.status == filters.status)
        if filters.payment_status:
            query = query.filter(Order.payment_status == filters.payment_status)
        if filters.fulfillment_status:
            query = query.filter(Order.fulfillment_status == filters.fulfillment_status)
        if filters.search:
            term = f"%{filters.search.strip()}%"
            query = query.filter(or_(Order.order_number.ilike(term), Order.email.ilike(term)))
        if filters.date_from:
            query = query.filter(Order.created_at >= filters.date_from)
        if filters.date_to:
            query = query.filter(Order.created_at <= filters.date_to)
        column = _SORTABLE.get(filters.sort_by, Order.created_at)
        query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc(), Order.id.desc())
        return paginate(query, filters.page, filters.limit, serialize_order, key="orders")

    def get_order_detail(self, order_id: int) -> Optional[Dict[str, Any]]:
        order = self._get(order_id)
        if order is None:
            return None
        data = serialize_order(order, detail=True)
        if order.customer is not None:
            data["customer"] = {"id": order.customer.id, "email": order.customer.email,
                                "name": order.customer.full_name, "total_orders": order.customer.total_orders}
        return data

    def update_order_status(self, order_id: int, update: OrderStatusUpdate) -> ServiceResult:
        order = self._get(order_id)
        if order is None:
            return self._fail("Order not found", code="not_found")
        if update.status and update.status not in ORDER_STATUSES:
            return self._fail(f"Unknown order status: {update.status}")
        if update.payment_status and update.payment_status not in PAYMENT_STATUSES:
            return self._fail(f"Unknown payment status: {update.payment_status}")
        if update.fulfillment_status and update.fulfillment_status not in FULFILLMENT_STATUSES:
            return self._fail(f"Unknown fulfillment status: {update.fulfillment_status}")
        if update.status == "cancelled":
            return self.cancel_order(order_id, update.notes or "Order cancelled by admin")

        before = {"status": order.status, "payment_status": order.payment_status,
                  "fulfillment_status": order.fulfillment_status}
        changed_by = self.actor.email
        changed = False
        if update.status:
            changed |= set_order_status(self.db, order, update.status, update.notes, changed_by)
        if update.payment_status:
            changed |= set_payment_status(self.db, order, update.payment_status, update.notes, changed_by)
        if update.fulfillment_status and update.fulfillment_status != order.fulfillment_status:
            record_status_change(self.db, order, update.fulfillment_status, "fulfillment",
                                 order.fulfillment_status, update.notes, changed_by)
            order.fulfillment_status = update.fulfillment_status
            changed = True
        if not changed:
            return self._fail("No status changes requested")

        after = {"status": order.status, "payment_status": order.payment_status,
                 "fulfillment_status": order.fulfillment_status}
        self._audit("STATUS_CHANGE", order, {"before": before, "after": after})
        self._commit()
        return self._ok("Order updated", order=serialize_order(order, detail=True))

    def cancel_order(self, order_id: int, reason: str) -> ServiceResult:
        order = self._get(order_id)
        if order is None:
            return self._fail("Order not found", code="not_found")
        if order.status == "cancelled":
            return self._fail("Order is already cancelled", code="conflict")
        if order.fulfillment_status == "fulfilled" or order.status in ("shipped", "delivered"):
            return self._fail("Shipped orders cannot be cancelled")

        previous = order.status
        if _holds_reservation(order):
            release_order_inventory(self.db, order)
        for payment in order.payments:
            if payment.status == "pending":
                payment.status = "cancelled"
        if order.payment_status in ("pending", "authorized"):
            set_payment_status(self.db, order, "cancelled", reason, self.actor.email)

        order.cancel_reason = reason
        order.cancelled_at = utcnow()
        order.cancelled_by = self.actor.email
        set_order_status(self.db, order, "cancelled", reason, self.actor.email)
        self._audit("CANCEL", order, {"before": {"status": previous}, "after": {"status": "cancelled"},
                                      "reason": reason})
        self._commit()
        return self._ok("Order cancelled", order=serialize_order(order, detail=True))

    def refund_order(self, order_id: int, amount: Optional[int] = None, reason: Optional[str] = None) -> ServiceResult:
        order = self._get(order_id)
        if order is None:
            return self._fail("Order not found", code="not_found")
        payment = next((p for p in order.payments if p.status in ("captured", "partially_refunded")), None)
        if payment is None:
            return self._fail("No captured payments found for this order")

        already = sum(r.amount for r in payment.refunds if r.status != "failed")
        refundable = payment.amount - already
        amount = amount or refundable
        if amount <= 0 or amount > refundable:
            return self._fail(f"Refund amount exceeds maximum refundable amount: {refundable}")

        refund = Refund(order_id=order.id, payment_id=payment.id, amount=amount, reason=reason,
                        status="pending", processed_by=self.actor.email)
        if payment.gateway == "razorpay" and payment.gateway_payment_id:
            try:
                response = get_gateway().create_refund(payment.gateway_payment_id, amount,
                                                       notes={"order_number": order.order_number,
                                                              "reason": reason or ""})
            except GatewayError as e:
                self._audit("REFUND", order, {"amount": amount, "error": str(e)})
                self._commit()
                return self._fail(f"Gateway refund failed: {e}", code="gateway_error")
            refund.gateway_refund_id = response.get("id")
            refund.gateway_response = response
            if response.get("status") == "processed":
                refund.status = "success"
                refund.processed_at = utcnow()
        else:
            # offline payments are settled by hand
            refund.status = "success"
            refund.processed_at = utcnow()
        self.db.add(refund)

        full = already + amount >= payment.amount
        payment.status = "refunded" if full else "partially_refunded"
        set_payment_status(self.db, order, payment.status,
                           reason or f"Refunded {amount} {order.currency}", self.actor.email)
        self._audit("REFUND", order, {"amount": amount, "reason": reason, "full_refund": full,
                                      "gateway_refund_id": refund.gateway_refund_id})
        self._commit()
        self.logger.info("[ADMIN] refunded %s on %s (%s)", amount, order.order_number,
                         "full" if full else "partial")
        return self._ok("Refund processed", refund_amount=amount, order=serialize_order(order, detail=True))

    def add_order_note(self, order_id: int, note: str) -> ServiceResult:
        order = self._get(order_id)
        if order is None:
            return self._fail("Order not found", code="not_found")
        record_status_change(self.db, order, order.status, "note", order.status, note, self.actor.email)
        self._commit()
        return self._ok("Note added")

    def get_order_stats(self, days: Optional[int] = None) -> Dict[str, Any]:
        query = self.db.query(Order)
        if days:
            query = query.filter(Order.created_at >= utcnow() - timedelta(days=days))
        counts = dict(query.with_entities(Order.status, func.count(Order.id)).group_by(Order.status).all())
        paid = query.filter(Order.payment_status.in_(("paid", "partially_refunded")))
        revenue, paid_count = paid.with_entities(func.coalesce(func.sum(Order.total_price), 0),
                                                 func.count(Order.id)).one()
        return {
            "total_orders": sum(counts.values()),
            "by_status": counts,
            "pending_orders": counts.get("pending", 0),
            "processing_orders": counts.get("processing", 0),
            "total_revenue": int(revenue),
            "paid_orders": paid_count,
            "average_order_value": int(revenue / paid_count) if paid_count else 0,
        }
