"""Back-office payment views, webhook monitoring and fraud/security analytics."""
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import func

from ...app.rate_limit import get_rate_limit_analytics
from ...data.models import Payment, WebhookDelivery
from ...utils.timeutils import utcnow
from .. import security_events
from ..base_service import BaseService
from ..pagination import paginate
from ..serializers import serialize_payment

FLAGGED_LEVELS = ("medium", "high", "critical")


class PaymentFilters(BaseModel):
    status: Optional[str] = None
    gateway: Optional[str] = None
    risk_level: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


_SORTABLE = {
    "created_at": Payment.created_at,
    "amount": Payment.amount,
    "status": Payment.status,
}


def _with_order(payment: Payment) -> Dict[str, Any]:
    data = serialize_payment(payment)
    order = payment.order
    data["order_number"] = order.order_number if order else None
    data["customer_email"] = order.email if order else None
    return data


def serialize_delivery(row: WebhookDelivery, include_payload: bool = False) -> Dict[str, Any]:
    data = {
        "id": row.id,
        "event_type": row.event_type,
        "status": row.status,
        "attempts": row.attempts,
        "processing_time_ms": row.processing_time_ms,
        "response": row.response,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "completed_at": row.completed_at.isoformat() if row.completed_at else None,
    }
    if include_payload:
        data["payload"] = row.payload
    return data


class PaymentAdminService(BaseService):
    name = "admin_payments"

    def list_payments(self, filters: PaymentFilters) -> Dict[str, Any]:
        query = self.db.query(Payment)
        if filters.status:
            query = query.filter(Payment.status == filters.status)
        if filters.gateway:
            query = query.filter(Payment.gateway == filters.gateway)
        if filters.risk_level:
            query = query.filter(Payment.fraud_risk_level == filters.risk_level)
        if filters.date_from:
            query = query.filter(Payment.created_at >= filters.date_from)
        if filters.date_to:
            query = query.filter(Payment.created_at <= filters.date_to)
        column = _SORTABLE.get(filters.sort_by, Payment.created_at)
        query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc(), Payment.id.desc())
        return paginate(query, filters.page, filters.limit, _with_order, key="payments")

    def get_payment_detail(self, payment_id: int) -> Optional[Dict[str, Any]]:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if payment is None:
            return None
        data = _with_order(payment)
        data["gateway_response"] = payment.gateway_response
        data["refunds"] = [
            {"id": r.id, "amount": r.amount, "status": r.status, "reason": r.reason,
             "gateway_refund_id": r.gateway_refund_id,
             "created_at": r.created_at.isoformat() if r.created_at else None}
            for r in payment.refunds
        ]
        return data

    def get_payment_stats(self) -> Dict[str, Any]:
        by_status = dict(self.db.query(Payment.status, func.count(Payment.id)).group_by(Payment.status).all())
        total = sum(by_status.values())
        captured_amount = self.db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
            Payment.status.in_(("captured", "partially_refunded"))).scalar()
        refunded_amount = self.db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
            Payment.status == "refunded").scalar()
        gateways = [
            {"gateway": gateway, "count": count, "volume": int(volume or 0)}
            for gateway, count, volume in self.db.query(
                Payment.gateway, func.count(Payment.id), func.sum(Payment.amount)
            ).group_by(Payment.gateway).all()
        ]
        recent_failures = (
            self.db.query(Payment).filter(Payment.status == "failed")
            .order_by(Payment.created_at.desc()).limit(10).all()
        )
        successful = by_status.get("captured", 0) + by_status.get("partially_refunded", 0) + by_status.get("refunded", 0)
        return {
            "total_transactions": total,
            "by_status": by_status,
            "successful_transactions": successful,
            "failed_transactions": by_status.get("failed", 0),
            "pending_transactions": by_status.get("pending", 0),
            "total_volume": int(captured_amount),
            "total_refunded": int(refunded_amount),
            "success_rate": round(successful / total * 100, 2) if total else 0,
            "gateways": gateways,
            "recent_failures": [_with_order(p) for p in recent_failures],
        }

    def get_webhook_stats(self, days: int = 7) -> Dict[str, Any]:
        since = utcnow() - timedelta(days=days)
        rows = self.db.query(WebhookDelivery).filter(WebhookDelivery.created_at >= since).all()
        total = len(rows)
        successful = sum(1 for r in rows if r.status == "success")
        failed = sum(1 for r in rows if r.status == "failed")
        timings = [r.processing_time_ms for r in rows if r.processing_time_ms is not None]
        return {
            "days": days,
            "total": total,
            "successful": successful,
            "failed": failed,
            "success_rate": round(successful / total * 100) if total else 100,
            "average_processing_time": round(sum(timings) / len(timings)) if timings else 0,
            "by_event_type": dict(Counter(r.event_type for r in rows)),
        }

    def get_recent_webhook_deliveries(self, limit: int = 50, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.db.query(WebhookDelivery)
        if status:
            query = query.filter(WebhookDelivery.status == status)
        rows = query.order_by(WebhookDelivery.created_at.desc()).limit(max(1, min(limit, 200))).all()
        return [serialize_delivery(r) for r in rows]

    def get_webhook_delivery(self, delivery_id: str) -> Optional[Dict[str, Any]]:
        row = self.db.query(WebhookDelivery).filter(WebhookDelivery.id == delivery_id).first()
        return serialize_delivery(row, include_payload=True) if row else None

    def get_fraud_analytics(self, days: int = 30) -> Dict[str, Any]:
        since = utcnow() - timedelta(days=days)
        scored = self.db.query(Payment).filter(Payment.created_at >= since, Payment.fraud_risk_level.isnot(None))
        by_level = dict(scored.with_entities(Payment.fraud_risk_level, func.count(Payment.id))
                        .group_by(Payment.fraud_risk_level).all())
        flagged = (
            scored.filter(Payment.fraud_risk_level.in_(FLAGGED_LEVELS))
            .order_by(Payment.fraud_risk_score.desc(), Payment.created_at.desc()).limit(50).all()
        )
        blocked = scored.filter(Payment.failure_reason == "fraud_detected").count()
        avg_score = scored.with_entities(func.avg(Payment.fraud_risk_score)).scalar()
        return {
            "days": days,
            "analyzed": sum(by_level.values()),
            "by_level": by_level,
            "blocked": blocked,
            "average_score": round(float(avg_score), 1) if avg_score is not None else 0,
            "flagged_payments": [_with_order(p) for p in flagged],
        }

    def get_rate_limit_analytics(self, hours: int = 24) -> Dict[str, Any]:
        return get_rate_limit_analytics(hours)

    def get_security_overview(self, days: int = 1) -> Dict[str, Any]:
        return {
            "metrics": security_events.get_security_metrics(days),
            "alerts": security_events.get_security_alerts(),
        }

