"""Online payments: creating gateway orders and verifying checkout callbacks.

``verify_payment`` returns ``(status_code, body)`` so the exact response can
be stored under an idempotency key and replayed for retried requests.
"""
import uuid
from typing import Any, Dict, Optional, Tuple

from ..app.config import Config
from ..app.gateway import GatewayError, get_gateway, verify_payment_signature
from ..data.models import Order, Payment
from ..schemas.io_models import RequestContext, ServiceResult
from ..schemas.order_models import PaymentVerifyRequest
from ..utils.security import mask_card, mask_email
from ..utils.timeutils import utcnow
from . import security_events
from .admin.audit_service import log_audit_action
from .admin.settings_service import get_setting
from .base_service import BaseService
from .fraud import PaymentContext, analyze_payment_risk
from .idempotency import check_idempotency, generate_payment_idempotency_key, save_idempotency_result
from .inventory import reserve_order_inventory
from .order_state import set_order_status, set_payment_status
from .serializers import serialize_payment

# gateway status -> (payment status, order status, order payment status)
STATUS_MAP = {
    "captured": ("captured", "processing", "paid"),
    "authorized": ("authorized", "pending", "authorized"),
}
FAILED_STATUSES = ("failed", "payment_failed", "failed")

SUCCESS_TTL_MINUTES = 60
ERROR_TTL_MINUTES = 5
FRAUD_TTL_MINUTES = 24 * 60

Outcome = Tuple[int, Dict[str, Any]]


class PaymentService(BaseService):
    name = "payments"

    def create_order_payment(self, order_id: int) -> ServiceResult:
        """Prepare checkout-widget parameters for an order, reusing any open gateway order."""
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            return self._fail("Order not found", code="not_found")
        if order.payment_status == "paid":
            return self._fail("Order is already paid")
        if order.status in ("cancelled",):
            return self._fail("Order has been cancelled")

        pending = self.db.query(Payment).filter(
            Payment.order_id == order.id, Payment.gateway == "razorpay", Payment.status == "pending",
        ).order_by(Payment.created_at.desc(), Payment.id.desc()).first()

        if pending is None or not pending.gateway_transaction_id:
            try:
                gateway_order = get_gateway().create_order(
                    amount=order.total_price,
                    currency=order.currency or Config.CURRENCY,
                    receipt=f"{order.order_number}-{uuid.uuid4().hex[:8]}",
                    notes={"order_id": str(order.id), "order_number": order.order_number},
                )
            except GatewayError as e:
                return self._fail(f"Failed to create payment order: {e}", code="gateway_error")

            if pending is None:
                pending = Payment(order_id=order.id, amount=order.total_price, currency=order.currency,
                                  gateway="razorpay", payment_method="razorpay", status="pending")
                self.db.add(pending)
            pending.gateway_transaction_id = gateway_order["id"]
            pending.gateway_response = gateway_order
            pending.idempotency_key = generate_payment_idempotency_key("create", gateway_order["id"], str(order.id))
            self._commit()
            self.logger.info("[PAYMENTS] gateway order %s created for %s", gateway_order["id"], order.order_number)

        address = order.shipping_address or {}
        return self._ok(
            "Payment order ready",
            key=Config.RAZORPAY_KEY_ID,
            order_id=pending.gateway_transaction_id,
            amount=pending.amount,
            currency=pending.currency,
            name=get_setting(self.db, "store_name", Config.STORE_NAME),
            description=f"Order {order.order_number}",
            prefill={
                "name": " ".join(p for p in (address.get("first_name"), address.get("last_name")) if p),
                "email": order.email,
                "contact": order.phone or address.get("phone") or "",
            },
            notes={"order_id": str(order.id), "order_number": order.order_number},
            theme={"color": "#000000"},
            payment_id=pending.id,
        )

    def get_payment_status(self, order_id: int) -> ServiceResult:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            return self._fail("Order not found", code="not_found")
        payment = self.db.query(Payment).filter(Payment.order_id == order.id).order_by(
            Payment.created_at.desc(), Payment.id.desc()).first()
        return self._ok(order_status=order.status, payment_status=order.payment_status,
                        payment=serialize_payment(payment) if payment else None)

    def verify_payment(self, req: PaymentVerifyRequest, ctx: RequestContext) -> Outcome:
        if not (req.razorpay_order_id and req.razorpay_payment_id and req.razorpay_signature and req.payment_id):
            return 400, {"error": "Missing required payment details"}

        # Checked before the key is claimed so forged callbacks cannot poison it
        if not verify_payment_signature(req.razorpay_order_id, req.razorpay_payment_id, req.razorpay_signature):
            security_events.log_security_event("warn", "payment", "payment_signature_invalid", ctx.ip_address,
                                               action_taken="rejected",
                                               payload={"payment_id": req.razorpay_payment_id})
            return 400, {"error": "Invalid payment signature"}

        key = f"payment_verify:{req.razorpay_payment_id}"
        claim = check_idempotency(self.db, key)
        if not claim.is_new:
            if claim.status == "pending":
                return 409, {"error": "Payment verification already in progress"}
            stored = claim.result or {}
            return stored.get("status_code", 200), stored.get("body", {})

        status_code, body = self._verify(req, ctx)
        save_idempotency_result(
            self.db, key, {"status_code": status_code, "body": body},
            status="success" if status_code < 400 else "error",
            error=None if status_code < 400 else body.get("error"),
            ttl_minutes=body.pop("_ttl", None) or (SUCCESS_TTL_MINUTES if status_code < 400 else ERROR_TTL_MINUTES),
        )
        return status_code, body

    def _verify(self, req: PaymentVerifyRequest, ctx: RequestContext) -> Outcome:
        payment = self.db.query(Payment).filter(Payment.id == req.payment_id).first()
        if payment is None:
            return 404, {"error": "Payment record not found"}
        if payment.status in ("captured", "authorized"):
            return 200, {"success": True, "message": "Payment already processed", "status": payment.status}

        order = payment.order
        try:
            details = get_gateway().fetch_payment(req.razorpay_payment_id)
        except GatewayError as e:
            self.logger.error("[PAYMENTS] could not fetch %s: %s", req.razorpay_payment_id, e)
            return 500, {"error": "Failed to verify payment with gateway"}

        card = details.get("card") or {}
        analysis = analyze_payment_risk(self.db, PaymentContext(
            payment_id=req.razorpay_payment_id,
            order_id=order.id,
            amount=details.get("amount", payment.amount),
            currency=details.get("currency", payment.currency),
            email=order.email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            billing_address=order.billing_address,
            shipping_address=order.shipping_address,
            payment_method=details.get("method"),
            card_last4=card.get("last4"),
            card_brand=card.get("network"),
        ))
        payment.fraud_risk_score = analysis.risk_score
        payment.fraud_risk_level = analysis.risk_level
        log_audit_action(self.db, "FRAUD_ANALYSIS", "payment", resource_id=payment.id,
                         resource_title=f"Payment {req.razorpay_payment_id}",
                         changes={"fraud_score": analysis.risk_score, "fraud_level": analysis.risk_level,
                                  "flags": analysis.flags, "recommendation": analysis.recommendations[:1],
                                  "order_id": order.id},
                         context=ctx, commit=False)

        if analysis.risk_level == "critical":
            payment.status = "failed"
            payment.failure_reason = "fraud_detected"
            payment.failed_at = utcnow()
            payment.gateway_payment_id = req.razorpay_payment_id
            self._commit()
            security_events.payment_fraud_blocked(req.razorpay_payment_id, ctx.ip_address,
                                                  analysis.risk_score, analysis.flags)
            self.logger.warning("[PAYMENTS] blocked %s for %s (score %s)", req.razorpay_payment_id,
                                mask_email(order.email), analysis.risk_score)
            return 403, {"error": "Payment blocked due to security concerns", "_ttl": FRAUD_TTL_MINUTES}
        if analysis.risk_score >= 60:
            security_events.payment_high_risk(req.razorpay_payment_id, ctx.ip_address,
                                              analysis.risk_score, analysis.flags)

        if details.get("order_id") != req.razorpay_order_id:
            self._commit()
            security_events.log_security_event("error", "payment", "payment_order_mismatch", ctx.ip_address,
                                               risk_score=80, action_taken="rejected",
                                               payload={"payment_id": req.razorpay_payment_id})
            return 400, {"error": "Payment order mismatch"}
        if details.get("amount") != payment.amount:
            self._commit()
            security_events.log_security_event("error", "payment", "payment_amount_mismatch", ctx.ip_address,
                                               risk_score=90, action_taken="rejected",
                                               payload={"payment_id": req.razorpay_payment_id,
                                                        "expected": payment.amount,
                                                        "received": details.get("amount")})
            return 400, {"error": "Payment amount mismatch"}

        gateway_status = details.get("status")
        payment_status, order_status, order_payment_status = STATUS_MAP.get(gateway_status, FAILED_STATUSES)
        now = utcnow()
        try:
            payment.status = payment_status
            payment.gateway_payment_id = req.razorpay_payment_id
            payment.gateway_response = details
            payment.payment_method = details.get("method") or payment.payment_method
            payment.card_last4 = card.get("last4")
            payment.card_brand = card.get("network")
            if payment_status == "captured":
                payment.captured_at = now
            elif payment_status == "authorized":
                payment.authorized_at = now
            else:
                payment.failed_at = now
                payment.failure_reason = details.get("error_description") or gateway_status

            set_order_status(self.db, order, order_status, notes=f"Payment {payment_status}")
            set_payment_status(self.db, order, order_payment_status)
            if payment_status in ("captured", "authorized"):
                reserve_order_inventory(self.db, order)

            log_audit_action(self.db, "PAYMENT_VERIFIED", "payment", resource_id=payment.id,
                             resource_title=f"Payment for {order.order_number}",
                             changes={"razorpay_payment_id": req.razorpay_payment_id, "status": payment_status,
                                      "amount": payment.amount, "risk_score": analysis.risk_score},
                             context=ctx, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.logger.exception("[PAYMENTS] failed to record verification for %s", req.razorpay_payment_id)
            return 500, {"error": "Failed to update payment"}

        self.logger.info("[PAYMENTS] %s %s for %s card=%s", req.razorpay_payment_id, payment_status,
                         order.order_number, mask_card(card.get("last4")))

        return 200, {
            "success": payment_status in ("captured", "authorized"),
            "status": payment_status,
            "order_id": order.id,
            "order_number": order.order_number,
            "risk_level": analysis.risk_level,
        }

    def get_payment(self, payment_id: int) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.id == payment_id).first()
