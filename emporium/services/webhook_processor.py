"""Razorpay webhook event handlers.

The HTTP route has already authenticated and de-duplicated the delivery by
the time it reaches ``WebhookProcessor.handle``; this module only applies the
state transitions for each event type and records the delivery.
"""
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..app.gateway import GatewayError, get_gateway
from ..data.models import Order, Payment, Refund, WebhookDelivery
from ..schemas.io_models import WebhookProcessingResult
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from ..utils.timeutils import utcnow
from .admin.audit_service import log_audit_action
from .inventory import commit_order_inventory, release_order_inventory
from .order_state import set_order_status, set_payment_status

logger = get_logger()


def _entity(payload: Dict[str, Any], kind: str) -> Optional[Dict[str, Any]]:
    return ((payload.get("payload") or {}).get(kind) or {}).get("entity")


def _result(success: bool, message: str, processed: bool = False, error: Optional[str] = None):
    return WebhookProcessingResult(success=success, message=message, processed=processed, error=error)


class WebhookProcessor:
    """Applies Razorpay webhook events to payments, orders and inventory."""

    def __init__(self, db: Session):
        self.db = db
        self.handlers: Dict[str, Callable[[Dict[str, Any]], WebhookProcessingResult]] = {
            "payment.captured": self.handle_payment_captured,
            "payment.authorized": self.handle_payment_authorized,
            "payment.failed": self.handle_payment_failed,
            "order.paid": self.handle_order_paid,
            "refund.processed": self.handle_refund_processed,
        }

    def handle(self, payload: Dict[str, Any], delivery_id: str) -> WebhookProcessingResult:
        started = time.monotonic()
        event = payload.get("event", "")
        logger.info("[WEBHOOK] processing %s delivery=%s", event, delivery_id)

        handler = self.handlers.get(event)
        if handler is None:
            result = _result(True, f"Unhandled event type: {event}")
        else:
            try:
                result = handler(payload)
            except Exception as e:
                self.db.rollback()
                logger.exception("[WEBHOOK] %s handler crashed", event)
                result = _result(False, f"Failed to process {event}", error=str(e))

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self._log_delivery(delivery_id, payload, result, elapsed_ms)
        logger.info("[WEBHOOK] %s delivery=%s success=%s processed=%s in %sms",
                    event, delivery_id, result.success, result.processed, elapsed_ms)
        return result

    def _find_payment(self, gateway_order_id: Optional[str]) -> Optional[Payment]:
        if not gateway_order_id:
            return None
        return self.db.query(Payment).filter(Payment.gateway_transaction_id == gateway_order_id).first()

    def handle_payment_captured(self, payload: Dict[str, Any]) -> WebhookProcessingResult:
        entity = _entity(payload, "payment")
        if not entity:
            return _result(False, "Payment entity not found in payload", error="Missing payment entity")

        try:
            details = get_gateway().fetch_payment(entity["id"])
        except GatewayError as e:
            return _result(False, "Failed to fetch payment details", error=str(e))

        payment = self._find_payment(entity.get("order_id"))
        if payment is None:
            return _result(False, f"Payment record not found for order: {entity.get('order_id')}",
                           error="Payment record not found")
        if payment.status == "captured":
            return _result(True, "Payment already captured")

        order = payment.order
        card = details.get("card") or {}
        try:
            payment.status = "captured"
            payment.gateway_payment_id = entity["id"]
            payment.gateway_response = details
            payment.payment_method = details.get("method") or payment.payment_method
            payment.card_last4 = card.get("last4")
            payment.card_brand = card.get("network")
            payment.captured_at = utcnow()

            set_order_status(self.db, order, "processing", notes="Payment captured via webhook")
            set_payment_status(self.db, order, "paid", notes=f"Razorpay payment {entity['id']}")
            commit_order_inventory(self.db, order)

            log_audit_action(self.db, "PAYMENT_CAPTURED", "payment", resource_id=payment.id,
                             resource_title=f"Payment for {order.order_number}",
                             changes={"payment_id": entity["id"], "order_id": order.id,
                                      "amount": details.get("amount"), "method": details.get("method")},
                             commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("[WEBHOOK] payment.captured failed for %s: %s", entity["id"], e)
            return _result(False, "Failed to process payment capture", error=str(e))

        return _result(True, "Payment captured successfully", processed=True)

    def handle_payment_authorized(self, payload: Dict[str, Any]) -> WebhookProcessingResult:
        entity = _entity(payload, "payment")
        if not entity:
            return _result(False, "Payment entity not found in payload", error="Missing payment entity")

        payment = self._find_payment(entity.get("order_id"))
        if payment is None:
            return _result(False, f"Payment record not found for order: {entity.get('order_id')}",
                           error="Payment record not found")
        if payment.status in ("authorized", "captured"):
            return _result(True, "Payment already processed")

        order = payment.order
        try:
            payment.status = "authorized"
            payment.gateway_payment_id = entity["id"]
            payment.gateway_response = entity
            payment.payment_method = entity.get("method") or payment.payment_method
            payment.authorized_at = utcnow()
            set_order_status(self.db, order, "pending", notes="Payment authorized")
            set_payment_status(self.db, order, "authorized")

            log_audit_action(self.db, "PAYMENT_AUTHORIZED", "payment", resource_id=payment.id,
                             resource_title=f"Payment for {order.order_number}",
                             changes={"payment_id": entity["id"], "order_id": order.id,
                                      "amount": entity.get("amount")},
                             commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("[WEBHOOK] payment.authorized failed for %s: %s", entity["id"], e)
            return _result(False, "Failed to process payment authorization", error=str(e))

        return _result(True, "Payment authorized successfully", processed=True)

    def handle_payment_failed(self, payload: Dict[str, Any]) -> WebhookProcessingResult:
        entity = _entity(payload, "payment")
        if not entity:
            return _result(False, "Payment entity not found in payload", error="Missing payment entity")

        payment = self._find_payment(entity.get("order_id"))
        if payment is None:
            return _result(False, f"Payment record not found for order: {entity.get('order_id')}",
                           error="Payment record not found")
        if payment.status == "failed":
            return _result(True, "Payment failure already recorded")

        order = payment.order
        try:
            payment.status = "failed"
            payment.gateway_payment_id = entity["id"]
            payment.gateway_response = entity
            payment.failure_reason = entity.get("error_description") or entity.get("error_code")
            payment.failed_at = utcnow()
            logger.info("[WEBHOOK] payment %s failed: %s", entity["id"], mask_pii(payment.failure_reason or ""))
            set_order_status(self.db, order, "payment_failed", notes=payment.failure_reason)
            set_payment_status(self.db, order, "failed")
            release_order_inventory(self.db, order)

            log_audit_action(self.db, "PAYMENT_FAILED", "payment", resource_id=payment.id,
                             resource_title=f"Payment for {order.order_number}",
                             changes={"payment_id": entity["id"], "order_id": order.id,
                                      "error_code": entity.get("error_code"),
                                      "error_description": entity.get("error_description")},
                             commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("[WEBHOOK] payment.failed failed for %s: %s", entity["id"], e)
            return _result(False, "Failed to process payment failure", error=str(e))

        return _result(True, "Payment failure processed successfully", processed=True)

    def handle_order_paid(self, payload: Dict[str, Any]) -> WebhookProcessingResult:
        entity = _entity(payload, "order")
        if not entity:
            return _result(False, "Order entity not found in payload", error="Missing order entity")

        order = self.db.query(Order).join(Payment, Payment.order_id == Order.id).filter(
            Payment.gateway_transaction_id == entity["id"]).first()
        if order is None:
            return _result(False, f"Order record not found for Razorpay order: {entity['id']}",
                           error="Order record not found")
        if order.payment_status == "paid":
            return _result(True, "Order already marked as paid")

        set_payment_status(self.db, order, "paid", notes="order.paid webhook")
        self.db.commit()
        return _result(True, "Order marked as paid successfully", processed=True)

    def handle_refund_processed(self, payload: Dict[str, Any]) -> WebhookProcessingResult:
        entity = _entity(payload, "refund")
        if not entity:
            return _result(False, "Refund entity not found in payload", error="Missing refund entity")

        refund = self.db.query(Refund).filter(Refund.gateway_refund_id == entity["id"]).first()
        if refund is None:
            return _result(False, f"Refund record not found: {entity['id']}", error="Refund record not found")
        if refund.status == "success":
            return _result(True, "Refund already processed")

        refund.status = "success"
        refund.processed_at = utcnow()
        refund.gateway_response = entity
        self.db.commit()
        return _result(True, "Refund marked as processed", processed=True)

    def _log_delivery(self, delivery_id: str, payload: Dict[str, Any], result: WebhookProcessingResult,
                      elapsed_ms: int) -> None:
        try:
            self.db.add(WebhookDelivery(
                id=delivery_id,
                event_type=payload.get("event"),
                payload=payload,
                status="success" if result.success else "failed",
                response=result.model_dump(),
                processing_time_ms=elapsed_ms,
                completed_at=utcnow(),
            ))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("[WEBHOOK] failed to log delivery %s: %s", delivery_id, e)


def process_razorpay_webhook(db: Session, payload: Dict[str, Any], delivery_id: str) -> WebhookProcessingResult:
    return WebhookProcessor(db).handle(payload, delivery_id)
