"""
Razorpay webhook endpoint.

Guards run in a fixed order: IP allow-list, rate limit, duplicate
delivery, signature, payload shape. Only then is the event applied.
"""

import json
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...services import security_events
from ...services.idempotency import (
    check_idempotency, generate_webhook_idempotency_key, release_idempotency_key, save_idempotency_result,
)
from ...services.webhook_processor import process_razorpay_webhook
from ...utils.logger import get_logger
from ...utils.timeutils import utcnow
from ..gateway import validate_webhook_signature
from ..rate_limit import (
    check_rate_limit, check_webhook_ip_whitelist, get_client_identifier, get_client_ip,
    log_rate_limit_violation, rate_limit_headers, retry_after_seconds,
)

logger = get_logger()

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

ENDPOINT = "/api/webhooks/razorpay"
SUCCESS_TTL_MINUTES = 60
FAILURE_TTL_MINUTES = 5


def _dedup_key(body: bytes, delivery_id: str) -> str:
    """``webhook:{event}:{resource}`` from the payment (or order) entity id."""
    try:
        payload = json.loads(body)
    except ValueError:
        return f"webhook:{delivery_id}"
    if not isinstance(payload, dict):
        return f"webhook:{delivery_id}"
    resource_id = _entity_id(payload, "payment") or _entity_id(payload, "order")
    if not payload.get("event") or not resource_id:
        return f"webhook:{delivery_id}"
    return generate_webhook_idempotency_key(payload["event"], resource_id)


def _entity_id(payload: Dict[str, Any], kind: str) -> Optional[str]:
    section = payload.get("payload")
    if not isinstance(section, dict):
        return None
    entity = (section.get(kind) or {}).get("entity") or {}
    return entity.get("id") if isinstance(entity, dict) else None


@router.post("/razorpay")
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)):
    started = time.monotonic()
    delivery_id = uuid.uuid4().hex
    client_ip = get_client_ip(request)

    if not check_webhook_ip_whitelist(client_ip):
        logger.warning("[WEBHOOK] blocked delivery %s from non-whitelisted ip %s", delivery_id, client_ip)
        security_events.webhook_ip_blocked(client_ip)
        return JSONResponse(status_code=403, content={"error": "Forbidden - IP not whitelisted"})

    identifier = get_client_identifier(request)
    quota = check_rate_limit("webhook", identifier)
    if quota.blocked:
        log_rate_limit_violation(identifier, "webhook", ENDPOINT, request.headers.get("user-agent"))
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded", "delivery_id": delivery_id,
                     "retry_after": retry_after_seconds(quota)},
            headers=rate_limit_headers(quota),
        )

    body = await request.body()
    key = _dedup_key(body, delivery_id)
    claim = check_idempotency(db, key)
    if not claim.is_new:
        if claim.status == "pending":
            logger.info("[WEBHOOK] %s is still being processed", key)
            return JSONResponse(status_code=409, content={"error": "Webhook is already being processed",
                                                          "delivery_id": delivery_id})
        logger.info("[WEBHOOK] duplicate delivery %s for %s", delivery_id, key)
        return JSONResponse(status_code=200, content=claim.result or {})

    saved = False
    try:
        signature = request.headers.get("x-razorpay-signature")
        if not signature:
            logger.error("[WEBHOOK] missing signature header on %s", delivery_id)
            return JSONResponse(status_code=400, content={"error": "Missing signature header"})

        if not validate_webhook_signature(body, signature):
            security_events.webhook_signature_invalid(client_ip, ENDPOINT)
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})

        try:
            payload = json.loads(body)
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "Invalid JSON payload"})
        if not isinstance(payload, dict) or not payload.get("event") or not isinstance(payload.get("payload"), dict):
            return JSONResponse(status_code=400, content={"error": "Invalid payload structure"})

        logger.info("[WEBHOOK] received %s delivery=%s ip=%s remaining=%s",
                    payload["event"], delivery_id, client_ip, quota.remaining)
        try:
            result = process_razorpay_webhook(db, payload, delivery_id)
        except Exception as e:
            db.rollback()
            logger.exception("[WEBHOOK] unexpected error on delivery %s", delivery_id)
            return JSONResponse(status_code=500, content={
                "error": "Webhook processing failed", "details": str(e), "delivery_id": delivery_id,
                "processing_time": int((time.monotonic() - started) * 1000),
            })

        processing_time = int((time.monotonic() - started) * 1000)
        if result.success:
            response = {"success": True, "message": result.message, "processed": result.processed,
                        "delivery_id": delivery_id, "processing_time": processing_time}
        else:
            response = {"error": result.message, "details": result.error,
                        "delivery_id": delivery_id, "processing_time": processing_time}
        save_idempotency_result(db, key, response, status="success" if result.success else "error",
                                error=result.error,
                                ttl_minutes=SUCCESS_TTL_MINUTES if result.success else FAILURE_TTL_MINUTES)
        saved = True
        return JSONResponse(status_code=200 if result.success else 500, content=response)
    finally:
        # an unfinished claim must never outlive the request
        if not saved:
            db.rollback()
            release_idempotency_key(db, key)


@router.get("/razorpay")
def webhook_health():
    return {"status": "healthy", "service": "razorpay-webhook", "timestamp": utcnow().isoformat(),
            "version": "1.0.0"}


@router.api_route("/razorpay", methods=["PUT", "PATCH", "DELETE"])
def method_not_allowed():
    return JSONResponse(status_code=405, content={"error": "Method not allowed"})
