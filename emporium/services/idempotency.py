"""Database-backed idempotency keys.

A key is claimed with a ``pending`` row; the caller then stores the final
outcome with ``save_idempotency_result``. Rows carry an expiry, after which
the key can be claimed again.
"""
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..data.models import IdempotencyKey
from ..schemas.io_models import IdempotencyResult
from ..utils.logger import get_logger
from ..utils.timeutils import utcnow

logger = get_logger()


def check_idempotency(db: Session, key: str, ttl_minutes: int = 60) -> IdempotencyResult:
    """Claim ``key`` or report the state of an earlier claim.

    Args:
        db: Database session
        key: Idempotency key
        ttl_minutes: Lifetime of a fresh claim

    Returns:
        IdempotencyResult with ``is_new=True`` when this caller owns the key
    """
    now = utcnow()
    existing = db.query(IdempotencyKey).filter(IdempotencyKey.key == key).first()

    if existing is not None:
        if existing.expires_at > now:
            return IdempotencyResult(is_new=False, status=existing.status,
                                     result=existing.result, error=existing.error)
        # Expired: reuse the row for the new claim
        existing.status = "pending"
        existing.result = None
        existing.error = None
        existing.created_at = now
        existing.expires_at = now + timedelta(minutes=ttl_minutes)
        db.commit()
        return IdempotencyResult(is_new=True, status="pending")

    try:
        db.add(IdempotencyKey(key=key, status="pending", created_at=now,
                              expires_at=now + timedelta(minutes=ttl_minutes)))
        db.commit()
        return IdempotencyResult(is_new=True, status="pending")
    except IntegrityError:
        # Another request claimed the key between our read and insert
        db.rollback()
        row = db.query(IdempotencyKey).filter(IdempotencyKey.key == key).first()
        if row is None:
            logger.error("[IDEMPOTENCY] key %s vanished after conflict", key)
            raise
        return IdempotencyResult(is_new=False, status=row.status, result=row.result, error=row.error)


def save_idempotency_result(db: Session, key: str, result: Any, status: str = "success",
                            error: Optional[str] = None, ttl_minutes: Optional[int] = None) -> None:
    """Store the outcome for ``key``, optionally moving its expiry."""
    row = db.query(IdempotencyKey).filter(IdempotencyKey.key == key).first()
    now = utcnow()
    if row is None:
        row = IdempotencyKey(key=key, created_at=now, expires_at=now + timedelta(minutes=ttl_minutes or 60))
        db.add(row)
    row.status = status
    row.result = result
    row.error = error
    if ttl_minutes is not None:
        row.expires_at = now + timedelta(minutes=ttl_minutes)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("[IDEMPOTENCY] failed to save result for %s", key)
        raise


def cleanup_expired_keys(db: Session) -> int:
    deleted = db.query(IdempotencyKey).filter(IdempotencyKey.expires_at <= utcnow()).delete(
        synchronize_session=False)
    db.commit()
    if deleted:
        logger.info("[IDEMPOTENCY] removed %d expired keys", deleted)
    return deleted


def generate_webhook_idempotency_key(event: str, resource_id: str) -> str:
    return f"webhook:{event}:{resource_id}"


def generate_payment_idempotency_key(operation: str, payment_id: str, order_id: Optional[str] = None) -> str:
    if order_id:
        return f"payment:{operation}:{order_id}:{payment_id}"
    return f"payment:{operation}:{payment_id}"


def release_idempotency_key(db: Session, key: str) -> None:
    """Drop an unfinished claim so the request can be retried."""
    db.query(IdempotencyKey).filter(IdempotencyKey.key == key, IdempotencyKey.status == "pending").delete(
        synchronize_session=False)
    db.commit()
