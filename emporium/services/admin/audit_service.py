"""Audit trail for admin and system actions.

Writing an audit entry must never break the operation being audited, so the
writers log and swallow storage errors and return None instead.
"""
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...data.models import AuditLog, AuditLogBulkItem
from ...schemas.io_models import Actor, RequestContext, SYSTEM_ACTOR
from ...utils.logger import get_logger
from ...utils.timeutils import utcnow

logger = get_logger()


class BulkOperationItem(BaseModel):
    resource_id: str
    resource_title: Optional[str] = None
    status: str = "success"  # success | error
    error_message: Optional[str] = None


class AuditLogFilters(BaseModel):
    user_id: Optional[str] = None
    action: Optional[str] = None
    resource_type: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 50


def _build_row(action: str, resource_type: str, actor: Optional[Actor], context: Optional[RequestContext],
               resource_id: Optional[Any], resource_title: Optional[str], changes: Optional[Dict[str, Any]],
               metadata: Optional[Dict[str, Any]], status: str, error_message: Optional[str],
               duration_ms: Optional[int]) -> AuditLog:
    actor = actor or SYSTEM_ACTOR
    context = context or RequestContext()
    return AuditLog(
        user_id=str(actor.id),
        user_email=actor.email,
        user_name=actor.name,
        user_role=actor.role,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        resource_title=resource_title,
        changes=changes,
        details=metadata,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        request_id=context.request_id,
        status=status,
        error_message=error_message,
        duration_ms=duration_ms,
        created_at=utcnow(),
    )


def log_audit_action(db: Session, action: str, resource_type: str, *, actor: Optional[Actor] = None,
                     context: Optional[RequestContext] = None, resource_id: Optional[Any] = None,
                     resource_title: Optional[str] = None, changes: Optional[Dict[str, Any]] = None,
                     metadata: Optional[Dict[str, Any]] = None, status: str = "success",
                     error_message: Optional[str] = None, duration_ms: Optional[int] = None,
                     commit: bool = True) -> Optional[AuditLog]:
    """
    Record one audited action.

    With ``commit=False`` the row joins the caller's unit of work and is
    persisted by the caller's commit.

    Returns:
        The AuditLog row, or None if it could not be written
    """
    row = _build_row(action, resource_type, actor, context, resource_id, resource_title,
                     changes, metadata, status, error_message, duration_ms)
    if not commit:
        db.add(row)
        return row
    try:
        db.add(row)
        db.commit()
        return row
    except Exception as e:
        db.rollback()
        logger.error("[AUDIT] failed to record %s on %s %s: %s", action, resource_type, resource_id, e)
        return None


def log_bulk_audit_action(db: Session, action: str, resource_type: str, items: List[BulkOperationItem], *,
                          actor: Optional[Actor] = None, context: Optional[RequestContext] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> Optional[AuditLog]:
    """Record a bulk operation with one child row per affected resource."""
    success_count = sum(1 for i in items if i.status == "success")
    error_count = len(items) - success_count
    if error_count == 0:
        status = "success"
    elif success_count > 0:
        status = "partial"
    else:
        status = "error"

    details = dict(metadata or {})
    details.update({"total_items": len(items), "success_count": success_count, "error_count": error_count})

    row = _build_row(action, resource_type, actor, context, None, f"Bulk operation on {len(items)} items",
                     None, details, status, None, None)
    row.bulk_items = [
        AuditLogBulkItem(resource_id=i.resource_id, resource_title=i.resource_title,
                         status=i.status, error_message=i.error_message)
        for i in items
    ]
    try:
        db.add(row)
        db.commit()
        return row
    except Exception as e:
        db.rollback()
        logger.error("[AUDIT] failed to record bulk %s on %s: %s", action, resource_type, e)
        return None


def serialize_audit_log(row: AuditLog, include_items: bool = False) -> Dict[str, Any]:
    data = {
        "id": row.id,
        "user_id": row.user_id,
        "user_email": row.user_email,
        "user_name": row.user_name,
        "user_role": row.user_role,
        "action": row.action,
        "resource_type": row.resource_type,
        "resource_id": row.resource_id,
        "resource_title": row.resource_title,
        "changes": row.changes,
        "metadata": row.details,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "status": row.status,
        "error_message": row.error_message,
        "duration_ms": row.duration_ms,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
    if include_items:
        data["bulk_items"] = [
            {"resource_id": i.resource_id, "resource_title": i.resource_title,
             "status": i.status, "error_message": i.error_message}
            for i in row.bulk_items
        ]
    return data


_SORTABLE = {
    "created_at": AuditLog.created_at,
    "action": AuditLog.action,
    "resource_type": AuditLog.resource_type,
    "user_email": AuditLog.user_email,
}


def get_audit_logs(db: Session, filters: AuditLogFilters) -> Dict[str, Any]:
    query = db.query(AuditLog)
    if filters.user_id:
        query = query.filter(AuditLog.user_id == filters.user_id)
    if filters.action:
        query = query.filter(AuditLog.action == filters.action)
    if filters.resource_type:
        query = query.filter(AuditLog.resource_type == filters.resource_type)
    if filters.status:
        query = query.filter(AuditLog.status == filters.status)
    if filters.date_from:
        query = query.filter(AuditLog.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(AuditLog.created_at <= filters.date_to)
    if filters.search:
        term = f"%{filters.search}%"
        query = query.filter(or_(
            AuditLog.resource_title.ilike(term),
            AuditLog.user_email.ilike(term),
            AuditLog.action.ilike(term),
        ))

    total = query.count()
    column = _SORTABLE.get(filters.sort_by, AuditLog.created_at)
    query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc(), AuditLog.id.desc())
    limit = max(1, min(filters.limit, 200))
    page = max(1, filters.page)
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "logs": [serialize_audit_log(r) for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def get_audit_log(db: Session, log_id: int) -> Optional[Dict[str, Any]]:
    row = db.query(AuditLog).filter(AuditLog.id == log_id).first()
    return serialize_audit_log(row, include_items=True) if row else None


def get_audit_stats(db: Session, days: int = 30) -> Dict[str, Any]:
    since = utcnow() - timedelta(days=days)
    rows = db.query(AuditLog.action, AuditLog.resource_type, AuditLog.user_email, AuditLog.status).filter(
        AuditLog.created_at >= since).all()
    return {
        "total": len(rows),
        "by_action": dict(Counter(r.action for r in rows)),
        "by_resource": dict(Counter(r.resource_type for r in rows)),
        "by_user": dict(Counter(r.user_email for r in rows).most_common(10)),
        "by_status": dict(Counter(r.status for r in rows)),
        "days": days,
    }
