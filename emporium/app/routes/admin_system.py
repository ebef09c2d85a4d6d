"""Back-office payments, security, settings, audit log, users and dashboard."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...data.models import User
from ...schemas.admin_models import BulkRoleRequest, UserCreate, UserUpdate
from ...services import security_events
from ...services.admin import settings_service
from ...services.admin.audit_service import AuditLogFilters, get_audit_log, get_audit_logs, get_audit_stats
from ...services.admin.dashboard_service import get_dashboard_summary, get_system_health
from ...services.admin.payment_admin_service import PaymentAdminService, PaymentFilters
from ...services.admin.user_service import UserAdminService, UserFilters
from ..auth import actor_for, get_all_permissions, get_all_roles, get_request_context, require_permission
from .common import rate_limit, unwrap

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(rate_limit("admin"))])


# ---------------------------------------------------------------- payments

@router.get("/payments")
def list_payments(filters: PaymentFilters = Depends(), db: Session = Depends(get_db),
                  user: User = Depends(require_permission("view_orders"))):
    return PaymentAdminService(db).list_payments(filters)


@router.get("/payments/stats")
def payment_stats(db: Session = Depends(get_db), user: User = Depends(require_permission("view_analytics"))):
    return PaymentAdminService(db).get_payment_stats()


@router.get("/payments/fraud")
def fraud_analytics(days: int = Query(30, ge=1), db: Session = Depends(get_db),
                    user: User = Depends(require_permission("view_analytics"))):
    return PaymentAdminService(db).get_fraud_analytics(days)


@router.get("/payments/{payment_id}")
def get_payment(payment_id: int, db: Session = Depends(get_db),
                user: User = Depends(require_permission("view_orders"))):
    payment = PaymentAdminService(db).get_payment_detail(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return {"payment": payment}


@router.get("/webhooks/stats")
def webhook_stats(days: int = Query(7, ge=1), db: Session = Depends(get_db),
                  user: User = Depends(require_permission("view_analytics"))):
    service = PaymentAdminService(db)
    stats = service.get_webhook_stats(days)
    stats["recent_deliveries"] = service.get_recent_webhook_deliveries(limit=20)
    return stats


@router.get("/webhooks/deliveries")
def webhook_deliveries(limit: int = Query(50, ge=1, le=200), status: Optional[str] = None,
                       db: Session = Depends(get_db), user: User = Depends(require_permission("view_analytics"))):
    return {"deliveries": PaymentAdminService(db).get_recent_webhook_deliveries(limit, status)}


@router.get("/webhooks/deliveries/{delivery_id}")
def webhook_delivery(delivery_id: str, db: Session = Depends(get_db),
                     user: User = Depends(require_permission("view_analytics"))):
    delivery = PaymentAdminService(db).get_webhook_delivery(delivery_id)
    if delivery is None:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return {"delivery": delivery}


# ---------------------------------------------------------------- security

@router.get("/security/rate-limits")
def rate_limit_analytics(hours: int = Query(24, ge=1), db: Session = Depends(get_db),
                         user: User = Depends(require_permission("view_analytics"))):
    return PaymentAdminService(db).get_rate_limit_analytics(hours)


@router.get("/security/logs")
def security_logs(limit: int = Query(100, ge=1, le=1000), level: Optional[str] = None,
                  category: Optional[str] = None, hours: int = Query(24, ge=1),
                  user: User = Depends(require_permission("view_analytics"))):
    return {"logs": security_events.get_security_logs(limit, level, category, hours)}


@router.get("/security/overview")
def security_overview(days: int = Query(1, ge=1), db: Session = Depends(get_db),
                      user: User = Depends(require_permission("view_analytics"))):
    return PaymentAdminService(db).get_security_overview(days)


@router.post("/security/alerts/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: str, user: User = Depends(require_permission("view_analytics"))):
    if not security_events.acknowledge_security_alert(alert_id, str(user.id)):
        raise HTTPException(status_code=404, detail="Alert not found")
    return {"success": True}


# ---------------------------------------------------------------- settings

@router.get("/settings/{prefix}")
def get_settings(prefix: str, db: Session = Depends(get_db),
                 user: User = Depends(require_permission("manage_settings"))):
    if prefix not in settings_service.PREFIXES:
        raise HTTPException(status_code=404, detail=f"Unknown settings group: {prefix}")
    return {"settings": settings_service.get_settings(db, prefix)}


@router.put("/settings/{prefix}")
def update_settings(prefix: str, request: Request, data: Dict[str, Any] = Body(...), db: Session = Depends(get_db),
                    user: User = Depends(require_permission("manage_settings"))):
    try:
        settings = settings_service.update_settings(db, prefix, data, actor_for(user), get_request_context(request))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "settings": settings}


# ---------------------------------------------------------------- audit log

@router.get("/audit-logs")
def audit_logs(filters: AuditLogFilters = Depends(), db: Session = Depends(get_db),
               user: User = Depends(require_permission("view_analytics"))):
    return get_audit_logs(db, filters)


@router.get("/audit-logs/stats")
def audit_stats(days: int = Query(30, ge=1), db: Session = Depends(get_db),
                user: User = Depends(require_permission("view_analytics"))):
    return get_audit_stats(db, days)


@router.get("/audit-logs/{log_id}")
def audit_log(log_id: int, db: Session = Depends(get_db), user: User = Depends(require_permission("view_analytics"))):
    entry = get_audit_log(db, log_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Audit log not found")
    return {"log": entry}


# ---------------------------------------------------------------- users & roles

def _users(request: Request, db: Session, user: User) -> UserAdminService:
    return UserAdminService(db, actor_for(user), get_request_context(request))


@router.get("/roles")
def roles(user: User = Depends(require_permission("manage_users"))):
    return {"roles": get_all_roles(), "permissions": get_all_permissions()}


@router.get("/users")
def list_users(request: Request, filters: UserFilters = Depends(), db: Session = Depends(get_db),
               user: User = Depends(require_permission("manage_users"))):
    return _users(request, db, user).list_users(filters)


@router.post("/users", status_code=201)
def create_user(body: UserCreate, request: Request, db: Session = Depends(get_db),
                user: User = Depends(require_permission("manage_users"))):
    return unwrap(_users(request, db, user).create_user(body))


@router.post("/users/bulk/role")
def bulk_role(body: BulkRoleRequest, request: Request, db: Session = Depends(get_db),
              user: User = Depends(require_permission("manage_users"))):
    return unwrap(_users(request, db, user).bulk_update_roles(body.ids, body.role))


@router.get("/users/{user_id}")
def get_user(user_id: int, request: Request, db: Session = Depends(get_db),
             user: User = Depends(require_permission("manage_users"))):
    found = _users(request, db, user).get_user(user_id)
    if found is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": found}


@router.put("/users/{user_id}")
def update_user(user_id: int, body: UserUpdate, request: Request, db: Session = Depends(get_db),
                user: User = Depends(require_permission("manage_users"))):
    return unwrap(_users(request, db, user).update_user(user_id, body))


@router.delete("/users/{user_id}")
def delete_user(user_id: int, request: Request, db: Session = Depends(get_db),
                user: User = Depends(require_permission("manage_users"))):
    return unwrap(_users(request, db, user).delete_user(user_id))


@router.post("/users/{user_id}/suspend")
def suspend_user(user_id: int, request: Request, reason: Optional[str] = Body(None, embed=True),
                 db: Session = Depends(get_db), user: User = Depends(require_permission("manage_users"))):
    return unwrap(_users(request, db, user).suspend_user(user_id, reason))


@router.post("/users/{user_id}/reactivate")
def reactivate_user(user_id: int, request: Request, db: Session = Depends(get_db),
                    user: User = Depends(require_permission("manage_users"))):
    return unwrap(_users(request, db, user).reactivate_user(user_id))


# ---------------------------------------------------------------- dashboard

@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), user: User = Depends(require_permission("view_orders"))):
    return get_dashboard_summary(db)


@router.get("/system-health")
def system_health(db: Session = Depends(get_db), user: User = Depends(require_permission("view_analytics"))):
    return get_system_health(db)
