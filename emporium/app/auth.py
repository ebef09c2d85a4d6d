"""
Role based access control and the request-level auth dependencies.
"""

from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..data.database import get_db
from ..data.models import User
from ..schemas.io_models import Actor, RequestContext
from ..services import security_events
from .config import Config
from .rate_limit import get_client_ip
from .session import get_session_manager

PERMISSIONS = [
    "manage_products",
    "view_products",
    "manage_orders",
    "view_orders",
    "manage_customers",
    "view_customers",
    "manage_discounts",
    "view_discounts",
    "manage_settings",
    "view_analytics",
    "manage_users",
]

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "admin": list(PERMISSIONS),
    "manager": [p for p in PERMISSIONS if p not in ("manage_users", "manage_settings")],
    "staff": ["view_products", "view_orders", "manage_orders", "view_customers", "view_discounts"],
    "customer": [],
}

ROLE_DESCRIPTIONS = {
    "admin": "Full access to every back-office feature",
    "manager": "Runs the store day to day; cannot manage users or settings",
    "staff": "Processes orders and looks up products and customers",
    "customer": "Storefront account with no back-office access",
}


def has_permission(role: Optional[str], permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role or "", [])


def get_role_permissions(role: str) -> List[str]:
    return list(ROLE_PERMISSIONS.get(role, []))


def get_all_roles() -> List[Dict[str, Any]]:
    return [
        {"role": role, "description": ROLE_DESCRIPTIONS.get(role, ""), "permissions": perms}
        for role, perms in ROLE_PERMISSIONS.items()
    ]


def get_all_permissions() -> List[str]:
    return list(PERMISSIONS)


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=request.headers.get("x-request-id"),
    )


def _session_user(request: Request, db: Session) -> Optional[User]:
    session_id = request.cookies.get(Config.SESSION_COOKIE)
    if not session_id:
        return None
    session = get_session_manager().get_session(session_id)
    if session is None:
        return None
    user = db.query(User).filter(User.id == session["user_id"]).first()
    if user is None or user.status != "active":
        return None
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    return _session_user(request, db)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    user = _session_user(request, db)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_permission(permission: str) -> Callable[..., User]:
    """Dependency factory: the signed-in user must hold ``permission``."""

    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if not has_permission(user.role, permission):
            security_events.unauthorized_access(request.url.path, get_client_ip(request), str(user.id))
            raise HTTPException(status_code=403, detail=f"Missing permission: {permission}")
        return user

    return dependency


def actor_for(user: Optional[User]) -> Actor:
    if user is None:
        return Actor()
    return Actor(id=str(user.id), email=user.email, name=user.name, role=user.role)
