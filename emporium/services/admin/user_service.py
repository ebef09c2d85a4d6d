"""Back-office user accounts and role assignment."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import or_

from ...app.session import get_session_manager
from ...data.models import Customer, User
from ...schemas.admin_models import UserCreate, UserUpdate
from ...schemas.io_models import Actor, RequestContext, ServiceResult
from ...utils.security import hash_password
from ..account_service import serialize_user
from ..base_service import BaseService
from ..pagination import paginate
from .audit_service import BulkOperationItem, log_audit_action, log_bulk_audit_action


class UserFilters(BaseModel):
    search: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


_SORTABLE = {
    "created_at": User.created_at,
    "email": User.email,
    "name": User.name,
    "last_login_at": User.last_login_at,
}


class UserAdminService(BaseService):
    name = "admin_users"

    def __init__(self, db, actor: Actor, context: Optional[RequestContext] = None):
        super().__init__(db)
        self.actor = actor
        self.context = context

    def _audit(self, action: str, user: User, changes: Optional[Dict[str, Any]] = None) -> None:
        log_audit_action(self.db, action, "user", actor=self.actor, context=self.context,
                         resource_id=user.id, resource_title=user.email, changes=changes, commit=False)

    def _get(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def _is_self(self, user: User) -> bool:
        return str(user.id) == str(self.actor.id)

    def _other_active_admins(self, excluded: List[int]) -> int:
        return self.db.query(User).filter(User.role == "admin", User.status == "active",
                                          User.id.notin_(excluded)).count()

    def list_users(self, filters: UserFilters) -> Dict[str, Any]:
        query = self.db.query(User)
        if filters.role:
            query = query.filter(User.role == filters.role)
        if filters.status:
            query = query.filter(User.status == filters.status)
        if filters.search:
            term = f"%{filters.search.strip()}%"
            query = query.filter(or_(User.email.ilike(term), User.name.ilike(term)))
        column = _SORTABLE.get(filters.sort_by, User.created_at)
        query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc(), User.id.desc())
        return paginate(query, filters.page, filters.limit, serialize_user, key="users")

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        user = self._get(user_id)
        return serialize_user(user) if user else None

    def create_user(self, data: UserCreate) -> ServiceResult:
        email = data.email.lower()
        if self.db.query(User.id).filter(User.email == email).first():
            return self._fail("Email already exists", code="conflict")
        user = User(email=email, name=data.name, role=data.role, status="active",
                    password_hash=hash_password(data.password))
        self.db.add(user)
        self.db.flush()
        self._audit("CREATE", user, {"after": {"name": user.name, "role": user.role, "status": user.status}})
        self._commit()
        self.logger.info("[ADMIN] user %s created with role %s", user.id, user.role)
        return self._ok("User created", user=serialize_user(user))

    def update_user(self, user_id: int, data: UserUpdate) -> ServiceResult:
        user = self._get(user_id)
        if user is None:
            return self._fail("User not found", code="not_found")
        fields = data.model_dump(exclude_unset=True, exclude={"password"})
        if self._is_self(user) and (fields.get("role") not in (None, user.role) or fields.get("status") == "suspended"):
            return self._fail("You cannot change your own role or suspend yourself", code="forbidden")

        before = {k: getattr(user, k) for k in fields}
        for key, value in fields.items():
            if value is not None:
                setattr(user, key, value)
        if data.password:
            user.password_hash = hash_password(data.password)
        if user.status == "suspended" or data.password:
            get_session_manager().delete_user_sessions(user.id)

        changes = {"before": before, "after": {k: getattr(user, k) for k in fields}}
        if data.password:
            changes["password_changed"] = True
        self._audit("UPDATE", user, changes)
        self._commit()
        return self._ok("User updated", user=serialize_user(user))

    def delete_user(self, user_id: int) -> ServiceResult:
        user = self._get(user_id)
        if user is None:
            return self._fail("User not found", code="not_found")
        if self._is_self(user):
            return self._fail("You cannot delete your own account", code="forbidden")
        if user.role == "admin" and self._other_active_admins([user.id]) == 0:
            return self._fail("Cannot delete the last active admin", code="conflict")

        self.db.query(Customer).filter(Customer.user_id == user.id).update({"user_id": None})
        get_session_manager().delete_user_sessions(user.id)
        self._audit("DELETE", user, {"before": {"email": user.email, "role": user.role}})
        self.db.delete(user)
        self._commit()
        return self._ok("User deleted")

    def suspend_user(self, user_id: int, reason: Optional[str] = None) -> ServiceResult:
        user = self._get(user_id)
        if user is None:
            return self._fail("User not found", code="not_found")
        if self._is_self(user):
            return self._fail("You cannot suspend yourself", code="forbidden")
        previous = user.status
        user.status = "suspended"
        removed = get_session_manager().delete_user_sessions(user.id)
        self._audit("SUSPEND", user, {"reason": reason, "previous_status": previous, "sessions_revoked": removed})
        self._commit()
        return self._ok("User suspended", user=serialize_user(user))

    def reactivate_user(self, user_id: int) -> ServiceResult:
        user = self._get(user_id)
        if user is None:
            return self._fail("User not found", code="not_found")
        previous = user.status
        user.status = "active"
        self._audit("REACTIVATE", user, {"previous_status": previous})
        self._commit()
        return self._ok("User reactivated", user=serialize_user(user))

    def bulk_update_roles(self, ids: List[int], role: str) -> ServiceResult:
        if not ids:
            return self._fail("No users selected")
        if role != "admin" and self._other_active_admins(ids) == 0:
            return self._fail("Cannot remove admin role from all admin users", code="conflict")

        users = {u.id: u for u in self.db.query(User).filter(User.id.in_(ids)).all()}
        items: List[BulkOperationItem] = []
        for uid in ids:
            user = users.get(uid)
            if user is None:
                items.append(BulkOperationItem(resource_id=str(uid), status="error", error_message="User not found"))
            elif self._is_self(user) and role != user.role:
                items.append(BulkOperationItem(resource_id=str(uid), resource_title=user.email, status="error",
                                               error_message="You cannot change your own role"))
            else:
                user.role = role
                items.append(BulkOperationItem(resource_id=str(uid), resource_title=user.email))
        self._commit()
        log_bulk_audit_action(self.db, "BULK_UPDATE", "user", items, actor=self.actor, context=self.context,
                              metadata={"operation": "role_update", "new_role": role})
        updated = sum(1 for i in items if i.status == "success")
        return self._ok(f"{updated} users updated", updated_count=updated, items=[i.model_dump() for i in items])
