"""Storefront accounts: sign-in, sign-up and the signed-in customer's profile."""
from typing import Any, Dict, Optional

from ..data.models import Customer, User
from ..schemas.io_models import ServiceResult
from ..schemas.order_models import RegisterRequest
from ..utils.security import hash_password, mask_email, verify_password
from ..utils.timeutils import utcnow
from .base_service import BaseService


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "status": user.status,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "customer_id": user.customer.id if user.customer else None,
    }


class AccountService(BaseService):
    name = "auth"

    def authenticate(self, email: str, password: str) -> ServiceResult:
        """Check credentials; the caller opens the session."""
        user = self.db.query(User).filter(User.email == email.lower()).first()
        if user is None or not verify_password(password, user.password_hash):
            return self._fail("Invalid email or password", code="unauthorized")
        if user.status != "active":
            return self._fail("This account has been suspended", code="forbidden")
        user.last_login_at = utcnow()
        self._commit()
        self.logger.info("[AUTH] %s signed in", mask_email(user.email))
        return self._ok("Signed in", user=user)

    def register(self, form: RegisterRequest) -> ServiceResult:
        email = form.email.lower()
        if self.db.query(User.id).filter(User.email == email).first():
            return self._fail("An account with this email already exists", code="conflict")

        user = User(email=email, name=" ".join(p for p in (form.first_name, form.last_name) if p),
                    password_hash=hash_password(form.password), role="customer", status="active")
        self.db.add(user)
        self.db.flush()

        # a guest checkout may already have created the customer row
        customer = self.db.query(Customer).filter(Customer.email == email).first()
        if customer is None:
            customer = Customer(email=email, tags=[])
            self.db.add(customer)
        customer.user_id = user.id
        customer.first_name = form.first_name
        customer.last_name = form.last_name
        customer.phone = form.phone or customer.phone
        customer.accepts_marketing = form.accepts_marketing
        self._commit()
        self.logger.info("[AUTH] registered %s", mask_email(email))
        return self._ok("Account created", user=user)

    def customer_for(self, user: Optional[User]) -> Optional[Customer]:
        if user is None:
            return None
        return self.db.query(Customer).filter(Customer.user_id == user.id).first()
