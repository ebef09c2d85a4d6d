"""Back-office customer directory."""
from datetime import timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy import func, or_

from ...data.models import Customer, Order
from ...schemas.admin_models import CustomerUpdate
from ...schemas.io_models import Actor, RequestContext, ServiceResult
from ...utils.timeutils import utcnow
from ..base_service import BaseService
from ..pagination import paginate
from ..serializers import serialize_order
from .audit_service import log_audit_action


class CustomerFilters(BaseModel):
    search: Optional[str] = None
    status: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


_SORTABLE = {
    "created_at": Customer.created_at,
    "name": Customer.first_name,
    "email": Customer.email,
    "total_spent": Customer.total_spent,
    "order_count": Customer.total_orders,
}


def serialize_customer(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "email": customer.email,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "name": customer.full_name,
        "phone": customer.phone,
        "status": customer.status,
        "accepts_marketing": customer.accepts_marketing,
        "tags": customer.tags or [],
        "total_spent": customer.total_spent or 0,
        "total_orders": customer.total_orders or 0,
        "last_order_date": customer.last_order_date.isoformat() if customer.last_order_date else None,
        "has_account": customer.user_id is not None,
        "created_at": customer.created_at.isoformat() if customer.created_at else None,
    }


class CustomerAdminService(BaseService):
    name = "admin_customers"

    def __init__(self, db, actor: Optional[Actor] = None, context: Optional[RequestContext] = None):
        super().__init__(db)
        self.actor = actor
        self.context = context

    def list_customers(self, filters: CustomerFilters) -> Dict[str, Any]:
        query = self.db.query(Customer)
        if filters.status:
            query = query.filter(Customer.status == filters.status)
        if filters.search:
            term = f"%{filters.search.strip()}%"
            query = query.filter(or_(Customer.email.ilike(term), Customer.first_name.ilike(term),
                                     Customer.last_name.ilike(term), Customer.phone.ilike(term)))
        column = _SORTABLE.get(filters.sort_by, Customer.created_at)
        query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc(), Customer.id.desc())
        return paginate(query, filters.page, filters.limit, serialize_customer, key="customers")

    def get_customer(self, customer_id: int) -> Optional[Dict[str, Any]]:
        customer = self.db.query(Customer).filter(Customer.id == customer_id).first()
        if customer is None:
            return None
        data = serialize_customer(customer)
        data["notes"] = customer.notes
        data["addresses"] = [
            {"id": a.id, "first_name": a.first_name, "last_name": a.last_name, "address1": a.address1,
             "address2": a.address2, "city": a.city, "province": a.province, "country": a.country,
             "zip": a.zip, "phone": a.phone, "is_default": a.is_default}
            for a in customer.addresses
        ]
        orders = self.db.query(Order).filter(Order.customer_id == customer.id).order_by(Order.created_at.desc()).all()
        data["orders"] = [serialize_order(o) for o in orders]
        return data

    def update_customer(self, customer_id: int, update: CustomerUpdate) -> ServiceResult:
        customer = self.db.query(Customer).filter(Customer.id == customer_id).first()
        if customer is None:
            return self._fail("Customer not found", code="not_found")
        fields = update.model_dump(exclude_unset=True)
        before = {k: getattr(customer, k) for k in fields}
        for key, value in fields.items():
            setattr(customer, key, value)
        log_audit_action(self.db, "UPDATE", "customer", actor=self.actor, context=self.context,
                         resource_id=customer.id, resource_title=customer.email,
                         changes={"before": before, "after": fields}, commit=False)
        self._commit()
        return self._ok("Customer updated", customer=serialize_customer(customer))

    def get_customer_stats(self) -> Dict[str, Any]:
        total = self.db.query(func.count(Customer.id)).scalar() or 0
        active = self.db.query(func.count(Customer.id)).filter(Customer.status == "active").scalar() or 0
        new = self.db.query(func.count(Customer.id)).filter(
            Customer.created_at >= utcnow() - timedelta(days=30)).scalar() or 0
        with_orders = self.db.query(func.count(Customer.id)).filter(Customer.total_orders > 0).scalar() or 0
        spent = self.db.query(func.coalesce(func.sum(Customer.total_spent), 0)).scalar() or 0
        return {
            "total_customers": total,
            "active_customers": active,
            "new_customers_30d": new,
            "customers_with_orders": with_orders,
            "average_lifetime_value": int(spent / with_orders) if with_orders else 0,
        }
