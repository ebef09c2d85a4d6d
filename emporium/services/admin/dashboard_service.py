"""Dashboard summary and system health for the admin home page."""
from datetime import datetime, time
from typing import Any, Dict

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from ...app.config import Config
from ...app.gateway import get_gateway
from ...app.redis_client import get_redis
from ...data.models import Customer, InventoryLevel, Order, Product, ProductVariant
from ...utils.logger import get_logger
from ...utils.timeutils import utcnow
from ..serializers import serialize_order

logger = get_logger()

PAID_STATUSES = ("paid", "partially_refunded")


def get_dashboard_summary(db: Session, recent: int = 5) -> Dict[str, Any]:
    start_of_day = datetime.combine(utcnow().date(), time.min)
    today = db.query(Order).filter(Order.created_at >= start_of_day)
    revenue_today = today.filter(Order.payment_status.in_(PAID_STATUSES)).with_entities(
        func.coalesce(func.sum(Order.total_price), 0)).scalar()
    low_stock = (
        db.query(func.count(ProductVariant.id))
        .join(InventoryLevel, InventoryLevel.variant_id == ProductVariant.id)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(Product.status == "active", Product.track_inventory.is_(True),
                InventoryLevel.available <= Config.LOW_STOCK_THRESHOLD)
        .scalar()
    )
    recent_orders = db.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(recent).all()
    return {
        "orders_today": today.count(),
        "revenue_today": int(revenue_today),
        "pending_orders": db.query(func.count(Order.id)).filter(Order.status == "pending").scalar(),
        "low_stock_variants": low_stock,
        "total_products": db.query(func.count(Product.id)).scalar(),
        "total_customers": db.query(func.count(Customer.id)).scalar(),
        "recent_orders": [serialize_order(o) for o in recent_orders],
    }


def get_system_health(db: Session) -> Dict[str, Any]:
    """Probe the database and Redis; report whether the gateway is configured."""
    checks: Dict[str, Any] = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        logger.error("[HEALTH] database check failed: %s", e)
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    client = get_redis()
    if client is None:
        checks["redis"] = {"status": "disabled" if not Config.USE_REDIS else "unavailable",
                           "fallback": "in-memory"}
    else:
        try:
            client.ping()
            checks["redis"] = {"status": "healthy"}
        except Exception as e:
            logger.warning("[HEALTH] redis ping failed: %s", e)
            checks["redis"] = {"status": "unhealthy", "fallback": "in-memory"}

    checks["payment_gateway"] = {
        "status": "configured" if get_gateway().is_configured else "not_configured",
        "webhook_secret": bool(Config.RAZORPAY_WEBHOOK_SECRET),
    }
    healthy = checks["database"]["status"] == "healthy"
    return {
        "status": "healthy" if healthy else "degraded",
        "environment": Config.APP_ENV,
        "checks": checks,
        "timestamp": utcnow().isoformat(),
    }
