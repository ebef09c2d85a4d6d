"""Rule-based payment fraud scoring.

Each check contributes points and flags; the summed score (capped at 100)
maps onto a risk level that the payment flow acts on.
"""
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..data.models import Order, Payment
from ..schemas.io_models import FraudAnalysis, FraudCheck
from ..utils.logger import get_logger
from ..utils.security import mask_email
from ..utils.timeutils import utcnow

logger = get_logger()

DISPOSABLE_EMAIL_DOMAINS = {
    "tempmail.org",
    "10minutemail.com",
    "guerrillamail.com",
    "mailinator.com",
    "throwaway.email",
}
DISTANT_STATES = {"Kashmir", "Kerala", "Tamil Nadu", "West Bengal"}


class PaymentContext(BaseModel):
    payment_id: str
    order_id: int
    amount: int
    currency: str = "INR"
    email: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    billing_address: Optional[Dict[str, Any]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None


def get_risk_level(score: int) -> str:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 30:
        return "medium"
    return "low"


def _orders_for(db: Session, email: str, days: float, exclude_order_id: Optional[int] = None):
    query = db.query(Order).filter(Order.email == email, Order.created_at >= utcnow() - timedelta(days=days))
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return query


def _payments_for(db: Session, email: str, days: float):
    return db.query(Payment).join(Order, Payment.order_id == Order.id).filter(
        Order.email == email, Payment.created_at >= utcnow() - timedelta(days=days))


def check_amount_anomalies(db: Session, ctx: PaymentContext) -> FraudCheck:
    check = FraudCheck()
    history = _orders_for(db, ctx.email, 30, ctx.order_id).order_by(Order.created_at.desc()).limit(50).all()
    if history:
        average = sum(o.total_price for o in history) / len(history)
        if average > 0 and ctx.amount > average * 10:
            check.score += 25
            check.flags.append("HIGH_AMOUNT_DEVIATION")
        elif average > 0 and ctx.amount > average * 5:
            check.score += 15
            check.flags.append("MEDIUM_AMOUNT_DEVIATION")
        check.details["average_amount"] = int(average)

    if ctx.amount % 100000 == 0 and ctx.amount > 500000:
        check.score += 10
        check.flags.append("ROUND_AMOUNT")

    if ctx.amount > 10000000:
        check.score += 20
        check.flags.append("VERY_HIGH_AMOUNT")
    elif ctx.amount > 5000000:
        check.score += 10
        check.flags.append("HIGH_AMOUNT")

    if ctx.amount < 100:
        check.score += 15
        check.flags.append("CARD_TESTING")
    return check


def check_velocity(db: Session, ctx: PaymentContext) -> FraudCheck:
    check = FraudCheck()
    day_orders = _orders_for(db, ctx.email, 1).order_by(Order.created_at.desc()).all()
    hour_cutoff = utcnow() - timedelta(hours=1)
    hour_count = sum(1 for o in day_orders if o.created_at >= hour_cutoff)

    if hour_count > 5:
        check.score += 30
        check.flags.append("HIGH_VELOCITY_HOUR")
    elif hour_count > 2:
        check.score += 15
        check.flags.append("MEDIUM_VELOCITY_HOUR")

    if len(day_orders) > 20:
        check.score += 25
        check.flags.append("HIGH_VELOCITY_DAY")
    elif len(day_orders) > 10:
        check.score += 15
        check.flags.append("MEDIUM_VELOCITY_DAY")

    for newer, older in zip(day_orders, day_orders[1:]):
        if (newer.created_at - older.created_at).total_seconds() < 60:
            check.score += 20
            check.flags.append("RAPID_SUCCESSION")
            break

    check.details.update({"orders_last_hour": hour_count, "orders_last_day": len(day_orders)})
    return check


def check_geography(db: Session, ctx: PaymentContext) -> FraudCheck:
    check = FraudCheck()
    billing, shipping = ctx.billing_address or {}, ctx.shipping_address or {}

    if billing and shipping:
        if billing.get("country") != shipping.get("country"):
            check.score += 15
            check.flags.append("COUNTRY_MISMATCH")
        elif (billing.get("country") == "India"
              and billing.get("state") != shipping.get("state")
              and billing.get("state") in DISTANT_STATES
              and shipping.get("state") in DISTANT_STATES):
            check.score += 10
            check.flags.append("DISTANT_ADDRESSES")

    country = shipping.get("country")
    if country:
        history = _orders_for(db, ctx.email, 90, ctx.order_id).limit(20).all()
        seen = {(o.shipping_address or {}).get("country") for o in history} - {None}
        if history and country not in seen:
            check.score += 10
            check.flags.append("NEW_SHIPPING_COUNTRY")
    return check


def check_identity(db: Session, ctx: PaymentContext) -> FraudCheck:
    check = FraudCheck()
    email = ctx.email.lower()
    local, _, domain = email.partition("@")

    if domain in DISPOSABLE_EMAIL_DOMAINS:
        check.score += 20
        check.flags.append("DISPOSABLE_EMAIL")
    if "+" in local:
        check.score += 5
        check.flags.append("EMAIL_ALIAS")
    if len(re.sub(r"[0-9._-]", "", local)) < 5:
        check.score += 10
        check.flags.append("SHORT_EMAIL_PREFIX")

    recent = _payments_for(db, ctx.email, 30).order_by(Payment.created_at.desc()).limit(10).all()
    methods = {p.payment_method for p in recent}
    brands = {p.card_brand for p in recent if p.card_brand}
    if len(methods) > 3:
        check.score += 15
        check.flags.append("MULTIPLE_PAYMENT_METHODS")
    if len(brands) > 2:
        check.score += 10
        check.flags.append("MULTIPLE_CARD_BRANDS")
    return check


def check_device(db: Session, ctx: PaymentContext) -> FraudCheck:
    check = FraudCheck()
    agent = (ctx.user_agent or "").lower()
    if not agent:
        check.score += 10
        check.flags.append("NO_USER_AGENT")
    if any(marker in agent for marker in ("headless", "phantom", "selenium")):
        check.score += 25
        check.flags.append("HEADLESS_BROWSER")
    if any(marker in agent for marker in ("bot", "crawler", "spider")):
        check.score += 20
        check.flags.append("BOT_USER_AGENT")
    if "msie" in agent and "6.0" in agent:
        check.score += 15
        check.flags.append("OLD_BROWSER")

    ip = ctx.ip_address
    if ip:
        if ip.startswith(("10.", "192.168.", "172.")):
            check.score += 5
            check.flags.append("PRIVATE_IP")
        history = _orders_for(db, ctx.email, 7, ctx.order_id).limit(10).all()
        seen_ips = {o.ip_address for o in history if o.ip_address}
        if seen_ips and ip not in seen_ips:
            check.score += 5
            check.flags.append("IP_CHANGE")
        if len(seen_ips) > 5:
            check.score += 15
            check.flags.append("MULTIPLE_IPS")
    return check


def check_patterns(db: Session, ctx: PaymentContext) -> FraudCheck:
    check = FraudCheck()
    failures = _payments_for(db, ctx.email, 1).filter(Payment.status == "failed").count()
    if failures > 5:
        check.score += 30
        check.flags.append("MULTIPLE_FAILURES")
    elif failures > 2:
        check.score += 15
        check.flags.append("SOME_FAILURES")

    refunds = _payments_for(db, ctx.email, 30).filter(Payment.status == "refunded").count()
    if refunds > 2:
        check.score += 20
        check.flags.append("MULTIPLE_REFUNDS")
    return check


def generate_recommendations(level: str, flags: List[str]) -> List[str]:
    by_level = {
        "critical": ["BLOCK PAYMENT - Manual review required", "Contact customer for verification",
                     "Verify identity documents"],
        "high": ["Hold payment for manual review", "Require additional verification", "Contact customer"],
        "medium": ["Monitor payment closely", "Consider additional verification"],
        "low": ["Process normally with standard monitoring"],
    }
    by_flag = {
        "HIGH_VELOCITY_HOUR": "Implement velocity limits",
        "DISPOSABLE_EMAIL": "Require phone verification",
        "CARD_TESTING": "Implement CAPTCHA",
        "HEADLESS_BROWSER": "Implement bot detection",
    }
    recommendations = list(by_level.get(level, []))
    for flag, advice in by_flag.items():
        if flag in flags and advice not in recommendations:
            recommendations.append(advice)
    return recommendations


CHECKS = (check_amount_anomalies, check_velocity, check_geography, check_identity, check_device, check_patterns)


def analyze_payment_risk(db: Session, ctx: PaymentContext) -> FraudAnalysis:
    """Score a payment; analysis failures degrade to a medium-risk verdict."""
    try:
        score = 0
        flags: List[str] = []
        details: Dict[str, Any] = {}
        for run in CHECKS:
            result = run(db, ctx)
            score += result.score
            flags.extend(result.flags)
            details.update(result.details)
        score = min(score, 100)
        level = get_risk_level(score)
        logger.info("[FRAUD] payment=%s email=%s score=%s level=%s flags=%s",
                    ctx.payment_id, mask_email(ctx.email), score, level, flags)
        return FraudAnalysis(risk_level=level, risk_score=score, flags=flags,
                             recommendations=generate_recommendations(level, flags), details=details)
    except Exception as e:
        logger.error("[FRAUD] analysis failed for payment %s: %s", ctx.payment_id, e)
        return FraudAnalysis(risk_level="medium", risk_score=50, flags=["ANALYSIS_ERROR"],
                             recommendations=["Manual review required"])
