"""Security event log.

Events are written to the application logger and kept in a bounded
in-process buffer so the admin security dashboard can summarise recent
activity without an external store.
"""
import uuid
from collections import Counter, deque
from datetime import timedelta
from typing import Any, Deque, Dict, List, Optional

from ..utils.logger import get_logger
from ..utils.security import mask_email
from ..utils.timeutils import utcnow

logger = get_logger()

_LEVELS = {"info": 20, "warn": 30, "error": 40, "critical": 40}
_recent: Deque[Dict[str, Any]] = deque(maxlen=1000)
_alerts: Deque[Dict[str, Any]] = deque(maxlen=200)


def log_security_event(level: str, category: str, event: str, ip: str,
                       user_id: Optional[str] = None, risk_score: Optional[int] = None,
                       action_taken: Optional[str] = None, payload: Optional[Dict[str, Any]] = None,
                       metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    entry = {
        "id": f"sec_{uuid.uuid4().hex[:12]}",
        "timestamp": utcnow(),
        "level": level,
        "category": category,
        "event": event,
        "ip": ip,
        "user_id": user_id,
        "risk_score": risk_score,
        "action_taken": action_taken,
        "payload": payload or {},
        "metadata": metadata or {},
    }
    _recent.append(entry)

    logger.log(
        _LEVELS.get(level, 20),
        "[SECURITY_LOG] event=%s category=%s level=%s ip=%s user=%s risk=%s action=%s",
        event, category, level, ip, user_id, risk_score, action_taken,
    )
    if level == "critical":
        alert = {
            "id": f"alert_{uuid.uuid4().hex[:12]}",
            "timestamp": entry["timestamp"],
            "message": f"Critical security event: {event}",
            "details": entry,
            "acknowledged": False,
        }
        _alerts.append(alert)
        logger.error("[CRITICAL_SECURITY_ALERT] %s ip=%s", alert["message"], ip)
    return entry


def payment_fraud_blocked(payment_id: str, ip: str, risk_score: int, factors: List[str]):
    return log_security_event("critical", "fraud", "payment_fraud_blocked", ip,
                              risk_score=risk_score, action_taken="blocked",
                              payload={"payment_id": payment_id, "factors": factors},
                              metadata={"detection_method": "automated"})


def payment_high_risk(payment_id: str, ip: str, risk_score: int, factors: List[str]):
    return log_security_event("warn", "fraud", "payment_high_risk", ip,
                              risk_score=risk_score, action_taken="flagged",
                              payload={"payment_id": payment_id, "factors": factors})


def rate_limit_exceeded(endpoint: str, ip: str, limit: int, window: str):
    return log_security_event("warn", "rate_limit", "rate_limit_exceeded", ip,
                              action_taken="blocked",
                              payload={"endpoint": endpoint, "limit": limit, "window": window})


def authentication_failure(email: str, ip: str, reason: str):
    return log_security_event("warn", "authentication", "authentication_failure", ip,
                              payload={"email": mask_email(email), "reason": reason},
                              metadata={"attempt_type": "login"})


def webhook_signature_invalid(ip: str, endpoint: str):
    return log_security_event("error", "webhook", "webhook_signature_invalid", ip,
                              action_taken="blocked", payload={"endpoint": endpoint},
                              metadata={"security_check": "hmac_verification"})


def webhook_ip_blocked(ip: str):
    return log_security_event("warn", "webhook", "webhook_ip_blocked", ip,
                              action_taken="blocked", metadata={"protection_type": "ip_whitelist"})


def unauthorized_access(endpoint: str, ip: str, user_id: Optional[str] = None):
    return log_security_event("warn", "authorization", "unauthorized_access", ip,
                              user_id=user_id, action_taken="blocked",
                              payload={"endpoint": endpoint}, metadata={"protection_type": "rbac"})


def get_security_logs(limit: int = 100, level: Optional[str] = None, category: Optional[str] = None,
                      hours: int = 24) -> List[Dict[str, Any]]:
    cutoff = utcnow() - timedelta(hours=hours)
    entries = [
        e for e in reversed(_recent)
        if e["timestamp"] >= cutoff
        and (level is None or e["level"] == level)
        and (category is None or e["category"] == category)
    ]
    return entries[:limit]


def get_security_metrics(days: int = 1) -> Dict[str, Any]:
    entries = get_security_logs(limit=len(_recent) or 1, hours=days * 24)
    events = Counter(e["event"] for e in entries)
    return {
        "total_events": len(entries),
        "by_level": dict(Counter(e["level"] for e in entries)),
        "by_category": dict(Counter(e["category"] for e in entries)),
        "high_risk_events": sum(1 for e in entries if (e["risk_score"] or 0) >= 60),
        "unique_ips": len({e["ip"] for e in entries}),
        "top_events": [{"event": k, "count": v} for k, v in events.most_common(10)],
    }


def get_security_alerts(include_acknowledged: bool = False) -> List[Dict[str, Any]]:
    return [a for a in reversed(_alerts) if include_acknowledged or not a["acknowledged"]]


def acknowledge_security_alert(alert_id: str, user_id: str) -> bool:
    for alert in _alerts:
        if alert["id"] == alert_id:
            alert["acknowledged"] = True
            alert["acknowledged_by"] = user_id
            return True
    return False


def clear_security_events():
    _recent.clear()
    _alerts.clear()
