"""Key/value store settings grouped by prefix (``store_name``, ``shipping_flat_rate`` ...)."""
import json
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ...data.models import Setting
from ...schemas.io_models import Actor, RequestContext
from ...utils.logger import get_logger
from .audit_service import log_audit_action

logger = get_logger()

PREFIXES = ("store", "shipping", "tax", "email", "seo", "payment")


def infer_type(value: Any) -> str:
    # bool first: it is a subclass of int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value)
    return str(value)


def decode_value(raw: Optional[str], kind: Optional[str]) -> Any:
    if raw is None:
        return None
    if kind == "boolean":
        return raw.lower() == "true"
    if kind == "number":
        try:
            number = float(raw)
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    if kind in ("array", "object"):
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("[SETTINGS] undecodable %s value %r", kind, raw)
            return None
    return raw


def update_settings(db: Session, prefix: str, data: Dict[str, Any], actor: Optional[Actor] = None,
                    context: Optional[RequestContext] = None) -> Dict[str, Any]:
    """
    Upsert every non-null entry of ``data`` as ``"{prefix}_{key}"``.

    Raises:
        ValueError: for an unknown prefix
    """
    if prefix not in PREFIXES:
        raise ValueError(f"Unknown settings group: {prefix}")

    written = []
    try:
        for key, value in data.items():
            if value is None:
                continue
            full_key = f"{prefix}_{key}"
            row = db.query(Setting).filter(Setting.key == full_key).first()
            if row is None:
                row = Setting(key=full_key, category=prefix)
                db.add(row)
            row.value = encode_value(value)
            row.type = infer_type(value)
            written.append(key)
        log_audit_action(db, f"UPDATE_{prefix.upper()}_SETTINGS", "settings", actor=actor, context=context,
                         resource_id=prefix, resource_title=f"{prefix.title()} settings",
                         metadata={"settings_count": len(written), "setting_keys": written}, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("[SETTINGS] failed to update %s settings", prefix)
        raise
    return get_settings(db, prefix)


def get_settings(db: Session, prefix: str) -> Dict[str, Any]:
    rows = db.query(Setting).filter(Setting.key.like(f"{prefix}\\_%", escape="\\")).all()
    start = len(prefix) + 1
    return {row.key[start:]: decode_value(row.value, row.type) for row in rows}


def get_setting(db: Session, key: str, default: Any = None) -> Any:
    row = db.query(Setting).filter(Setting.key == key).first()
    return decode_value(row.value, row.type) if row else default
