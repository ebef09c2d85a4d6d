"""BaseService interface shared by storefront and admin services."""
from abc import ABC
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session

from ..schemas.io_models import ServiceResult
from ..utils.logger import get_logger


class BaseService(ABC):
    name: str = "base"

    def __init__(self, db: Session):
        self.db = db
        self.logger = get_logger()

    def _ok(self, message: Optional[str] = None, **data: Any) -> ServiceResult:
        return ServiceResult(success=True, message=message, data=data)

    def _fail(self, error: str, code: str = "invalid", data: Dict[str, Any] = None) -> ServiceResult:
        self.logger.info("[%s] %s", self.name.upper(), error)
        return ServiceResult(success=False, error=error, code=code, data=data or {})

    def _commit(self) -> None:
        """Commit the unit of work, rolling back and re-raising on failure."""
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.logger.exception("[%s] commit failed", self.name.upper())
            raise
