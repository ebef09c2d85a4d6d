"""Helpers shared by the route modules."""
from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException, Request, Response

from ...schemas.io_models import ServiceResult
from ...services import security_events
from ..config import Config
from ..rate_limit import (
    check_rate_limit, get_client_identifier, get_client_ip, log_rate_limit_violation,
    rate_limit_headers, retry_after_seconds,
)

STATUS_BY_CODE = {
    "invalid": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "gateway_error": 502,
}

CART_COOKIE = "cart_token"
WISHLIST_COOKIE = "wishlist_session"


def unwrap(result: ServiceResult) -> Dict[str, Any]:
    """Return the payload of a successful result or raise the matching HTTP error."""
    if not result.success:
        raise HTTPException(status_code=STATUS_BY_CODE.get(result.code, 400), detail=result.error)
    body = {"success": True}
    if result.message:
        body["message"] = result.message
    body.update(result.data)
    return body


def enforce_rate_limit(request: Request, limiter_type: str, response: Optional[Response] = None) -> None:
    """Raise 429 once the caller exceeds ``limiter_type``; otherwise copy the quota headers."""
    identifier = get_client_identifier(request)
    result = check_rate_limit(limiter_type, identifier)
    headers = rate_limit_headers(result)
    if result.blocked:
        log_rate_limit_violation(identifier, limiter_type, request.url.path, request.headers.get("user-agent"))
        _, window = Config.RATE_LIMITS[limiter_type]
        security_events.rate_limit_exceeded(request.url.path, get_client_ip(request), result.limit, f"{window}s")
        raise HTTPException(
            status_code=429,
            detail={"error": "Rate limit exceeded", "retry_after": retry_after_seconds(result)},
            headers=headers,
        )
    if response is not None:
        response.headers.update(headers)


def rate_limit(limiter_type: str) -> Callable[..., None]:
    """Dependency factory around ``enforce_rate_limit``."""

    def dependency(request: Request, response: Response) -> None:
        enforce_rate_limit(request, limiter_type, response)

    return dependency


def set_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(name, value, max_age=max_age, httponly=True, samesite="lax",
                        secure=Config.APP_ENV == "production")
