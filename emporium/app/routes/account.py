"""Sign-in, sign-out, sign-up and the current user."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...data.models import User
from ...schemas.order_models import LoginRequest, RegisterRequest
from ...services import security_events
from ...services.account_service import AccountService, serialize_user
from ...services.wishlist_service import WishlistService
from ..auth import get_current_user, get_role_permissions
from ..config import Config
from ..rate_limit import get_client_identifier, get_client_ip, reset_rate_limit
from ..session import get_session_manager
from .common import STATUS_BY_CODE, WISHLIST_COOKIE, rate_limit, set_cookie

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _start_session(user: User, request: Request, response: Response, db: Session) -> dict:
    session_id = get_session_manager().create_session(user.id, user.email, user.role, user.name)
    set_cookie(response, Config.SESSION_COOKIE, session_id, Config.SESSION_TTL_SECONDS)

    guest_wishlist = request.cookies.get(WISHLIST_COOKIE)
    customer = AccountService(db).customer_for(user)
    if guest_wishlist and customer is not None:
        WishlistService(db).merge_guest_wishlist(guest_wishlist, customer.id)
        response.delete_cookie(WISHLIST_COOKIE)

    data = serialize_user(user)
    data["permissions"] = get_role_permissions(user.role)
    return {"success": True, "user": data}


@router.post("/login", dependencies=[Depends(rate_limit("auth"))])
def login(body: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    result = AccountService(db).authenticate(body.email, body.password)
    if not result.success:
        security_events.authentication_failure(body.email, get_client_ip(request), result.error)
        raise HTTPException(status_code=STATUS_BY_CODE.get(result.code, 401), detail=result.error)
    reset_rate_limit("auth", get_client_identifier(request))
    return _start_session(result.data["user"], request, response, db)


@router.post("/register", dependencies=[Depends(rate_limit("auth"))])
def register(body: RegisterRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    result = AccountService(db).register(body)
    if not result.success:
        raise HTTPException(status_code=STATUS_BY_CODE.get(result.code, 400), detail=result.error)
    return _start_session(result.data["user"], request, response, db)


@router.post("/logout")
def logout(request: Request, response: Response):
    session_id: Optional[str] = request.cookies.get(Config.SESSION_COOKIE)
    if session_id:
        get_session_manager().delete_session(session_id)
    response.delete_cookie(Config.SESSION_COOKIE)
    return {"success": True}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    data = serialize_user(user)
    data["permissions"] = get_role_permissions(user.role)
    return {"user": data}
