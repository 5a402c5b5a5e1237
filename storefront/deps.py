"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request
from pydantic import BaseModel

from storefront.core.config import get_settings
from storefront.core.exceptions import ForbiddenError, UnauthorizedError
from storefront.core.security import load_session_cookie
from storefront.models.user import User
from storefront.services.order_store import OrderStore
from storefront.services.payments import PaymentService

SESSION_COOKIE_NAME = "storefront_session"


class CurrentUser(BaseModel):
    id: str
    email: str
    role: str = "user"


async def get_current_user(request: Request) -> CurrentUser:
    """Dependency: load session from cookie and return the signed-in user."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    try:
        user = await User.get(PydanticObjectId(user_id))
    except InvalidId:
        raise UnauthorizedError("Invalid session") from None
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    return CurrentUser(id=str(user.id), email=user.email, role=user.role)


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dependency: require current user to have role admin."""
    if user.role != "admin":
        raise ForbiddenError("Admin only")
    return user


def get_order_store(request: Request) -> OrderStore:
    return request.app.state.order_store


def get_payment_service(
    request: Request,
    store: OrderStore = Depends(get_order_store),
) -> PaymentService:
    settings = get_settings()
    return PaymentService(
        store=store,
        gateway=request.app.state.payment_gateway,
        key_secret=settings.razorpay_key_secret,
        webhook_secret=settings.razorpay_webhook_secret,
        default_currency=settings.default_currency,
    )
