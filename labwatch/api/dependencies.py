from typing import Optional
from fastapi import Depends, HTTPException, status, Request, Security
from fastapi.security import APIKeyHeader, HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from labwatch.auth.jwt_handler import decode_access_token
from labwatch.auth.permissions import Actor
from labwatch.core.config import settings
from labwatch.core.database import get_async_session
from labwatch.models.auth.user import User
import logging

security = HTTPBearer()
device_key_header = APIKeyHeader(name="X-Device-Key", auto_error=False)
logger = logging.getLogger(__name__)


def _credentials_error(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_user_for_token(token: Optional[str], session: AsyncSession) -> Optional[User]:
    """Resolve a bearer token to an active user, or None"""
    payload = decode_access_token(token)
    if payload is None:
        return None

    result = await session.execute(select(User).where(User.id == int(payload["sub"])))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active or user.is_deleted:
        return None
    return user


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_async_session)
) -> User:
    """Get current authenticated user"""
    user = await get_user_for_token(credentials.credentials, session)
    if user is None:
        raise _credentials_error("User not found, inactive or token invalid")

    request.state.current_user = user
    return user


async def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(current_user)


async def verify_device_key(api_key: Optional[str] = Security(device_key_header)):
    """Telemetry intake key; open when TELEMETRY_DEVICE_KEY is unset"""
    if not settings.TELEMETRY_DEVICE_KEY:
        return None
    if api_key != settings.TELEMETRY_DEVICE_KEY:
        logger.warning("Rejected telemetry report with a missing or wrong device key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing device key",
        )
    return api_key


def get_publisher(request: Request):
    return getattr(request.app.state, "publisher", None)


def get_dispatcher(request: Request):
    return getattr(request.app.state, "dispatcher", None)


def get_session_factory(request: Request):
    return getattr(request.app.state, "session_factory", None)


def get_inactivity_sweep(request: Request):
    sweep = getattr(request.app.state, "inactivity_sweep", None)
    if sweep is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sweep is not configured")
    return sweep
