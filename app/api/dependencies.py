from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.core.database import get_async_session
from app.auth.jwt_handler import decode_access_token
from app.models.auth.user import User
import logging

security = HTTPBearer()
logger = logging.getLogger(__name__)

def _credentials_exception(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_async_session)
) -> User:
    """Get current authenticated user"""
    # Decode token
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_exception()

    # Get user ID from token
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise _credentials_exception()

    # Get user from database
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        logger.warning(f"Rejected token for missing or inactive user {user_id}")
        raise _credentials_exception("User not found or inactive")

    # Add request info to context
    request.state.current_user = user
    return user
