"""
Request identity: bearer tokens carry the user id in ``sub``.
Token issuance lives with the login service; this module only creates tokens for tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import settings
from database import User, get_db
from errors import Unauthorized

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7

bearer = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode({"sub": user_id, "exp": expires}, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthorized("Invalid token")


async def get_session():
    """Per-request database session."""
    async with get_db() as session:
        yield session


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    session: AsyncSession = Depends(get_session),
) -> User:
    if credentials is None:
        raise Unauthorized()
    user_id = decode_token(credentials.credentials).get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    result = await session.execute(
        select(User).where(User.id == user_id).options(selectinload(User.customer))
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthorized("User not found")
    return user
