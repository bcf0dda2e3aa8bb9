from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from equipment_portal.config import settings
from equipment_portal.core.exceptions import Forbidden, InvalidCredentials, Unauthenticated
from equipment_portal.core.permissions import Role, roles_with
from equipment_portal.database import get_db
from equipment_portal.models.users import User
from equipment_portal.services.logging import logging_service

# Bearer token authentication; missing headers are reported by get_current_user
security = HTTPBearer(auto_error=False)


class TokenPayload:
    """
    Decoded JWT payload
    """

    def __init__(self, sub: str, role: str, exp: int):
        self.sub = sub
        self.role = role
        self.exp = exp


def get_password_hash(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


async def create_access_token(user_id: str, role: str) -> str:
    """
    Create a signed JWT access token
    """
    expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    """
    Verify a JWT and return its payload

    Raises Unauthenticated for bad signatures, expired tokens and missing claims.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise Unauthenticated("Invalid or expired token") from e

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        raise Unauthenticated("Invalid token payload")
    return TokenPayload(sub=user_id, role=role, exp=payload.get("exp"))


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    query = select(User).where(User.id == user_id)
    result = await db.execute(query)
    return result.scalars().first()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    query = select(User).where(User.email == email.strip().lower())
    result = await db.execute(query)
    return result.scalars().first()


async def authenticate_user(
    db: AsyncSession, email: str, password: str, role: Optional[str] = None
) -> User:
    """
    Check an email/password pair, and the role the caller claims if any

    A wrong role is reported exactly like a wrong password.
    """
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise InvalidCredentials("Invalid email, password, or role")
    if role is not None and user.role != role:
        raise InvalidCredentials("Invalid email, password, or role")
    return user


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the user behind the bearer token of the current request
    """
    ip_address = await logging_service.get_request_ip(request)

    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Authentication required")

    try:
        token_payload = decode_access_token(credentials.credentials)
    except Unauthenticated as e:
        await logging_service.warning(
            db,
            component="auth",
            message="Authentication failed: token rejected",
            details={"error": e.message, "path": request.url.path},
            ip_address=ip_address,
        )
        raise

    user = await get_user_by_id(db, token_payload.sub)
    if user is None:
        await logging_service.warning(
            db,
            component="auth",
            message=f"Authentication failed: user {token_payload.sub} does not exist",
            ip_address=ip_address,
        )
        raise Unauthenticated("Invalid authentication credentials")

    # A role change invalidates tokens issued for the old role
    if user.role != token_payload.role:
        await logging_service.warning(
            db,
            component="auth",
            message=f"Authentication failed: token role no longer matches user {user.id}",
            details={"tokenRole": token_payload.role, "userRole": user.role},
            user_id=user.id,
            ip_address=ip_address,
        )
        raise Unauthenticated("Invalid authentication credentials")

    return user


async def authorize(
    db: AsyncSession,
    user: User,
    allowed_roles: Iterable[Role],
    ip_address: Optional[str] = None,
) -> User:
    """
    Admit the user if their role is in allowed_roles, otherwise raise Forbidden
    """
    allowed = {Role(r).value for r in allowed_roles}
    if user.role not in allowed:
        await logging_service.warning(
            db,
            component="auth",
            message=f"Permission denied: {user.email} ({user.role}) needs one of {sorted(allowed)}",
            details={"userId": user.id, "userRole": user.role, "allowedRoles": sorted(allowed)},
            user_id=user.id,
            ip_address=ip_address,
        )
        raise Forbidden(
            "Insufficient permissions",
            details={"requiredRoles": sorted(allowed), "role": user.role},
        )
    return user


def require_roles(*roles: Role) -> Callable[..., Any]:
    """
    Dependency factory admitting only the given roles
    """

    async def dependency(
        request: Request,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        return await authorize(
            db, current_user, roles, ip_address=await logging_service.get_request_ip(request)
        )

    return dependency


def require_capability(capability: str) -> Callable[..., Any]:
    """
    Dependency factory admitting the roles that hold a capability
    """
    return require_roles(*roles_with(capability))


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "createdAt": user.created_at,
    }
