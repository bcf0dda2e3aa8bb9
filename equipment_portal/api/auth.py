from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from equipment_portal.api.deps import get_authenticated_user
from equipment_portal.config import settings
from equipment_portal.core.auth import authenticate_user, create_access_token, serialize_user
from equipment_portal.core.exceptions import Forbidden, InvalidCredentials
from equipment_portal.core.permissions import Role, capabilities_for
from equipment_portal.crud.users import user as crud_user
from equipment_portal.database import get_db
from equipment_portal.models.users import User
from equipment_portal.schemas.auth import (
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    SimpleResponse,
    UserInfoResponse,
)
from equipment_portal.services.logging import logging_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: Request,
    register_data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Create an account and sign it in
    """
    ip_address = await logging_service.get_request_ip(request)

    if register_data.role == Role.ADMIN and not settings.ALLOW_ADMIN_REGISTRATION:
        await logging_service.warning(
            db,
            component="auth",
            message=f"Registration of admin account {register_data.email} refused",
            details={"email": register_data.email, "role": register_data.role.value},
            ip_address=ip_address,
        )
        raise Forbidden("Admin accounts cannot be self-registered")

    user = await crud_user.create(db, obj_in=register_data)
    token = await create_access_token(user.id, user.role)

    await logging_service.audit(
        db,
        component="auth",
        action="register",
        user_id=user.id,
        resource_type="user",
        resource_id=user.id,
        details={"email": user.email, "role": user.role},
        ip_address=ip_address,
    )

    return {"success": True, "data": {"token": token, "user": serialize_user(user)}}


@router.post("/login", response_model=LoginResponse)
async def login(
    request: Request,
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Sign in with email, password and the role the user expects to have
    """
    ip_address = await logging_service.get_request_ip(request)
    role = login_data.role.value if login_data.role else None

    try:
        user = await authenticate_user(db, str(login_data.email), login_data.password, role)
    except InvalidCredentials:
        # Never log the password
        await logging_service.warning(
            db,
            component="auth",
            message=f"Login failed for {login_data.email}",
            details={"email": login_data.email, "role": role, "reason": "invalid_credentials"},
            ip_address=ip_address,
        )
        raise

    token = await create_access_token(user.id, user.role)

    user.last_login = datetime.utcnow()
    await db.commit()

    await logging_service.audit(
        db,
        component="auth",
        action="login",
        user_id=user.id,
        resource_type="session",
        resource_id=user.id,
        details={"email": user.email, "role": user.role},
        ip_address=ip_address,
    )

    return {"success": True, "data": {"token": token, "user": serialize_user(user)}}


@router.post("/logout", response_model=SimpleResponse)
async def logout(
    request: Request,
    current_user: User = Depends(get_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Sign out

    JWTs cannot be revoked server side; the client drops its session.
    """
    await logging_service.audit(
        db,
        component="auth",
        action="logout",
        user_id=current_user.id,
        resource_type="session",
        resource_id=current_user.id,
        details={"email": current_user.email},
        ip_address=await logging_service.get_request_ip(request),
    )

    return SimpleResponse(success=True)


@router.get("/me", response_model=UserInfoResponse)
async def get_current_user_info(
    current_user: User = Depends(get_authenticated_user),
) -> Any:
    """
    Current user and the capabilities of their role
    """
    data = serialize_user(current_user)
    data["capabilities"] = sorted(capabilities_for(current_user.role))
    return {"success": True, "data": data}
