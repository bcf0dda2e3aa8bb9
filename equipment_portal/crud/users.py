from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from equipment_portal.core.auth import get_password_hash
from equipment_portal.core.exceptions import DuplicateResourceError
from equipment_portal.core.permissions import Role
from equipment_portal.crud.base import CRUDBase
from equipment_portal.models.users import User
from equipment_portal.schemas.auth import RegisterRequest


class CRUDUser(CRUDBase[User, RegisterRequest, Any]):
    """User CRUD helpers"""

    async def get_by_email(self, db: AsyncSession, *, email: str) -> Optional[User]:
        query = select(User).where(User.email == email.strip().lower())
        result = await db.execute(query)
        return result.scalars().first()

    async def create(self, db: AsyncSession, *, obj_in: RegisterRequest) -> User:
        """Register a new user with a hashed password"""
        email = str(obj_in.email).strip().lower()
        if await self.get_by_email(db, email=email):
            raise DuplicateResourceError(
                "An account with this email already exists", details={"field": "email"}
            )

        db_obj = User(
            name=obj_in.name,
            email=email,
            password_hash=get_password_hash(obj_in.password),
            role=Role(obj_in.role).value,
        )
        db.add(db_obj)
        try:
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email
            await db.rollback()
            raise DuplicateResourceError(
                "An account with this email already exists", details={"field": "email"}
            )
        await db.refresh(db_obj)
        return db_obj

    async def count_by_role(self, db: AsyncSession) -> Dict[str, int]:
        query = select(User.role, func.count()).group_by(User.role)
        result = await db.execute(query)
        counts = {role.value: 0 for role in Role}
        for role, count in result.all():
            counts[role] = count
        return counts


user = CRUDUser(User)
