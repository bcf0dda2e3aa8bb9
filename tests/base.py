import unittest
from datetime import date
from typing import Dict, Optional

import httpx

from equipment_portal.core.auth import create_access_token
from equipment_portal.core.permissions import Role
from equipment_portal.crud.equipment import equipment as crud_equipment
from equipment_portal.crud.requests import request as crud_request
from equipment_portal.crud.users import user as crud_user
from equipment_portal.database import build_engine, build_sessionmaker, create_tables, get_db
from equipment_portal.main import app
from equipment_portal.models.equipment import Condition, Equipment
from equipment_portal.models.requests import BorrowRequest
from equipment_portal.models.users import User
from equipment_portal.schemas.auth import RegisterRequest
from equipment_portal.schemas.equipment import EquipmentCreate
from equipment_portal.schemas.requests import RequestCreate

PASSWORD = "secret123"
FROM_DATE = date(2025, 3, 3)
TO_DATE = date(2025, 3, 7)


class PortalTestCase(unittest.IsolatedAsyncioTestCase):
    """
    Each test gets its own in-memory database, wired into the app through
    dependency_overrides, and an HTTP client talking to the app in-process.
    """

    async def asyncSetUp(self):
        self.engine = build_engine("sqlite+aiosqlite:///:memory:")
        await create_tables(self.engine)
        self.sessionmaker = build_sessionmaker(self.engine)

        async def override_get_db():
            async with self.sessionmaker() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        app.dependency_overrides[get_db] = override_get_db
        self.transport = httpx.ASGITransport(app=app)
        self.client = httpx.AsyncClient(transport=self.transport, base_url="http://testserver")

    async def asyncTearDown(self):
        await self.client.aclose()
        app.dependency_overrides.clear()
        await self.engine.dispose()

    # Fixtures

    async def create_user(self, name: str, email: str, role: Role = Role.STUDENT) -> User:
        async with self.sessionmaker() as db:
            return await crud_user.create(
                db, obj_in=RegisterRequest(name=name, email=email, password=PASSWORD, role=role)
            )

    async def create_equipment(
        self, name: str, quantity: int = 1, category: str = "Sports", available: Optional[int] = None
    ) -> Equipment:
        async with self.sessionmaker() as db:
            return await crud_equipment.create(
                db,
                obj_in=EquipmentCreate(
                    name=name,
                    category=category,
                    condition=Condition.GOOD,
                    quantity=quantity,
                    available=available,
                    location="Gym storage",
                ),
            )

    async def create_request(
        self, student: User, equipment: Equipment, purpose: str = "Practice match"
    ) -> BorrowRequest:
        async with self.sessionmaker() as db:
            return await crud_request.create_request(
                db,
                obj_in=RequestCreate(
                    equipmentId=equipment.id,
                    borrowFromDate=FROM_DATE,
                    borrowToDate=TO_DATE,
                    purpose=purpose,
                ),
                requester=student,
            )

    async def get_equipment(self, equipment_id: str) -> Optional[Equipment]:
        async with self.sessionmaker() as db:
            return await crud_equipment.get(db, equipment_id)

    async def get_request(self, request_id: str) -> Optional[BorrowRequest]:
        async with self.sessionmaker() as db:
            return await crud_request.get(db, request_id)

    async def auth_headers(self, user: User) -> Dict[str, str]:
        token = await create_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}
