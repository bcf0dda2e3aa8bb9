from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from equipment_portal.core.exceptions import DuplicateResourceError, InvalidQuantityError, NotFoundError
from equipment_portal.crud.base import CRUDBase, contains_ci
from equipment_portal.models.equipment import Equipment
from equipment_portal.schemas.equipment import EquipmentCreate, EquipmentUpdate

# Columns that may not be cleared by sending null in an update
_REQUIRED_FIELDS = ("name", "category", "condition", "quantity", "available")


def _check_counts(quantity: Optional[int], available: Optional[int]) -> None:
    if quantity is not None and quantity < 0:
        raise InvalidQuantityError("Quantity must not be negative", details={"quantity": quantity})
    if available is not None and available < 0:
        raise InvalidQuantityError("Available count must not be negative", details={"available": available})
    if quantity is not None and available is not None and available > quantity:
        raise InvalidQuantityError(
            "Available count must not exceed quantity",
            details={"quantity": quantity, "available": available},
        )


class CRUDEquipment(CRUDBase[Equipment, EquipmentCreate, EquipmentUpdate]):
    """Equipment inventory CRUD helpers"""

    async def get_by_name(self, db: AsyncSession, *, name: str) -> Optional[Equipment]:
        """Look equipment up by its unique name"""
        query = select(Equipment).where(Equipment.name == name)
        result = await db.execute(query)
        return result.scalars().first()

    async def get_all(
        self,
        db: AsyncSession,
        *,
        category: Optional[str] = None,
        search: Optional[str] = None,
        available_only: bool = False,
    ) -> List[Equipment]:
        """List equipment

        Args:
            category: exact category match
            search: case-insensitive substring of the name
            available_only: only equipment with at least one unit available
        """
        query = select(Equipment)
        if category:
            query = query.where(Equipment.category == category)
        if search:
            query = query.where(contains_ci(Equipment.name, search))
        if available_only:
            query = query.where(Equipment.available > 0)
        query = query.order_by(Equipment.name, Equipment.id)

        result = await db.execute(query)
        return result.scalars().all()

    async def get_categories(self, db: AsyncSession) -> List[str]:
        query = select(Equipment.category).distinct().order_by(Equipment.category)
        result = await db.execute(query)
        return result.scalars().all()

    async def create(
        self, db: AsyncSession, *, obj_in: EquipmentCreate, created_by: Optional[str] = None
    ) -> Equipment:
        """Create equipment; available defaults to the full quantity"""
        available = obj_in.quantity if obj_in.available is None else obj_in.available
        _check_counts(obj_in.quantity, available)

        if await self.get_by_name(db, name=obj_in.name):
            raise DuplicateResourceError(
                "Equipment with the same name already exists", details={"field": "name"}
            )

        db_obj = Equipment(
            name=obj_in.name,
            category=obj_in.category,
            description=obj_in.description,
            condition=obj_in.condition.value,
            quantity=obj_in.quantity,
            available=available,
            location=obj_in.location,
            created_by=created_by,
        )
        db.add(db_obj)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateResourceError(
                "Equipment with the same name already exists", details={"field": "name"}
            )
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self, db: AsyncSession, *, equipment_id: str, obj_in: EquipmentUpdate
    ) -> Equipment:
        """
        Update equipment in a single conditional UPDATE

        When only one of quantity/available changes, the WHERE clause checks
        the new value against the stored value of the other column, so the
        invariant holds even against concurrent approvals and returns.
        """
        data = obj_in.model_dump(exclude_unset=True)
        for field in _REQUIRED_FIELDS:
            if field in data and data[field] is None:
                del data[field]
        if "condition" in data:
            data["condition"] = data["condition"].value

        quantity = data.get("quantity")
        available = data.get("available")
        _check_counts(quantity, available)

        current = await self.get(db, equipment_id)
        if current is None:
            raise NotFoundError("Equipment not found", details={"id": equipment_id})
        if not data:
            return current

        if "name" in data and data["name"] != current.name:
            if await self.get_by_name(db, name=data["name"]):
                raise DuplicateResourceError(
                    "Equipment with the same name already exists", details={"field": "name"}
                )

        stmt = update(Equipment).where(Equipment.id == equipment_id)
        if quantity is not None and available is None:
            stmt = stmt.where(Equipment.available <= quantity)
        elif available is not None and quantity is None:
            stmt = stmt.where(Equipment.quantity >= available)
        stmt = stmt.values(**data, updated_at=datetime.utcnow()).execution_options(
            synchronize_session=False
        )

        try:
            result = await db.execute(stmt)
        except IntegrityError:
            await db.rollback()
            raise DuplicateResourceError(
                "Equipment with the same name already exists", details={"field": "name"}
            )

        if result.rowcount == 0:
            await db.rollback()
            latest = await self.get(db, equipment_id)
            if latest is None:
                raise NotFoundError("Equipment not found", details={"id": equipment_id})
            raise InvalidQuantityError(
                "Available count must stay between 0 and quantity",
                details={
                    "quantity": quantity if quantity is not None else latest.quantity,
                    "available": available if available is not None else latest.available,
                },
            )

        await db.commit()
        await db.refresh(current)
        return current

    async def delete(self, db: AsyncSession, *, equipment_id: str) -> Equipment:
        """
        Delete equipment

        Borrow requests keep their own snapshot of the equipment and are not touched.
        """
        obj = await self.remove(db, id=equipment_id)
        if obj is None:
            raise NotFoundError("Equipment not found", details={"id": equipment_id})
        return obj

    async def reserve_unit(self, db: AsyncSession, *, equipment_id: str) -> bool:
        """
        Atomically take one unit if any is available

        Runs inside the caller's transaction and does not commit.
        Returns False when no row matched (nothing available or no such equipment).
        """
        stmt = (
            update(Equipment)
            .where(Equipment.id == equipment_id, Equipment.available > 0)
            .values(available=Equipment.available - 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def release_unit(self, db: AsyncSession, *, equipment_id: str) -> bool:
        """
        Atomically give one unit back without exceeding quantity

        Runs inside the caller's transaction and does not commit.
        """
        stmt = (
            update(Equipment)
            .where(Equipment.id == equipment_id, Equipment.available < Equipment.quantity)
            .values(available=Equipment.available + 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def get_totals(self, db: AsyncSession) -> Dict[str, Any]:
        """Sum of quantities and available units across the inventory"""
        query = select(
            func.coalesce(func.sum(Equipment.quantity), 0),
            func.coalesce(func.sum(Equipment.available), 0),
        )
        result = await db.execute(query)
        total, available = result.one()
        return {"total": int(total), "available": int(available)}


equipment = CRUDEquipment(Equipment)
