from typing import Any, Generic, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from equipment_portal.database import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """
    Base class for CRUD helpers, shared lookups by ID
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        """
        Fetch a row by ID
        """
        query = select(self.model).where(self.model.id == id)
        result = await db.execute(query)
        return result.scalars().first()

    async def count(self, db: AsyncSession, *conditions: Any) -> int:
        """
        Count rows matching the given conditions
        """
        query = select(func.count()).select_from(self.model)
        if conditions:
            query = query.where(*conditions)
        result = await db.execute(query)
        return result.scalar() or 0

    async def remove(self, db: AsyncSession, *, id: Any) -> Optional[ModelType]:
        """
        Delete a row by ID
        """
        obj = await self.get(db, id)
        if obj is None:
            return None
        await db.delete(obj)
        await db.commit()
        return obj


def contains_ci(column: Any, term: str) -> Any:
    """
    Case-insensitive substring match that treats % and _ in the term literally
    """
    return func.lower(column).contains(term.lower(), autoescape=True)
