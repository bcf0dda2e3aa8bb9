from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from equipment_portal.models.equipment import Condition
from equipment_portal.schemas import ResponseBase


# Request models
# quantity/available are range-checked by the inventory itself so that every
# violation is reported as INVALID_QUANTITY
class EquipmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Equipment name")
    category: str = Field(..., min_length=1, max_length=50, description="Category")
    description: Optional[str] = Field(None, description="Description")
    condition: Condition = Field(Condition.GOOD, description="Condition")
    quantity: int = Field(..., description="Total units owned")
    available: Optional[int] = Field(None, description="Units available to lend, defaults to quantity")
    location: Optional[str] = Field(None, max_length=100, description="Storage location")

    @field_validator("name", "category")
    def must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError("Must not be blank")
        return v.strip()


class EquipmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100, description="Equipment name")
    category: Optional[str] = Field(None, min_length=1, max_length=50, description="Category")
    description: Optional[str] = Field(None, description="Description")
    condition: Optional[Condition] = Field(None, description="Condition")
    quantity: Optional[int] = Field(None, description="Total units owned")
    available: Optional[int] = Field(None, description="Units available to lend")
    location: Optional[str] = Field(None, max_length=100, description="Storage location")

    @field_validator("name", "category")
    def must_not_be_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Must not be blank")
        return v.strip() if v is not None else v


# Response models
class EquipmentOut(BaseModel):
    id: str = Field(..., description="Equipment ID")
    name: str = Field(..., description="Equipment name")
    category: str = Field(..., description="Category")
    description: Optional[str] = Field(None, description="Description")
    condition: Condition = Field(..., description="Condition")
    quantity: int = Field(..., description="Total units owned")
    available: int = Field(..., description="Units available to lend")
    location: Optional[str] = Field(None, description="Storage location")
    createdAt: datetime = Field(..., description="Creation time")
    updatedAt: Optional[datetime] = Field(None, description="Last update time")


class EquipmentResponse(ResponseBase):
    data: EquipmentOut


class EquipmentListData(BaseModel):
    equipment: List[EquipmentOut]
    categories: List[str] = Field(..., description="All known categories")


class EquipmentList(ResponseBase):
    data: EquipmentListData


class EquipmentDeleteResponse(ResponseBase):
    data: dict = Field(
        ...,
        examples=[{"id": "eq_003", "deleted": True}],
    )
