from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from equipment_portal.api.deps import get_equipment_manager
from equipment_portal.core.exceptions import NotFoundError, PortalError
from equipment_portal.crud.equipment import equipment as crud_equipment
from equipment_portal.database import get_db
from equipment_portal.models.equipment import Equipment
from equipment_portal.models.users import User
from equipment_portal.schemas.equipment import (
    EquipmentCreate,
    EquipmentDeleteResponse,
    EquipmentList,
    EquipmentResponse,
    EquipmentUpdate,
)
from equipment_portal.services.logging import logging_service

router = APIRouter(prefix="/equipment", tags=["equipment"])


def serialize_equipment(e: Equipment) -> dict:
    return {
        "id": e.id,
        "name": e.name,
        "category": e.category,
        "description": e.description,
        "condition": e.condition,
        "quantity": e.quantity,
        "available": e.available,
        "location": e.location,
        "createdAt": e.created_at,
        "updatedAt": e.updated_at,
    }


@router.get("", response_model=EquipmentList)
async def get_equipment_list(
    category: Optional[str] = Query(None, description="Exact category"),
    search: Optional[str] = Query(None, description="Name contains (case-insensitive)"),
    available_only: bool = Query(False, alias="availableOnly", description="Only equipment with units available"),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    List equipment
    """
    equipment_list = await crud_equipment.get_all(
        db, category=category, search=search, available_only=available_only
    )
    categories = await crud_equipment.get_categories(db)

    return {
        "success": True,
        "data": {
            "equipment": [serialize_equipment(e) for e in equipment_list],
            "categories": categories,
        },
    }


@router.get("/{equipment_id}", response_model=EquipmentResponse)
async def get_equipment(
    equipment_id: str,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Fetch one equipment record
    """
    equipment = await crud_equipment.get(db, equipment_id)
    if not equipment:
        raise NotFoundError("Equipment not found", details={"id": equipment_id})
    return {"success": True, "data": serialize_equipment(equipment)}


@router.post("", response_model=EquipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_equipment(
    request: Request,
    equipment_in: EquipmentCreate,
    current_user: User = Depends(get_equipment_manager),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Create equipment
    """
    ip_address = await logging_service.get_request_ip(request)
    user_id = current_user.id

    try:
        equipment = await crud_equipment.create(db, obj_in=equipment_in, created_by=current_user.id)
    except PortalError as e:
        await logging_service.warning(
            db,
            component="equipment",
            message=f"Creating equipment '{equipment_in.name}' failed: {e.message}",
            details={"name": equipment_in.name, "code": e.code},
            user_id=user_id,
            ip_address=ip_address,
        )
        raise

    await logging_service.audit(
        db,
        component="equipment",
        action="create",
        user_id=current_user.id,
        resource_type="equipment",
        resource_id=equipment.id,
        details={
            "name": equipment.name,
            "quantity": equipment.quantity,
            "available": equipment.available,
        },
        ip_address=ip_address,
    )

    return {"success": True, "data": serialize_equipment(equipment)}


@router.put("/{equipment_id}", response_model=EquipmentResponse)
async def update_equipment(
    request: Request,
    equipment_id: str,
    equipment_in: EquipmentUpdate,
    current_user: User = Depends(get_equipment_manager),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Update equipment
    """
    ip_address = await logging_service.get_request_ip(request)
    user_id = current_user.id

    try:
        equipment = await crud_equipment.update(db, equipment_id=equipment_id, obj_in=equipment_in)
    except PortalError as e:
        await logging_service.warning(
            db,
            component="equipment",
            message=f"Updating equipment {equipment_id} failed: {e.message}",
            details={"equipmentId": equipment_id, "code": e.code},
            user_id=user_id,
            ip_address=ip_address,
        )
        raise

    await logging_service.audit(
        db,
        component="equipment",
        action="update",
        user_id=current_user.id,
        resource_type="equipment",
        resource_id=equipment_id,
        details={"changes": equipment_in.model_dump(exclude_unset=True, mode="json")},
        ip_address=ip_address,
    )

    return {"success": True, "data": serialize_equipment(equipment)}


@router.delete("/{equipment_id}", response_model=EquipmentDeleteResponse)
async def delete_equipment(
    request: Request,
    equipment_id: str,
    current_user: User = Depends(get_equipment_manager),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Delete equipment

    Existing borrow requests keep their snapshot of the equipment name.
    """
    ip_address = await logging_service.get_request_ip(request)

    try:
        equipment = await crud_equipment.delete(db, equipment_id=equipment_id)
    except NotFoundError:
        await logging_service.warning(
            db,
            component="equipment",
            message=f"Deleting equipment failed: ID '{equipment_id}' does not exist",
            details={"equipmentId": equipment_id},
            user_id=current_user.id,
            ip_address=ip_address,
        )
        raise

    await logging_service.audit(
        db,
        component="equipment",
        action="delete",
        user_id=current_user.id,
        resource_type="equipment",
        resource_id=equipment_id,
        details={"name": equipment.name},
        ip_address=ip_address,
    )

    return {"success": True, "data": {"id": equipment_id, "deleted": True}}
