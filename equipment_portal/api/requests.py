from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from equipment_portal.api.deps import (
    get_authenticated_user,
    get_borrower_user,
    get_pagination,
    get_request_admin,
    get_stats_reader,
)
from equipment_portal.core.auth import authorize
from equipment_portal.core.exceptions import Forbidden, NotFoundError, PortalError
from equipment_portal.core.permissions import Capability, has_capability, roles_with
from equipment_portal.crud.equipment import equipment as crud_equipment
from equipment_portal.crud.requests import request as crud_request
from equipment_portal.crud.requests import serialize_request, serialize_request_detail
from equipment_portal.crud.users import user as crud_user
from equipment_portal.database import get_db
from equipment_portal.models.requests import RequestStatus
from equipment_portal.models.users import User
from equipment_portal.schemas import Pagination, PaginationParams
from equipment_portal.schemas.requests import (
    AdminStatsResponse,
    RequestApprove,
    RequestCreate,
    RequestDetailResponse,
    RequestListResponse,
    RequestReject,
    RequestResponse,
    RequestReturn,
)
from equipment_portal.services.logging import logging_service

router = APIRouter(prefix="/requests", tags=["requests"])


async def _log_rejected_transition(
    db: AsyncSession, request: Request, *, action: str, request_id: str, user_id: str, error: PortalError
) -> None:
    await logging_service.warning(
        db,
        component="request",
        message=f"{action.capitalize()} of request {request_id} failed: {error.message}",
        details={"action": action, "code": error.code, "details": error.details},
        user_id=user_id,
        request_id=request_id if not isinstance(error, NotFoundError) else None,
        ip_address=await logging_service.get_request_ip(request),
    )


def _list_payload(requests, total: int, status_counts: dict, params: PaginationParams) -> dict:
    return {
        "success": True,
        "data": {
            "requests": [serialize_request(r) for r in requests],
            "pagination": Pagination.build(total, params),
            "statusCounts": status_counts,
        },
    }


@router.post("/create", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    request: Request,
    request_in: RequestCreate,
    current_user: User = Depends(get_borrower_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Submit a borrow request (students and staff)
    """
    try:
        db_request = await crud_request.create_request(db, obj_in=request_in, requester=current_user)
    except PortalError as e:
        await logging_service.warning(
            db,
            component="request",
            message=f"Borrow request by {current_user.email} refused: {e.message}",
            details={"equipmentId": request_in.equipmentId, "code": e.code},
            user_id=current_user.id,
            ip_address=await logging_service.get_request_ip(request),
        )
        raise

    await logging_service.audit(
        db,
        component="request",
        action="create",
        user_id=current_user.id,
        resource_type="request",
        resource_id=db_request.id,
        details={"equipmentId": db_request.equipment_id, "equipmentName": db_request.equipment_name},
        ip_address=await logging_service.get_request_ip(request),
    )

    return {"success": True, "data": serialize_request(db_request)}


@router.get("/user/{user_id}", response_model=RequestListResponse)
async def get_user_requests(
    request: Request,
    user_id: str = Path(..., description="Requester ID"),
    status_filter: Optional[RequestStatus] = Query(None, alias="status", description="Filter by status"),
    params: PaginationParams = Depends(get_pagination),
    current_user: User = Depends(get_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    A requester's own requests, newest first
    """
    # Only admins may look at someone else's requests
    if user_id != current_user.id:
        await authorize(
            db,
            current_user,
            roles_with(Capability.REQUEST_READ_ALL),
            ip_address=await logging_service.get_request_ip(request),
        )

    requests, total, status_counts = await crud_request.list_for_user(
        db,
        user_id=user_id,
        status=status_filter.value if status_filter else None,
        params=params,
    )
    return _list_payload(requests, total, status_counts, params)


@router.get("", response_model=RequestListResponse)
async def get_all_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status", description="Filter by status"),
    student_name: Optional[str] = Query(None, alias="studentName", description="Requester name contains"),
    equipment_name: Optional[str] = Query(None, alias="equipmentName", description="Equipment name contains"),
    params: PaginationParams = Depends(get_pagination),
    current_user: User = Depends(get_request_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    All borrow requests (admin)
    """
    requests, total, status_counts = await crud_request.list_all(
        db,
        status=status_filter.value if status_filter else None,
        student_name=student_name,
        equipment_name=equipment_name,
        params=params,
    )
    return _list_payload(requests, total, status_counts, params)


@router.get("/admin/stats", response_model=AdminStatsResponse)
async def get_admin_stats(
    current_user: User = Depends(get_stats_reader),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Dashboard statistics (admin)
    """
    totals = await crud_equipment.get_totals(db)
    request_breakdown = await crud_request.count_by_status(db)
    user_breakdown = await crud_user.count_by_role(db)

    return {
        "success": True,
        "data": {
            "stats": {
                "totalEquipment": totals["total"],
                "availableEquipment": totals["available"],
                "borrowedEquipment": totals["total"] - totals["available"],
                "pendingRequests": request_breakdown[RequestStatus.PENDING.value],
                "activeLoans": request_breakdown[RequestStatus.APPROVED.value],
                "totalUsers": sum(user_breakdown.values()),
            },
            "userBreakdown": user_breakdown,
            "requestBreakdown": request_breakdown,
        },
    }


@router.get("/{request_id}", response_model=RequestDetailResponse)
async def get_request_detail(
    request_id: str = Path(..., description="Request ID"),
    current_user: User = Depends(get_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    A request with its status history (owner or admin)
    """
    db_request = await crud_request.get_detail(db, request_id=request_id)
    if not db_request:
        raise NotFoundError("Request not found", details={"requestId": request_id})

    if db_request.student_id != current_user.id and not has_capability(
        current_user.role, Capability.REQUEST_READ_ALL
    ):
        raise Forbidden("You can only view your own requests")

    return {"success": True, "data": serialize_request_detail(db_request)}


@router.post("/{request_id}/approve", response_model=RequestResponse)
async def approve_request(
    request: Request,
    body: Optional[RequestApprove] = None,
    request_id: str = Path(..., description="Request ID"),
    current_user: User = Depends(get_request_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Approve a pending request, taking one unit of the equipment (admin)
    """
    body = body or RequestApprove()
    user_id = current_user.id
    try:
        db_request = await crud_request.approve(
            db, request_id=request_id, admin=current_user, notes=body.approvalNotes
        )
    except PortalError as e:
        await _log_rejected_transition(
            db, request, action="approve", request_id=request_id, user_id=user_id, error=e
        )
        raise

    await logging_service.audit(
        db,
        component="request",
        action="approve",
        user_id=current_user.id,
        resource_type="request",
        resource_id=request_id,
        details={"equipmentId": db_request.equipment_id, "notes": body.approvalNotes},
        ip_address=await logging_service.get_request_ip(request),
    )

    return {"success": True, "data": serialize_request(db_request)}


@router.post("/{request_id}/reject", response_model=RequestResponse)
async def reject_request(
    request: Request,
    body: RequestReject,
    request_id: str = Path(..., description="Request ID"),
    current_user: User = Depends(get_request_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Reject a pending request (admin)
    """
    user_id = current_user.id
    try:
        db_request = await crud_request.reject(
            db, request_id=request_id, admin=current_user, reason=body.reason
        )
    except PortalError as e:
        await _log_rejected_transition(
            db, request, action="reject", request_id=request_id, user_id=user_id, error=e
        )
        raise

    await logging_service.audit(
        db,
        component="request",
        action="reject",
        user_id=current_user.id,
        resource_type="request",
        resource_id=request_id,
        details={"reason": body.reason},
        ip_address=await logging_service.get_request_ip(request),
    )

    return {"success": True, "data": serialize_request(db_request)}


@router.post("/{request_id}/return", response_model=RequestResponse)
async def return_request(
    request: Request,
    body: Optional[RequestReturn] = None,
    request_id: str = Path(..., description="Request ID"),
    current_user: User = Depends(get_request_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Mark an approved request as returned, giving the unit back (admin)
    """
    body = body or RequestReturn()
    user_id = current_user.id
    try:
        db_request, restored = await crud_request.mark_returned(
            db,
            request_id=request_id,
            admin=current_user,
            condition=body.condition.value if body.condition else None,
            notes=body.returnNotes,
        )
    except PortalError as e:
        await _log_rejected_transition(
            db, request, action="return", request_id=request_id, user_id=user_id, error=e
        )
        raise

    if not restored:
        await logging_service.warning(
            db,
            component="request",
            message=f"Request {request_id} returned but equipment {db_request.equipment_id} no longer exists",
            details={"equipmentId": db_request.equipment_id, "equipmentName": db_request.equipment_name},
            user_id=current_user.id,
            request_id=request_id,
        )

    await logging_service.audit(
        db,
        component="request",
        action="return",
        user_id=current_user.id,
        resource_type="request",
        resource_id=request_id,
        details={"condition": db_request.return_condition, "notes": body.returnNotes},
        ip_address=await logging_service.get_request_ip(request),
    )

    return {"success": True, "data": serialize_request(db_request)}
