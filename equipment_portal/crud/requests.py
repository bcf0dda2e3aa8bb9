from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from equipment_portal.core.exceptions import (
    CapacityExceededError,
    Forbidden,
    InvalidQuantityError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from equipment_portal.core.permissions import Capability, has_capability
from equipment_portal.crud.base import CRUDBase, contains_ci
from equipment_portal.crud.equipment import equipment as crud_equipment
from equipment_portal.models.requests import BorrowRequest, RequestStatus, RequestStatusHistory
from equipment_portal.models.users import User
from equipment_portal.schemas import PaginationParams
from equipment_portal.schemas.requests import RequestCreate

# Legal transitions of the borrow request state machine
TRANSITIONS = {
    RequestStatus.PENDING: {RequestStatus.APPROVED, RequestStatus.REJECTED},
    RequestStatus.APPROVED: {RequestStatus.RETURNED},
    RequestStatus.REJECTED: set(),
    RequestStatus.RETURNED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return RequestStatus(target) in TRANSITIONS[RequestStatus(current)]


def serialize_request(request: BorrowRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "studentId": request.student_id,
        "studentName": request.student_name,
        "studentEmail": request.student_email,
        "equipmentId": request.equipment_id,
        "equipmentName": request.equipment_name,
        "borrowFromDate": request.borrow_from_date,
        "borrowToDate": request.borrow_to_date,
        "purpose": request.purpose,
        "notes": request.notes,
        "status": request.status,
        "approvedBy": request.approved_by,
        "approvedByName": request.approved_by_name,
        "decisionDate": request.decision_date,
        "decisionNotes": request.decision_notes,
        "returnedAt": request.returned_at,
        "returnCondition": request.return_condition,
        "returnNotes": request.return_notes,
        "createdAt": request.created_at,
        "updatedAt": request.updated_at,
    }


def serialize_request_detail(request: BorrowRequest) -> Dict[str, Any]:
    detail = serialize_request(request)
    detail["statusHistory"] = [
        {
            "status": history.status,
            "timestamp": history.timestamp,
            "operatorId": history.operator_id,
            "notes": history.notes,
        }
        for history in request.status_history
    ]
    return detail


class CRUDRequest(CRUDBase[BorrowRequest, RequestCreate, Any]):
    """
    Borrow request lifecycle

    Every status change is a conditional UPDATE on the current status, and the
    matching change to the equipment available count runs in the same
    transaction. A failed precondition rolls the whole unit of work back.
    """

    async def create_request(
        self, db: AsyncSession, *, obj_in: RequestCreate, requester: User
    ) -> BorrowRequest:
        """Submit a new request in pending state; availability is not checked yet"""
        if not has_capability(requester.role, Capability.REQUEST_CREATE):
            raise Forbidden("Only students and staff can submit borrow requests")
        if obj_in.borrowToDate <= obj_in.borrowFromDate:
            raise ValidationError("borrowToDate must be after borrowFromDate", field="borrowToDate")
        if not obj_in.purpose or not obj_in.purpose.strip():
            raise ValidationError("Purpose is required", field="purpose")

        equipment = await crud_equipment.get(db, obj_in.equipmentId)
        if equipment is None:
            raise NotFoundError("Equipment not found", details={"equipmentId": obj_in.equipmentId})

        now = datetime.utcnow()
        db_request = BorrowRequest(
            student_id=requester.id,
            student_name=requester.name,
            student_email=requester.email,
            equipment_id=equipment.id,
            equipment_name=equipment.name,
            borrow_from_date=obj_in.borrowFromDate,
            borrow_to_date=obj_in.borrowToDate,
            purpose=obj_in.purpose.strip(),
            notes=obj_in.notes,
            status=RequestStatus.PENDING.value,
            created_at=now,
        )
        db.add(db_request)
        await db.flush()

        db.add(RequestStatusHistory(
            request_id=db_request.id,
            status=RequestStatus.PENDING.value,
            timestamp=now,
            operator_id=requester.id,
            notes="Request submitted",
        ))

        await db.commit()
        await db.refresh(db_request)
        return db_request

    async def get_detail(self, db: AsyncSession, *, request_id: str) -> Optional[BorrowRequest]:
        """Fetch a request together with its status history"""
        query = (
            select(BorrowRequest)
            .options(selectinload(BorrowRequest.status_history))
            .where(BorrowRequest.id == request_id)
        )
        result = await db.execute(query)
        return result.scalars().first()

    async def _get_or_404(self, db: AsyncSession, request_id: str) -> BorrowRequest:
        request = await self.get(db, request_id)
        if request is None:
            raise NotFoundError("Request not found", details={"requestId": request_id})
        return request

    async def _transition(
        self,
        db: AsyncSession,
        *,
        request: BorrowRequest,
        target: RequestStatus,
        operator_id: str,
        notes: Optional[str],
        values: Dict[str, Any],
    ) -> None:
        """
        Compare-and-swap the status of a request from its only legal source state

        Raises InvalidStateError when the stored status is not that source
        state. Does not commit.
        """
        source = next(s for s, targets in TRANSITIONS.items() if target in targets)
        now = datetime.utcnow()
        stmt = (
            update(BorrowRequest)
            .where(BorrowRequest.id == request.id, BorrowRequest.status == source.value)
            .values(status=target.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount != 1:
            await db.rollback()
            await db.refresh(request)
            raise InvalidStateError(
                f"Only {source.value} requests can be {target.value}",
                current_status=request.status,
            )

        db.add(RequestStatusHistory(
            request_id=request.id,
            status=target.value,
            timestamp=now,
            operator_id=operator_id,
            notes=notes,
        ))

    async def approve(
        self, db: AsyncSession, *, request_id: str, admin: User, notes: Optional[str] = None
    ) -> BorrowRequest:
        """
        pending → approved, taking one unit of the equipment

        Raises CapacityExceededError, leaving the request pending, when no unit
        is available.
        """
        request = await self._get_or_404(db, request_id)
        equipment_id = request.equipment_id

        await self._transition(
            db,
            request=request,
            target=RequestStatus.APPROVED,
            operator_id=admin.id,
            notes=notes,
            values={
                "approved_by": admin.id,
                "approved_by_name": admin.name,
                "decision_date": datetime.utcnow(),
                "decision_notes": notes,
            },
        )

        if not await crud_equipment.reserve_unit(db, equipment_id=equipment_id):
            await db.rollback()
            equipment = await crud_equipment.get(db, equipment_id)
            if equipment is None:
                raise NotFoundError(
                    "Equipment no longer exists", details={"equipmentId": equipment_id}
                )
            raise CapacityExceededError(
                f"No units of {equipment.name} are available",
                details={"equipmentId": equipment.id, "available": equipment.available},
            )

        await db.commit()
        await db.refresh(request)
        return request

    async def reject(
        self, db: AsyncSession, *, request_id: str, admin: User, reason: str
    ) -> BorrowRequest:
        """pending → rejected; no inventory effect"""
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")

        request = await self._get_or_404(db, request_id)

        await self._transition(
            db,
            request=request,
            target=RequestStatus.REJECTED,
            operator_id=admin.id,
            notes=reason,
            values={
                "approved_by": admin.id,
                "approved_by_name": admin.name,
                "decision_date": datetime.utcnow(),
                "decision_notes": reason,
            },
        )

        await db.commit()
        await db.refresh(request)
        return request

    async def mark_returned(
        self,
        db: AsyncSession,
        *,
        request_id: str,
        admin: User,
        condition: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Tuple[BorrowRequest, bool]:
        """
        approved → returned, giving the unit back

        Returns the request and whether a unit was restored. Nothing is
        restored when the equipment has been deleted in the meantime.
        """
        request = await self._get_or_404(db, request_id)

        await self._transition(
            db,
            request=request,
            target=RequestStatus.RETURNED,
            operator_id=admin.id,
            notes=notes,
            values={
                "returned_at": datetime.utcnow(),
                "returned_by": admin.id,
                "return_condition": condition,
                "return_notes": notes,
            },
        )

        restored = await crud_equipment.release_unit(db, equipment_id=request.equipment_id)
        if not restored:
            equipment = await crud_equipment.get(db, request.equipment_id)
            if equipment is not None:
                await db.rollback()
                await db.refresh(equipment)
                raise InvalidQuantityError(
                    f"Returning would raise available units of {equipment.name} above its quantity",
                    details={
                        "equipmentId": equipment.id,
                        "quantity": equipment.quantity,
                        "available": equipment.available,
                    },
                )

        await db.commit()
        await db.refresh(request)
        return request, restored

    async def _page(
        self,
        db: AsyncSession,
        *,
        conditions: List[Any],
        status: Optional[str],
        params: PaginationParams,
    ) -> Tuple[List[BorrowRequest], int, Dict[str, int]]:
        """
        One page of requests newest first, the total, and per-status counts

        The per-status counts apply every filter except the status filter.
        """
        filters = list(conditions)
        if status:
            filters.append(BorrowRequest.status == status)

        count_query = select(func.count()).select_from(BorrowRequest)
        if filters:
            count_query = count_query.where(and_(*filters))
        total = (await db.execute(count_query)).scalar() or 0

        query = select(BorrowRequest).order_by(BorrowRequest.created_at.desc(), BorrowRequest.id.asc())
        if filters:
            query = query.where(and_(*filters))
        query = query.offset(params.skip).limit(params.limit)
        requests = (await db.execute(query)).scalars().all()

        status_query = select(BorrowRequest.status, func.count()).group_by(BorrowRequest.status)
        if conditions:
            status_query = status_query.where(and_(*conditions))
        status_counts = {s.value: 0 for s in RequestStatus}
        for status_value, count in (await db.execute(status_query)).all():
            status_counts[status_value] = count
        status_counts["all"] = sum(status_counts.values())

        return requests, total, status_counts

    async def list_for_user(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        params: PaginationParams,
        status: Optional[str] = None,
    ) -> Tuple[List[BorrowRequest], int, Dict[str, int]]:
        """A requester's own requests"""
        return await self._page(
            db, conditions=[BorrowRequest.student_id == user_id], status=status, params=params
        )

    async def list_all(
        self,
        db: AsyncSession,
        *,
        params: PaginationParams,
        status: Optional[str] = None,
        student_name: Optional[str] = None,
        equipment_name: Optional[str] = None,
    ) -> Tuple[List[BorrowRequest], int, Dict[str, int]]:
        """All requests, filtered by case-insensitive substrings of the snapshot names"""
        conditions = []
        if student_name:
            conditions.append(contains_ci(BorrowRequest.student_name, student_name))
        if equipment_name:
            conditions.append(contains_ci(BorrowRequest.equipment_name, equipment_name))
        return await self._page(db, conditions=conditions, status=status, params=params)

    async def count_by_status(self, db: AsyncSession) -> Dict[str, int]:
        query = select(BorrowRequest.status, func.count()).group_by(BorrowRequest.status)
        counts = {s.value: 0 for s in RequestStatus}
        for status_value, count in (await db.execute(query)).all():
            counts[status_value] = count
        return counts


request = CRUDRequest(BorrowRequest)
