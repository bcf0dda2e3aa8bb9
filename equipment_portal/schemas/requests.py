from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from equipment_portal.models.equipment import Condition
from equipment_portal.models.requests import RequestStatus
from equipment_portal.schemas import Pagination, ResponseBase


# Request models
class RequestCreate(BaseModel):
    equipmentId: str = Field(..., min_length=1, description="Equipment ID")
    borrowFromDate: date = Field(..., description="First day of the loan")
    borrowToDate: date = Field(..., description="Last day of the loan, after borrowFromDate")
    purpose: str = Field(..., min_length=1, description="What the equipment is needed for")
    notes: Optional[str] = Field(None, description="Additional notes")

    @field_validator("purpose")
    def purpose_must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError("Purpose must not be blank")
        return v.strip()

    @field_validator("borrowToDate")
    def to_date_must_be_after_from_date(cls, v, values):
        if "borrowFromDate" in values.data and v <= values.data["borrowFromDate"]:
            raise ValueError("borrowToDate must be after borrowFromDate")
        return v


class RequestApprove(BaseModel):
    approvalNotes: Optional[str] = Field(None, description="Notes for the requester")


class RequestReject(BaseModel):
    reason: str = Field(..., min_length=1, description="Reason for rejection")

    @field_validator("reason")
    def reason_must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError("Reason must not be blank")
        return v.strip()


class RequestReturn(BaseModel):
    condition: Optional[Condition] = Field(None, description="Condition the equipment came back in")
    returnNotes: Optional[str] = Field(None, description="Return notes")


# Response models
class BorrowRequestOut(BaseModel):
    id: str = Field(..., description="Request ID")
    studentId: str = Field(..., description="Requester ID")
    studentName: str = Field(..., description="Requester name at submission time")
    studentEmail: str = Field(..., description="Requester email at submission time")
    equipmentId: str = Field(..., description="Equipment ID")
    equipmentName: str = Field(..., description="Equipment name at submission time")
    borrowFromDate: date
    borrowToDate: date
    purpose: str
    notes: Optional[str] = None
    status: RequestStatus
    approvedBy: Optional[str] = None
    approvedByName: Optional[str] = None
    decisionDate: Optional[datetime] = None
    decisionNotes: Optional[str] = None
    returnedAt: Optional[datetime] = None
    returnCondition: Optional[str] = None
    returnNotes: Optional[str] = None
    createdAt: datetime
    updatedAt: Optional[datetime] = None


class StatusHistory(BaseModel):
    status: RequestStatus = Field(..., description="Status entered")
    timestamp: datetime = Field(..., description="When it changed")
    operatorId: Optional[str] = Field(None, description="Who changed it")
    notes: Optional[str] = Field(None, description="Notes")


class BorrowRequestDetail(BorrowRequestOut):
    statusHistory: List[StatusHistory] = Field(..., description="Status history, oldest first")


class RequestResponse(ResponseBase):
    data: BorrowRequestOut


class RequestDetailResponse(ResponseBase):
    data: BorrowRequestDetail


class RequestListData(BaseModel):
    requests: List[BorrowRequestOut]
    pagination: Pagination
    statusCounts: Dict[str, int] = Field(..., description="Matching requests per status, ignoring the status filter")


class RequestListResponse(ResponseBase):
    data: RequestListData


class AdminStats(BaseModel):
    totalEquipment: int = Field(..., description="Sum of equipment quantities")
    availableEquipment: int = Field(..., description="Sum of available units")
    borrowedEquipment: int = Field(..., description="Units currently out on loan")
    pendingRequests: int
    activeLoans: int = Field(..., description="Approved requests not yet returned")
    totalUsers: int


class AdminStatsData(BaseModel):
    stats: AdminStats
    userBreakdown: Dict[str, int]
    requestBreakdown: Dict[str, int]


class AdminStatsResponse(ResponseBase):
    data: AdminStatsData
