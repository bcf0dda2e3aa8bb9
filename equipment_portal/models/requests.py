import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from equipment_portal.database import Base


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"


class BorrowRequest(Base):
    """
    Borrow request model, mapped to the borrow_requests table

    The student_* and equipment_name columns are snapshots taken when the
    request is created. They are not updated when the user or equipment record
    changes later, and equipment_id is not a foreign key so the
    request survives deletion of the equipment.
    """
    __tablename__ = "borrow_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Requester snapshot
    student_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    student_name = Column(String(100), nullable=False)
    student_email = Column(String(255), nullable=False)

    # Equipment snapshot
    equipment_id = Column(String(36), nullable=False, index=True)
    equipment_name = Column(String(100), nullable=False)

    borrow_from_date = Column(Date, nullable=False)
    borrow_to_date = Column(Date, nullable=False)
    purpose = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=RequestStatus.PENDING.value, index=True)

    # Decision metadata, set once the request leaves pending
    approved_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_name = Column(String(100), nullable=True)
    decision_date = Column(DateTime, nullable=True)
    decision_notes = Column(Text, nullable=True)

    # Return metadata
    returned_at = Column(DateTime, nullable=True)
    returned_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    return_condition = Column(String(20), nullable=True)
    return_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)

    status_history = relationship(
        "RequestStatusHistory",
        back_populates="request",
        order_by="RequestStatusHistory.timestamp",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<BorrowRequest {self.id} {self.status}>"


class RequestStatusHistory(Base):
    """Request status history model, mapped to the request_status_history table"""
    __tablename__ = "request_status_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String(36), ForeignKey("borrow_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    operator_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)

    request = relationship("BorrowRequest", back_populates="status_history")
    operator = relationship("User", foreign_keys=[operator_id])

    def __repr__(self) -> str:
        return f"<RequestStatusHistory {self.status} for {self.request_id}>"
