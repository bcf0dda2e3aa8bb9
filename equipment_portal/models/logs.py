import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from equipment_portal.database import Base


class SystemLog(Base):
    """System log model, mapped to the system_logs table"""
    __tablename__ = "system_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    level = Column(String(10), nullable=False, index=True)  # info, warning, error
    component = Column(String(20), nullable=False, index=True)  # auth, equipment, request, system
    message = Column(Text, nullable=False)
    details = Column(Text, nullable=True)  # JSON
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    request_id = Column(String(36), ForeignKey("borrow_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    ip_address = Column(String(45), nullable=True)

    user = relationship("User", foreign_keys=[user_id])
    request = relationship("BorrowRequest", foreign_keys=[request_id])

    def __repr__(self) -> str:
        return f"<SystemLog {self.id} {self.level}>"
