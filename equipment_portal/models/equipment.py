import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from equipment_portal.database import Base


class Condition(str, enum.Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


class Equipment(Base):
    """Equipment model, mapped to the equipment table"""
    __tablename__ = "equipment"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False, unique=True, index=True)
    category = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=True)
    condition = Column(String(20), nullable=False, default=Condition.GOOD.value)
    quantity = Column(Integer, nullable=False, default=1)
    available = Column(Integer, nullable=False, default=1)
    location = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    creator = relationship("User", foreign_keys=[created_by])

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_equipment_quantity"),
        CheckConstraint("available >= 0 AND available <= quantity", name="ck_equipment_available"),
    )

    def __repr__(self) -> str:
        return f"<Equipment {self.name} {self.available}/{self.quantity}>"
