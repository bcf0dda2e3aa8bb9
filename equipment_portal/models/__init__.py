from equipment_portal.models.users import Role, User
from equipment_portal.models.equipment import Condition, Equipment
from equipment_portal.models.requests import BorrowRequest, RequestStatus, RequestStatusHistory
from equipment_portal.models.logs import SystemLog

# Re-export every model so other modules can import from one place
__all__ = [
    "Role",
    "User",
    "Condition",
    "Equipment",
    "BorrowRequest",
    "RequestStatus",
    "RequestStatusHistory",
    "SystemLog",
]
