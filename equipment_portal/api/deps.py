from fastapi import Depends, Query

from equipment_portal.config import settings
from equipment_portal.core.auth import get_current_user, require_capability
from equipment_portal.core.permissions import Capability
from equipment_portal.models.users import User
from equipment_portal.schemas import PaginationParams


# Any authenticated user
async def get_authenticated_user(
    current_user: User = Depends(get_current_user),
) -> User:
    return current_user


# Student or staff member allowed to submit borrow requests
get_borrower_user = require_capability(Capability.REQUEST_CREATE)

# Admin allowed to manage equipment
get_equipment_manager = require_capability(Capability.EQUIPMENT_MANAGE)

# Admin allowed to decide on and close borrow requests
get_request_admin = require_capability(Capability.REQUEST_DECIDE)

# Admin allowed to read statistics
get_stats_reader = require_capability(Capability.STATS_READ)


def get_pagination(
    page: int = Query(1, ge=1, le=1_000_000, description="Page number"),
    limit: int = Query(
        settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="Page size"
    ),
) -> PaginationParams:
    """
    Dependency: pagination query parameters
    """
    return PaginationParams(page=page, limit=limit)
