import json
import logging
from typing import Any, Dict, Optional, Union

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from equipment_portal.models.logs import SystemLog

logger = logging.getLogger("equipment_portal.audit")

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _encode_details(details: Optional[Union[Dict[str, Any], str]]) -> Optional[str]:
    if not details:
        return None
    if isinstance(details, dict):
        return json.dumps(details, default=str)
    return str(details)


class LoggingService:
    """
    Audit trail of the portal

    Entries go to the system_logs table and to the "equipment_portal.audit"
    logger. Every call commits, so it is only used at a transaction boundary,
    after the operation being logged has been committed or rolled back.
    """

    @staticmethod
    async def log(
        db: AsyncSession,
        level: str,
        component: str,
        message: str,
        details: Optional[Union[Dict[str, Any], str]] = None,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> SystemLog:
        """
        Persist one entry

        Args:
            level: info, warning or error
            component: auth, equipment, request or system
            details: dict stored as JSON, or free text
            request_id: borrow request the entry is about, if any
        """
        logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s", component, message)

        entry = SystemLog(
            level=level,
            component=component,
            message=message,
            details=_encode_details(details),
            user_id=user_id,
            request_id=request_id,
            ip_address=ip_address,
        )
        db.add(entry)
        await db.commit()
        return entry

    @classmethod
    async def info(cls, db: AsyncSession, component: str, message: str, **context: Any) -> SystemLog:
        return await cls.log(db, "info", component, message, **context)

    @classmethod
    async def warning(cls, db: AsyncSession, component: str, message: str, **context: Any) -> SystemLog:
        """Operations that were refused or failed"""
        return await cls.log(db, "warning", component, message, **context)

    @classmethod
    async def error(cls, db: AsyncSession, component: str, message: str, **context: Any) -> SystemLog:
        return await cls.log(db, "error", component, message, **context)

    @classmethod
    async def audit(
        cls,
        db: AsyncSession,
        component: str,
        action: str,
        user_id: str,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> SystemLog:
        """
        Record a successful operation as "ACTION resource_type resource_id"

        Entries about a borrow request are linked to it through request_id.
        """
        audit_details = {"action": action, "resourceType": resource_type, "resourceId": resource_id}
        audit_details.update(details or {})

        return await cls.info(
            db,
            component,
            f"{action.upper()} {resource_type} {resource_id}",
            details=audit_details,
            user_id=user_id,
            request_id=resource_id if resource_type == "request" else None,
            ip_address=ip_address,
        )

    @classmethod
    async def get_request_ip(cls, request: Request) -> Optional[str]:
        """Client IP of an incoming request, honouring X-Forwarded-For"""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else None


logging_service = LoggingService()
