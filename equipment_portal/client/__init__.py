from equipment_portal.client.portal import PortalAPIError, PortalClient
from equipment_portal.client.session import TOKEN_KEY, USER_KEY, PortalSession, SessionStore

__all__ = [
    "PortalAPIError",
    "PortalClient",
    "PortalSession",
    "SessionStore",
    "TOKEN_KEY",
    "USER_KEY",
]
