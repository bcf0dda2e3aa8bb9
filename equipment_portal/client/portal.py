import logging
from datetime import date
from typing import Any, Dict, Optional

import httpx

from equipment_portal.client.session import PortalSession, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"


class PortalAPIError(Exception):
    """Error envelope returned by the portal API"""

    def __init__(self, status_code: int, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}

    @classmethod
    def from_response(cls, response: httpx.Response) -> "PortalAPIError":
        try:
            body = response.json()
        except ValueError:
            return cls(response.status_code, "HTTP_ERROR", response.reason_phrase or "Request failed")

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return cls(
                response.status_code,
                error.get("code", "HTTP_ERROR"),
                error.get("message", "Request failed"),
                error.get("details"),
            )
        detail = body.get("detail") if isinstance(body, dict) else None
        return cls(response.status_code, "HTTP_ERROR", str(detail or response.reason_phrase))


class PortalClient:
    """
    Async client for the equipment portal API

    Every authenticated call takes the PortalSession to act as. login and
    register return a new session and persist it to the store; logout closes
    it and clears the store.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        store: Optional[SessionStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.store = store or SessionStore()
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        session: Optional[PortalSession] = None,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if session is not None:
            if not session.active:
                raise PortalAPIError(401, "UNAUTHENTICATED", "Session is closed, sign in again")
            headers.update(session.auth_headers())
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self._client.request(method, path, headers=headers, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise

        if response.is_error:
            raise PortalAPIError.from_response(response)
        return response.json().get("data")

    # Auth

    def _start_session(self, data: Dict[str, Any]) -> PortalSession:
        session = PortalSession(data["token"], data["user"])
        session.save(self.store)
        return session

    async def register(self, name: str, email: str, password: str, role: str = "student") -> PortalSession:
        data = await self._request(
            "POST",
            "/api/auth/register",
            json={"name": name, "email": email, "password": password, "role": role},
        )
        return self._start_session(data)

    async def login(self, email: str, password: str, role: Optional[str] = None) -> PortalSession:
        payload = {"email": email, "password": password}
        if role:
            payload["role"] = role
        data = await self._request("POST", "/api/auth/login", json=payload)
        return self._start_session(data)

    def restore_session(self) -> Optional[PortalSession]:
        """Session saved by an earlier login, if any"""
        return PortalSession.from_store(self.store)

    async def logout(self, session: PortalSession) -> None:
        """Tear the session down locally even if the server call fails"""
        try:
            if session.active:
                await self._request("POST", "/api/auth/logout", session=session)
        except (PortalAPIError, httpx.HTTPError) as e:
            logger.warning("Logout request failed, clearing the local session anyway: %s", e)
        finally:
            session.close()
            self.store.clear()

    async def me(self, session: PortalSession) -> Dict[str, Any]:
        return await self._request("GET", "/api/auth/me", session=session)

    # Equipment

    async def list_equipment(
        self, category: Optional[str] = None, search: Optional[str] = None, available_only: bool = False
    ) -> Dict[str, Any]:
        params = {"category": category, "search": search}
        if available_only:
            params["availableOnly"] = "true"
        return await self._request("GET", "/api/equipment", params=params)

    async def get_equipment(self, equipment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/equipment/{equipment_id}")

    async def create_equipment(self, session: PortalSession, **fields: Any) -> Dict[str, Any]:
        return await self._request("POST", "/api/equipment", session=session, json=fields)

    async def update_equipment(self, session: PortalSession, equipment_id: str, **fields: Any) -> Dict[str, Any]:
        return await self._request("PUT", f"/api/equipment/{equipment_id}", session=session, json=fields)

    async def delete_equipment(self, session: PortalSession, equipment_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/api/equipment/{equipment_id}", session=session)

    # Borrow requests

    async def create_request(
        self,
        session: PortalSession,
        equipment_id: str,
        borrow_from: date,
        borrow_to: date,
        purpose: str,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/requests/create",
            session=session,
            json={
                "equipmentId": equipment_id,
                "borrowFromDate": borrow_from.isoformat(),
                "borrowToDate": borrow_to.isoformat(),
                "purpose": purpose,
                "notes": notes,
            },
        )

    async def get_request(self, session: PortalSession, request_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/requests/{request_id}", session=session)

    async def list_my_requests(
        self, session: PortalSession, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/api/requests/user/{session.user_id}",
            session=session,
            params={"status": status, "page": page, "limit": limit},
        )

    async def list_requests(
        self,
        session: PortalSession,
        status: Optional[str] = None,
        student_name: Optional[str] = None,
        equipment_name: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        return await self._request(
            "GET",
            "/api/requests",
            session=session,
            params={
                "status": status,
                "studentName": student_name,
                "equipmentName": equipment_name,
                "page": page,
                "limit": limit,
            },
        )

    async def approve_request(
        self, session: PortalSession, request_id: str, approval_notes: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/api/requests/{request_id}/approve", session=session, json={"approvalNotes": approval_notes}
        )

    async def reject_request(self, session: PortalSession, request_id: str, reason: str) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/api/requests/{request_id}/reject", session=session, json={"reason": reason}
        )

    async def return_request(
        self,
        session: PortalSession,
        request_id: str,
        condition: Optional[str] = None,
        return_notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/requests/{request_id}/return",
            session=session,
            json={"condition": condition, "returnNotes": return_notes},
        )

    async def admin_stats(self, session: PortalSession) -> Dict[str, Any]:
        return await self._request("GET", "/api/requests/admin/stats", session=session)
