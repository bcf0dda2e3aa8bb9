import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Union

from equipment_portal.core.permissions import capabilities_for

logger = logging.getLogger(__name__)

# Fixed storage keys shared with the web frontend
TOKEN_KEY = "equipmentPortal_token"
USER_KEY = "equipmentPortal_user"


class SessionStore:
    """
    Client-side persistence for the token and user profile

    Backed by a JSON file when a path is given, otherwise kept in memory.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._data: Dict[str, Any] = {}
        if self.path and self.path.exists():
            try:
                self._data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
                self._data = {}

    def _save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data), encoding="utf-8")
        os.chmod(self.path, 0o600)

    def get_token(self) -> Optional[str]:
        return self._data.get(TOKEN_KEY)

    def set_token(self, token: str) -> None:
        if token:
            self._data[TOKEN_KEY] = token
            self._save()

    def get_user(self) -> Optional[Dict[str, Any]]:
        return self._data.get(USER_KEY)

    def set_user(self, user: Dict[str, Any]) -> None:
        if user:
            self._data[USER_KEY] = user
            self._save()

    def clear(self) -> None:
        """Remove token and user"""
        self._data.pop(TOKEN_KEY, None)
        self._data.pop(USER_KEY, None)
        if self.path and self.path.exists():
            self.path.unlink()


class PortalSession:
    """
    The signed-in actor, passed explicitly to every authenticated client call

    Created by login/register or restored from a SessionStore, and closed by
    logout. A closed session carries no credential.
    """

    def __init__(self, token: str, user: Dict[str, Any]):
        self.token: Optional[str] = token
        self.user: Dict[str, Any] = dict(user)

    @classmethod
    def from_store(cls, store: SessionStore) -> Optional["PortalSession"]:
        token = store.get_token()
        user = store.get_user()
        if not token or not user:
            return None
        return cls(token, user)

    def save(self, store: SessionStore) -> None:
        if self.token:
            store.set_token(self.token)
        store.set_user(self.user)

    @property
    def active(self) -> bool:
        return bool(self.token)

    @property
    def user_id(self) -> str:
        return self.user["id"]

    @property
    def role(self) -> str:
        return self.user.get("role", "")

    @property
    def capabilities(self) -> FrozenSet[str]:
        return capabilities_for(self.role)

    def can(self, capability: str) -> bool:
        """Whether the display layer should offer an operation"""
        return self.active and capability in self.capabilities

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def close(self) -> None:
        self.token = None

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"<PortalSession {self.user.get('email')} ({self.role}) {state}>"
