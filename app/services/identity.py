"""
Identity collaborator: who is acting on the current request.
"""
from __future__ import annotations

from typing import Optional, Protocol

from app.workflow.errors import AuthenticationRequired


class Identity(Protocol):
    def current_user_id(self) -> Optional[str]: ...


class StaticIdentity:
    """Identity bound once per request (from the ``X-User-Id`` header)."""

    def __init__(self, user_id: Optional[str]):
        self._user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self._user_id


def require_user(identity: Identity) -> str:
    """Return the current user id or fail before anything is written."""
    user_id = identity.current_user_id()
    if not user_id or not user_id.strip():
        raise AuthenticationRequired()
    return user_id.strip()
