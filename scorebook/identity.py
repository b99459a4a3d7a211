from abc import ABC, abstractmethod
from typing import Optional

from fastapi import Request

from scorebook.errors import AuthenticationError

USER_HEADER = "X-User-Id"


class IdentityProvider(ABC):
    """Who is scoring. Everything the core reads or writes is scoped to this user."""

    @abstractmethod
    def current_user_id(self) -> Optional[str]: ...

    def require_user(self) -> str:
        user_id = self.current_user_id()
        if not user_id:
            raise AuthenticationError("Sign in to continue")
        return user_id


class StaticIdentity(IdentityProvider):
    def __init__(self, user_id: Optional[str]):
        self.user_id = user_id

    def current_user_id(self):
        return self.user_id


class HeaderIdentity(IdentityProvider):
    """Trusts the user id the upstream auth layer puts on the request."""

    def __init__(self, request: Request):
        self.request = request

    def current_user_id(self):
        value = self.request.headers.get(USER_HEADER, "").strip()
        return value or None


def get_identity(request: Request) -> IdentityProvider:
    return HeaderIdentity(request)
