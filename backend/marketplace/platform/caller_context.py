"""
Caller identity for API routes.

Authentication happens upstream (gateway/session layer). By the time a
request reaches a route, the caller's user id and role are available either
on request.state (set by auth middleware) or as gateway headers.
user_id is NEVER accepted from a request body.
"""

from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from marketplace.models.user import UserRole
from marketplace.platform.errors import AuthenticationError, ForbiddenError


@dataclass(frozen=True)
class CallerContext:
    user_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN


def get_caller_context(request: Request) -> CallerContext:
    """Resolve caller identity from request state, then gateway headers."""
    user_id = getattr(request.state, "user_id", None) or request.headers.get("X-User-Id")
    raw_role = getattr(request.state, "role", None) or request.headers.get("X-User-Role")

    if not user_id or not raw_role:
        raise AuthenticationError()

    try:
        role = UserRole(str(raw_role).upper())
    except ValueError:
        raise AuthenticationError("Unknown role")

    return CallerContext(user_id=user_id, role=role)


def require_role(*roles: UserRole) -> Callable[[Request], CallerContext]:
    """
    Build a dependency that admits only the given roles.

    SUPER_ADMIN is always admitted.
    """
    allowed = set(roles) | {UserRole.SUPER_ADMIN}

    def dependency(request: Request) -> CallerContext:
        ctx = get_caller_context(request)
        if ctx.role not in allowed:
            names = ", ".join(sorted(r.value.lower() for r in roles))
            raise ForbiddenError(f"This action requires role: {names}")
        return ctx

    return dependency
