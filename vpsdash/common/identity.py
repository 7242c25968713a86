"""Caller identity forwarded by the API gateway.

Internal services trust `x-user-id` / `x-user-role` because only the gateway,
which checks the API key and derives the role from it, can reach them.
"""

from dataclasses import dataclass
from uuid import uuid4

from fastapi import Header

from vpsdash.common.errors import AuthorizationError
from vpsdash.common.logging import trace_id_ctx, user_id_ctx


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: str = "user"
    trace_id: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_caller(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_trace_id: str | None = Header(default=None),
) -> Caller:
    """FastAPI dependency resolving the caller and binding log context."""

    trace_id = x_trace_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    if not x_user_id:
        raise AuthorizationError("Missing caller identity")
    user_id_ctx.set(x_user_id)
    return Caller(user_id=x_user_id, role=(x_user_role or "user").lower(), trace_id=trace_id)


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise AuthorizationError("Admin role required")
