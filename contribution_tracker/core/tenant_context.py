"""Request-scoped tenant context.

``TenantResolverMiddleware`` stores the resolved tenant in a
:class:`contextvars.ContextVar` for the duration of a request so that code
without access to the request object (error logging, for instance) can tell
which tenant is being served. The token returned by ``set_tenant_context``
must be handed back to ``reset_tenant_context`` once the response is sent.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import TypedDict

__all__ = [
    "TenantRuntimeContext",
    "get_current_tenant",
    "get_current_tenant_id",
    "reset_tenant_context",
    "set_tenant_context",
]


class TenantRuntimeContext(TypedDict):
    """Values stored in the tenant context during a request."""

    tenant_id: str
    tenant_prefix: str


_tenant_context: ContextVar[TenantRuntimeContext | None] = ContextVar(
    "tenant_runtime_context", default=None
)


def set_tenant_context(tenant_id: str, tenant_prefix: str) -> Token[TenantRuntimeContext | None]:
    """Persist the resolved tenant and return the token needed to undo it."""

    return _tenant_context.set({"tenant_id": tenant_id, "tenant_prefix": tenant_prefix})


def reset_tenant_context(token: Token[TenantRuntimeContext | None]) -> None:
    _tenant_context.reset(token)


def get_current_tenant() -> TenantRuntimeContext | None:
    return _tenant_context.get()


def get_current_tenant_id() -> str | None:
    """Return the tenant identifier for the current execution context, if any."""

    context = _tenant_context.get()
    if context is None:
        return None
    return context["tenant_id"]
