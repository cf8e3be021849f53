"""Tenant context propagation via Python contextvars.

The TenantContext is set by middleware at the start of each request and is
accessible anywhere in the call stack via get_current_tenant(). Every query
and CRM call made on behalf of a request uses it to scope work to the
correct tenant.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request."""

    tenant_id: int
    subdomain: str
    name: str


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current request.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped request).
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- request is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    _tenant_context.reset(token)


# ── Paths that skip tenant resolution ───────────────────────────────────────

SKIP_TENANT_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
    # Linked from CRM notes, opened without a tenant host
    "/api/v1/badge-photos",
)

# Hostname labels that never name a tenant
RESERVED_SUBDOMAINS = frozenset({"www", "app", "api", "admin"})


def subdomain_from_host(host: str | None, root_domain: str) -> str | None:
    """Extract the tenant subdomain from a Host header.

    "acme.leads.example.com" with root "leads.example.com" -> "acme".
    Returns None for the bare root domain, reserved labels, or foreign hosts.
    """
    if not host:
        return None
    hostname = host.split(":", 1)[0].lower().strip(".")
    root = root_domain.lower().strip(".")
    if hostname == root or not hostname.endswith("." + root):
        return None
    label = hostname[: -(len(root) + 1)].split(".")[-1]
    if not label or label in RESERVED_SUBDOMAINS:
        return None
    return label
