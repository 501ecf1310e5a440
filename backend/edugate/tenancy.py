"""Multi-tenancy: row-level isolation by school.

Key components:
  - _school_ctx            ContextVar holding the school id for the current request
  - set / get / clear helpers for the ContextVar
  - resolve_school_id()    decides which school a caller is acting in
  - subdomain_from_host()  extracts a tenant hint from the Host header

The resolver only establishes scope. Whether the caller may do anything
in that school is the permission gate's job.
"""

import re
from contextvars import ContextVar

from edugate.auth.jwt import Identity
from edugate.middleware.exceptions import PermissionDeniedError, TenantRequiredError

# ── Request-scoped school context ───────────────────────────

_school_ctx: ContextVar[str | None] = ContextVar("_school_ctx", default=None)


def set_current_school_id(school_id: str) -> None:
    _school_ctx.set(school_id)


def get_current_school_id() -> str:
    """Return the current school id or raise if unset."""
    school_id = _school_ctx.get()
    if school_id is None:
        raise TenantRequiredError(
            "No school context: this endpoint requires a school-scoped user"
        )
    return school_id


def clear_school_context() -> None:
    _school_ctx.set(None)


# ── Resolution ──────────────────────────────────────────────

def resolve_school_id(identity: Identity, tenant_hint: str | None = None) -> str:
    """Return the school id this request operates on.

    - Platform users have no school of their own and must name a target
      school explicitly (header or subdomain).
    - Everyone else acts in the school carried by their token. A hint
      naming a different school is a cross-tenant attempt.
    """
    if identity.is_platform:
        if not tenant_hint:
            raise TenantRequiredError(
                "Platform users must specify the target school (X-Tenant-Id)"
            )
        return tenant_hint

    if not identity.school_id:
        raise TenantRequiredError("No school context: sign in to a school first")

    if tenant_hint and tenant_hint != identity.school_id:
        raise PermissionDeniedError("You do not have access to this school")

    return identity.school_id


_LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0", "testserver")
_SUBDOMAIN_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def subdomain_from_host(host: str | None) -> str | None:
    """Return the tenant subdomain of `host`, or None for bare/local hosts.

    `greenfield.edugate.app` → "greenfield"; "localhost:8000" → None.
    """
    if not host:
        return None
    hostname = host.split(":", 1)[0].lower()
    if hostname in _LOCAL_HOSTS or hostname.replace(".", "").isdigit():
        return None
    # "<school>.localhost" in development, "<school>.<domain>.<tld>" otherwise
    if not hostname.endswith(".localhost") and hostname.count(".") < 2:
        return None
    candidate = hostname.split(".", 1)[0]
    if candidate in ("www", "api") or not _SUBDOMAIN_RE.match(candidate):
        return None
    return candidate
