from __future__ import annotations

from typing import Any

from fastapi import Header, HTTPException

from ..settings import settings


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    if not settings.api_key:
        return
    if (x_api_key or "") != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def actor_context(
    x_tenant_id: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Caller identity, passed through to audit entries untouched."""
    actor: dict[str, Any] = {}
    if x_tenant_id:
        actor["tenantId"] = x_tenant_id
    if x_user_id:
        actor["userId"] = x_user_id
    return actor
