"""FastAPI dependency injection for tenant-scoped resources and authentication.

These dependencies are used in endpoint function signatures to inject
the current tenant context, a database session, and the authenticated user.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.core.database import get_session
from src.leadsync.core.security import verify_token
from src.leadsync.core.tenant import TenantContext, get_current_tenant
from src.leadsync.models import User


async def get_tenant() -> TenantContext:
    """Get the current tenant context (set by TenantMiddleware)."""
    try:
        return get_current_tenant()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing tenant context",
        )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session for the request."""
    async for session in get_session():
        yield session


async def get_current_user(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from a Bearer JWT.

    Raises:
        HTTPException(401): No valid token, or the user is unknown or inactive.
        HTTPException(403): The token's tenant does not match the request tenant.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    try:
        user_id = int(payload["sub"])
        token_tenant_id = payload.get("tenant_id")
        if token_tenant_id is not None:
            token_tenant_id = int(token_tenant_id)
    except (KeyError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    if token_tenant_id is not None and token_tenant_id != tenant.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token tenant does not match request tenant context",
        )

    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.tenant_id == tenant.tenant_id,
            User.is_active.is_(True),
        )
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Allow only tenant administrators."""
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user
