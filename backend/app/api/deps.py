"""Shared route helpers: caller identity and service-error translation."""
from typing import Any, Callable, Optional

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.errors import ServiceError


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


async def run_service(db: AsyncSession, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a sync-Session service function on the request's async session."""
    try:
        return await db.run_sync(lambda session: fn(session, *args, **kwargs))
    except ServiceError as exc:
        await db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
