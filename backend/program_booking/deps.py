from functools import lru_cache
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .domain.slots import DEFAULT_SLOT_TABLE, SlotWindowResolver
from .utils.auth import decode_staff_token
from .utils.time import load_timezone

ANONYMOUS_STAFF = "anonymous"


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_slot_resolver(settings: Settings = Depends(get_settings)) -> SlotWindowResolver:
    return _resolver_for(settings.venue_timezone)


@lru_cache
def _resolver_for(tz_name: str) -> SlotWindowResolver:
    return SlotWindowResolver(DEFAULT_SLOT_TABLE, load_timezone(tz_name))


async def require_staff(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Placeholder staff guard.

    Open when STAFF_AUTH_SECRET is unset; otherwise a Bearer JWT with the staff
    role is required.
    """
    if settings.staff_auth_secret is None:
        return ANONYMOUS_STAFF

    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="staff token required",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if authorization is None:
        raise unauthorized
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise unauthorized
    try:
        return decode_staff_token(
            token.strip(),
            secret=settings.staff_auth_secret,
            algorithms=[settings.staff_auth_algorithm],
        )
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="staff role required") from exc
    except ValueError as exc:
        raise unauthorized from exc
