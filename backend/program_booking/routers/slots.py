from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, get_slot_resolver
from ..domain.errors import InvalidSlotError, ReservationError
from ..domain.slots import SlotWindowResolver
from ..infrastructure.repositories import SqlAlchemyReservationStore
from ..models import Program
from ..schemas import SlotDefinition
from ..usecases import slots as slot_usecase

router = APIRouter(prefix="/slots", tags=["slots"])


def _programs(program: Optional[Program]) -> list[Program]:
    return [program] if program is not None else list(Program)


@router.get("", response_model=List[SlotDefinition])
async def list_slots(
    program: Optional[Program] = Query(default=None),
    date: Optional[str] = Query(default=None, description="Venue-local date (YYYY-MM-DD)"),
    resolver: SlotWindowResolver = Depends(get_slot_resolver),
) -> list[SlotDefinition]:
    try:
        windows = slot_usecase.list_slots(resolver, programs=_programs(program), day=date)
    except InvalidSlotError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_slot", "message": str(exc)},
        ) from exc
    return [SlotDefinition.from_window(window=window, tz=resolver.tz) for window in windows]


@router.get("/availability", response_model=List[SlotDefinition])
async def list_availability(
    date: str = Query(..., description="Venue-local date (YYYY-MM-DD)"),
    program: Optional[Program] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    resolver: SlotWindowResolver = Depends(get_slot_resolver),
) -> list[SlotDefinition]:
    store = SqlAlchemyReservationStore(session)
    try:
        windows = await slot_usecase.list_availability(store, resolver, programs=_programs(program), day=date)
    except InvalidSlotError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_slot", "message": str(exc)},
        ) from exc
    except ReservationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="storage error") from exc
    return [SlotDefinition.from_window(window=window, tz=resolver.tz) for window in windows]
