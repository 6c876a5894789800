from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, HTTPException

from ticket_improve.errors import TicketImproveError, error_to_payload
from ticket_improve.models import TicketImproveInput, TicketImproveResult
from ticket_improve.pipeline import TicketImprover

TicketImproverGetter = Callable[[], TicketImprover]


def build_tickets_router(*, get_ticket_improver: TicketImproverGetter) -> APIRouter:
    router = APIRouter()

    @router.post("/tickets/improve", response_model=TicketImproveResult)
    async def improve_ticket(payload: TicketImproveInput) -> TicketImproveResult:
        try:
            return await get_ticket_improver().improve_ticket_content(payload)
        except TicketImproveError as exc:
            raise HTTPException(status_code=exc.status_code, detail=error_to_payload(exc)) from exc

    return router
