"""Sessions router - /api/sessions."""

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from gameserver.deps import get_server
from gameserver.models import SessionResultRequest
from gameserver.slots import SeatResult
from gameserver.storage import SessionResult

router = APIRouter()


@router.post("/api/sessions")
async def save_session(request: Request, req: SessionResultRequest):
    srv = get_server(request)
    result = SessionResult(
        session_name=req.session_name,
        seats=[SeatResult(s.name, s.score, s.is_robot) for s in req.seats],
        winner=req.winner,
        duration_sec=req.duration_sec,
        options=req.options,
    )
    try:
        saved = await srv.accounts.save_session(result)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"session_name": req.session_name, "saved": saved}
