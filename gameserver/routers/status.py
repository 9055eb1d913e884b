"""Status router - /api/status."""

from fastapi import APIRouter
from starlette.requests import Request

from gameserver.deps import get_server

router = APIRouter()


@router.get("/api/status")
async def status(request: Request):
    srv = get_server(request)
    return await srv.accounts.status()
