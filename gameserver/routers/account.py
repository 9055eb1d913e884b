"""Account router - /api/auth/* endpoints."""

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from gameserver.deps import client_host, get_server
from gameserver.models import LoginRequest, PasswordChangeRequest, RegisterRequest

router = APIRouter()


@router.post("/api/auth/register")
async def auth_register(request: Request, req: RegisterRequest):
    srv = get_server(request)
    try:
        nickname = await srv.accounts.register(
            req.nickname, req.password, host=client_host(request), email=req.email,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"nickname": nickname}


@router.post("/api/auth/login")
async def auth_login(request: Request, req: LoginRequest):
    srv = get_server(request)
    try:
        return await srv.accounts.login(req.nickname, req.password, host=client_host(request))
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))


@router.post("/api/auth/password")
async def auth_password(request: Request, req: PasswordChangeRequest):
    srv = get_server(request)
    try:
        await srv.accounts.change_password(req.nickname, req.old_password, req.new_password)
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"nickname": req.nickname, "changed": True}
