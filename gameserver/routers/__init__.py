"""Router package - collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from gameserver.routers import account, sessions, status


def register_all_routers(app: FastAPI):
    app.include_router(status.router)
    app.include_router(account.router)
    app.include_router(sessions.router)
