"""Dependency helpers for router modules."""

from starlette.requests import Request


def get_server(request: Request):
    return request.app.state.server


def client_host(request: Request) -> str:
    return request.client.host if request.client else ""
