"""Pydantic request models for the REST API."""

from typing import List, Optional
from pydantic import BaseModel


class RegisterRequest(BaseModel):
    nickname: str
    password: str
    email: Optional[str] = None


class LoginRequest(BaseModel):
    nickname: str
    password: str = ""


class PasswordChangeRequest(BaseModel):
    nickname: str
    old_password: str
    new_password: str


class SeatModel(BaseModel):
    name: Optional[str] = None
    score: int = 0
    is_robot: bool = False


class SessionResultRequest(BaseModel):
    session_name: str
    seats: List[SeatModel]
    winner: str
    duration_sec: int = 0
    options: Optional[str] = None
