"""Account database configuration."""

from typing import Optional

from pydantic import BaseModel, field_validator

from .credentials import validate_cost_factor


class DBConfig(BaseModel):
    url: Optional[str] = None
    driver: Optional[str] = None
    user: str = ""
    password: str = ""
    setup_script: Optional[str] = None
    # Overrides the cost factor stored in the settings table
    cost_factor: Optional[int] = None
    save_sessions: bool = False
    # None: detect from the linked SQLite library
    sqlite_drop_column: Optional[bool] = None

    @field_validator("cost_factor")
    @classmethod
    def _check_cost_factor(cls, v):
        if v is not None:
            validate_cost_factor(v)
        return v
