"""Caller identity value objects used by the access filter."""
from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class UserRole(StrEnum):
    """Caller roles recognised by the access filter.

    Anything the service does not recognise parses to :attr:`UNKNOWN`, which
    is denied by default.
    """

    AGENT = "agent"
    SELLER = "seller"
    BUYER = "buyer"
    CARRIER = "carrier"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> UserRole:
        """Case-insensitive lookup that never raises."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class UserContext(BaseModel):
    """Request-scoped identity of the caller. Never persisted."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    role: UserRole = UserRole.UNKNOWN
    account_id: str = ""
    user_id: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: object) -> UserRole:
        if isinstance(value, UserRole):
            return value
        return UserRole.parse(str(value) if value is not None else None)

    @classmethod
    def create(cls, role: str | None, account_id: str | None = "", user_id: str | None = "") -> UserContext:
        return cls(role=UserRole.parse(role), account_id=account_id or "", user_id=user_id or "")
