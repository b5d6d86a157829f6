"""Per-user concurrent stream quota."""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import field_validator

from .schema_utils import parse_mongo_datetime


class UserQuota(Document):
    """Allowed vs active concurrent sessions for one user.

    `allowed` is supplied by package activation; `active` is only ever changed by
    the quota ledger's conditional updates.
    """

    user_id: Indexed(str, unique=True)  # type: ignore[valid-type]
    allowed: int = 0
    active: int = 0

    updated_at: datetime | None = None

    @field_validator("updated_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_mongo_datetime(v)

    class Settings:
        name = "user_quota"
