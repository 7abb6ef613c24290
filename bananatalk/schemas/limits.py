"""Entitlement projection schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class LimitsResponse(BaseModel):
    """Response for GET /limits.

    Caps use -1 for unlimited; ``remaining`` is None for unlimited classes.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tier: str
    is_vip: bool
    vip_expires_at: datetime | None = None
    caps: dict[str, int]
    usage: dict[str, int]
    remaining: dict[str, int | None]
    windows: dict[str, str]
    upgrade_available: bool
    reset_at: datetime
    hourly_reset_at: datetime
    entitlements: dict[str, Any]
    catalog_version: str
