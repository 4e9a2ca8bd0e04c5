from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, StrictInt, StrictStr


class PasteCreateRequest(BaseModel):
    content: StrictStr = Field(..., description="Paste content")
    ttl_seconds: Optional[StrictInt] = Field(
        default=None,
        ge=1,
        description="Optional lifetime in seconds (>= 1)",
    )
    max_views: Optional[StrictInt] = Field(
        default=None,
        ge=1,
        description="Optional maximum number of views (>= 1)",
    )


class PasteCreateResponse(BaseModel):
    id: str
    url: str


class PasteReadResponse(BaseModel):
    content: str
    remaining_views: Optional[int]
    expires_at: Optional[datetime]


class HealthResponse(BaseModel):
    ok: bool
    store: str = "up"
