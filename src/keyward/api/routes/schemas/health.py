# Health schemas.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel


class HealthStatus(BaseModel):
    status: str = "ok"
    version: str
    database: str = "ok"
