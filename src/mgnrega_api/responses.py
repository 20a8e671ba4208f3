"""Response bodies of the trigger endpoint."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class IngestionResponse(BaseModel):
    success: bool = True
    message: str
    summary: dict[str, Any] = Field(default_factory=dict)


class IngestionError(BaseModel):
    success: bool = False
    error: str
