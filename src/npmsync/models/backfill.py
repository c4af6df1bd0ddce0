"""Pydantic models for the backfill orchestrator state."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from npmsync.models.enums import BackfillStatus


class BackfillState(BaseModel):
    """Snapshot of the single global backfill state row."""

    model_config = ConfigDict(from_attributes=True)

    status: BackfillStatus = BackfillStatus.IDLE
    total: int = Field(0, ge=0)
    offset: int = Field(0, ge=0)
    started_at: datetime | None = None
    rate: float = 0.0
    error_message: str | None = None
    listing_cursor: str | None = None
    listing_complete: bool = False
    version: int = 0


class BackfillStatusReport(BaseModel):
    """Backfill state plus derived progress figures for operators."""

    status: BackfillStatus
    total: int
    offset: int
    remaining: int
    started_at: datetime | None = None
    rate: float
    error_message: str | None = None
    listing_complete: bool
    progress: str
    elapsed: str
    eta: str
