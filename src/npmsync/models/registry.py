"""Pydantic models for upstream registry feed data."""

from pydantic import BaseModel, ConfigDict, Field


class ChangeEvent(BaseModel):
    """One normalized entry from the registry change log."""

    model_config = ConfigDict(frozen=True)

    sequence_id: int = Field(..., ge=0)
    package_name: str = Field(..., min_length=1)
    deleted: bool = False


class ListingPage(BaseModel):
    """One page of the full registry listing, boundary item removed."""

    model_config = ConfigDict(frozen=True)

    names: list[str]
    cumulative_count: int
    estimated_total: int
    last_key: str | None = None
