"""
Trends record schema definitions.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComparisonPoint(CamelModel):
    """One date's sample of the reference and target series."""

    date: dt.date
    gpts: float = Field(ge=0)  # reference series
    keyword: float = Field(ge=0)  # target series
    daily_volume: int = Field(ge=0)
    monthly_volume: int = Field(ge=0)


class DisplayOptions(CamelModel):
    """Chart toggles; unknown keys are kept as-is."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    show_legend: bool = True
    show_tooltip: bool = True
    show_volume: bool = True


class ChartConfig(CamelModel):
    """Display metadata; never interpreted by the sync engine."""

    title: str
    time_range: str
    display_options: DisplayOptions = Field(default_factory=DisplayOptions)


class TrendsRecord(CamelModel):
    """One uploaded keyword's time series and metadata."""

    id: str
    target_keyword: str = Field(min_length=1)
    timestamp: int = Field(ge=0)  # epoch ms of creation / last local mutation
    file_name: str | None = None
    comparison_data: list[ComparisonPoint] = Field(min_length=1)
    last_week_volume: int = Field(ge=0)
    reviewed: bool = False
    chart_config: ChartConfig | None = None

    @field_validator("comparison_data")
    @classmethod
    def check_chronological(cls, v: list[ComparisonPoint]) -> list[ComparisonPoint]:
        for previous, current in zip(v, v[1:]):
            if current.date <= previous.date:
                raise ValueError(
                    f"comparison data must be chronological without duplicate "
                    f"dates (found {current.date} after {previous.date})"
                )
        return v

    @property
    def average_monthly_volume(self) -> float:
        return sum(p.monthly_volume for p in self.comparison_data) / len(
            self.comparison_data
        )


class SyncStatus(str, Enum):
    """Local synchronization state of a cached record."""

    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class SyncState(CamelModel):
    """Cache-local bookkeeping, never sent to the remote store."""

    last_synced: int
    status: SyncStatus


class CachedTrendsRecord(TrendsRecord):
    """Record as held by the local cache."""

    sync_state: SyncState

    def to_record(self) -> TrendsRecord:
        """Strip the cache-local sync state."""
        return TrendsRecord.model_validate(
            self.model_dump(exclude={"sync_state"})
        )


class ReviewedPatch(CamelModel):
    """Partial update of the reviewed flag."""

    reviewed: bool


class SyncStatePatch(CamelModel):
    """Partial update of a cached record's sync state."""

    status: SyncStatus
    last_synced: int


class TrendsFilter(CamelModel):
    """Filter used for queries and delete predicates."""

    reviewed: bool | None = None
    search: str | None = None
    keywords: set[str] | None = None
    limit: int | None = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    def matches(self, record: TrendsRecord) -> bool:
        if self.reviewed is not None and record.reviewed != self.reviewed:
            return False
        if self.keywords is not None and record.target_keyword not in self.keywords:
            return False
        if self.search and self.search.lower() not in record.target_keyword.lower():
            return False
        return True

    def paginate(self, records: list) -> list:
        end = self.offset + self.limit if self.limit is not None else None
        return records[self.offset : end]


class TrendsRecordResponse(TrendsRecord):
    """Record as returned by the API, with its derived freshness score."""

    freshness_score: int
