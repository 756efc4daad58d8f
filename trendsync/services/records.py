"""
Record construction and validation at the ingestion boundary.

CSV parsing happens upstream; this module starts from parsed samples and
derives the volume estimates every record carries.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Iterable, Sequence

from pydantic import ValidationError

from trendsync.core.clock import Clock, now_ms
from trendsync.core.config import settings
from trendsync.core.exceptions import RecordValidationError
from trendsync.core.logging import get_logger
from trendsync.schemas.trends import ChartConfig, ComparisonPoint, TrendsRecord

DAYS_PER_MONTH = 30
LAST_WEEK_POINTS = 7

logger = get_logger(__name__)


def build_comparison_point(
    point_date: date,
    gpts: float,
    keyword: float,
    reference_daily_volume: int | None = None,
) -> ComparisonPoint:
    """Estimate daily and monthly volume of the target relative to the reference."""
    if reference_daily_volume is None:
        reference_daily_volume = settings.REFERENCE_DAILY_VOLUME

    daily_estimate = (keyword / gpts) * reference_daily_volume if gpts else 0.0
    return ComparisonPoint(
        date=point_date,
        gpts=gpts,
        keyword=keyword,
        daily_volume=round(daily_estimate),
        monthly_volume=round(daily_estimate * DAYS_PER_MONTH),
    )


def last_week_volume(points: list[ComparisonPoint]) -> int:
    """Mean daily volume over the trailing 7 points (fewer if shorter)."""
    trailing = points[-LAST_WEEK_POINTS:]
    if not trailing:
        return 0
    return round(sum(p.daily_volume for p in trailing) / len(trailing))


def build_record(
    target_keyword: str,
    samples: Iterable[tuple[date, float, float]],
    file_name: str | None = None,
    reference_daily_volume: int | None = None,
    clock: Clock = now_ms,
) -> TrendsRecord:
    """Build a record from `(date, reference value, target value)` samples."""
    by_date: dict[date, ComparisonPoint] = {}
    for point_date, gpts, keyword in samples:
        by_date[point_date] = build_comparison_point(
            point_date, gpts, keyword, reference_daily_volume
        )
    points = [by_date[d] for d in sorted(by_date)]
    if not points:
        raise RecordValidationError(target_keyword, "no valid data rows")

    return TrendsRecord(
        id=str(uuid.uuid4()),
        target_keyword=target_keyword,
        timestamp=clock(),
        file_name=file_name,
        comparison_data=points,
        last_week_volume=last_week_volume(points),
        chart_config=ChartConfig(
            title=f"{target_keyword} vs GPTs",
            time_range=f"{points[0].date.isoformat()} - {points[-1].date.isoformat()}",
        ),
    )


def validate_record(record: TrendsRecord) -> TrendsRecord:
    """Reject records that carry no volume at all."""
    if record.last_week_volume == 0 and record.average_monthly_volume == 0:
        raise RecordValidationError(
            record.target_keyword, "last week volume and monthly volume are both zero"
        )
    return record


def parse_records(
    items: Sequence[dict[str, Any]],
) -> tuple[list[TrendsRecord], list[str]]:
    """
    Parse raw record payloads one by one.

    Returns the records that parsed and the keywords of those that did not;
    a payload without a usable keyword is reported by its position.
    """
    records: list[TrendsRecord] = []
    rejected: list[str] = []
    for index, item in enumerate(items):
        try:
            records.append(TrendsRecord.model_validate(item))
        except ValidationError as e:
            keyword = item.get("targetKeyword", item.get("target_keyword"))
            label = keyword if isinstance(keyword, str) and keyword else f"#{index}"
            logger.warning(f"Rejected malformed record {label}: {e.error_count()} errors")
            rejected.append(label)
    return records, rejected
