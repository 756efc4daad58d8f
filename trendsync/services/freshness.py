"""
Freshness classification of keyword time series.

The score answers "how recently did traffic for this keyword start?". Lookback
windows are tried from the smallest to the largest; the first window whose
recent traffic is above the noise floor and at least `growth_ratio` times the
traffic before it wins. A bounded window only counts when the series reaches
back past it, so short series fall through to the unbounded window. A keyword
whose traffic only became active in the last week scores 100, one that has
been flat forever scores 10.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Sequence

from trendsync.core.config import settings
from trendsync.core.logging import get_logger
from trendsync.schemas.trends import ComparisonPoint

logger = get_logger(__name__)

# (lookback days, score); None is the unbounded window
FRESHNESS_WINDOWS: tuple[tuple[int | None, int], ...] = (
    (7, 100),
    (14, 90),
    (30, 80),
    (60, 60),
    (90, 40),
    (180, 20),
    (None, 10),
)
STALE_SCORE = 10
EMPTY_SCORE = 0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class FreshnessClassifier:
    """Computes the 0-100 freshness score of a series."""

    def __init__(
        self,
        noise_floor_ratio: float | None = None,
        growth_ratio: float | None = None,
        windows: Sequence[tuple[int | None, int]] = FRESHNESS_WINDOWS,
    ):
        self.noise_floor_ratio = (
            settings.FRESHNESS_NOISE_FLOOR_RATIO
            if noise_floor_ratio is None
            else noise_floor_ratio
        )
        self.growth_ratio = (
            settings.FRESHNESS_GROWTH_RATIO if growth_ratio is None else growth_ratio
        )
        self.windows = tuple(windows)

    def classify(self, points: Sequence[ComparisonPoint]) -> int:
        """Return the freshness score of `points` in [0, 100]."""
        if not points:
            return EMPTY_SCORE

        ordered = sorted(points, key=lambda p: p.date, reverse=True)
        latest = ordered[0].date
        threshold = self.noise_floor_ratio * _mean([p.keyword for p in ordered])

        for days, score in self.windows:
            if days is None:
                recent, older = ordered, []
            else:
                cutoff = latest - timedelta(days=days)
                recent = [p for p in ordered if p.date > cutoff]
                older = [p for p in ordered if p.date <= cutoff]

            if days is not None and not older:
                # Nothing before the window to compare against
                continue

            recent_avg = _mean([p.keyword for p in recent])
            older_avg = _mean([p.keyword for p in older])

            if recent_avg <= threshold:
                continue
            if older_avg == 0 or recent_avg / older_avg >= self.growth_ratio:
                logger.debug(
                    "freshness window matched",
                    latest=latest.isoformat(),
                    window_days=days,
                    score=score,
                    recent_avg=recent_avg,
                    older_avg=older_avg,
                )
                return score

        return STALE_SCORE


def calculate_freshness_score(points: Sequence[ComparisonPoint]) -> int:
    """Score `points` with the configured policy constants."""
    return FreshnessClassifier().classify(points)
