"""
SQLAlchemy models of the remote store.

Reviewed and unreviewed records live in two tables with identical columns.
A keyword is stored in at most one of them.
"""

from sqlalchemy import JSON, BigInteger, Boolean, Column, Integer, String

from trendsync.core.database import Base


class TrendsPartitionMixin:
    """Columns shared by both partitions."""

    target_keyword = Column(String(255), primary_key=True)  # business key
    id = Column(String(64), nullable=False)
    file_name = Column(String(500), nullable=True)
    timestamp = Column(BigInteger, nullable=False, index=True)  # epoch ms
    last_week_volume = Column(Integer, nullable=False, default=0)
    reviewed = Column(Boolean, nullable=False, default=False)
    comparison_data = Column(JSON, nullable=False)  # [{"date", "gpts", ...}]
    chart_config = Column(JSON, nullable=True)
    updated_at = Column(BigInteger, nullable=False, index=True)  # epoch ms


class UnreviewedTrend(TrendsPartitionMixin, Base):
    """Records not yet researched."""

    __tablename__ = "trends_unreviewed"


class ReviewedTrend(TrendsPartitionMixin, Base):
    """Records the user marked as researched."""

    __tablename__ = "trends_reviewed"


PARTITIONS = {False: UnreviewedTrend, True: ReviewedTrend}
