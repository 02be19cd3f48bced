from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from adrevenue.util import normalize_date


@dataclass(frozen=True)
class ReportRequest:
    start_date: str
    end_date: str

    @classmethod
    def from_dates(cls, start_date: str, end_date: str) -> ReportRequest:
        s = normalize_date(start_date)
        e = normalize_date(end_date)
        if s > e:
            raise ValueError(f"start_date {s} is after end_date {e}")
        return cls(start_date=s, end_date=e)


class JobState(str, Enum):
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


@dataclass
class ReportJob:
    job_id: str
    request: ReportRequest
    state: JobState = JobState.SUBMITTED
    attempts: int = 0


@dataclass
class Totals:
    impressions: int = 0
    revenue: float = 0.0


@dataclass(frozen=True)
class EntityFilter:
    """Restricts aggregation to rows whose `dimension` value is in `values`."""

    dimension: str
    values: frozenset[str]

    def matches(self, value: str) -> bool:
        return value in self.values


@dataclass
class AggregatedReport:
    by_date: dict[str, Totals] = field(default_factory=dict)
    by_ad_unit: dict[str, Totals] | None = None
    by_site: dict[str, Totals] | None = None
    total_impressions: int = 0
    total_revenue: float = 0.0
    row_count: int = 0

    def add(self, day: str, impressions: int, revenue: float, entities: dict[str, str] | None = None) -> None:
        # Resolve every bucket before mutating any.
        buckets = [self.by_date.setdefault(day, Totals())]
        for dimension, key in (entities or {}).items():
            target = self._dimension_map(dimension)
            if target is not None:
                buckets.append(target.setdefault(key, Totals()))

        for bucket in buckets:
            bucket.impressions += impressions
            bucket.revenue += revenue
        self.total_impressions += impressions
        self.total_revenue += revenue
        self.row_count += 1

    def _dimension_map(self, dimension: str) -> dict[str, Totals] | None:
        if dimension == "ad_unit":
            return self.by_ad_unit
        if dimension == "site":
            return self.by_site
        return None


@dataclass(frozen=True)
class ProjectClaim:
    project_id: str
    project_name: str
    allowed_hosts: tuple[str, ...]
    revenue_share_percentage: float = 50.0


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimelineEntry(_CamelModel):
    date: str
    impressions: int
    revenue: float


class AdUnitEntry(_CamelModel):
    ad_unit_name: str
    impressions: int
    revenue: float


class SiteEntry(_CamelModel):
    site_name: str
    impressions: int
    revenue: float


class RevenueShareResult(_CamelModel):
    total_impressions: int
    total_revenue: float
    user_revenue: float
    revenue_share_percentage: float
    timeline: list[TimelineEntry]
    by_ad_unit: list[AdUnitEntry] = []
    by_site: list[SiteEntry] = []
    row_count: int
