"""Analytics schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field


class Aggregation(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"


class Dimension(str, Enum):
    SKU = "sku"
    MACHINE = "machine"
    LOCATION = "location"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class BreakdownFocus(BaseModel):
    """Entity the chart is centred on. At most one id is expected."""

    sku_id: Optional[int] = None
    machine_id: Optional[int] = None
    location_id: Optional[int] = None


class BreakdownFilters(BaseModel):
    sku_ids: List[int] = Field(default_factory=list)
    machine_ids: List[int] = Field(default_factory=list)
    location_ids: List[int] = Field(default_factory=list)


class BreakdownRequest(BaseModel):
    aggregation: Aggregation = Aggregation.WEEK
    periods: Optional[int] = None
    time_zone: Optional[str] = None
    focus: BreakdownFocus = Field(default_factory=BreakdownFocus)
    filters: BreakdownFilters = Field(default_factory=BreakdownFilters)
    breakdown_by: Optional[Dimension] = None


class BreakdownSegment(BaseModel):
    id: Optional[int] = None  # None for machines without a location
    label: str
    total: int


class BucketPoint(BaseModel):
    start: datetime
    end: datetime
    label: str
    total: int
    segments: List[BreakdownSegment] = Field(default_factory=list)


class WeekAverage(BaseModel):
    """Mean of the non-zero daily totals over the week before the window."""

    id: Optional[int] = None  # None for the overall line
    label: str
    average: float


class Extremum(BaseModel):
    start: datetime
    label: str
    total: int


class Extrema(BaseModel):
    high: Optional[Extremum] = None
    low: Optional[Extremum] = None


class PercentageChange(BaseModel):
    """``previous`` may be an average, hence the float."""

    current: int
    previous: float
    delta: float
    delta_percent: Optional[float] = None
    trend: Trend


class FilterOption(BaseModel):
    id: int
    label: str


class AvailableFilters(BaseModel):
    """Entities with picks in the window, per dimension the focus allows."""

    sku: List[FilterOption] = Field(default_factory=list)
    machine: List[FilterOption] = Field(default_factory=list)
    location: List[FilterOption] = Field(default_factory=list)


class BreakdownSeries(BaseModel):
    aggregation: Aggregation
    breakdown_by: Dimension
    time_zone: str
    range_start: datetime
    range_end: datetime
    points: List[BucketPoint]
    week_averages: List[WeekAverage] = Field(default_factory=list)
    extrema: Extrema
    available_filters: AvailableFilters = Field(default_factory=AvailableFilters)
    percentage_change: PercentageChange
    progress_percent: float


class MomentumLeader(BaseModel):
    id: int
    label: str
    current: int
    previous: int
    delta: int
    delta_percent: Optional[float] = None
    trend: Trend


class MomentumLeaders(BaseModel):
    up: Optional[MomentumLeader] = None
    down: Optional[MomentumLeader] = None
    default_selection: Trend


class WeekWindow(BaseModel):
    start: datetime
    end: datetime
    comparison_end: datetime
    total: int


class MomentumResponse(BaseModel):
    time_zone: str
    sku_leaders: MomentumLeaders
    machine_leaders: MomentumLeaders
    location_leaders: MomentumLeaders
    current_week: WeekWindow
    previous_week: WeekWindow
    progress_percent: float


class PeriodTotal(BaseModel):
    start: datetime
    end: datetime
    total: int


class PeriodComparison(BaseModel):
    aggregation: Aggregation
    time_zone: str
    current: PeriodTotal
    previous_periods: List[PeriodTotal]
    previous_average: float
    percentage_change: PercentageChange
    progress_percent: float
