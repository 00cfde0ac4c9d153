"""Pick analytics: breakdown charts, momentum leaders and period comparison.

Every call reads its picked entries with a single query over the widest
range it needs, then buckets them in Python, so a result never mixes rows
from two different reads. Empty ranges produce zero-valued results.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from vendrun.core.config import settings
from vendrun.core.errors import InvalidTimeZone
from vendrun.models.company import Company
from vendrun.models.location import Location
from vendrun.models.machine import Coil, CoilItem, Machine
from vendrun.models.run import PickEntry, PickStatus, Run
from vendrun.models.sku import SKU
from vendrun.schemas.analytics import (
    Aggregation,
    AvailableFilters,
    BreakdownFilters,
    BreakdownRequest,
    BreakdownSegment,
    BreakdownSeries,
    BucketPoint,
    Dimension,
    Extrema,
    Extremum,
    FilterOption,
    MomentumLeader,
    MomentumLeaders,
    MomentumResponse,
    PeriodComparison,
    PeriodTotal,
    Trend,
    WeekAverage,
    WeekWindow,
)
from vendrun.services.time_buckets import (
    BASELINE_DAYS,
    ROLLING_WINDOW_DAYS,
    Bucket,
    add_periods,
    at_midnight,
    bucket_index,
    build_buckets,
    build_percentage_change,
    find_extrema,
    iso_week_start,
    load_zone,
    local_date,
    pad_rolling_window,
    period_start,
    progress_percent,
)

logger = logging.getLogger(__name__)

DEFAULT_PERIODS = {
    Aggregation.DAY: 14,
    Aggregation.MONTH: 6,
    Aggregation.QUARTER: 4,
}
COMPARISON_PERIODS = 3
UNASSIGNED_LABEL = "Unassigned"


@dataclass
class PickEvent:
    """A picked entry flattened with the entities it is reported under."""

    picked_at: datetime
    quantity: int
    sku_id: int
    sku_label: str
    machine_id: int
    machine_label: str
    location_id: Optional[int]
    location_label: str

    def key(self, dimension: Dimension) -> Tuple[Optional[int], str]:
        if dimension == Dimension.SKU:
            return self.sku_id, self.sku_label
        if dimension == Dimension.MACHINE:
            return self.machine_id, self.machine_label
        return self.location_id, self.location_label


def breakdown_dimension_for(request: BreakdownRequest) -> Dimension:
    """Segments default to whatever the focused entity is broken down by."""
    if request.breakdown_by is not None:
        return request.breakdown_by
    if request.focus.sku_id is not None:
        return Dimension.MACHINE
    if request.focus.machine_id is not None:
        return Dimension.SKU
    if request.focus.location_id is not None:
        return Dimension.MACHINE
    return Dimension.SKU


def available_filter_dimensions(request: BreakdownRequest) -> List[Dimension]:
    """Dimensions a caller can still narrow by once the focus is applied."""
    if request.focus.sku_id is not None:
        return [Dimension.MACHINE, Dimension.LOCATION]
    if request.focus.machine_id is not None:
        return [Dimension.SKU]
    if request.focus.location_id is not None:
        return [Dimension.MACHINE, Dimension.SKU]
    return [Dimension.SKU, Dimension.MACHINE, Dimension.LOCATION]


def build_available_filters(
    events: List[PickEvent], dimensions: List[Dimension]
) -> AvailableFilters:
    options: Dict[Dimension, Dict[int, str]] = {dimension: {} for dimension in dimensions}
    for event in events:
        if event.quantity <= 0:
            continue
        for dimension, seen in options.items():
            entity_id, label = event.key(dimension)
            if entity_id is not None:
                seen[entity_id] = label

    def sorted_options(dimension: Dimension) -> List[FilterOption]:
        seen = options.get(dimension, {})
        return sorted(
            (FilterOption(id=entity_id, label=label) for entity_id, label in seen.items()),
            key=lambda o: (o.label.casefold(), o.id),
        )

    return AvailableFilters(
        sku=sorted_options(Dimension.SKU),
        machine=sorted_options(Dimension.MACHINE),
        location=sorted_options(Dimension.LOCATION),
    )


def merge_focus(request: BreakdownRequest) -> BreakdownFilters:
    filters = request.filters
    focus = request.focus
    return BreakdownFilters(
        sku_ids=filters.sku_ids + ([focus.sku_id] if focus.sku_id is not None else []),
        machine_ids=filters.machine_ids + ([focus.machine_id] if focus.machine_id is not None else []),
        location_ids=filters.location_ids + ([focus.location_id] if focus.location_id is not None else []),
    )


def pick_leaders(
    current: Dict[int, int], previous: Dict[int, int], labels: Dict[int, str], epsilon: float
) -> MomentumLeaders:
    """Largest week-over-week rise and fall. Idle entities are never ranked."""
    candidates = []
    for entity_id in set(current) | set(previous):
        cur, prev = current.get(entity_id, 0), previous.get(entity_id, 0)
        if cur == 0 and prev == 0:
            continue
        candidates.append((entity_id, cur, prev, cur - prev))

    def leader(entry) -> MomentumLeader:
        entity_id, cur, prev, delta = entry
        change = build_percentage_change(cur, prev, epsilon)
        return MomentumLeader(
            id=entity_id,
            label=labels.get(entity_id, str(entity_id)),
            current=cur,
            previous=prev,
            delta=delta,
            delta_percent=change.delta_percent,
            trend=change.trend,
        )

    risers = [c for c in candidates if c[3] > 0]
    fallers = [c for c in candidates if c[3] < 0]
    up = min(risers, key=lambda c: (-c[3], -c[1], c[0])) if risers else None
    down = min(fallers, key=lambda c: (c[3], -c[1], c[0])) if fallers else None
    return MomentumLeaders(
        up=leader(up) if up else None,
        down=leader(down) if down else None,
        default_selection=Trend.UP if up else Trend.DOWN,
    )


class AnalyticsService:
    """Read-only aggregation over a company's picked entries."""

    def __init__(self, db: Session, company_id: int, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.company_id = company_id
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve_time_zone(self, requested: Optional[str] = None) -> Tuple[str, ZoneInfo]:
        """Caller's zone, else the company's, else the configured default."""
        if requested:
            return requested, load_zone(requested)
        company = self.db.get(Company, self.company_id)
        if company and company.time_zone:
            try:
                return company.time_zone, load_zone(company.time_zone)
            except InvalidTimeZone:
                logger.warning(
                    f"Company {self.company_id} has invalid time zone {company.time_zone!r}, "
                    f"using {settings.default_time_zone}"
                )
        return settings.default_time_zone, load_zone(settings.default_time_zone)

    def fetch_events(
        self,
        start: datetime,
        end: datetime,
        filters: Optional[BreakdownFilters] = None,
    ) -> List[PickEvent]:
        """Picked entries with ``start <= picked_at < end`` in one read."""
        query = (
            self.db.query(
                PickEntry.picked_at,
                PickEntry.count,
                SKU.id,
                SKU.code,
                SKU.name,
                Machine.id,
                Machine.code,
                Machine.description,
                Location.id,
                Location.name,
            )
            .join(Run, PickEntry.run_id == Run.id)
            .join(CoilItem, PickEntry.coil_item_id == CoilItem.id)
            .join(SKU, CoilItem.sku_id == SKU.id)
            .join(Coil, CoilItem.coil_id == Coil.id)
            .join(Machine, Coil.machine_id == Machine.id)
            .outerjoin(Location, Machine.location_id == Location.id)
            .filter(
                Run.company_id == self.company_id,
                PickEntry.status == PickStatus.PICKED.value,
                PickEntry.picked_at.isnot(None),
                PickEntry.picked_at >= start.astimezone(timezone.utc),
                PickEntry.picked_at < end.astimezone(timezone.utc),
            )
        )
        if filters is not None:
            if filters.sku_ids:
                query = query.filter(SKU.id.in_(filters.sku_ids))
            if filters.machine_ids:
                query = query.filter(Machine.id.in_(filters.machine_ids))
            if filters.location_ids:
                query = query.filter(Location.id.in_(filters.location_ids))

        events = []
        for row in query.all():
            picked_at, quantity, sku_id, sku_code, sku_name, machine_id, machine_code, \
                machine_description, location_id, location_name = row
            if picked_at.tzinfo is None:
                picked_at = picked_at.replace(tzinfo=timezone.utc)
            events.append(
                PickEvent(
                    picked_at=picked_at,
                    quantity=quantity or 0,
                    sku_id=sku_id,
                    sku_label=sku_name or sku_code,
                    machine_id=machine_id,
                    machine_label=machine_description or machine_code,
                    location_id=location_id,
                    location_label=location_name or UNASSIGNED_LABEL,
                )
            )
        return events

    # ===== BREAKDOWN =====

    def get_breakdown(self, request: BreakdownRequest) -> BreakdownSeries:
        zone_name, zone = self.resolve_time_zone(request.time_zone)
        now = self.clock()
        today = local_date(now, zone)
        aggregation = Aggregation(request.aggregation)
        dimension = breakdown_dimension_for(request)

        if aggregation == Aggregation.WEEK:
            window = build_buckets(Aggregation.DAY, zone, today, ROLLING_WINDOW_DAYS)
            unit = Aggregation.DAY
        else:
            periods = request.periods or DEFAULT_PERIODS[aggregation]
            periods = min(max(periods, 1), settings.max_breakdown_periods)
            window = build_buckets(aggregation, zone, today, periods)
            unit = aggregation

        before_window = add_periods(window[0].day, unit, -1)
        previous = build_buckets(unit, zone, before_window, len(window))
        baseline = build_buckets(Aggregation.DAY, zone, window[0].day - timedelta(days=1), BASELINE_DAYS)
        query_start = min(previous[0].start, baseline[0].start)

        events = self.fetch_events(query_start, window[-1].end, merge_focus(request))

        window_totals: Dict[int, int] = defaultdict(int)
        window_segments: Dict[int, Dict[Optional[int], List]] = defaultdict(dict)
        previous_total = 0
        baseline_daily: Dict[Optional[int], Dict[int, int]] = defaultdict(lambda: defaultdict(int))
        baseline_overall: Dict[int, int] = defaultdict(int)
        baseline_labels: Dict[Optional[int], str] = {}
        window_events: List[PickEvent] = []

        for event in events:
            segment_id, label = event.key(dimension)
            i = bucket_index(window, event.picked_at)
            if i is not None:
                window_totals[i] += event.quantity
                window_events.append(event)
                segment = window_segments[i].setdefault(segment_id, [label, 0])
                segment[1] += event.quantity
            if bucket_index(previous, event.picked_at) is not None:
                previous_total += event.quantity
            if aggregation == Aggregation.WEEK:
                j = bucket_index(baseline, event.picked_at)
                if j is not None:
                    baseline_daily[segment_id][j] += event.quantity
                    baseline_overall[j] += event.quantity
                    baseline_labels[segment_id] = label

        def point_for(i: int, bucket: Bucket) -> BucketPoint:
            segments = [
                BreakdownSegment(id=segment_id, label=label, total=total)
                for segment_id, (label, total) in window_segments.get(i, {}).items()
            ]
            segments.sort(key=lambda s: (-s.total, s.label))
            return BucketPoint(
                start=bucket.start,
                end=bucket.end,
                label=bucket.label,
                total=window_totals.get(i, 0),
                segments=segments,
            )

        if aggregation == Aggregation.WEEK:
            days = {bucket.day: (i, bucket) for i, bucket in enumerate(window)}
            active = {day: point_for(i, bucket) for day, (i, bucket) in days.items() if i in window_totals}
            points = [
                point
                for _, point in pad_rolling_window(
                    active, today, empty=lambda day: point_for(-1, days[day][1])
                )
            ]
        else:
            points = [point_for(i, bucket) for i, bucket in enumerate(window)]

        week_averages: List[WeekAverage] = []
        if aggregation == Aggregation.WEEK:
            week_averages.append(
                WeekAverage(id=None, label="All", average=self._non_zero_mean(baseline_overall))
            )
            per_segment = [
                WeekAverage(id=segment_id, label=baseline_labels[segment_id], average=self._non_zero_mean(daily))
                for segment_id, daily in baseline_daily.items()
            ]
            per_segment.sort(key=lambda a: (-a.average, a.label))
            week_averages.extend(per_segment)

        high, low = find_extrema(points, total=lambda p: p.total, start=lambda p: p.start)
        window_total = sum(p.total for p in points)

        return BreakdownSeries(
            aggregation=aggregation,
            breakdown_by=dimension,
            time_zone=zone_name,
            range_start=window[0].start,
            range_end=window[-1].end,
            points=points,
            week_averages=week_averages,
            extrema=Extrema(
                high=Extremum(start=high.start, label=high.label, total=high.total) if high else None,
                low=Extremum(start=low.start, label=low.label, total=low.total) if low else None,
            ),
            available_filters=build_available_filters(
                window_events, available_filter_dimensions(request)
            ),
            percentage_change=build_percentage_change(
                window_total, previous_total, settings.trend_epsilon_percent
            ),
            progress_percent=progress_percent(window[-1].start, window[-1].end, now),
        )

    @staticmethod
    def _non_zero_mean(daily: Dict[int, int]) -> float:
        values = [v for v in daily.values() if v > 0]
        if not values:
            return 0.0
        return round(sum(values) / len(values), 2)

    # ===== MOMENTUM =====

    def get_momentum(self, time_zone: Optional[str] = None) -> MomentumResponse:
        """This ISO week so far against the same stretch of last week."""
        zone_name, zone = self.resolve_time_zone(time_zone)
        now = self.clock()
        monday = iso_week_start(local_date(now, zone))
        current_start = at_midnight(monday, zone)
        current_end = at_midnight(monday + timedelta(days=7), zone)
        previous_start = at_midnight(monday - timedelta(days=7), zone)
        elapsed = now - current_start
        # Elapsed time is absolute, so step through UTC across DST changes
        previous_compare_end = (previous_start.astimezone(timezone.utc) + elapsed).astimezone(zone)

        events = self.fetch_events(previous_start, now)

        totals = {
            dimension: ({}, {}, {}) for dimension in (Dimension.SKU, Dimension.MACHINE, Dimension.LOCATION)
        }
        current_total = previous_total = 0
        for event in events:
            if event.picked_at >= current_start:
                slot = 0
                current_total += event.quantity
            elif event.picked_at < previous_compare_end:
                slot = 1
                previous_total += event.quantity
            else:
                continue
            for dimension, (cur, prev, labels) in totals.items():
                entity_id, label = event.key(dimension)
                if entity_id is None:
                    continue
                bucket = cur if slot == 0 else prev
                bucket[entity_id] = bucket.get(entity_id, 0) + event.quantity
                labels[entity_id] = label

        epsilon = settings.trend_epsilon_percent
        leaders = {
            dimension: pick_leaders(cur, prev, labels, epsilon)
            for dimension, (cur, prev, labels) in totals.items()
        }

        return MomentumResponse(
            time_zone=zone_name,
            sku_leaders=leaders[Dimension.SKU],
            machine_leaders=leaders[Dimension.MACHINE],
            location_leaders=leaders[Dimension.LOCATION],
            current_week=WeekWindow(
                start=current_start, end=current_end, comparison_end=now, total=current_total
            ),
            previous_week=WeekWindow(
                start=previous_start,
                end=current_start,
                comparison_end=previous_compare_end,
                total=previous_total,
            ),
            progress_percent=progress_percent(current_start, current_end, now),
        )

    # ===== PERIOD COMPARISON =====

    def get_period_comparison(
        self, aggregation: Aggregation = Aggregation.WEEK, time_zone: Optional[str] = None
    ) -> PeriodComparison:
        """Current period to date against the average of the three before it."""
        zone_name, zone = self.resolve_time_zone(time_zone)
        now = self.clock()
        aggregation = Aggregation(aggregation)
        start_day = period_start(aggregation, local_date(now, zone))

        current_start = at_midnight(start_day, zone)
        current_end = at_midnight(add_periods(start_day, aggregation, 1), zone)
        earlier = [
            (at_midnight(add_periods(start_day, aggregation, -n), zone),
             at_midnight(add_periods(start_day, aggregation, -n + 1), zone))
            for n in range(COMPARISON_PERIODS, 0, -1)
        ]

        events = self.fetch_events(earlier[0][0], now)
        current_total = sum(e.quantity for e in events if e.picked_at >= current_start)
        previous_periods = [
            PeriodTotal(
                start=start,
                end=end,
                total=sum(e.quantity for e in events if start <= e.picked_at < end),
            )
            for start, end in earlier
        ]
        previous_average = round(sum(p.total for p in previous_periods) / COMPARISON_PERIODS, 2)

        return PeriodComparison(
            aggregation=aggregation,
            time_zone=zone_name,
            current=PeriodTotal(start=current_start, end=current_end, total=current_total),
            previous_periods=previous_periods,
            previous_average=previous_average,
            percentage_change=build_percentage_change(
                current_total, previous_average, settings.trend_epsilon_percent
            ),
            progress_percent=progress_percent(current_start, current_end, now),
        )
