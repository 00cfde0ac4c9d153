"""Tests for pick analytics."""

import pytest
from datetime import datetime, timedelta, timezone

from vendrun.core.errors import InvalidTimeZone
from vendrun.models import Company, PickEntry, PickStatus, Run, RunStatus
from vendrun.schemas.analytics import (
    Aggregation,
    BreakdownFocus,
    BreakdownRequest,
    Dimension,
    Trend,
)
from vendrun.services.analytics_service import (
    UNASSIGNED_LABEL,
    AnalyticsService,
    breakdown_dimension_for,
    pick_leaders,
)

# Thursday; the ISO week started on Monday 2024-06-10
NOW = datetime(2024, 6, 13, 12, 0, tzinfo=timezone.utc)


def utc(day, hour=10):
    return datetime(2024, 6, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def analytics(db_session, company):
    return AnalyticsService(db_session, company.id, clock=lambda: NOW)


@pytest.fixture
def catalog(db_session, resolver, row):
    """Three SKUs on machine A-01 at Central Station."""
    entities = {
        "A": resolver.resolve(row(coil_code="C1", sku_code="SKU-A", sku_name="Apple Chips"), 0),
        "B": resolver.resolve(row(coil_code="C2", sku_code="SKU-B", sku_name="Banana Bread"), 1),
        "C": resolver.resolve(row(coil_code="C3", sku_code="SKU-C", sku_name="Cola"), 2),
    }
    db_session.commit()
    return entities


@pytest.fixture
def record(db_session, company):
    """Store one pick entry on its own completed run."""
    def _record(entity, quantity, picked_at, status=PickStatus.PICKED, override=None):
        run = Run(company_id=company.id, status=RunStatus.COMPLETED.value)
        db_session.add(run)
        db_session.flush()
        db_session.add(PickEntry(
            run_id=run.id,
            coil_item_id=entity.coil_item_id,
            resolved_count=quantity,
            override_count=override,
            status=status.value,
            picked_at=picked_at,
        ))
        db_session.commit()
    return _record


class TestTimeZoneResolution:
    def test_requested_zone_wins(self, analytics):
        assert analytics.resolve_time_zone("Europe/Sofia")[0] == "Europe/Sofia"

    def test_company_zone_used_by_default(self, analytics):
        assert analytics.resolve_time_zone()[0] == "Australia/Sydney"

    def test_invalid_requested_zone_rejected(self, analytics):
        with pytest.raises(InvalidTimeZone):
            analytics.get_breakdown(BreakdownRequest(time_zone="Not/AZone"))

    def test_invalid_company_zone_falls_back(self, db_session, analytics, company):
        db_session.get(Company, company.id).time_zone = "Nowhere/Special"
        db_session.commit()

        from vendrun.core.config import settings
        assert analytics.resolve_time_zone()[0] == settings.default_time_zone


class TestBreakdownDimension:
    @pytest.mark.parametrize(
        "focus,expected",
        [
            (BreakdownFocus(), Dimension.SKU),
            (BreakdownFocus(sku_id=1), Dimension.MACHINE),
            (BreakdownFocus(machine_id=1), Dimension.SKU),
            (BreakdownFocus(location_id=1), Dimension.MACHINE),
        ],
    )
    def test_default_from_focus(self, focus, expected):
        assert breakdown_dimension_for(BreakdownRequest(focus=focus)) == expected

    def test_explicit_choice_wins(self):
        request = BreakdownRequest(focus=BreakdownFocus(sku_id=1), breakdown_by=Dimension.LOCATION)
        assert breakdown_dimension_for(request) == Dimension.LOCATION


class TestWeekBreakdown:
    def test_rolling_eight_day_window(self, analytics, catalog, record):
        record(catalog["A"], 5, utc(13))
        record(catalog["B"], 3, utc(10))
        record(catalog["A"], 2, utc(6, 0))
        record(catalog["A"], 4, utc(5))  # previous window
        record(catalog["C"], 7, utc(12), status=PickStatus.PENDING)

        series = analytics.get_breakdown(BreakdownRequest(time_zone="UTC"))

        assert series.breakdown_by == Dimension.SKU
        assert len(series.points) == 8
        assert [p.start for p in series.points] == sorted(p.start for p in series.points)
        assert series.points[0].label == "2024-06-06"
        assert series.points[-1].label == "2024-06-13"
        assert [p.total for p in series.points] == [2, 0, 0, 0, 3, 0, 0, 5]
        assert series.points[-1].segments[0].id == catalog["A"].sku_id
        assert series.points[-1].segments[0].label == "Apple Chips"

    def test_percentage_change_against_previous_window(self, analytics, catalog, record):
        record(catalog["A"], 6, utc(12))
        record(catalog["A"], 4, utc(3))

        change = analytics.get_breakdown(BreakdownRequest(time_zone="UTC")).percentage_change
        assert change.current == 6
        assert change.previous == 4
        assert change.delta_percent == 50.0
        assert change.trend == Trend.UP

    def test_week_averages_use_non_zero_days_before_window(self, analytics, catalog, record):
        record(catalog["A"], 4, utc(5))
        record(catalog["A"], 2, utc(1))
        record(catalog["B"], 3, utc(1))

        averages = analytics.get_breakdown(BreakdownRequest(time_zone="UTC")).week_averages

        assert averages[0].id is None
        assert averages[0].label == "All"
        # 4 on the 5th and 5 on the 1st
        assert averages[0].average == 4.5
        by_id = {a.id: a.average for a in averages[1:]}
        assert by_id[catalog["A"].sku_id] == 3.0
        assert by_id[catalog["B"].sku_id] == 3.0

    def test_extrema_and_progress(self, analytics, catalog, record):
        record(catalog["A"], 5, utc(13))
        record(catalog["A"], 2, utc(7))
        record(catalog["B"], 2, utc(9))

        series = analytics.get_breakdown(BreakdownRequest(time_zone="UTC"))

        assert series.extrema.high.total == 5
        assert series.extrema.high.label == "2024-06-13"
        assert series.extrema.low.total == 2
        assert series.extrema.low.label == "2024-06-07"
        assert series.progress_percent == 50.0

    def test_empty_range(self, analytics, catalog):
        series = analytics.get_breakdown(BreakdownRequest(time_zone="UTC"))

        assert len(series.points) == 8
        assert all(p.total == 0 for p in series.points)
        assert series.extrema.high is None
        assert series.extrema.low is None
        assert series.percentage_change.delta_percent is None
        assert series.percentage_change.trend == Trend.NEUTRAL
        assert series.week_averages[0].average == 0.0

    def test_override_counts_are_used(self, analytics, catalog, record):
        record(catalog["A"], 10, utc(13), override=2)
        series = analytics.get_breakdown(BreakdownRequest(time_zone="UTC"))
        assert series.points[-1].total == 2

    def test_buckets_follow_company_zone(self, analytics, catalog, record):
        # 15:00 UTC on the 12th is 01:00 on the 13th in Sydney
        record(catalog["A"], 3, utc(12, 15))

        series = analytics.get_breakdown(BreakdownRequest())

        assert series.time_zone == "Australia/Sydney"
        assert series.points[-1].label == "2024-06-13"
        assert series.points[-1].total == 3

    def test_focus_filters_and_splits_by_machine(self, analytics, catalog, record):
        record(catalog["A"], 5, utc(13))
        record(catalog["B"], 3, utc(13))

        series = analytics.get_breakdown(
            BreakdownRequest(time_zone="UTC", focus=BreakdownFocus(sku_id=catalog["A"].sku_id))
        )

        assert series.breakdown_by == Dimension.MACHINE
        assert series.points[-1].total == 5
        assert series.points[-1].segments[0].id == catalog["A"].machine_id
        assert series.points[-1].segments[0].label == "Lobby snack machine"

    def test_machine_without_location_is_unassigned(self, analytics, resolver, row, record, db_session):
        entity = resolver.resolve(row(machine_code="B-01", location_name=None), 0)
        db_session.commit()
        record(entity, 4, utc(13))

        series = analytics.get_breakdown(
            BreakdownRequest(time_zone="UTC", breakdown_by=Dimension.LOCATION)
        )

        segment = series.points[-1].segments[0]
        assert segment.id is None
        assert segment.label == UNASSIGNED_LABEL

    def test_available_filters_list_active_entities(
        self, analytics, catalog, resolver, row, record, db_session
    ):
        unassigned = resolver.resolve(row(machine_code="B-01", location_name=None), 3)
        db_session.commit()
        record(catalog["A"], 5, utc(13))
        record(catalog["B"], 3, utc(10))
        record(catalog["C"], 4, utc(5))  # before the window
        record(catalog["C"], 0, utc(12))
        record(unassigned, 2, utc(12))

        available = analytics.get_breakdown(BreakdownRequest(time_zone="UTC")).available_filters

        assert [o.label for o in available.sku] == ["Apple Chips", "Banana Bread", "Chocolate Bar"]
        assert [o.id for o in available.machine] == [catalog["A"].machine_id, unassigned.machine_id]
        assert [o.id for o in available.location] == [catalog["A"].location_id]

    def test_available_filters_follow_focus(self, analytics, catalog, record):
        record(catalog["A"], 5, utc(13))

        available = analytics.get_breakdown(
            BreakdownRequest(time_zone="UTC", focus=BreakdownFocus(sku_id=catalog["A"].sku_id))
        ).available_filters

        assert available.sku == []
        assert [o.label for o in available.machine] == ["Lobby snack machine"]
        assert [o.label for o in available.location] == ["Central Station"]


class TestCalendarBreakdown:
    def test_monthly_buckets(self, analytics, catalog, record):
        record(catalog["A"], 5, utc(2))
        record(catalog["A"], 1, datetime(2024, 4, 20, tzinfo=timezone.utc))

        series = analytics.get_breakdown(
            BreakdownRequest(time_zone="UTC", aggregation=Aggregation.MONTH, periods=3)
        )

        assert [p.label for p in series.points] == ["2024-04", "2024-05", "2024-06"]
        assert [p.total for p in series.points] == [1, 0, 5]
        assert series.week_averages == []
        assert series.range_end == datetime(2024, 7, 1, tzinfo=timezone.utc)

    def test_periods_are_clamped(self, analytics, catalog):
        from vendrun.core.config import settings

        series = analytics.get_breakdown(
            BreakdownRequest(time_zone="UTC", aggregation=Aggregation.DAY, periods=10_000)
        )
        assert len(series.points) == settings.max_breakdown_periods

    def test_quarter_defaults(self, analytics, catalog):
        series = analytics.get_breakdown(
            BreakdownRequest(time_zone="UTC", aggregation=Aggregation.QUARTER)
        )
        assert [p.label for p in series.points] == ["2023-Q3", "2023-Q4", "2024-Q1", "2024-Q2"]


class TestPickLeaders:
    def test_idle_entities_are_not_ranked(self):
        leaders = pick_leaders({1: 0}, {1: 0, 2: 0}, {1: "a", 2: "b"}, 0.5)
        assert leaders.up is None
        assert leaders.down is None
        assert leaders.default_selection == Trend.DOWN

    def test_ties_prefer_higher_current_then_lower_id(self):
        leaders = pick_leaders({1: 4, 2: 6, 3: 6}, {1: 0, 2: 2, 3: 2}, {}, 0.5)
        assert leaders.up.id == 2
        assert leaders.up.delta == 4

    def test_only_fallers(self):
        leaders = pick_leaders({1: 1}, {1: 5}, {1: "Cola"}, 0.5)
        assert leaders.up is None
        assert leaders.down.label == "Cola"
        assert leaders.down.delta == -4
        assert leaders.default_selection == Trend.DOWN


class TestMomentum:
    def test_week_over_week_leaders(self, analytics, catalog, record):
        record(catalog["A"], 10, utc(11))
        record(catalog["A"], 2, utc(4))
        record(catalog["B"], 1, utc(12))
        record(catalog["B"], 6, utc(5))
        # After the aligned comparison point of last week
        record(catalog["C"], 9, utc(7))

        momentum = analytics.get_momentum("UTC")

        up = momentum.sku_leaders.up
        assert up.id == catalog["A"].sku_id
        assert (up.current, up.previous, up.delta) == (10, 2, 8)
        assert up.delta_percent == 400.0
        down = momentum.sku_leaders.down
        assert down.id == catalog["B"].sku_id
        assert down.delta == -5
        assert down.delta_percent == -83.3
        assert momentum.sku_leaders.default_selection == Trend.UP

        assert momentum.current_week.total == 11
        assert momentum.previous_week.total == 8
        assert momentum.previous_week.comparison_end == utc(6, 12)
        assert momentum.progress_percent == 50.0

    def test_inactive_entity_never_leads(self, analytics, catalog, record):
        record(catalog["C"], 9, utc(7))

        momentum = analytics.get_momentum("UTC")
        assert momentum.sku_leaders.up is None
        assert momentum.sku_leaders.down is None

    def test_location_and_machine_leaders(self, analytics, catalog, record):
        record(catalog["A"], 3, utc(11))
        record(catalog["B"], 1, utc(4))

        momentum = analytics.get_momentum("UTC")
        assert momentum.location_leaders.up.id == catalog["A"].location_id
        assert momentum.location_leaders.up.label == "Central Station"
        assert momentum.machine_leaders.up.delta == 2
        assert momentum.machine_leaders.down is None

    def test_previous_cutoff_counts_real_hours_across_dst(
        self, db_session, company, catalog, record
    ):
        # Sydney leaves daylight saving on Sunday 2024-04-07; now is Sunday
        # 2024-04-14 12:00 local, 156 hours into the week
        now = datetime(2024, 4, 14, 2, 0, tzinfo=timezone.utc)
        analytics = AnalyticsService(db_session, company.id, clock=lambda: now)
        record(catalog["A"], 3, datetime(2024, 4, 7, 0, 30, tzinfo=timezone.utc))
        record(catalog["A"], 5, datetime(2024, 4, 7, 1, 30, tzinfo=timezone.utc))

        momentum = analytics.get_momentum("Australia/Sydney")

        assert momentum.previous_week.start == datetime(2024, 3, 31, 13, tzinfo=timezone.utc)
        assert momentum.previous_week.comparison_end == datetime(2024, 4, 7, 1, tzinfo=timezone.utc)
        assert momentum.previous_week.total == 3

    def test_empty(self, analytics):
        momentum = analytics.get_momentum("UTC")
        assert momentum.current_week.total == 0
        assert momentum.sku_leaders.up is None


class TestPeriodComparison:
    def test_week_against_three_previous(self, analytics, catalog, record):
        record(catalog["A"], 10, utc(11))
        record(catalog["A"], 6, utc(4))
        record(catalog["B"], 3, datetime(2024, 5, 28, tzinfo=timezone.utc))

        comparison = analytics.get_period_comparison(Aggregation.WEEK, "UTC")

        assert comparison.current.total == 10
        assert [p.total for p in comparison.previous_periods] == [0, 3, 6]
        assert comparison.previous_periods[0].start == datetime(2024, 5, 20, tzinfo=timezone.utc)
        assert comparison.previous_average == 3.0
        assert comparison.percentage_change.delta_percent == 233.3
        assert comparison.percentage_change.trend == Trend.UP
        assert comparison.progress_percent == 50.0

    def test_month(self, analytics, catalog, record):
        record(catalog["A"], 4, utc(1))
        record(catalog["A"], 4, datetime(2024, 3, 15, tzinfo=timezone.utc))

        comparison = analytics.get_period_comparison(Aggregation.MONTH, "UTC")

        assert comparison.current.start == datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert [p.total for p in comparison.previous_periods] == [4, 0, 0]
        assert comparison.previous_average == 1.33
