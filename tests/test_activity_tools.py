"""Tests for the date and statistics tools."""

from datetime import date, datetime
from unittest.mock import AsyncMock

import pytest

from conftest import ENTITY_ID, fixed_clock
from caregiver_agent.domain.context.memory.runtime_memory import InMemoryCareStore
from caregiver_agent.domain.errors import ToolExecutionError
from caregiver_agent.domain.models.care_models import ActivityCategory
from caregiver_agent.domain.tool.activity_tools import ActivityTools, linear_trend, shift_months


@pytest.fixture
def tools(store: InMemoryCareStore) -> ActivityTools:
    return ActivityTools(store, clock=fixed_clock)


def scoped(**args):
    return {"entity_id": ENTITY_ID, **args}


class TestDateHelpers:
    """Tests for getRelativeDate and calculateDate."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("relative,start,end", [
        ("today", "2024-12-05", "2024-12-05"),
        ("yesterday", "2024-12-04", "2024-12-04"),
        ("this_week", "2024-12-02", "2024-12-05"),
        ("last_week", "2024-11-25", "2024-12-01"),
        ("this_month", "2024-12-01", "2024-12-05"),
        ("last_month", "2024-11-01", "2024-11-30"),
    ])
    async def test_relative_dates(self, tools: ActivityTools, relative: str, start: str, end: str) -> None:
        result = await tools.get_relative_date(scoped(relative=relative))

        assert (result["startDate"], result["endDate"]) == (start, end)

    @pytest.mark.asyncio
    async def test_calculate_days_and_weeks(self, tools: ActivityTools) -> None:
        weeks = await tools.calculate_date(scoped(amount=2, unit="week", direction="ago"))
        day = await tools.calculate_date(scoped(amount=1, unit="day", direction="later"))

        assert weeks == {"date": "2024-11-21", "description": "2 weeks ago"}
        assert day == {"date": "2024-12-06", "description": "1 day later"}

    @pytest.mark.asyncio
    async def test_month_arithmetic_clamps_day(self, store: InMemoryCareStore) -> None:
        tools = ActivityTools(store, clock=lambda: datetime(2024, 3, 31, 9, 0))

        result = await tools.calculate_date(scoped(amount=1, unit="month", direction="ago"))

        assert result["date"] == "2024-02-29"

    def test_shift_months_across_year(self) -> None:
        assert shift_months(date(2024, 1, 31), -2) == date(2023, 11, 30)
        assert shift_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


class TestLookups:
    """Tests for getActivityLogs and getDailyCounts."""

    @pytest.mark.asyncio
    async def test_activity_logs_for_one_day(self, tools: ActivityTools, add_record) -> None:
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 5, 9, 0), feeding_type="formula", amount_ml=120)
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 4, 9, 0), feeding_type="formula", amount_ml=90)

        result = await tools.get_activity_logs(scoped(date="2024-12-05"))

        assert result == {"date": "2024-12-05", "count": 1, "logs": "[09:00] Formula 120ml"}

    @pytest.mark.asyncio
    async def test_activity_logs_skip_disabled_categories(
        self,
        tools: ActivityTools,
        store: InMemoryCareStore,
        add_record
    ) -> None:
        store.settings[ENTITY_ID] = {"diaper": False}
        add_record(ActivityCategory.DIAPER, datetime(2024, 12, 5, 8, 0), diaper_type="urine")

        result = await tools.get_activity_logs(scoped(date="2024-12-05"))

        assert result["count"] == 0
        assert result["logs"] == "No records"

    @pytest.mark.asyncio
    async def test_daily_counts_by_type(self, tools: ActivityTools, add_record) -> None:
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 4, 9, 0))
        add_record(ActivityCategory.DIAPER, datetime(2024, 12, 4, 10, 0))
        add_record(ActivityCategory.DIAPER, datetime(2024, 12, 4, 23, 59))

        result = await tools.get_daily_counts(scoped(startDate="2024-12-04", endDate="2024-12-05"))

        assert result == [
            {"date": "2024-12-04", "totalCount": 3, "byType": {"FEEDING": 1, "DIAPER": 2}},
            {"date": "2024-12-05", "totalCount": 0, "byType": {}},
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("start,end", [("2024-12-05", "2024-12-01"), ("2024-12-01", "2024-12-06")])
    async def test_invalid_ranges(self, tools: ActivityTools, start: str, end: str) -> None:
        with pytest.raises(ToolExecutionError):
            await tools.get_daily_counts(scoped(startDate=start, endDate=end))


class TestStatistics:
    """Tests for calculateStats and calculateSpecificDates."""

    @pytest.mark.asyncio
    async def test_feeding_averages_use_every_record(self, tools: ActivityTools, add_record) -> None:
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 3, 8, 0), feeding_type="formula", amount_ml=100)
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 3, 12, 0), feeding_type="formula", amount_ml=120)
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 4, 8, 0), feeding_type="formula", amount_ml=150)
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 5, 8, 0), feeding_type="breast")

        result = await tools.calculate_stats(scoped(
            startDate="2024-12-03", endDate="2024-12-05", activityType="FEEDING", excludeDates=["2024-12-05"]
        ))

        assert result["totalDays"] == 3
        assert result["analyzedDays"] == 2
        assert result["excludedDates"] == ["2024-12-05"]
        assert result["actualDaysWithData"] == 2
        assert result["feeding"] == {
            "totalCount": 3,
            "avgPerDay": 1.5,
            "avgAmount": 123.3,
            "totalAmount": 370,
            "avgDailyAmount": 185.0,
            "byType": {"breast": 0, "formula": 3},
        }
        assert "sleep" not in result

    @pytest.mark.asyncio
    async def test_exclusions_outside_the_range_are_ignored(self, tools: ActivityTools, add_record) -> None:
        for day in (2, 3, 4):
            add_record(ActivityCategory.FEEDING, datetime(2024, 12, day, 9, 0), feeding_type="formula", amount_ml=100)

        result = await tools.calculate_stats(scoped(
            startDate="2024-12-02", endDate="2024-12-04", activityType="FEEDING", excludeDates=["2024-11-01"]
        ))

        assert result["totalDays"] == 3
        assert result["excludedDates"] == []
        assert result["analyzedDays"] == 3
        assert result["feeding"]["avgPerDay"] == 1.0
        assert result["feeding"]["avgDailyAmount"] == 100.0

    @pytest.mark.asyncio
    async def test_averages_cover_days_with_records(self, tools: ActivityTools, add_record) -> None:
        for day in (2, 4):
            add_record(ActivityCategory.FEEDING, datetime(2024, 12, day, 8, 0), feeding_type="formula", amount_ml=100)
            add_record(ActivityCategory.FEEDING, datetime(2024, 12, day, 14, 0), feeding_type="formula", amount_ml=140)

        result = await tools.calculate_stats(scoped(
            startDate="2024-12-01", endDate="2024-12-05", activityType="FEEDING", excludeDates=["2024-12-03"]
        ))

        assert result["totalDays"] == 5
        assert result["excludedDates"] == ["2024-12-03"]
        assert result["actualDaysWithData"] == 2
        assert result["analyzedDays"] == 2
        assert result["feeding"]["avgPerDay"] == 2.0
        assert result["feeding"]["avgDailyAmount"] == 240.0

    @pytest.mark.asyncio
    async def test_excluding_every_day_still_divides_by_one(self, tools: ActivityTools) -> None:
        result = await tools.calculate_stats(scoped(
            startDate="2024-12-05", endDate="2024-12-05", excludeDates=["2024-12-05"]
        ))

        assert result["analyzedDays"] == 1
        assert result["message"] == "No records in this period"

    @pytest.mark.asyncio
    async def test_sleep_is_split_at_midnight(self, tools: ActivityTools, add_record) -> None:
        add_record(
            ActivityCategory.SLEEP, datetime(2024, 12, 2, 22, 0),
            end_time=datetime(2024, 12, 3, 6, 0), sleep_type="night"
        )
        add_record(ActivityCategory.SLEEP, datetime(2024, 12, 3, 13, 0), sleep_type="nap")

        one_day = await tools.calculate_stats(scoped(startDate="2024-12-03", endDate="2024-12-03", activityType="SLEEP"))
        two_days = await tools.calculate_stats(scoped(startDate="2024-12-02", endDate="2024-12-03", activityType="SLEEP"))

        assert one_day["sleep"]["totalMinutes"] == 360
        assert one_day["sleep"]["avgHoursPerDay"] == 6.0
        assert one_day["sleep"]["nightSleep"]["count"] == 1
        assert one_day["sleep"]["napSleep"]["count"] == 0
        assert two_days["sleep"]["totalMinutes"] == 480
        assert two_days["sleep"]["avgHoursPerDay"] == 4.0

    @pytest.mark.asyncio
    async def test_diaper_breakdown(self, tools: ActivityTools, add_record) -> None:
        add_record(ActivityCategory.DIAPER, datetime(2024, 12, 5, 8, 0), diaper_type="urine")
        add_record(ActivityCategory.DIAPER, datetime(2024, 12, 5, 9, 0), diaper_type="stool", stool_condition="normal")

        result = await tools.calculate_stats(scoped(startDate="2024-12-05", endDate="2024-12-05", activityType="DIAPER"))

        assert result["diaper"]["urine"] == {"total": 1, "avgPerDay": 1.0}
        assert result["diaper"]["stoolConditions"] == {"normal": 1}

    @pytest.mark.asyncio
    async def test_disabled_categories_are_reported_not_queried(
        self,
        tools: ActivityTools,
        store: InMemoryCareStore,
        add_record
    ) -> None:
        store.settings[ENTITY_ID] = {"feeding": False}
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 5, 8, 0), amount_ml=100)
        spy = AsyncMock(wraps=store.list_activities)
        store.list_activities = spy

        result = await tools.calculate_stats(scoped(startDate="2024-12-05", endDate="2024-12-05"))

        assert result["disabledCategories"] == ["feeding"]
        assert "feeding" not in result
        assert all(ActivityCategory.FEEDING not in call.args[1] for call in spy.await_args_list)

    @pytest.mark.asyncio
    async def test_specific_dates(self, tools: ActivityTools, add_record) -> None:
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 1, 8, 0), amount_ml=100)
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 3, 8, 0), amount_ml=200)
        add_record(ActivityCategory.FEEDING, datetime(2024, 12, 5, 8, 0), amount_ml=300)

        result = await tools.calculate_specific_dates(scoped(dates=["2024-12-05", "2024-12-01"], activityType="FEEDING"))

        assert result["analyzedDays"] == 2
        assert result["period"] == {"start": "2024-12-01", "end": "2024-12-05"}
        assert result["feeding"]["totalAmount"] == 400

    @pytest.mark.asyncio
    async def test_specific_dates_requires_dates(self, tools: ActivityTools) -> None:
        with pytest.raises(ToolExecutionError):
            await tools.calculate_specific_dates(scoped(dates=[]))


class TestGuidelinesAndTrends:
    """Tests for compareToRecommended and analyzeTrend."""

    @pytest.mark.asyncio
    async def test_compare_below_range(self, tools: ActivityTools) -> None:
        result = await tools.compare_to_recommended(scoped(metric="feeding_count", actualValue=4))

        assert result["status"] == "below"
        assert result["recommendedRange"] == {"min": 5, "max": 6}
        assert result["difference"] == 1.0

    @pytest.mark.asyncio
    async def test_compare_within_range(self, tools: ActivityTools) -> None:
        result = await tools.compare_to_recommended(scoped(metric="sleep_total", actualValue=13))

        assert result["status"] == "normal"
        assert result["difference"] == 0

    @pytest.mark.asyncio
    async def test_increasing_trend(self, tools: ActivityTools, add_record) -> None:
        for day, count in [(2, 2), (3, 4), (4, 6), (5, 8)]:
            for hour in range(count):
                add_record(ActivityCategory.FEEDING, datetime(2024, 12, day, hour, 0))

        result = await tools.analyze_trend(scoped(metric="feeding_count", days=4))

        assert [d["value"] for d in result["dailyValues"]] == [2, 4, 6, 8]
        assert result["trend"] == "increasing"
        assert result["changePercent"] == 300.0

    @pytest.mark.asyncio
    async def test_trend_on_disabled_category(self, tools: ActivityTools, store: InMemoryCareStore) -> None:
        store.settings[ENTITY_ID] = {"sleep": False}

        result = await tools.analyze_trend(scoped(metric="sleep_hours"))

        assert result["dailyValues"] == []
        assert "switched off" in result["message"]

    def test_linear_trend(self) -> None:
        assert linear_trend([5]) == ("stable", 0)
        assert linear_trend([10, 10, 9.8])[0] == "stable"
        assert linear_trend([8, 6, 4, 2]) == ("decreasing", -75.0)

    def test_specs_cover_every_tool(self, tools: ActivityTools) -> None:
        assert {spec.name for spec in tools.specs()} == {
            "getRelativeDate", "calculateDate", "getDailyCounts", "calculateStats",
            "calculateSpecificDates", "compareToRecommended", "analyzeTrend", "getActivityLogs",
        }
