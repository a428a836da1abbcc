"""
Data tools the model can call to look up and aggregate activity records.

Every handler receives the validated arguments plus the ``entity_id`` the
turn is scoped to. Categories the caregiver has switched off are never
queried, here or in context assembly.
"""

from typing import Dict, Any, List, Optional, Callable, Iterable, Set
from datetime import date, datetime, time, timedelta
from collections import Counter
import calendar

import structlog

from caregiver_agent.domain.errors import ToolExecutionError
from caregiver_agent.domain.models.care_models import ActivityCategory, ActivityRecord, CategorySettings
from caregiver_agent.domain.context.memory.care_store import CareStore
from caregiver_agent.domain.context.activity_formatter import format_day_log
from caregiver_agent.domain.context.guidelines import GuidelineProvider
from caregiver_agent.domain.tool.tool_registry import ToolSpec

logger = structlog.get_logger(__name__)

STABLE_THRESHOLD_PERCENT = 5.0

_DATE = {"type": "string", "format": "date", "description": "YYYY-MM-DD"}

_STATS_CATEGORIES = {
    "FEEDING": [ActivityCategory.FEEDING],
    "SLEEP": [ActivityCategory.SLEEP],
    "DIAPER": [ActivityCategory.DIAPER],
    "ALL": [ActivityCategory.FEEDING, ActivityCategory.SLEEP, ActivityCategory.DIAPER],
}


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ToolExecutionError("date", f"Invalid date: {value}") from e


def _day_bounds(day: date):
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _days(start: date, end: date) -> List[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def _round1(value: float) -> float:
    return round(value, 1)


def shift_months(day: date, months: int) -> date:
    """Move by calendar months, clamping the day to the target month's length"""

    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def sleep_minutes_on(record: ActivityRecord, day: date) -> float:
    """Minutes of a finished sleep record that fall on the given day"""

    if record.end_time is None:
        return 0.0
    day_start, day_end = _day_bounds(day)
    overlap_start = max(record.start_time, day_start)
    overlap_end = min(record.end_time, day_end)
    return max(0.0, (overlap_end - overlap_start).total_seconds() / 60)


class ActivityTools:
    """Date helpers and statistics over an entity's activity records"""

    def __init__(
        self,
        store: CareStore,
        guidelines: Optional[GuidelineProvider] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.guidelines = guidelines or GuidelineProvider()
        self._clock = clock or datetime.utcnow

    def _today(self) -> date:
        return self._clock().date()

    async def _enabled(self, entity_id: str, wanted: Iterable[ActivityCategory]) -> List[ActivityCategory]:
        settings = CategorySettings.resolve(await self.store.get_category_settings(entity_id))
        return [c for c in wanted if settings.is_enabled(c)]

    async def _records(
        self,
        entity_id: str,
        categories: List[ActivityCategory],
        start: date,
        end: date
    ) -> List[ActivityRecord]:
        """Records starting on [start, end]; sleeps from the previous evening are included"""

        if not categories:
            return []
        since = datetime.combine(start, time.min)
        if ActivityCategory.SLEEP in categories:
            since -= timedelta(days=1)
        until = datetime.combine(end, time.min) + timedelta(days=1)
        return await self.store.list_activities(entity_id, categories, since, until)

    def _validate_range(self, start: date, end: date):
        if start > end:
            raise ToolExecutionError("date_range", "startDate is after endDate")
        if end > self._today():
            raise ToolExecutionError("date_range", "Future dates cannot be queried")

    # Date helpers

    async def get_relative_date(self, args: Dict[str, Any]) -> Dict[str, Any]:
        today = self._today()
        relative = args["relative"]
        monday = today - timedelta(days=today.weekday())

        if relative == "today":
            start, end, description = today, today, "today"
        elif relative == "yesterday":
            start = end = today - timedelta(days=1)
            description = "yesterday"
        elif relative == "this_week":
            start, end, description = monday, today, "this week (Monday to today)"
        elif relative == "last_week":
            start = monday - timedelta(days=7)
            end = start + timedelta(days=6)
            description = "last week (Monday to Sunday)"
        elif relative == "this_month":
            start, end, description = today.replace(day=1), today, "this month"
        else:
            end = today.replace(day=1) - timedelta(days=1)
            start = end.replace(day=1)
            description = "last month"

        return {"startDate": start.isoformat(), "endDate": end.isoformat(), "description": description}

    async def calculate_date(self, args: Dict[str, Any]) -> Dict[str, Any]:
        amount = args["amount"]
        unit = args["unit"]
        sign = -1 if args["direction"] == "ago" else 1
        today = self._today()

        if unit == "day":
            result = today + timedelta(days=sign * amount)
        elif unit == "week":
            result = today + timedelta(weeks=sign * amount)
        else:
            result = shift_months(today, sign * amount)

        label = f"{amount} {unit}{'s' if amount != 1 else ''}"
        description = f"{label} ago" if sign < 0 else f"{label} later"
        return {"date": result.isoformat(), "description": description}

    # Lookups

    async def get_activity_logs(self, args: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = args["entity_id"]
        day = _parse_date(args["date"])
        start, end = _day_bounds(day)

        categories = await self._enabled(entity_id, ActivityCategory)
        records = await self.store.list_activities(entity_id, categories, start, end) if categories else []

        return {"date": day.isoformat(), "count": len(records), "logs": format_day_log(records)}

    async def get_daily_counts(self, args: Dict[str, Any]) -> List[Dict[str, Any]]:
        entity_id = args["entity_id"]
        start = _parse_date(args["startDate"])
        end = _parse_date(args["endDate"])
        self._validate_range(start, end)

        categories = await self._enabled(entity_id, ActivityCategory)
        since, _ = _day_bounds(start)
        _, until = _day_bounds(end)
        records = await self.store.list_activities(entity_id, categories, since, until) if categories else []

        by_day: Dict[date, Counter] = {day: Counter() for day in _days(start, end)}
        for record in records:
            counts = by_day.get(record.start_time.date())
            if counts is not None:
                counts[record.category.name] += 1

        return [
            {"date": day.isoformat(), "totalCount": sum(counts.values()), "byType": dict(counts)}
            for day, counts in by_day.items()
        ]

    # Statistics

    async def calculate_stats(self, args: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = args["entity_id"]
        start = _parse_date(args["startDate"])
        end = _parse_date(args["endDate"])
        activity_type = args.get("activityType", "ALL")
        self._validate_range(start, end)

        all_days = _days(start, end)
        # Exclusions outside the requested range have nothing to remove
        excluded = sorted({_parse_date(d) for d in args.get("excludeDates") or []} & set(all_days))
        valid_days = set(all_days) - set(excluded)

        categories = await self._enabled(entity_id, _STATS_CATEGORIES[activity_type])
        records = await self._records(entity_id, categories, start, end)

        # Averages are per day that carries records; an empty period falls back to the calendar
        days_with_data = len({r.start_time.date() for r in records} & valid_days)
        analyzed_days = max(1, days_with_data or len(valid_days))

        result = {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "totalDays": len(all_days),
            "excludedDates": [d.isoformat() for d in excluded],
            "analyzedDays": analyzed_days,
        }
        result.update(self._aggregate(records, valid_days, analyzed_days, categories, activity_type))
        return result

    async def calculate_specific_dates(self, args: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = args["entity_id"]
        dates = sorted({_parse_date(d) for d in args["dates"]})
        if not dates:
            raise ToolExecutionError("calculateSpecificDates", "dates must not be empty")
        activity_type = args.get("activityType", "ALL")

        analyzed_days = len(dates)
        categories = await self._enabled(entity_id, _STATS_CATEGORIES[activity_type])
        records = await self._records(entity_id, categories, dates[0], dates[-1])

        result = {
            "period": {"start": dates[0].isoformat(), "end": dates[-1].isoformat()},
            "totalDays": analyzed_days,
            "excludedDates": [],
            "analyzedDays": analyzed_days,
        }
        result.update(self._aggregate(records, set(dates), analyzed_days, categories, activity_type))
        return result

    def _aggregate(
        self,
        records: List[ActivityRecord],
        valid_days: Set[date],
        analyzed_days: int,
        categories: List[ActivityCategory],
        activity_type: str
    ) -> Dict[str, Any]:
        out: Dict[str, Any] = {}

        requested = _STATS_CATEGORIES[activity_type]
        disabled = [c.value for c in requested if c not in categories]
        if disabled:
            out["disabledCategories"] = disabled

        on_valid_day = [r for r in records if r.start_time.date() in valid_days]
        out["actualDaysWithData"] = len({r.start_time.date() for r in on_valid_day})

        if ActivityCategory.FEEDING in categories:
            out["feeding"] = self._feeding_stats(
                [r for r in on_valid_day if r.category == ActivityCategory.FEEDING], analyzed_days
            )
        if ActivityCategory.SLEEP in categories:
            out["sleep"] = self._sleep_stats(
                [r for r in records if r.category == ActivityCategory.SLEEP], valid_days, analyzed_days
            )
        if ActivityCategory.DIAPER in categories:
            out["diaper"] = self._diaper_stats(
                [r for r in on_valid_day if r.category == ActivityCategory.DIAPER], analyzed_days
            )

        if not on_valid_day and not out.get("sleep", {}).get("totalMinutes"):
            out["message"] = "No records in this period"
        return out

    def _feeding_stats(self, feedings: List[ActivityRecord], analyzed_days: int) -> Dict[str, Any]:
        # Averages cover every matching record
        amounts = [f.amount_ml or 0 for f in feedings]
        total_amount = sum(amounts)
        return {
            "totalCount": len(feedings),
            "avgPerDay": _round1(len(feedings) / analyzed_days),
            "avgAmount": _round1(total_amount / len(amounts)) if amounts else 0,
            "totalAmount": _round1(total_amount),
            "avgDailyAmount": _round1(total_amount / analyzed_days),
            "byType": {
                "breast": sum(1 for f in feedings if f.feeding_type in ("breast", "breast_milk")),
                "formula": sum(1 for f in feedings if f.feeding_type == "formula"),
            },
        }

    def _sleep_stats(
        self,
        sleeps: List[ActivityRecord],
        valid_days: Set[date],
        analyzed_days: int
    ) -> Dict[str, Any]:
        totals = {"night": 0.0, "nap": 0.0}
        counts = {"night": 0, "nap": 0}

        for record in sleeps:
            if record.end_time is None:
                continue
            minutes = sum(sleep_minutes_on(record, day) for day in valid_days)
            if minutes <= 0:
                continue
            kind = "night" if record.sleep_type == "night" else "nap"
            totals[kind] += minutes
            counts[kind] += 1

        def bucket(kind: str) -> Dict[str, Any]:
            return {
                "totalMinutes": round(totals[kind]),
                "avgHoursPerDay": _round1(totals[kind] / analyzed_days / 60),
                "count": counts[kind],
            }

        total = totals["night"] + totals["nap"]
        return {
            "totalMinutes": round(total),
            "avgHoursPerDay": _round1(total / analyzed_days / 60),
            "nightSleep": bucket("night"),
            "napSleep": bucket("nap"),
        }

    def _diaper_stats(self, diapers: List[ActivityRecord], analyzed_days: int) -> Dict[str, Any]:
        urine = sum(1 for d in diapers if d.diaper_type == "urine")
        stool = sum(1 for d in diapers if d.diaper_type == "stool")
        conditions = Counter(d.stool_condition for d in diapers if d.stool_condition)
        return {
            "totalCount": len(diapers),
            "avgPerDay": _round1(len(diapers) / analyzed_days),
            "urine": {"total": urine, "avgPerDay": _round1(urine / analyzed_days)},
            "stool": {"total": stool, "avgPerDay": _round1(stool / analyzed_days)},
            "stoolConditions": dict(conditions),
        }

    # Guidelines and trends

    async def compare_to_recommended(self, args: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = args["entity_id"]
        metric = args["metric"]
        actual = float(args["actualValue"])

        profile = await self.store.get_profile(entity_id)
        if profile is None:
            raise ToolExecutionError("compareToRecommended", "Entity not found")
        months = profile.month_age(self._today())

        if metric.startswith("feeding"):
            feeding = self.guidelines.feeding_range(months)
            description = feeding.description
            if metric == "feeding_count":
                low, high, unit = feeding.min_count, feeding.max_count, " feeds"
            else:
                low, high, unit = feeding.min_volume_ml, feeding.max_volume_ml, "ml"
        else:
            sleep = self.guidelines.sleep_range(months)
            description = sleep.description
            low, high = {
                "sleep_total": (sleep.total_min, sleep.total_max),
                "sleep_night": (sleep.night_min, sleep.night_max),
                "sleep_nap": (sleep.nap_min, sleep.nap_max),
            }[metric]
            unit = "h"

        range_text = f"{low:g}-{high:g}{unit}"
        if actual < low:
            status, difference = "below", _round1(low - actual)
            message = f"{difference:g}{unit} below the recommended range for {description} ({range_text})"
        elif actual > high:
            status, difference = "above", _round1(actual - high)
            message = f"{difference:g}{unit} above the recommended range for {description} ({range_text})"
        else:
            status, difference = "normal", 0
            message = f"Within the recommended range for {description} ({range_text})"

        return {
            "actualValue": actual,
            "recommendedRange": {"min": low, "max": high},
            "status": status,
            "difference": difference,
            "message": message,
        }

    async def analyze_trend(self, args: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = args["entity_id"]
        metric = args["metric"]
        days = args.get("days", 7)

        today = self._today()
        start = today - timedelta(days=days - 1)
        window = _days(start, today)

        category = {
            "feeding_count": ActivityCategory.FEEDING,
            "feeding_amount": ActivityCategory.FEEDING,
            "sleep_hours": ActivityCategory.SLEEP,
            "diaper_count": ActivityCategory.DIAPER,
        }[metric]
        categories = await self._enabled(entity_id, [category])
        if not categories:
            return {
                "trend": "stable",
                "changePercent": 0,
                "dailyValues": [],
                "message": f"{category.value} records are switched off for the assistant",
            }
        records = await self._records(entity_id, categories, start, today)

        daily_values = []
        for day in window:
            if metric == "sleep_hours":
                value = _round1(sum(sleep_minutes_on(r, day) for r in records) / 60)
            else:
                same_day = [r for r in records if r.start_time.date() == day]
                if metric == "feeding_amount":
                    value = sum(r.amount_ml or 0 for r in same_day)
                else:
                    value = len(same_day)
            daily_values.append({"date": day.isoformat(), "value": value})

        trend, change = linear_trend([d["value"] for d in daily_values])
        if trend == "stable":
            message = "The pattern is stable" if len(daily_values) >= 2 else "Not enough data to analyze a trend"
        elif trend == "increasing":
            message = f"Up about {change:.1f}% over the last {days} days"
        else:
            message = f"Down about {abs(change):.1f}% over the last {days} days"

        return {"trend": trend, "changePercent": change, "dailyValues": daily_values, "message": message}

    def specs(self) -> List[ToolSpec]:
        """Tool declarations bound to this instance"""

        stats_type = {"type": "string", "enum": list(_STATS_CATEGORIES), "default": "ALL"}
        return [
            ToolSpec(
                name="getRelativeDate",
                description=(
                    "Convert a relative period such as today, yesterday, this week or last month "
                    "into absolute start and end dates. Call this before any date-based lookup."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "relative": {
                            "type": "string",
                            "enum": ["today", "yesterday", "this_week", "last_week", "this_month", "last_month"],
                        },
                    },
                    "required": ["relative"],
                },
                handler=self.get_relative_date,
            ),
            ToolSpec(
                name="calculateDate",
                description="Compute the date N days, weeks or months before or after today.",
                parameters={
                    "type": "object",
                    "properties": {
                        "amount": {"type": "integer", "minimum": 0},
                        "unit": {"type": "string", "enum": ["day", "week", "month"]},
                        "direction": {"type": "string", "enum": ["ago", "later"]},
                    },
                    "required": ["amount", "unit", "direction"],
                },
                handler=self.calculate_date,
            ),
            ToolSpec(
                name="getDailyCounts",
                description="Number of logged activities per day in a date range, by type.",
                parameters={
                    "type": "object",
                    "properties": {"startDate": _DATE, "endDate": _DATE},
                    "required": ["startDate", "endDate"],
                },
                handler=self.get_daily_counts,
            ),
            ToolSpec(
                name="calculateStats",
                description=(
                    "Feeding, sleep and diaper statistics for a date range. Use excludeDates to "
                    "leave out days with missing or unusual records."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "startDate": _DATE,
                        "endDate": _DATE,
                        "activityType": stats_type,
                        "excludeDates": {"type": "array", "items": _DATE},
                    },
                    "required": ["startDate", "endDate"],
                },
                handler=self.calculate_stats,
            ),
            ToolSpec(
                name="calculateSpecificDates",
                description="The same statistics as calculateStats over an explicit list of dates.",
                parameters={
                    "type": "object",
                    "properties": {
                        "dates": {"type": "array", "items": _DATE},
                        "activityType": stats_type,
                    },
                    "required": ["dates"],
                },
                handler=self.calculate_specific_dates,
            ),
            ToolSpec(
                name="compareToRecommended",
                description="Compare a measured value with the recommended range for the child's age.",
                parameters={
                    "type": "object",
                    "properties": {
                        "metric": {
                            "type": "string",
                            "enum": ["feeding_count", "feeding_volume", "sleep_total", "sleep_night", "sleep_nap"],
                        },
                        "actualValue": {"type": "number"},
                    },
                    "required": ["metric", "actualValue"],
                },
                handler=self.compare_to_recommended,
            ),
            ToolSpec(
                name="analyzeTrend",
                description="Whether a daily metric is increasing, decreasing or stable over recent days.",
                parameters={
                    "type": "object",
                    "properties": {
                        "metric": {
                            "type": "string",
                            "enum": ["feeding_count", "feeding_amount", "sleep_hours", "diaper_count"],
                        },
                        "days": {"type": "integer", "minimum": 2, "maximum": 90, "default": 7},
                    },
                    "required": ["metric"],
                },
                handler=self.analyze_trend,
            ),
            ToolSpec(
                name="getActivityLogs",
                description="Every activity logged on one date, as text.",
                parameters={
                    "type": "object",
                    "properties": {"date": _DATE},
                    "required": ["date"],
                },
                handler=self.get_activity_logs,
            ),
        ]


def linear_trend(values: List[float]):
    """Least-squares slope over day indexes, as (trend, percent change)"""

    n = len(values)
    if n < 2:
        return "stable", 0

    x_sum = n * (n - 1) / 2
    y_sum = sum(values)
    xy_sum = sum(i * v for i, v in enumerate(values))
    xx_sum = sum(i * i for i in range(n))

    slope = (n * xy_sum - x_sum * y_sum) / (n * xx_sum - x_sum * x_sum)
    intercept = (y_sum - slope * x_sum) / n
    projected_end = intercept + slope * (n - 1)

    change = 0.0
    if intercept != 0:
        change = (projected_end - intercept) / abs(intercept) * 100

    change = _round1(change)
    if abs(change) < STABLE_THRESHOLD_PERCENT:
        return "stable", change
    return ("increasing" if change > 0 else "decreasing"), change
