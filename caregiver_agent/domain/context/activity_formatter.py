"""
Text rendering of activity records for prompts and the getActivityLogs tool.

One formatter per ActivityCategory; FORMATTERS must cover the whole enum.
"""

from typing import Callable, Dict, List
from collections import defaultdict

from caregiver_agent.domain.models.care_models import ActivityCategory, ActivityRecord


_FEEDING_LABELS = {
    "breast": "Breast milk",
    "breast_milk": "Breast milk",
    "formula": "Formula",
    "pumped": "Pumped milk",
    "baby_food": "Baby food",
}


def _feeding(record: ActivityRecord) -> str:
    label = _FEEDING_LABELS.get(record.feeding_type or "", "Feeding")
    parts = [label]
    if record.feeding_type in ("breast", "breast_milk"):
        if record.breast_side:
            parts.append(record.breast_side.lower())
        if record.duration_minutes:
            parts.append(f"{record.duration_minutes:g} min")
    elif record.amount_ml:
        parts.append(f"{record.amount_ml:g}ml")
    return " ".join(parts)


def _sleep(record: ActivityRecord) -> str:
    label = "Night sleep" if record.sleep_type == "night" else "Nap"
    if record.end_time is None and not record.duration_minutes:
        return f"{label} (in progress)"
    minutes = round(record.sleep_minutes())
    if record.end_time is not None:
        return f"{label} until {record.end_time.strftime('%m-%d %H:%M')} ({minutes} min)"
    return f"{label} {minutes} min"


def _diaper(record: ActivityRecord) -> str:
    label = {"urine": "Wet diaper", "stool": "Dirty diaper"}.get(record.diaper_type or "", "Diaper")
    if record.stool_condition:
        return f"{label} ({record.stool_condition.lower()})"
    return label


def _temperature(record: ActivityRecord) -> str:
    if record.temperature_c is None:
        return "Temperature check"
    return f"Temperature {record.temperature_c:.1f}°C"


def _medication(record: ActivityRecord) -> str:
    parts = [f"Medication {record.medicine_name or 'unspecified'}"]
    if record.medicine_amount is not None:
        parts.append(f"{record.medicine_amount:g}{record.medicine_unit or ''}")
    return " ".join(parts)


def _bath(record: ActivityRecord) -> str:
    return "Bath"


def _hospital(record: ActivityRecord) -> str:
    return "Hospital visit"


def _note(record: ActivityRecord) -> str:
    return "Note"


FORMATTERS: Dict[ActivityCategory, Callable[[ActivityRecord], str]] = {
    ActivityCategory.FEEDING: _feeding,
    ActivityCategory.SLEEP: _sleep,
    ActivityCategory.DIAPER: _diaper,
    ActivityCategory.TEMPERATURE: _temperature,
    ActivityCategory.MEDICATION: _medication,
    ActivityCategory.BATH: _bath,
    ActivityCategory.HOSPITAL: _hospital,
    ActivityCategory.NOTE: _note,
}

_missing = set(ActivityCategory) - set(FORMATTERS)
if _missing:
    raise RuntimeError(f"No formatter for categories: {sorted(c.value for c in _missing)}")


def format_activity(record: ActivityRecord, with_date: bool = False) -> str:
    """One log line for a record"""

    stamp = record.start_time.strftime("%Y-%m-%d %H:%M" if with_date else "%H:%M")
    details = FORMATTERS[record.category](record)
    if record.note:
        details += f" | memo: {record.note}"
    return f"[{stamp}] {details}"


def format_day_log(records: List[ActivityRecord]) -> str:
    """Verbatim log for a single day"""

    if not records:
        return "No records"
    ordered = sorted(records, key=lambda r: r.start_time)
    return "\n".join(format_activity(r) for r in ordered)


def format_recent_log(records: List[ActivityRecord]) -> str:
    """Multi-day log grouped by category, newest first within each group"""

    if not records:
        return "No records were logged in this period."

    by_category: Dict[ActivityCategory, List[ActivityRecord]] = defaultdict(list)
    for record in records:
        by_category[record.category].append(record)

    sections = []
    for category in ActivityCategory:
        group = by_category.get(category)
        if not group:
            continue
        group.sort(key=lambda r: r.start_time, reverse=True)
        lines = "\n".join(f"- {format_activity(r, with_date=True)}" for r in group)
        sections.append(f"{category.value.capitalize()} ({len(group)})\n{lines}")

    return "\n\n".join(sections)
