from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from enum import Enum
import uuid


class ActivityCategory(str, Enum):
    """Closed set of activity record categories"""
    FEEDING = "feeding"
    SLEEP = "sleep"
    DIAPER = "diaper"
    TEMPERATURE = "temperature"
    MEDICATION = "medication"
    BATH = "bath"
    HOSPITAL = "hospital"
    NOTE = "note"


class EntityProfile(BaseModel):
    """The tracked infant"""
    id: str
    name: str = Field(description="Display name")
    birth_date: date
    sex: str = Field(default="unknown", description="male, female or unknown")
    group_id: str = Field(description="Owning family group")

    def month_age(self, today: date) -> int:
        """Age in whole months (average month length)"""
        days = (today - self.birth_date).days
        return max(0, int(days / 30.4375))


class ActivityRecord(BaseModel):
    """A logged caregiving activity, read-only to the conversation engine"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    entity_id: str
    category: ActivityCategory
    start_time: datetime
    end_time: Optional[datetime] = None

    # feeding
    feeding_type: Optional[str] = Field(None, description="breast, formula, pumped or baby_food")
    amount_ml: Optional[float] = None
    breast_side: Optional[str] = None
    duration_minutes: Optional[float] = None

    # sleep
    sleep_type: Optional[str] = Field(None, description="night or nap")

    # diaper
    diaper_type: Optional[str] = Field(None, description="urine or stool")
    stool_condition: Optional[str] = None

    # temperature / medication
    temperature_c: Optional[float] = None
    medicine_name: Optional[str] = None
    medicine_amount: Optional[float] = None
    medicine_unit: Optional[str] = None

    note: Optional[str] = None

    def sleep_minutes(self) -> float:
        """Recorded sleep length, preferring the explicit time range"""
        if self.end_time is not None:
            return max(0.0, (self.end_time - self.start_time).total_seconds() / 60)
        return self.duration_minutes or 0.0


class Measurement(BaseModel):
    """Growth measurement (weight/height)"""
    entity_id: str
    measured_at: datetime
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None


class CategorySettings(BaseModel):
    """Per-entity switches for what the assistant may look at"""
    feeding: bool = True
    sleep: bool = True
    diaper: bool = True
    temperature: bool = True
    medication: bool = True
    growth: bool = True
    other: bool = False

    @classmethod
    def resolve(cls, saved: Optional[Dict[str, Any]]) -> "CategorySettings":
        """Merge saved settings over the defaults, ignoring unknown keys"""
        known = {k: bool(v) for k, v in (saved or {}).items() if k in cls.model_fields}
        return cls(**known)

    def is_enabled(self, category: ActivityCategory) -> bool:
        """Whether records of this category may be queried"""
        setting = _CATEGORY_SETTING[category]
        return getattr(self, setting)

    def enabled_categories(self) -> List[ActivityCategory]:
        return [c for c in ActivityCategory if self.is_enabled(c)]

    def disabled_categories(self) -> List[ActivityCategory]:
        return [c for c in ActivityCategory if not self.is_enabled(c)]


# BATH, HOSPITAL and NOTE share the "other" switch
_CATEGORY_SETTING: Dict[ActivityCategory, str] = {
    ActivityCategory.FEEDING: "feeding",
    ActivityCategory.SLEEP: "sleep",
    ActivityCategory.DIAPER: "diaper",
    ActivityCategory.TEMPERATURE: "temperature",
    ActivityCategory.MEDICATION: "medication",
    ActivityCategory.BATH: "other",
    ActivityCategory.HOSPITAL: "other",
    ActivityCategory.NOTE: "other",
}


class ContextBundle(BaseModel):
    """Turn-scoped grounding data handed to the model"""
    model_config = ConfigDict(frozen=True)

    entity_id: str
    profile_summary: str
    activity_log_text: str
    growth_text: Optional[str] = None
    guideline_text: Optional[str] = None
    medication_text: Optional[str] = None
    exclusion_notice: Optional[str] = None
    category_counts: Dict[str, int] = Field(default_factory=dict)
    excluded_categories: List[str] = Field(default_factory=list)
    history_count: int = 3
    lookback_days: int = 7
    generated_at: datetime

    def render(self) -> str:
        """Prompt text for this bundle"""
        sections = [
            "[Child]",
            self.profile_summary,
            f"Now: {self.generated_at.strftime('%Y-%m-%d %H:%M')}",
            "",
            f"[Recent records, last {self.lookback_days} days]",
            self.activity_log_text,
        ]
        if self.exclusion_notice:
            sections += ["", "[Excluded categories]", self.exclusion_notice]
        if self.growth_text:
            sections += ["", "[Growth]", self.growth_text]
        if self.guideline_text:
            sections += ["", "[Guidelines]", self.guideline_text]
        if self.medication_text:
            sections += ["", "[Medication guidance]", self.medication_text]
        return "\n".join(sections)


class ConversationTurn(BaseModel):
    """One persisted question/answer pair"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    entity_id: str
    user_id: str
    message: str
    reply: str
    summary: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
