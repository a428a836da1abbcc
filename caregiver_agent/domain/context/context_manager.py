from typing import Dict, List, Optional, Callable
import structlog
from datetime import datetime, timedelta

from caregiver_agent.domain.errors import NotFoundError
from caregiver_agent.domain.models.care_models import (
    ActivityCategory,
    ActivityRecord,
    CategorySettings,
    ContextBundle,
    EntityProfile,
)
from caregiver_agent.domain.context.memory.care_store import CareStore
from caregiver_agent.domain.context.memory.context_cache import ContextCache, recent_activities_key
from caregiver_agent.domain.context.question_classifier import QuestionClassification
from caregiver_agent.domain.context.activity_formatter import format_recent_log
from caregiver_agent.domain.context.guidelines import GuidelineProvider
from caregiver_agent.infrastructure.observability.logging import conversation_logger

logger = structlog.get_logger(__name__)

EXCLUSION_NOTICE = (
    "The caregiver turned off AI access to these record types: {categories}. "
    "They were not looked up, so their absence is not a health signal. "
    "Do not conclude anything about them."
)


class ContextAssembler:
    """Assembles the per-turn grounding context for one entity"""

    def __init__(
        self,
        store: CareStore,
        cache: ContextCache,
        guidelines: Optional[GuidelineProvider] = None,
        lookback_days: int = 7,
        month_lookback_days: int = 30,
        cache_ttl_seconds: int = 300,
        default_history_count: int = 3,
        health_history_count: int = 5,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.cache = cache
        self.guidelines = guidelines or GuidelineProvider()
        self.lookback_days = lookback_days
        self.month_lookback_days = max(month_lookback_days, lookback_days)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.default_history_count = default_history_count
        self.health_history_count = health_history_count
        self._clock = clock or datetime.utcnow

    async def assemble(
        self,
        entity_id: str,
        user_id: str,
        category_filters: CategorySettings,
        classification: Optional[QuestionClassification] = None
    ) -> ContextBundle:
        """Build the context bundle for a conversation turn"""

        classification = classification or QuestionClassification()
        now = self._clock()

        profile = await self.store.get_profile(entity_id)
        if profile is None:
            raise NotFoundError("Entity", entity_id)

        logger.info("Assembling context", entity_id=entity_id, user_id=user_id)

        lookback_days = self.lookback_for(classification)
        enabled = category_filters.enabled_categories()
        disabled = category_filters.disabled_categories()

        records_by_category: Dict[ActivityCategory, List[ActivityRecord]] = {}
        for category in enabled:
            records_by_category[category] = await self._recent_records(entity_id, category, now, lookback_days)

        all_records = [r for records in records_by_category.values() for r in records]
        category_counts = {c.value: len(records) for c, records in records_by_category.items()}

        exclusion_notice = None
        if disabled:
            exclusion_notice = EXCLUSION_NOTICE.format(categories=", ".join(c.value for c in disabled))

        month_age = profile.month_age(now.date())

        growth_text = None
        if classification.needs_growth and category_filters.growth:
            measurements = await self.store.list_measurements(entity_id)
            growth_text = self.guidelines.growth_text(measurements)

        guideline_text = None
        if classification.needs_guidelines:
            guideline_text = self.guidelines.guideline_text(month_age)

        medication_text = None
        if classification.needs_medication and category_filters.medication:
            medication_text = await self._medication_guidance(
                entity_id, records_by_category.get(ActivityCategory.MEDICATION, [])
            )

        bundle = ContextBundle(
            entity_id=entity_id,
            profile_summary=self._profile_summary(profile, now),
            activity_log_text=format_recent_log(all_records),
            growth_text=growth_text,
            guideline_text=guideline_text,
            medication_text=medication_text,
            exclusion_notice=exclusion_notice,
            category_counts=category_counts,
            excluded_categories=[c.value for c in disabled],
            history_count=(
                self.health_history_count if classification.is_health_related
                else self.default_history_count
            ),
            lookback_days=lookback_days,
            generated_at=now,
        )

        conversation_logger.log_context_update(
            entity_id=entity_id,
            context_type="bundle",
            action="assembled",
            details={
                "category_counts": category_counts,
                "question_type": classification.question_type,
                "lookback_days": lookback_days,
                "excluded": bundle.excluded_categories,
                "growth": growth_text is not None,
                "guidelines": guideline_text is not None,
                "medication": medication_text is not None,
            }
        )

        return bundle

    def lookback_for(self, classification: QuestionClassification) -> int:
        """Month-scale and trend questions look back further than the default window"""

        if classification.time_range_hint == "month" or classification.question_type == "trend":
            return self.month_lookback_days
        return self.lookback_days

    async def _recent_records(
        self,
        entity_id: str,
        category: ActivityCategory,
        now: datetime,
        lookback_days: int
    ) -> List[ActivityRecord]:
        """Records of one category in the lookback window, through the cache"""

        since = now - timedelta(days=lookback_days)

        async def compute():
            records = await self.store.list_activities(entity_id, [category], since)
            return [r.model_dump(mode="json") for r in records]

        key = recent_activities_key(entity_id, lookback_days, category.value)
        raw = await self.cache.get_or_compute(key, self.cache_ttl_seconds, compute)
        return [ActivityRecord.model_validate(item) for item in raw]

    async def _medication_guidance(self, entity_id: str, medication_records: List[ActivityRecord]) -> str:
        measurements = await self.store.list_measurements(entity_id)
        weights = [m for m in measurements if m.weight_kg]
        weight_kg = max(weights, key=lambda m: m.measured_at).weight_kg if weights else None

        latest_medicine = None
        if medication_records:
            latest_medicine = max(medication_records, key=lambda r: r.start_time).medicine_name

        return self.guidelines.medication_text(weight_kg, latest_medicine)

    def _profile_summary(self, profile: EntityProfile, now: datetime) -> str:
        days_old = (now.date() - profile.birth_date).days
        return (
            f"Name: {profile.name}\n"
            f"Sex: {profile.sex}\n"
            f"Born: {profile.birth_date.isoformat()} "
            f"({profile.month_age(now.date())} months, {days_old} days old)"
        )
