from typing import List, Optional
from pydantic import BaseModel

from caregiver_agent.domain.models.care_models import Measurement


class FeedingRange(BaseModel):
    min_count: int
    max_count: int
    min_volume_ml: int
    max_volume_ml: int
    description: str


class SleepRange(BaseModel):
    total_min: float
    total_max: float
    night_min: float
    night_max: float
    nap_min: float
    nap_max: float
    description: str


class GuidelineProvider:
    """Age-banded feeding/sleep ranges and medication guidance.

    Treated as a lookup table; no percentile math lives here.
    """

    def feeding_range(self, months: int) -> FeedingRange:
        if months < 1:
            return FeedingRange(min_count=8, max_count=12, min_volume_ml=60, max_volume_ml=90, description="newborn")
        if months < 3:
            return FeedingRange(min_count=6, max_count=8, min_volume_ml=90, max_volume_ml=120, description="1-3 months")
        if months < 6:
            return FeedingRange(min_count=5, max_count=6, min_volume_ml=120, max_volume_ml=180, description="3-6 months")
        if months < 12:
            return FeedingRange(
                min_count=4, max_count=5, min_volume_ml=180, max_volume_ml=240,
                description="6-12 months (with solids)"
            )
        return FeedingRange(
            min_count=3, max_count=4, min_volume_ml=200, max_volume_ml=240,
            description="12 months+ (mostly solids)"
        )

    def sleep_range(self, months: int) -> SleepRange:
        if months < 3:
            return SleepRange(total_min=14, total_max=17, night_min=8, night_max=9, nap_min=7, nap_max=8,
                              description="newborn-3 months")
        if months < 6:
            return SleepRange(total_min=12, total_max=15, night_min=10, night_max=11, nap_min=3, nap_max=4,
                              description="3-6 months")
        if months < 12:
            return SleepRange(total_min=12, total_max=14, night_min=11, night_max=12, nap_min=2, nap_max=3,
                              description="6-12 months")
        return SleepRange(total_min=11, total_max=14, night_min=10, night_max=12, nap_min=1, nap_max=2,
                          description="12 months+")

    def guideline_text(self, months: int) -> str:
        """Recommended feeding and sleep for this age"""
        feeding = self.feeding_range(months)
        sleep = self.sleep_range(months)
        return (
            f"- Feeding ({feeding.description}): {feeding.min_volume_ml}-{feeding.max_volume_ml}ml per feed, "
            f"{feeding.min_count}-{feeding.max_count} feeds per day\n"
            f"- Sleep ({sleep.description}): {sleep.total_min:g}-{sleep.total_max:g} hours per day "
            f"(night {sleep.night_min:g}-{sleep.night_max:g}h, naps {sleep.nap_min:g}-{sleep.nap_max:g}h)"
        )

    def growth_text(self, measurements: List[Measurement]) -> str:
        """Measurement history, oldest first"""
        if not measurements:
            return "No growth measurements recorded."
        lines = []
        for m in sorted(measurements, key=lambda m: m.measured_at):
            values = []
            if m.weight_kg is not None:
                values.append(f"{m.weight_kg:g}kg")
            if m.height_cm is not None:
                values.append(f"{m.height_cm:g}cm")
            lines.append(f"- {m.measured_at.strftime('%Y-%m-%d')}: {', '.join(values) or 'no values'}")
        return "\n".join(lines)

    def medication_text(self, weight_kg: Optional[float], medicine_name: Optional[str]) -> str:
        """Weight-based dosage guidance for the most recent medication"""
        if not weight_kg:
            return "No weight on record, so dosage guidance is unavailable. Consult a doctor or pharmacist."
        if not medicine_name:
            return "Weight is on record but no recent medication was logged."

        name = medicine_name.lower()
        if any(k in name for k in ("acetaminophen", "tylenol", "paracetamol", "아세트아미노펜", "타이레놀")):
            low = round(10 * weight_kg)
            high = round(15 * weight_kg)
            return (
                f"Acetaminophen (fever reducer): 10-15mg per kg per dose, every 4-6 hours. "
                f"For {weight_kg:g}kg that is {low}-{high}mg per dose (check the syrup concentration)."
            )
        return f"No general dosage information for {medicine_name}. Consult a doctor or pharmacist."
