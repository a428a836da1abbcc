from typing import Optional
from pydantic import BaseModel
import re


GROWTH_TERMS = (
    "height", "weight", "growth", "grow", "percentile", "development", "length", "gain",
    "키", "몸무게", "체중", "성장", "백분위", "발달",
)

GUIDELINE_TERMS = (
    "recommend", "normal", "average", "compare", "enough", "okay", "ok", "appropriate", "should",
    "권장", "정상", "평균", "비교", "괜찮", "적절",
)

MEDICATION_TERMS = (
    "medicine", "medication", "dose", "dosage", "fever", "temperature", "tylenol",
    "acetaminophen", "ibuprofen", "syrup", "sick", "symptom",
    "약", "열", "체온", "아프", "증상",
)

HEALTH_TERMS = (
    "sick", "fever", "temperature", "symptom", "vomit", "diarrhea", "cough", "runny",
    "pain", "rash", "crying", "fussy", "ill",
    "아프", "열", "체온", "증상", "병", "토", "설사", "기침", "콧물", "구토", "통증", "울", "보채",
)

_STATISTICS = re.compile(r"\b(recent|lately|average|overall|total|per day|daily)\b|최근|요즘|평균|전체")
_SPECIFIC_RECORD = re.compile(r"\b(yesterday|today|when|what time)\b|어제|오늘|그제|언제|몇 ?시")
_TREND = re.compile(r"\b(increas\w*|decreas\w*|more than|less than|chang\w*|trend\w*)\b|늘었|줄었|변화|추세|트렌드")

_TODAY = re.compile(r"\btoday\b|오늘")
_YESTERDAY = re.compile(r"\byesterday\b|어제")
_WEEK = re.compile(r"\b(week|7 days|seven days)\b|일주일|7일|주")
_MONTH = re.compile(r"\b(month|30 days)\b|한 ?달|30일|월")

_WORD = re.compile(r"\w+")


class QuestionClassification(BaseModel):
    """How much optional context a question needs"""
    needs_growth: bool = False
    needs_guidelines: bool = False
    needs_medication: bool = False
    is_health_related: bool = False
    question_type: str = "general"
    time_range_hint: Optional[str] = None


def _mentions(text: str, words: set, terms: tuple) -> bool:
    """ASCII terms match whole words (or word prefixes); Hangul terms match substrings"""

    for term in terms:
        if term.isascii():
            if term in words or any(w.startswith(term) for w in words if len(term) > 3):
                return True
        elif term in text:
            return True
    return False


class QuestionClassifier:
    """Cheap keyword heuristic deciding which optional context to include"""

    def classify(self, message: str) -> QuestionClassification:
        """Classify a caregiver question; pure, no I/O"""

        text = message.lower()
        words = set(_WORD.findall(text))

        needs_growth = _mentions(text, words, GROWTH_TERMS)
        needs_guidelines = _mentions(text, words, GUIDELINE_TERMS)
        needs_medication = _mentions(text, words, MEDICATION_TERMS)
        is_health_related = _mentions(text, words, HEALTH_TERMS)

        if _STATISTICS.search(text):
            question_type = "statistics"
        elif _SPECIFIC_RECORD.search(text):
            question_type = "specific_record"
        elif _TREND.search(text):
            question_type = "trend"
        elif needs_growth:
            question_type = "growth"
        elif needs_medication or is_health_related:
            question_type = "health"
        else:
            question_type = "general"

        return QuestionClassification(
            needs_growth=needs_growth,
            needs_guidelines=needs_guidelines,
            needs_medication=needs_medication,
            is_health_related=is_health_related,
            question_type=question_type,
            time_range_hint=self._time_range(text),
        )

    def _time_range(self, text: str) -> Optional[str]:
        if _TODAY.search(text):
            return "today"
        if _YESTERDAY.search(text):
            return "yesterday"
        if _WEEK.search(text):
            return "week"
        if _MONTH.search(text):
            return "month"
        return None
