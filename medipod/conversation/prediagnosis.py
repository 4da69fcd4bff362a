"""Heuristic extraction of conditions and a display name from symptom text."""

import re
from dataclasses import dataclass, field
from typing import Optional

CONDITION_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("UTI", re.compile(r"\b(?:uti|urinary)\b", re.IGNORECASE)),
    ("diabetes", re.compile(r"\b(?:diabetes|diabetic|blood sugar)\b", re.IGNORECASE)),
    ("ulcer", re.compile(r"\b(?:ulcers?|stomach)\b", re.IGNORECASE)),
    ("H. Pylori", re.compile(r"\bh\.?\s?pylori\b", re.IGNORECASE)),
    ("hypertension", re.compile(r"\b(?:hypertension|blood pressure)\b", re.IGNORECASE)),
    ("mental_health", re.compile(r"\b(?:anxiety|depression|depressed|stress)\b", re.IGNORECASE)),
]

NAME_PATTERN = re.compile(r"(?:name|i'm|i am|call me)\s+(?:is\s+)?([A-Za-z]+)", re.IGNORECASE)

# Words that follow "I am" in symptom descriptions and are not names.
_NOT_NAMES = frozenset({
    "a", "an", "the", "not", "very", "so", "also", "still", "feeling", "having",
    "suffering", "experiencing", "sick", "ill", "unwell", "in", "pregnant", "diabetic",
    "worried", "tired", "getting",
})


@dataclass
class Prediagnosis:
    conditions: list[str] = field(default_factory=list)
    name: Optional[str] = None


class PrediagnosisClassifier:
    """Keyword classifier. Its output is advisory and never blocks a booking."""

    def extract(self, text: str) -> Prediagnosis:
        result = Prediagnosis()
        if not text:
            return result
        for condition, pattern in CONDITION_PATTERNS:
            if pattern.search(text):
                result.conditions.append(condition)
        match = NAME_PATTERN.search(text)
        if match and match.group(1).lower() not in _NOT_NAMES:
            result.name = match.group(1).capitalize()
        return result
