"""
Content Safety Validator

Keyword screen applied to published content (horoscope posts, articles,
album descriptions) before it consumes quota. Rejects medical and
guaranteed-outcome claims.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

DEFAULT_PROHIBITED_TERMS: Tuple[str, ...] = (
    "guaranteed",
    "will cure",
    "will heal",
    "cure",
    "medical treatment",
    "prescription",
    "prescribe",
    "diagnosis",
    "diagnose",
)


@dataclass
class SafetyResult:
    valid: bool
    reason: Optional[str] = None
    matched_term: Optional[str] = None


class ContentSafetyValidator:
    """Case-insensitive substring match against a prohibited term list"""

    def __init__(self, prohibited_terms: Iterable[str] = DEFAULT_PROHIBITED_TERMS):
        self.prohibited_terms = tuple(t.lower() for t in prohibited_terms if t)

    def validate(self, text: Optional[str]) -> SafetyResult:
        content = (text or "").lower()
        for term in self.prohibited_terms:
            if term in content:
                return SafetyResult(
                    valid=False,
                    reason=(
                        f'Content contains prohibited claim "{term}". '
                        f"Please avoid medical or guaranteed-outcome language."
                    ),
                    matched_term=term,
                )
        return SafetyResult(valid=True)
