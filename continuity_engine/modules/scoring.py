"""
Continuity Engine - Assessment Scoring Hook
"""

from typing import Callable, Dict, Optional

from continuity_engine.schemas import NumericValue, Template

# (responses keyed by metric key, template) -> score or None
ScoringFunction = Callable[[Dict[str, object], Template], Optional[float]]


def mean_numeric_score(responses: Dict[str, object], template: Template) -> Optional[float]:
    """
    Default scorer: arithmetic mean of the numeric responses

    Non-numeric responses are ignored; returns None when there are none.
    Templates with a validated instrument should inject their own scorer.
    """
    numeric = [
        value.value for value in responses.values()
        if isinstance(value, NumericValue)
    ]
    if not numeric:
        return None
    return sum(numeric) / len(numeric)
