"""
Continuity Engine - Relevance Ranker
Picks the single most relevant observation among candidates for one metric
"""

from typing import Dict, Optional, Sequence

from continuity_engine.exceptions import PreconditionError
from continuity_engine.schemas import MetricObservation, ObservationContext

# Lower rank wins
CONTEXT_PRIORITY: Dict[ObservationContext, int] = {
    ObservationContext.CLINICAL_MONITORING: 1,
    ObservationContext.PROGRAM_ENROLLMENT: 2,
    ObservationContext.ROUTINE_FOLLOWUP: 3,
    ObservationContext.WELLNESS: 4,
}
UNCLASSIFIED_PRIORITY = 5


def context_priority(context: Optional[ObservationContext]) -> int:
    """Priority rank of an observation context"""
    if context is None:
        return UNCLASSIFIED_PRIORITY
    return CONTEXT_PRIORITY.get(context, UNCLASSIFIED_PRIORITY)


def is_more_relevant(contender: MetricObservation, current: MetricObservation) -> bool:
    """True when contender strictly beats current: better context, then later recording"""
    contender_rank = context_priority(contender.context)
    current_rank = context_priority(current.context)

    if contender_rank != current_rank:
        return contender_rank < current_rank
    return contender.recorded_at > current.recorded_at


def select_most_relevant(candidates: Sequence[MetricObservation]) -> MetricObservation:
    """
    Select the most relevant observation among candidates for the same metric

    Args:
        candidates: Non-empty observations for one patient and one metric

    Returns:
        The candidate with the best context priority, latest on a tie. The
        result does not depend on input order unless two candidates share
        both priority and timestamp, in which case either may be returned.

    Raises:
        PreconditionError: if candidates is empty
    """
    if not candidates:
        raise PreconditionError("select_most_relevant requires at least one candidate")

    best = candidates[0]
    for contender in candidates[1:]:
        if is_more_relevant(contender, best):
            best = contender
    return best
