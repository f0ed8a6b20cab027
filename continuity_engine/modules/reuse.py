"""
Continuity Engine - Reuse Resolver
Finds recent observations and assessments that may stand in for a new encounter
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from continuity_engine.clock import Clock, SystemClock
from continuity_engine.config import settings
from continuity_engine.exceptions import PreconditionError
from continuity_engine.modules.relevance import select_most_relevant
from continuity_engine.schemas import (
    AssessmentFilter, AssessmentRecord, MetricObservation, ObservationFilter
)
from continuity_engine.services.record_store import RecordStore

logger = logging.getLogger(__name__)


class ReuseResolver:
    """Answers "what reusable data exists for this patient" for metrics and templates"""

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        default_validity_hours: Optional[float] = None,
        assessment_candidate_limit: Optional[int] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        if default_validity_hours is None:
            default_validity_hours = settings.reuse_validity_hours
        if assessment_candidate_limit is None:
            assessment_candidate_limit = settings.assessment_candidate_limit
        if default_validity_hours <= 0:
            raise PreconditionError(
                f"default_validity_hours must be positive, got {default_validity_hours}"
            )
        if assessment_candidate_limit <= 0:
            raise PreconditionError(
                f"assessment_candidate_limit must be positive, got {assessment_candidate_limit}"
            )
        self.default_validity_hours = default_validity_hours
        self.assessment_candidate_limit = assessment_candidate_limit

    def cutoff(self, validity_hours: Optional[float] = None) -> datetime:
        """Oldest timestamp still inside the validity window (inclusive)"""
        hours = self.default_validity_hours if validity_hours is None else validity_hours
        if hours <= 0:
            raise PreconditionError(f"validity_hours must be positive, got {hours}")
        return self.clock.now() - timedelta(hours=hours)

    def find_reusable_observations(
        self,
        patient_id: str,
        metric_ids: Sequence[str],
        validity_hours: Optional[float] = None
    ) -> List[MetricObservation]:
        """
        Find at most one reusable observation per requested metric

        Only device readings or clinically monitored observations qualify;
        self-reported wellness data is never reused however recent it is.
        Within a metric the Relevance Ranker picks the representative.

        Args:
            patient_id: Patient ID
            metric_ids: Metric definition IDs to resolve
            validity_hours: Window length (default: configured reuse window)

        Returns:
            One observation per metric that had a qualifying candidate, in
            the order the metrics were requested
        """
        cutoff = self.cutoff(validity_hours)
        if not metric_ids:
            return []

        candidates = self.store.query_observations(
            ObservationFilter(
                patient_id=patient_id,
                metric_ids=list(metric_ids),
                recorded_after=cutoff,
                reusable_only=True
            )
        )

        grouped: Dict[str, List[MetricObservation]] = defaultdict(list)
        for observation in candidates:
            grouped[observation.metric_id].append(observation)

        resolved = [
            select_most_relevant(grouped[metric_id])
            for metric_id in dict.fromkeys(metric_ids)
            if grouped.get(metric_id)
        ]

        logger.debug(
            f"Patient {patient_id}: {len(resolved)}/{len(set(metric_ids))} metrics "
            f"reusable from {len(candidates)} candidates"
        )
        return resolved

    def find_reusable_assessments(
        self,
        patient_id: str,
        template_id: str,
        validity_hours: Optional[float] = None
    ) -> List[AssessmentRecord]:
        """Recent assessments of one template, newest first, capped"""
        cutoff = self.cutoff(validity_hours)

        return self.store.query_assessments(
            AssessmentFilter(
                patient_id=patient_id,
                template_id=template_id,
                completed_after=cutoff
            ),
            limit=self.assessment_candidate_limit
        )

    def find_recent_observations(
        self,
        patient_id: str,
        validity_hours: Optional[float] = None,
        limit: Optional[int] = None
    ) -> List[MetricObservation]:
        """All recent observations for a patient regardless of source or context"""
        cutoff = self.cutoff(validity_hours)
        if limit is None:
            limit = settings.recent_observation_limit
        if limit <= 0:
            raise PreconditionError(f"limit must be positive, got {limit}")

        return self.store.query_observations(
            ObservationFilter(patient_id=patient_id, recorded_after=cutoff),
            limit=limit
        )
