"""
Continuity Engine - Suggestion & History Reporter
Read-only views: reuse recommendations and the continuity audit trail
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from continuity_engine.clock import Clock, SystemClock
from continuity_engine.config import settings
from continuity_engine.exceptions import PreconditionError, StorageError
from continuity_engine.modules.reuse import ReuseResolver
from continuity_engine.schemas import (
    AssessmentFilter, AssessmentHistoryRow, ContinuityHistory, ContinuityHistoryEntry,
    ContinuitySourceType, ContinuitySuggestions, ObservationContext, ObservationFilter,
    ObservationPage, Pagination, Recommendation, RecommendationPriority,
    RecommendationType
)
from continuity_engine.services.record_store import RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FetchResult(Generic[T]):
    """Outcome of one independent sub-fetch: items, or the error that stopped it"""
    items: List[T] = field(default_factory=list)
    error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def run(cls, category: str, fetch: Callable[[], List[T]]) -> "FetchResult[T]":
        try:
            return cls(items=list(fetch()))
        except StorageError as e:
            logger.warning(f"Continuity suggestions: {category} unavailable: {e}")
            return cls(error=e)


def build_recommendations(
    assessment_count: int,
    observation_count: int
) -> List[Recommendation]:
    """Fixed recommendation rules, each evaluated independently"""
    recommendations = []

    if assessment_count > 0:
        recommendations.append(Recommendation(
            type=RecommendationType.ASSESSMENT_REUSE,
            priority=RecommendationPriority.HIGH,
            message=f"{assessment_count} recent assessment(s) available for reuse",
            action="Consider reusing recent assessment data"
        ))

    if observation_count > 0:
        recommendations.append(Recommendation(
            type=RecommendationType.OBSERVATION_REUSE,
            priority=RecommendationPriority.MEDIUM,
            message=f"{observation_count} recent observation(s) available",
            action="Pre-populate assessment with recent observations"
        ))

    if assessment_count == 0 and observation_count == 0:
        recommendations.append(Recommendation(
            type=RecommendationType.NEW_BASELINE,
            priority=RecommendationPriority.LOW,
            message="No recent data available",
            action="Create new baseline assessment"
        ))

    return recommendations


def _page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


def _clinician_name(row: AssessmentHistoryRow) -> str:
    if not row.clinician_first_name and not row.clinician_last_name:
        return "Unknown"
    return " ".join(part for part in (row.clinician_first_name, row.clinician_last_name) if part)


def _history_entry(row: AssessmentHistoryRow) -> ContinuityHistoryEntry:
    assessment = row.assessment
    continuity_used = assessment.source_type != ContinuitySourceType.NONE

    return ContinuityHistoryEntry(
        id=assessment.id,
        patient_id=assessment.patient_id,
        template_id=assessment.template_id,
        template_name=row.template_name,
        template_category=row.template_category,
        clinician_id=assessment.clinician_id,
        clinician_name=_clinician_name(row),
        completed_at=assessment.completed_at,
        created_at=assessment.created_at,
        notes=assessment.notes or "",
        continuity_used=continuity_used,
        source_type=assessment.source_type,
        source_ids=assessment.source_ids,
        reused_metrics=list(assessment.responses) if continuity_used else [],
    )


class SuggestionReporter:
    """Recommendation and history views over the record store; no side effects"""

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        resolver: Optional[ReuseResolver] = None,
        history_window_days: Optional[int] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.resolver = resolver or ReuseResolver(store, clock=self.clock)
        if history_window_days is None:
            history_window_days = settings.history_window_days
        if history_window_days <= 0:
            raise PreconditionError(
                f"history_window_days must be positive, got {history_window_days}"
            )
        self.history_window_days = history_window_days

    def get_continuity_suggestions(
        self,
        patient_id: str,
        template_id: Optional[str] = None,
        metric_ids: Optional[Sequence[str]] = None
    ) -> ContinuitySuggestions:
        """
        Collect reusable data for a patient and recommend what to do with it

        Args:
            patient_id: Patient ID
            template_id: When given, reusable assessments of this template are included
            metric_ids: When given, reusable observations for exactly these metrics;
                otherwise every recent observation (capped) is listed

        Returns:
            ContinuitySuggestions. A category whose fetch hit a StorageError is
            left empty and named in failed_categories with partial=True.
        """
        if template_id:
            assessments = FetchResult.run(
                "assessments",
                lambda: self.resolver.find_reusable_assessments(patient_id, template_id)
            )
        else:
            assessments = FetchResult()

        if metric_ids:
            observations = FetchResult.run(
                "observations",
                lambda: self.resolver.find_reusable_observations(patient_id, metric_ids)
            )
        else:
            observations = FetchResult.run(
                "observations",
                lambda: self.resolver.find_recent_observations(patient_id)
            )

        failed = [
            category for category, result
            in (("assessments", assessments), ("observations", observations))
            if not result.ok
        ]

        return ContinuitySuggestions(
            reusable_assessments=assessments.items,
            reusable_observations=observations.items,
            recommendations=build_recommendations(
                len(assessments.items), len(observations.items)
            ),
            partial=bool(failed),
            failed_categories=failed,
        )

    def get_continuity_history(
        self,
        patient_id: str,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> ContinuityHistory:
        """Assessments completed in the history window, newest first, paginated"""
        if limit is None:
            limit = settings.history_page_size
        self._check_page(limit, offset)

        filters = AssessmentFilter(
            patient_id=patient_id,
            completed_after=self.clock.now() - timedelta(days=self.history_window_days)
        )
        rows = self.store.query_assessment_history(filters, limit=limit, offset=offset)
        total = self.store.count_assessments(filters)

        return ContinuityHistory(
            history=[_history_entry(row) for row in rows],
            pagination=Pagination(
                total=total,
                pages=_page_count(total, limit),
                current_page=offset // limit + 1
            )
        )

    def get_observations_with_context(
        self,
        patient_id: str,
        context: Optional[ObservationContext] = None,
        enrollment_id: Optional[str] = None,
        metric_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> ObservationPage:
        """Observations filtered by context, enrollment and metric, newest first"""
        self._check_page(limit, offset)

        filters = ObservationFilter(
            patient_id=patient_id,
            contexts=[context] if context else None,
            enrollment_id=enrollment_id,
            metric_ids=[metric_id] if metric_id else None,
        )
        observations = self.store.query_observations(filters, limit=limit, offset=offset)
        total = self.store.count_observations(filters)

        return ObservationPage(
            observations=observations,
            pagination=Pagination(
                total=total,
                pages=_page_count(total, limit),
                current_page=offset // limit + 1
            )
        )

    @staticmethod
    def _check_page(limit: int, offset: int) -> None:
        if limit <= 0:
            raise PreconditionError(f"limit must be positive, got {limit}")
        if offset < 0:
            raise PreconditionError(f"offset must not be negative, got {offset}")
