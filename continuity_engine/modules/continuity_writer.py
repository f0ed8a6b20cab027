"""
Continuity Engine - Continuity Writer
Records assessments and observations, carrying forward recent data where possible
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from continuity_engine.clock import Clock, SystemClock
from continuity_engine.config import settings
from continuity_engine.exceptions import PreconditionError
from continuity_engine.logging_setup import AUDIT_LOGGER_NAME
from continuity_engine.modules.reuse import ReuseResolver
from continuity_engine.modules.scoring import ScoringFunction, mean_numeric_score
from continuity_engine.modules.values import values_equal
from continuity_engine.schemas import (
    AssessmentRequest, ContinuityDecision, ContinuitySourceType,
    MetricObservation, NewAssessment, NewObservation, ObservationDecision,
    ObservationFilter, ObservationRequest, ReuseOptions
)
from continuity_engine.services.record_store import RecordStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


def format_time_ago(then: datetime, now: datetime) -> str:
    """Humanise an age as whole hours below a day, whole days above; never negative"""
    hours = max(0, int((now - then).total_seconds() // 3600))
    if hours < 24:
        return f"{hours} hours ago"
    return f"{hours // 24} days ago"


class ContinuityWriter:
    """Decides whether a creation request reuses, links or records fresh data"""

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Clock] = None,
        resolver: Optional[ReuseResolver] = None,
        scoring_fn: ScoringFunction = mean_numeric_score,
        dedup_hours: Optional[float] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.resolver = resolver or ReuseResolver(store, clock=self.clock)
        self.scoring_fn = scoring_fn
        if dedup_hours is None:
            dedup_hours = settings.observation_dedup_hours
        if dedup_hours <= 0:
            raise PreconditionError(f"dedup_hours must be positive, got {dedup_hours}")
        self.dedup_hours = dedup_hours

    # =========================================================================
    # Assessments
    # =========================================================================

    def create_assessment_with_continuity(
        self,
        request: AssessmentRequest,
        options: Optional[ReuseOptions] = None
    ) -> ContinuityDecision:
        """
        Record an assessment, reusing recent data when allowed

        Decision order, stopping at the first that applies:
        1. copy the newest reusable assessment of the same template
        2. build responses from reusable observations of the template's
           required metrics
        3. record an empty assessment

        A new assessment row is written in every case; reuse never returns
        the earlier record itself.

        Raises:
            NotFoundError: the template does not exist (checked when reuse is attempted)
            StorageError: any record store failure (not retried)
            PreconditionError: validity_hours <= 0
        """
        options = options or ReuseOptions()

        if not request.force_new and options.allow_assessment_reuse:
            decision = self._reuse_assessment(request, options)
            if decision is not None:
                return self._audit(request.patient_id, decision)

        if not request.force_new and options.allow_observation_reuse:
            decision = self._assess_from_observations(request, options)
            if decision is not None:
                return self._audit(request.patient_id, decision)

        record = self.store.insert_assessment(
            NewAssessment(
                patient_id=request.patient_id,
                clinician_id=request.clinician_id,
                template_id=request.template_id,
                responses={},
                completed_at=self.clock.now(),
                notes="New assessment - no recent data available for reuse",
                source_type=ContinuitySourceType.NONE,
            )
        )
        return self._audit(request.patient_id, ContinuityDecision(
            record=record,
            continuity_used=False,
            source_type=ContinuitySourceType.NONE,
            message="New assessment created - no recent data available for reuse"
        ))

    def _reuse_assessment(
        self,
        request: AssessmentRequest,
        options: ReuseOptions
    ) -> Optional[ContinuityDecision]:
        candidates = self.resolver.find_reusable_assessments(
            request.patient_id, request.template_id, options.validity_hours
        )
        if not candidates:
            return None

        source = candidates[0]
        # Keys of metrics since removed from the template are not carried forward
        template_keys = self.store.get_template(request.template_id).metric_keys
        responses = {
            key: source.responses[key] for key in template_keys if key in source.responses
        }
        dropped = set(source.responses) - set(responses)
        if dropped:
            logger.info(
                f"Assessment {source.id}: dropping responses no longer in template "
                f"{request.template_id}: {sorted(dropped)}"
            )

        now = self.clock.now()
        record = self.store.insert_assessment(
            NewAssessment(
                patient_id=request.patient_id,
                clinician_id=request.clinician_id,
                template_id=request.template_id,
                responses=responses,
                score=source.score,
                completed_at=now,
                notes=f"Reused from assessment {source.id}",
                source_type=ContinuitySourceType.ASSESSMENT,
                source_ids=[source.id],
            )
        )
        return ContinuityDecision(
            record=record,
            continuity_used=True,
            source_type=ContinuitySourceType.ASSESSMENT,
            source_ids=[source.id],
            message=(
                "Assessment reused from previous assessment "
                f"({format_time_ago(source.completed_at, now)})"
            )
        )

    def _assess_from_observations(
        self,
        request: AssessmentRequest,
        options: ReuseOptions
    ) -> Optional[ContinuityDecision]:
        template = self.store.get_template(request.template_id)
        required = template.required_items
        if not required:
            return None

        observations = self.resolver.find_reusable_observations(
            request.patient_id,
            [item.metric_id for item in required],
            options.validity_hours
        )
        if not observations:
            return None

        by_metric: Dict[str, MetricObservation] = {obs.metric_id: obs for obs in observations}
        responses = {}
        source_ids: List[str] = []
        for item in required:
            observation = by_metric.get(item.metric_id)
            if observation is not None:
                responses[item.metric_key] = observation.value
                source_ids.append(observation.id)

        record = self.store.insert_assessment(
            NewAssessment(
                patient_id=request.patient_id,
                clinician_id=request.clinician_id,
                template_id=request.template_id,
                responses=responses,
                score=self.scoring_fn(responses, template),
                completed_at=self.clock.now(),
                notes=f"Created from {len(source_ids)} reusable observations",
                source_type=ContinuitySourceType.OBSERVATIONS,
                source_ids=source_ids,
            )
        )
        return ContinuityDecision(
            record=record,
            continuity_used=True,
            source_type=ContinuitySourceType.OBSERVATIONS,
            source_ids=source_ids,
            message=f"Assessment created from {len(source_ids)} recent observations"
        )

    def _audit(self, patient_id: str, decision: ContinuityDecision) -> ContinuityDecision:
        audit_logger.info(
            f"Continuity action: patient={patient_id} "
            f"source_type={decision.source_type.value} "
            f"source_ids={decision.source_ids} "
            f"target_assessment={decision.record.id}"
        )
        return decision

    # =========================================================================
    # Observations
    # =========================================================================

    def create_observation_with_context(self, request: ObservationRequest) -> ObservationDecision:
        """
        Record an observation unless an identical value was recorded recently

        The newest observation of the same patient and metric inside the dedup
        window is compared by value only; source, context and notes are
        ignored. The check is read-then-write and not atomic with the insert,
        so concurrent identical submissions can both be stored.
        """
        now = self.clock.now()
        recent = self.store.query_observations(
            ObservationFilter(
                patient_id=request.patient_id,
                metric_ids=[request.metric_id],
                recorded_after=now - timedelta(hours=self.dedup_hours)
            ),
            limit=1
        )

        if recent and values_equal(recent[0].value, request.value):
            existing = recent[0]
            audit_logger.info(
                f"Continuity action: patient={request.patient_id} "
                f"linked observation={existing.id} metric={request.metric_id}"
            )
            return ObservationDecision(
                observation=existing,
                continuity_used=True,
                message=f"Linked to existing observation from last {self.dedup_hours:g} hours"
            )

        observation = self.store.insert_observation(
            NewObservation(
                patient_id=request.patient_id,
                metric_id=request.metric_id,
                value=request.value,
                source=request.source,
                context=request.context,
                recorded_at=now,
                clinician_id=request.clinician_id,
                enrollment_id=request.enrollment_id,
                organization_id=request.organization_id,
                notes=request.notes,
            )
        )
        logger.debug(f"Recorded observation {observation.id} for patient {request.patient_id}")
        return ObservationDecision(
            observation=observation,
            continuity_used=False,
            message="New observation created"
        )
