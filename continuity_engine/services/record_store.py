"""
Continuity Engine - Clinical Record Store
Query/write interface over observations, assessments and templates
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from pydantic import ValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from continuity_engine.exceptions import NotFoundError, PreconditionError, StorageError
from continuity_engine.models import (
    Assessment, AssessmentTemplate, Clinician, Observation
)
from continuity_engine.schemas import (
    AssessmentFilter, AssessmentHistoryRow, AssessmentRecord, CategoricalValue,
    MetricObservation, NewAssessment, NewObservation, NumericValue,
    ObservationContext, ObservationFilter, ObservationSource, StructuredValue,
    Template, TemplateItem, TextValue
)

logger = logging.getLogger(__name__)


# =============================================================================
# Store Interface
# =============================================================================

class RecordStore:
    """
    Storage collaborator consumed by the continuity engine

    Implementations must raise StorageError for any backend failure and
    NotFoundError from get_template() for unknown template ids.
    insert_assessment() rejects responses keyed by metrics outside the
    template with PreconditionError. Query results are always ordered
    newest first.
    """

    def query_observations(
        self,
        filters: ObservationFilter,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[MetricObservation]:
        raise NotImplementedError("Subclasses must implement query_observations()")

    def count_observations(self, filters: ObservationFilter) -> int:
        raise NotImplementedError("Subclasses must implement count_observations()")

    def insert_observation(self, data: NewObservation) -> MetricObservation:
        raise NotImplementedError("Subclasses must implement insert_observation()")

    def query_assessments(
        self,
        filters: AssessmentFilter,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[AssessmentRecord]:
        raise NotImplementedError("Subclasses must implement query_assessments()")

    def count_assessments(self, filters: AssessmentFilter) -> int:
        raise NotImplementedError("Subclasses must implement count_assessments()")

    def insert_assessment(self, data: NewAssessment) -> AssessmentRecord:
        raise NotImplementedError("Subclasses must implement insert_assessment()")

    def get_template(self, template_id: str) -> Template:
        raise NotImplementedError("Subclasses must implement get_template()")

    def query_assessment_history(
        self,
        filters: AssessmentFilter,
        limit: int,
        offset: int = 0
    ) -> List[AssessmentHistoryRow]:
        raise NotImplementedError("Subclasses must implement query_assessment_history()")


# =============================================================================
# Conversion Helpers
# =============================================================================

def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to aware UTC; naive values are taken to already be UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _value_columns(value) -> Dict[str, Any]:
    columns = {
        "value_kind": value.kind,
        "value_numeric": None,
        "value_unit": None,
        "value_text": None,
        "value_code": None,
        "value_display": None,
        "value_json": None,
    }
    if isinstance(value, NumericValue):
        columns.update(value_numeric=value.value, value_unit=value.unit)
    elif isinstance(value, TextValue):
        columns.update(value_text=value.value)
    elif isinstance(value, CategoricalValue):
        columns.update(value_code=value.code, value_display=value.display)
    elif isinstance(value, StructuredValue):
        columns.update(value_json=value.value)
    return columns


def _value_from_row(row: Observation):
    if row.value_kind == "numeric":
        return NumericValue(value=row.value_numeric, unit=row.value_unit)
    if row.value_kind == "text":
        return TextValue(value=row.value_text)
    if row.value_kind == "categorical":
        return CategoricalValue(code=row.value_code, display=row.value_display)
    if row.value_kind == "structured":
        return StructuredValue(value=row.value_json or {})
    raise StorageError("read_observation", f"unknown value kind {row.value_kind!r}")


def _observation_from_row(row: Observation) -> MetricObservation:
    return MetricObservation(
        id=row.id,
        patient_id=row.patient_id,
        metric_id=row.metric_id,
        value=_value_from_row(row),
        source=ObservationSource(row.source),
        context=ObservationContext(row.context) if row.context else None,
        recorded_at=_utc(row.recorded_at),
        clinician_id=row.clinician_id,
        enrollment_id=row.enrollment_id,
        organization_id=row.organization_id,
        notes=row.notes,
        created_at=_utc(row.created_at),
    )


def _assessment_from_row(row: Assessment) -> AssessmentRecord:
    return AssessmentRecord(
        id=row.id,
        patient_id=row.patient_id,
        template_id=row.template_id,
        responses=row.responses or {},
        score=row.score,
        completed_at=_utc(row.completed_at),
        clinician_id=row.clinician_id,
        notes=row.notes,
        source_type=row.source_type,
        source_ids=list(row.source_ids or []),
        created_at=_utc(row.created_at),
    )


# =============================================================================
# SQLAlchemy Implementation
# =============================================================================

class SqlRecordStore(RecordStore):
    """Record store backed by a caller-owned SQLAlchemy session"""

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            raise StorageError(operation, str(e)) from e
        except ValidationError as e:
            raise StorageError(operation, f"unreadable row: {e}") from e

    # =========================================================================
    # Observations
    # =========================================================================

    @staticmethod
    def _observation_conditions(filters: ObservationFilter) -> list:
        conditions = [Observation.patient_id == filters.patient_id]
        if filters.metric_ids is not None:
            conditions.append(Observation.metric_id.in_(filters.metric_ids))
        if filters.recorded_after is not None:
            conditions.append(Observation.recorded_at >= _utc(filters.recorded_after))
        if filters.sources:
            conditions.append(Observation.source.in_([s.value for s in filters.sources]))
        if filters.contexts:
            conditions.append(Observation.context.in_([c.value for c in filters.contexts]))
        if filters.enrollment_id is not None:
            conditions.append(Observation.enrollment_id == filters.enrollment_id)
        if filters.reusable_only:
            conditions.append(or_(
                Observation.source == ObservationSource.DEVICE.value,
                Observation.context == ObservationContext.CLINICAL_MONITORING.value
            ))
        return conditions

    def query_observations(
        self,
        filters: ObservationFilter,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[MetricObservation]:
        stmt = (
            select(Observation)
            .where(*self._observation_conditions(filters))
            .order_by(Observation.recorded_at.desc(), Observation.id)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._storage_errors("query_observations"):
            rows = self.session.scalars(stmt).all()
            return [_observation_from_row(row) for row in rows]

    def count_observations(self, filters: ObservationFilter) -> int:
        stmt = (
            select(func.count())
            .select_from(Observation)
            .where(*self._observation_conditions(filters))
        )
        with self._storage_errors("count_observations"):
            return self.session.scalar(stmt) or 0

    def insert_observation(self, data: NewObservation) -> MetricObservation:
        row = Observation(
            patient_id=data.patient_id,
            metric_id=data.metric_id,
            clinician_id=data.clinician_id,
            enrollment_id=data.enrollment_id,
            organization_id=data.organization_id,
            source=data.source.value,
            context=data.context.value if data.context else None,
            recorded_at=_utc(data.recorded_at),
            notes=data.notes,
            **_value_columns(data.value)
        )
        with self._storage_errors("insert_observation"):
            self.session.add(row)
            self.session.flush()
            return _observation_from_row(row)

    # =========================================================================
    # Assessments
    # =========================================================================

    @staticmethod
    def _assessment_conditions(filters: AssessmentFilter) -> list:
        conditions = [Assessment.patient_id == filters.patient_id]
        if filters.template_id is not None:
            conditions.append(Assessment.template_id == filters.template_id)
        if filters.completed_after is not None:
            conditions.append(Assessment.completed_at >= _utc(filters.completed_after))
        return conditions

    def query_assessments(
        self,
        filters: AssessmentFilter,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[AssessmentRecord]:
        stmt = (
            select(Assessment)
            .where(*self._assessment_conditions(filters))
            .order_by(Assessment.completed_at.desc(), Assessment.id)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._storage_errors("query_assessments"):
            rows = self.session.scalars(stmt).all()
            return [_assessment_from_row(row) for row in rows]

    def count_assessments(self, filters: AssessmentFilter) -> int:
        stmt = (
            select(func.count())
            .select_from(Assessment)
            .where(*self._assessment_conditions(filters))
        )
        with self._storage_errors("count_assessments"):
            return self.session.scalar(stmt) or 0

    def insert_assessment(self, data: NewAssessment) -> AssessmentRecord:
        if data.responses:
            unknown = set(data.responses) - set(self.get_template(data.template_id).metric_keys)
            if unknown:
                raise PreconditionError(
                    f"Responses for template {data.template_id} contain unknown metric keys: "
                    f"{sorted(unknown)}"
                )

        row = Assessment(
            patient_id=data.patient_id,
            template_id=data.template_id,
            clinician_id=data.clinician_id,
            responses={
                key: value.model_dump(mode="json")
                for key, value in data.responses.items()
            },
            score=data.score,
            completed_at=_utc(data.completed_at),
            notes=data.notes,
            source_type=data.source_type.value,
            source_ids=list(data.source_ids),
        )
        with self._storage_errors("insert_assessment"):
            self.session.add(row)
            self.session.flush()
            return _assessment_from_row(row)

    def query_assessment_history(
        self,
        filters: AssessmentFilter,
        limit: int,
        offset: int = 0
    ) -> List[AssessmentHistoryRow]:
        stmt = (
            select(
                Assessment,
                AssessmentTemplate.name,
                AssessmentTemplate.category,
                Clinician.first_name,
                Clinician.last_name,
            )
            .outerjoin(AssessmentTemplate, Assessment.template_id == AssessmentTemplate.id)
            .outerjoin(Clinician, Assessment.clinician_id == Clinician.id)
            .where(*self._assessment_conditions(filters))
            .order_by(Assessment.completed_at.desc(), Assessment.id)
            .limit(limit)
            .offset(offset)
        )
        with self._storage_errors("query_assessment_history"):
            return [
                AssessmentHistoryRow(
                    assessment=_assessment_from_row(assessment),
                    template_name=template_name,
                    template_category=template_category,
                    clinician_first_name=first_name,
                    clinician_last_name=last_name,
                )
                for assessment, template_name, template_category, first_name, last_name
                in self.session.execute(stmt).all()
            ]

    # =========================================================================
    # Templates
    # =========================================================================

    def get_template(self, template_id: str) -> Template:
        with self._storage_errors("get_template"):
            row = self.session.get(AssessmentTemplate, template_id)
            if row is None:
                raise NotFoundError("AssessmentTemplate", template_id)

            return Template(
                id=row.id,
                name=row.name,
                category=row.category,
                items=[
                    TemplateItem(
                        metric_key=item.metric_definition.key,
                        metric_id=item.metric_definition_id,
                        required=item.required,
                        display_order=item.display_order,
                    )
                    for item in row.items
                ],
            )
