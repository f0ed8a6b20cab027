"""
Shared fixtures: in-memory record store, pinned clock and seed helpers
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from continuity_engine.clock import FixedClock
from continuity_engine.models import (
    AssessmentTemplate, AssessmentTemplateItem, Base, Clinician, MetricDefinition, Patient
)
from continuity_engine.schemas import (
    ContinuitySourceType, NewAssessment, NewObservation, ObservationContext,
    ObservationSource, tag_raw_value
)
from continuity_engine.services.record_store import SqlRecordStore

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


class Seeder:
    """Writes reference rows and clinical records with explicit timestamps"""

    def __init__(self, session: Session, store: SqlRecordStore):
        self.session = session
        self.store = store

    def patient(self, patient_id: str = "patient-1") -> str:
        self.session.add(Patient(id=patient_id, first_name="Ada", last_name="Lovelace"))
        self.session.flush()
        return patient_id

    def clinician(self, clinician_id: str, first_name: str, last_name: str) -> str:
        self.session.add(Clinician(id=clinician_id, first_name=first_name, last_name=last_name))
        self.session.flush()
        return clinician_id

    def metric(self, key: str) -> str:
        metric = MetricDefinition(id=f"metric-{key}", key=key, name=key.title())
        self.session.add(metric)
        self.session.flush()
        return metric.id

    def template(
        self,
        template_id: str,
        items: List[Tuple[str, bool]],
        name: str = "Pain Check",
        category: Optional[str] = "pain"
    ) -> str:
        """items: (metric key, required) in display order; metrics are created if missing"""
        template = AssessmentTemplate(id=template_id, name=name, category=category)
        for order, (key, required) in enumerate(items):
            metric = self.session.get(MetricDefinition, f"metric-{key}")
            if metric is None:
                metric = MetricDefinition(id=f"metric-{key}", key=key, name=key.title())
            template.items.append(AssessmentTemplateItem(
                metric_definition=metric,
                required=required,
                display_order=order
            ))
        self.session.add(template)
        self.session.flush()
        return template_id

    def observation(
        self,
        metric_id: str,
        value,
        recorded_at: datetime,
        patient_id: str = "patient-1",
        context: Optional[ObservationContext] = ObservationContext.CLINICAL_MONITORING,
        source: ObservationSource = ObservationSource.MANUAL,
    ):
        return self.store.insert_observation(NewObservation(
            patient_id=patient_id,
            metric_id=metric_id,
            value=tag_raw_value(value),
            source=source,
            context=context,
            recorded_at=recorded_at,
        ))

    def assessment(
        self,
        template_id: str,
        completed_at: datetime,
        responses: Optional[dict] = None,
        score: Optional[float] = None,
        patient_id: str = "patient-1",
        clinician_id: Optional[str] = None,
        source_type: ContinuitySourceType = ContinuitySourceType.NONE,
    ):
        return self.store.insert_assessment(NewAssessment(
            patient_id=patient_id,
            template_id=template_id,
            responses=responses or {},
            score=score,
            completed_at=completed_at,
            clinician_id=clinician_id,
            source_type=source_type,
        ))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(session):
    return SqlRecordStore(session)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def seed(session, store):
    return Seeder(session, store)


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)
