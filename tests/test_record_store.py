"""
Tests for the SQL record store and session lifecycle
"""

import logging

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from continuity_engine.exceptions import NotFoundError, PreconditionError, StorageError
from continuity_engine.models import Observation, Patient
from continuity_engine.schemas import (
    AssessmentFilter, CategoricalValue, NewAssessment, NumericValue, ObservationContext,
    ObservationFilter, ObservationSource, StructuredValue
)
from continuity_engine.services.database import (
    create_tables, get_engine, get_session_factory, session_scope
)
from continuity_engine.services.record_store import SqlRecordStore
from conftest import NOW, hours_ago

pytestmark = pytest.mark.integration


@pytest.fixture
def bare_engine():
    """In-memory database with no schema"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


class TestSqlRecordStore:
    """Test queries, inserts and template loading"""

    def test_observation_round_trip(self, store, seed):
        """Test each value kind reads back as stored, with UTC timestamps"""
        seed.patient()
        mood = seed.metric("mood")
        bp = seed.metric("bp")
        weight = seed.metric("weight")
        seed.observation(mood, CategoricalValue(code="low", display="Low"), hours_ago(2))
        seed.observation(bp, {"systolic": 120, "diastolic": 80}, hours_ago(1))
        seed.observation(weight, NumericValue(value=71.5, unit="kg"), hours_ago(3))

        newest, middle, oldest = store.query_observations(
            ObservationFilter(patient_id="patient-1")
        )

        assert newest.value == StructuredValue(value={"systolic": 120, "diastolic": 80})
        assert middle.value == CategoricalValue(code="low", display="Low")
        assert oldest.value == NumericValue(value=71.5, unit="kg")
        assert newest.recorded_at == hours_ago(1)
        assert newest.recorded_at.tzinfo is not None

    def test_reusable_only_filter(self, store, seed):
        """Test reusable means device readings or clinical monitoring"""
        seed.patient()
        pain = seed.metric("pain")
        seed.observation(pain, 1, hours_ago(1), source=ObservationSource.DEVICE, context=None)
        seed.observation(pain, 2, hours_ago(2))
        seed.observation(pain, 3, hours_ago(3), context=ObservationContext.WELLNESS)

        filters = ObservationFilter(patient_id="patient-1", reusable_only=True)

        assert [o.value.value for o in store.query_observations(filters)] == [1, 2]
        assert store.count_observations(filters) == 2

    def test_limit_and_offset(self, store, seed):
        """Test paging over newest-first results"""
        seed.patient()
        pain = seed.metric("pain")
        for hours in (1, 2, 3):
            seed.observation(pain, hours, hours_ago(hours))

        page = store.query_observations(
            ObservationFilter(patient_id="patient-1"), limit=1, offset=1
        )

        assert [o.value.value for o in page] == [2]

    def test_assessment_responses_are_tagged(self, store, seed):
        """Test plain responses are stored and read back as typed values"""
        seed.patient()
        template = seed.template("template-1", [("pain", True), ("comment", False)])
        seed.assessment(template, hours_ago(1), responses={"pain": 4, "comment": "ok"})

        [record] = store.query_assessments(AssessmentFilter(patient_id="patient-1"))

        assert record.responses["pain"].kind == "numeric"
        assert record.responses["comment"].kind == "text"
        assert record.created_at is not None

    def test_template_items_in_display_order(self, store, seed):
        """Test template items keep display order and required flags"""
        seed.template("template-1", [("pain", True), ("mood", False), ("sleep", True)])

        template = store.get_template("template-1")

        assert template.metric_keys == ["pain", "mood", "sleep"]
        assert [item.metric_id for item in template.required_items] == [
            "metric-pain", "metric-sleep"
        ]

    def test_unknown_template(self, store):
        """Test an unknown template id raises NotFoundError"""
        with pytest.raises(NotFoundError) as exc_info:
            store.get_template("missing")

        assert exc_info.value.resource_id == "missing"

    def test_backend_failure_is_storage_error(self, bare_engine):
        """Missing tables surface as StorageError, not a driver exception"""
        with Session(bare_engine) as session:
            store = SqlRecordStore(session)

            with pytest.raises(StorageError):
                store.query_observations(ObservationFilter(patient_id="patient-1"))
            with pytest.raises(StorageError):
                store.count_assessments(AssessmentFilter(patient_id="patient-1"))

    def test_responses_outside_template_rejected(self, store, seed):
        """Test response keys must be metric keys of the template"""
        seed.patient()
        template = seed.template("template-1", [("pain", True)])

        with pytest.raises(PreconditionError):
            store.insert_assessment(NewAssessment(
                patient_id="patient-1",
                template_id=template,
                responses={"pain": 4, "comment": "ok"},
                completed_at=NOW,
            ))

        assert store.count_assessments(AssessmentFilter(patient_id="patient-1")) == 0

    def test_unreadable_row_is_storage_error(self, session, store, seed):
        """Test a row that no longer validates is reported as StorageError"""
        seed.patient()
        pain = seed.metric("pain")
        session.add(Observation(
            patient_id="patient-1",
            metric_id=pain,
            value_kind="numeric",
            value_numeric=None,
            source=ObservationSource.DEVICE.value,
            recorded_at=hours_ago(1),
        ))
        session.flush()

        with pytest.raises(StorageError):
            store.query_observations(ObservationFilter(patient_id="patient-1"))


class TestDatabaseLifecycle:
    """Test engine creation, table setup and scoped sessions"""

    def test_sqlite_engine_skips_pool_size(self):
        """Test a SQLite URL builds an engine without pool sizing"""
        engine = get_engine("sqlite://")

        assert engine.url.drivername == "sqlite"
        engine.dispose()

    def test_create_tables_is_idempotent(self, bare_engine, caplog):
        """Test a second run finds every table and skips creation"""
        create_tables(bare_engine)

        with caplog.at_level(logging.INFO, logger="continuity_engine.services.database"):
            create_tables(bare_engine)

        assert "Skipping creation" in caplog.text

    def test_session_scope_commits(self, bare_engine):
        """Test work inside the scope is committed"""
        create_tables(bare_engine)
        factory = get_session_factory(bare_engine)

        with session_scope(factory) as session:
            session.add(Patient(id="patient-1", first_name="Ada", last_name="Lovelace"))

        with Session(bare_engine) as session:
            assert session.get(Patient, "patient-1") is not None

    def test_session_scope_rolls_back(self, bare_engine):
        """Test an exception inside the scope rolls the work back"""
        create_tables(bare_engine)
        factory = get_session_factory(bare_engine)

        with pytest.raises(RuntimeError):
            with session_scope(factory) as session:
                session.add(Patient(id="patient-1", first_name="Ada", last_name="Lovelace"))
                session.flush()
                raise RuntimeError("abort")

        with Session(bare_engine) as session:
            assert session.get(Patient, "patient-1") is None

    def test_commit_failure_is_storage_error(self, bare_engine):
        """Test a failing commit surfaces as StorageError"""
        create_tables(bare_engine)
        factory = get_session_factory(bare_engine)

        with session_scope(factory) as session:
            session.add(Patient(id="patient-1", first_name="Ada", last_name="Lovelace"))

        with pytest.raises(StorageError):
            with session_scope(factory) as session:
                session.add(Patient(id="patient-1", first_name="Ada", last_name="Lovelace"))
