"""
Continuity Engine Database Models
SQLAlchemy 2.0 ORM models for the clinical record store
"""

import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, String, Text,
    Index, CheckConstraint, JSON
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class CreatedAtMixin:
    """Mixin for an immutable created_at timestamp"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )


# =============================================================================
# Reference Models
# =============================================================================

class Patient(Base, CreatedAtMixin):
    """Patient reference row (demographics live elsewhere)"""
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))

    def __repr__(self) -> str:
        return f"<Patient(id={self.id}, name={self.last_name}, {self.first_name})>"


class Clinician(Base, CreatedAtMixin):
    """Clinician reference row, used for display names"""
    __tablename__ = "clinicians"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))

    def __repr__(self) -> str:
        return f"<Clinician(id={self.id}, name={self.last_name}, {self.first_name})>"


class MetricDefinition(Base, CreatedAtMixin):
    """A measurable quantity (pain scale, mood, weight)"""
    __tablename__ = "metric_definitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    value_kind: Mapped[str] = mapped_column(
        String(20),
        default="numeric",
        nullable=False
    )  # "numeric", "text", "categorical", "structured"
    unit: Mapped[Optional[str]] = mapped_column(String(50))

    def __repr__(self) -> str:
        return f"<MetricDefinition(id={self.id}, key={self.key})>"


# =============================================================================
# Template Models
# =============================================================================

class AssessmentTemplate(Base, CreatedAtMixin):
    """Assessment template: an ordered set of metrics"""
    __tablename__ = "assessment_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)

    items: Mapped[List["AssessmentTemplateItem"]] = relationship(
        "AssessmentTemplateItem",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="AssessmentTemplateItem.display_order",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<AssessmentTemplate(id={self.id}, name={self.name})>"


class AssessmentTemplateItem(Base, CreatedAtMixin):
    """One metric slot within a template"""
    __tablename__ = "assessment_template_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    template_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("assessment_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    metric_definition_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("metric_definitions.id"),
        nullable=False
    )
    required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    template: Mapped["AssessmentTemplate"] = relationship("AssessmentTemplate", back_populates="items")
    metric_definition: Mapped["MetricDefinition"] = relationship("MetricDefinition", lazy="joined")


# =============================================================================
# Clinical Record Models
# =============================================================================

class Observation(Base, CreatedAtMixin):
    """A recorded metric value; never updated after insert"""
    __tablename__ = "observations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    patient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    metric_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("metric_definitions.id"),
        nullable=False,
        index=True
    )
    clinician_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("clinicians.id"))
    enrollment_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String(36))

    # Tagged value: exactly one of the value_* columns is populated per kind
    value_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    value_numeric: Mapped[Optional[float]] = mapped_column(Float)
    value_unit: Mapped[Optional[str]] = mapped_column(String(50))
    value_text: Mapped[Optional[str]] = mapped_column(Text)
    value_code: Mapped[Optional[str]] = mapped_column(String(100))
    value_display: Mapped[Optional[str]] = mapped_column(String(200))
    value_json: Mapped[Optional[dict]] = mapped_column(JSON)

    source: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    context: Mapped[Optional[str]] = mapped_column(String(40), index=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_observation_patient_metric_time", "patient_id", "metric_id", "recorded_at"),
        CheckConstraint(
            "value_kind IN ('numeric', 'text', 'categorical', 'structured')",
            name="valid_value_kind"
        ),
    )

    def __repr__(self) -> str:
        return f"<Observation(id={self.id}, patient_id={self.patient_id}, metric_id={self.metric_id})>"


class Assessment(Base, CreatedAtMixin):
    """A completed assessment with continuity provenance"""
    __tablename__ = "assessments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    patient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    template_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("assessment_templates.id"),
        nullable=False,
        index=True
    )
    clinician_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("clinicians.id"))

    responses: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    score: Mapped[Optional[float]] = mapped_column(Float)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Continuity provenance
    source_type: Mapped[str] = mapped_column(String(20), default="none", nullable=False)
    source_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    template: Mapped["AssessmentTemplate"] = relationship("AssessmentTemplate")
    clinician: Mapped[Optional["Clinician"]] = relationship("Clinician")

    __table_args__ = (
        Index("idx_assessment_patient_template_time", "patient_id", "template_id", "completed_at"),
        CheckConstraint(
            "source_type IN ('assessment', 'observations', 'none')",
            name="valid_source_type"
        ),
    )

    def __repr__(self) -> str:
        return f"<Assessment(id={self.id}, patient_id={self.patient_id}, template_id={self.template_id})>"
