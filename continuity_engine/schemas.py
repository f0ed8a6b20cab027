"""
Continuity Engine - Clinical Data Schemas
Pydantic models for observations, assessments, templates and continuity decisions
"""

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator, computed_field
from typing import Annotated, Optional, List, Dict, Any, Literal, Union
from datetime import datetime
from enum import Enum


# ============================================================================
# Enumerations
# ============================================================================

class ObservationSource(str, Enum):
    """Where an observation value came from"""
    DEVICE = "DEVICE"
    MANUAL = "MANUAL"
    PATIENT = "PATIENT"
    STAFF = "STAFF"


class ObservationContext(str, Enum):
    """Clinical context an observation was recorded under"""
    CLINICAL_MONITORING = "CLINICAL_MONITORING"
    PROGRAM_ENROLLMENT = "PROGRAM_ENROLLMENT"
    ROUTINE_FOLLOWUP = "ROUTINE_FOLLOWUP"
    WELLNESS = "WELLNESS"


class ContinuitySourceType(str, Enum):
    """What an assessment's data was carried forward from"""
    ASSESSMENT = "assessment"
    OBSERVATIONS = "observations"
    NONE = "none"


class RecommendationType(str, Enum):
    ASSESSMENT_REUSE = "assessment_reuse"
    OBSERVATION_REUSE = "observation_reuse"
    NEW_BASELINE = "new_baseline"


class RecommendationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ============================================================================
# Observation Values (tagged union)
# ============================================================================

def _has_non_finite(data: Any) -> bool:
    if isinstance(data, float):
        return not math.isfinite(data)
    if isinstance(data, dict):
        return any(_has_non_finite(item) for item in data.values())
    if isinstance(data, (list, tuple)):
        return any(_has_non_finite(item) for item in data)
    return False


class NumericValue(BaseModel):
    """Numeric measurement (pain score, blood pressure component, weight)"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    value: float = Field(..., allow_inf_nan=False)
    unit: Optional[str] = None


class TextValue(BaseModel):
    """Free-text answer"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str


class CategoricalValue(BaseModel):
    """Coded answer from an ordinal or categorical scale"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["categorical"] = "categorical"
    code: str
    display: Optional[str] = Field(None, description="Human readable label, not compared")


class StructuredValue(BaseModel):
    """Composite answer (e.g. {'systolic': 120, 'diastolic': 80})"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["structured"] = "structured"
    value: Dict[str, Any]

    @field_validator("value")
    @classmethod
    def reject_non_finite(cls, v):
        """NaN and infinity have no JSON representation"""
        if _has_non_finite(v):
            raise ValueError("structured values must not contain NaN or infinity")
        return v


ObservationValue = Annotated[
    Union[NumericValue, TextValue, CategoricalValue, StructuredValue],
    Field(discriminator="kind")
]


def tag_raw_value(raw: Any) -> Any:
    """
    Wrap an untagged python value so it validates as an ObservationValue

    Booleans become categorical codes ("true"/"false"); ints and floats become
    numeric; strings become text; dicts without a ``kind`` key become
    structured. Already tagged values pass through unchanged.
    """
    if isinstance(raw, BaseModel):
        return raw
    if isinstance(raw, bool):
        return {"kind": "categorical", "code": "true" if raw else "false"}
    if isinstance(raw, (int, float)):
        return {"kind": "numeric", "value": raw}
    if isinstance(raw, str):
        return {"kind": "text", "value": raw}
    if isinstance(raw, dict) and "kind" not in raw:
        return {"kind": "structured", "value": raw}
    return raw


def _tag_responses(raw: Any) -> Any:
    if isinstance(raw, dict):
        return {key: tag_raw_value(value) for key, value in raw.items()}
    return raw


# ============================================================================
# Templates
# ============================================================================

class TemplateItem(BaseModel):
    """One metric slot of an assessment template"""
    metric_key: str = Field(..., description="Response key used in assessment responses")
    metric_id: str = Field(..., description="Metric definition id")
    required: bool = False
    display_order: int = 0


class Template(BaseModel):
    """Assessment template: ordered metric slots"""
    id: str
    name: str
    category: Optional[str] = None
    items: List[TemplateItem] = Field(default_factory=list)

    @property
    def metric_keys(self) -> List[str]:
        return [item.metric_key for item in self.items]

    @property
    def required_items(self) -> List[TemplateItem]:
        return [item for item in self.items if item.required]


# ============================================================================
# Clinical Records
# ============================================================================

class MetricObservation(BaseModel):
    """A single recorded metric value; immutable once stored"""
    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    metric_id: str
    value: ObservationValue
    source: ObservationSource
    context: Optional[ObservationContext] = Field(None, description="None means unclassified")
    recorded_at: datetime
    clinician_id: Optional[str] = None
    enrollment_id: Optional[str] = None
    organization_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class AssessmentRecord(BaseModel):
    """A completed assessment; one row per clinical encounter"""
    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    template_id: str
    responses: Dict[str, ObservationValue] = Field(default_factory=dict)
    score: Optional[float] = None
    completed_at: datetime
    clinician_id: Optional[str] = None
    notes: Optional[str] = None
    source_type: ContinuitySourceType = ContinuitySourceType.NONE
    source_ids: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @field_validator("responses", mode="before")
    @classmethod
    def tag_responses(cls, v):
        return _tag_responses(v)


class NewObservation(BaseModel):
    """Write payload for the record store"""
    patient_id: str
    metric_id: str
    value: ObservationValue
    source: ObservationSource
    context: Optional[ObservationContext] = None
    recorded_at: datetime
    clinician_id: Optional[str] = None
    enrollment_id: Optional[str] = None
    organization_id: Optional[str] = None
    notes: Optional[str] = None


class NewAssessment(BaseModel):
    """Write payload for the record store"""
    patient_id: str
    template_id: str
    responses: Dict[str, ObservationValue] = Field(default_factory=dict)
    score: Optional[float] = None
    completed_at: datetime
    clinician_id: Optional[str] = None
    notes: Optional[str] = None
    source_type: ContinuitySourceType = ContinuitySourceType.NONE
    source_ids: List[str] = Field(default_factory=list)

    @field_validator("responses", mode="before")
    @classmethod
    def tag_responses(cls, v):
        return _tag_responses(v)


# ============================================================================
# Store Filters
# ============================================================================

class ObservationFilter(BaseModel):
    """Observation query; all given criteria are ANDed"""
    patient_id: str
    metric_ids: Optional[List[str]] = None
    recorded_after: Optional[datetime] = Field(None, description="Inclusive lower bound")
    sources: Optional[List[ObservationSource]] = None
    contexts: Optional[List[ObservationContext]] = None
    enrollment_id: Optional[str] = None
    reusable_only: bool = Field(
        False,
        description="Restrict to source=DEVICE OR context=CLINICAL_MONITORING"
    )


class AssessmentFilter(BaseModel):
    """Assessment query; all given criteria are ANDed"""
    patient_id: str
    template_id: Optional[str] = None
    completed_after: Optional[datetime] = Field(None, description="Inclusive lower bound")


class AssessmentHistoryRow(BaseModel):
    """Assessment joined with its template and clinician names"""
    assessment: AssessmentRecord
    template_name: Optional[str] = None
    template_category: Optional[str] = None
    clinician_first_name: Optional[str] = None
    clinician_last_name: Optional[str] = None


# ============================================================================
# Requests
# ============================================================================

class AssessmentRequest(BaseModel):
    """Request to record an assessment for a patient"""
    patient_id: str
    template_id: str
    clinician_id: Optional[str] = None
    force_new: bool = Field(False, description="Skip all reuse and record a fresh assessment")


class ReuseOptions(BaseModel):
    """Toggles for the assessment continuity decision"""
    allow_observation_reuse: bool = True
    allow_assessment_reuse: bool = True
    validity_hours: Optional[float] = Field(None, description="Defaults to the configured reuse window")


class ObservationRequest(BaseModel):
    """Request to record a metric observation"""
    patient_id: str
    metric_id: str
    value: ObservationValue
    clinician_id: Optional[str] = None
    source: ObservationSource = ObservationSource.MANUAL
    context: Optional[ObservationContext] = ObservationContext.CLINICAL_MONITORING
    enrollment_id: Optional[str] = None
    organization_id: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def tag_value(cls, v):
        """Accept plain python values as well as tagged ones"""
        return tag_raw_value(v)


# ============================================================================
# Decisions and Reports
# ============================================================================

class ContinuityDecision(BaseModel):
    """Outcome of one assessment continuity decision"""
    record: AssessmentRecord
    continuity_used: bool
    source_type: ContinuitySourceType = ContinuitySourceType.NONE
    source_ids: List[str] = Field(default_factory=list)
    message: str

    @computed_field
    @property
    def source_id(self) -> Optional[str]:
        """Source assessment id when an assessment was reused"""
        if self.source_type == ContinuitySourceType.ASSESSMENT and self.source_ids:
            return self.source_ids[0]
        return None


class ObservationDecision(BaseModel):
    """Outcome of recording an observation with dedup"""
    observation: MetricObservation
    continuity_used: bool
    message: str


class Recommendation(BaseModel):
    type: RecommendationType
    priority: RecommendationPriority
    message: str
    action: str


class ContinuitySuggestions(BaseModel):
    """Reusable data for a patient and what to do with it"""
    reusable_assessments: List[AssessmentRecord] = Field(default_factory=list)
    reusable_observations: List[MetricObservation] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    partial: bool = Field(False, description="True when a category could not be fetched")
    failed_categories: List[str] = Field(default_factory=list)


class Pagination(BaseModel):
    total: int = Field(0, ge=0)
    pages: int = Field(0, ge=0)
    current_page: int = Field(1, ge=1)


class ContinuityHistoryEntry(BaseModel):
    """One past assessment as shown in the continuity audit trail"""
    id: str
    patient_id: str
    template_id: str
    template_name: Optional[str] = None
    template_category: Optional[str] = None
    clinician_id: Optional[str] = None
    clinician_name: str = "Unknown"
    completed_at: datetime
    created_at: Optional[datetime] = None
    notes: str = ""
    continuity_used: bool = False
    source_type: ContinuitySourceType = ContinuitySourceType.NONE
    source_ids: List[str] = Field(default_factory=list)
    reused_metrics: List[str] = Field(default_factory=list)


class ContinuityHistory(BaseModel):
    history: List[ContinuityHistoryEntry] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class ObservationPage(BaseModel):
    observations: List[MetricObservation] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)
