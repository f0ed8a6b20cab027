"""
Unit tests for observation value tagging and equality
"""

import pytest
from pydantic import ValidationError

from continuity_engine.modules.values import values_equal
from continuity_engine.schemas import (
    CategoricalValue, NumericValue, ObservationRequest, StructuredValue, TextValue
)

pytestmark = pytest.mark.unit


class TestValuesEqual:
    """Test type-aware deep equality"""

    def test_numeric_int_and_float_equal(self):
        """Test 7 and 7.0 are the same reading"""
        assert values_equal(NumericValue(value=7), NumericValue(value=7.0))

    def test_numeric_unit_mismatch(self):
        """Same number in different units is a different reading"""
        assert not values_equal(NumericValue(value=70, unit="kg"), NumericValue(value=70, unit="lb"))

    def test_kinds_never_equal(self):
        """Numeric 7 and text "7" are not duplicates"""
        assert not values_equal(NumericValue(value=7), TextValue(value="7"))

    def test_text_is_exact(self):
        """Test text comparison is case sensitive"""
        assert values_equal(TextValue(value="better"), TextValue(value="better"))
        assert not values_equal(TextValue(value="better"), TextValue(value="Better"))

    def test_categorical_ignores_display(self):
        """Only the code is compared"""
        assert values_equal(
            CategoricalValue(code="moderate", display="Moderate"),
            CategoricalValue(code="moderate", display="Moderate pain")
        )
        assert not values_equal(CategoricalValue(code="mild"), CategoricalValue(code="severe"))

    def test_structured_deep_equality(self):
        """Test key order and int or float spelling do not matter"""
        a = StructuredValue(value={"systolic": 120, "diastolic": 80, "flags": ["resting"]})
        b = StructuredValue(value={"diastolic": 80.0, "systolic": 120, "flags": ["resting"]})

        assert values_equal(a, b)

    def test_structured_nested_difference(self):
        """Test list order inside structured values matters"""
        a = StructuredValue(value={"readings": [{"hr": 60}, {"hr": 62}]})
        b = StructuredValue(value={"readings": [{"hr": 62}, {"hr": 60}]})

        assert not values_equal(a, b)

    def test_structured_bool_is_not_number(self):
        """True and 1 are distinct answers"""
        assert not values_equal(
            StructuredValue(value={"flag": True}),
            StructuredValue(value={"flag": 1})
        )


class TestRawValueTagging:
    """Test plain python values on observation requests"""

    def test_plain_values_are_tagged(self):
        """Test plain python values map onto value kinds"""
        numeric = ObservationRequest(patient_id="p", metric_id="m", value=7)
        text = ObservationRequest(patient_id="p", metric_id="m", value="calm")
        structured = ObservationRequest(patient_id="p", metric_id="m", value={"systolic": 120})
        boolean = ObservationRequest(patient_id="p", metric_id="m", value=True)

        assert isinstance(numeric.value, NumericValue)
        assert isinstance(text.value, TextValue)
        assert isinstance(structured.value, StructuredValue)
        assert boolean.value == CategoricalValue(code="true")

    def test_tagged_dict_is_parsed(self):
        """Test an explicitly tagged dict is parsed as that kind"""
        request = ObservationRequest(
            patient_id="p", metric_id="m", value={"kind": "categorical", "code": "mild"}
        )

        assert request.value == CategoricalValue(code="mild")

    def test_unknown_kind_rejected(self):
        """Test an unknown kind fails validation"""
        with pytest.raises(ValidationError):
            ObservationRequest(patient_id="p", metric_id="m", value={"kind": "blob", "data": 1})

    def test_non_finite_numbers_rejected(self):
        """NaN and infinity cannot be stored, so they never enter as values"""
        for bad in (float("nan"), float("inf"), float("-inf")):
            with pytest.raises(ValidationError):
                ObservationRequest(patient_id="p", metric_id="m", value=bad)

        with pytest.raises(ValidationError):
            ObservationRequest(
                patient_id="p", metric_id="m", value={"readings": [120, float("nan")]}
            )
