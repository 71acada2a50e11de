"""
Tests for parameter validation
"""

import pytest

from planexec.core.validation import (
    ParameterValidator,
    find_unresolved_references,
    is_valid_date,
    is_valid_id,
    suggest_step_reference,
    validate_params,
)


@pytest.fixture
def validator():
    return ParameterValidator()


class TestFormatChecks:

    @pytest.mark.parametrize("value", [
        "507f1f77bcf86cd799439011",
        "123e4567-e89b-12d3-a456-426614174000",
        "f1",
        "client-42_a",
    ])
    def test_valid_ids(self, value):
        assert is_valid_id(value)

    @pytest.mark.parametrize("value", ["has space", "id!", ""])
    def test_invalid_ids(self, value):
        assert not is_valid_id(value)

    @pytest.mark.parametrize("value,expected", [
        ("2024-01-31", True),
        ("2024-01-31T10:20:30Z", True),
        ("2024-02-30", False),
        ("31/01/2024", False),
        ("yesterday", False),
    ])
    def test_dates(self, value, expected):
        assert is_valid_date(value) is expected


class TestParameterValidator:

    def test_clean_parameters_pass(self, validator):
        valid, errors = validator.validate("shipments_list", {
            "facility_id": "f1",
            "date_from": "2024-01-01",
            "contact_email": "ops@example.org",
            "page": 1,
            "limit": 10,
        })

        assert valid is True
        assert errors == []

    def test_null_id_rejected(self, validator):
        valid, errors = validator.validate("facilities_get", {"facility_id": None})

        assert valid is False
        assert "Required parameter 'facility_id' is null or undefined" in errors

    def test_placeholder_rejected(self, validator):
        valid, errors = validator.validate("facilities_get", {"facility_id": "PLACEHOLDER_ID"})

        assert valid is False
        assert any("placeholder value" in error for error in errors)

    def test_placeholder_text_rejected(self, validator):
        valid, errors = validator.validate("shipments_list", {"notes": "ObjectId of the facility"})

        assert valid is False
        assert "Placeholder text found in parameters" in errors

    def test_unresolved_entity_reference_gets_suggestion(self, validator):
        valid, errors = validator.validate("shipments_list", {"filter": {"ref": "${facility_0.uid}"}})

        assert valid is False
        assert errors[0] == "Unresolved variable references found: ${facility_0.uid}"
        assert "should be '${step_0.result.uid}'" in errors[1]

    def test_string_null_rejected(self, validator):
        valid, errors = validator.validate("clients_update", {"name": "null"})

        assert valid is False
        assert 'Parameter "name" has string "null" instead of null value' in errors

    def test_bad_formats(self, validator):
        valid, errors = validator.validate("contracts_create", {
            "start_date": "soon",
            "email": "nobody",
            "page": -1,
            "enabled": True,
        })

        assert valid is False
        assert "Parameter 'start_date' has invalid date format: soon" in errors
        assert "Parameter 'email' has invalid email format: nobody" in errors
        assert "Parameter 'page' cannot be negative: -1" in errors
        assert len(errors) == 3

    def test_non_object_parameters(self, validator):
        assert validator.validate("clients_list", ["a"]) == (False, ["Parameters must be an object"])

    def test_module_shortcut(self):
        assert validate_params("clients_list", {}) == (True, [])


class TestReferenceHelpers:

    def test_canonical_references_are_not_reported(self):
        found = find_unresolved_references({"a": "${step_0.result.id}", "b": ["${client_1.id}"]})

        assert found == ["${client_1.id}"]

    def test_suggestion_for_unparseable_reference(self):
        assert suggest_step_reference("${facility}", "facility") == "${step_0.result.facility_id}"
