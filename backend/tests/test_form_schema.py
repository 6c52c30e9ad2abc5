"""Tests for form schema validation of instance data."""

import pytest

from core.exceptions import ValidationError
from workflow.form_schema import build_form_model, parse_field_specs, validate_form_data


LEAVE_FORM = {
    "fields": [
        {"name": "leaveType", "type": "enum", "required": True,
         "options": ["annual", "sick", "personal"]},
        {"name": "startDate", "type": "date", "required": True},
        {"name": "endDate", "type": "date", "required": True, "notBefore": "startDate"},
        {"name": "reason", "type": "string", "maxLength": 200},
    ]
}


@pytest.mark.unit
class TestParseFieldSpecs:

    def test_empty_schema(self):
        assert parse_field_specs(None) == []
        assert parse_field_specs({}) == []

    def test_aliases(self):
        specs = parse_field_specs(LEAVE_FORM)
        end = next(s for s in specs if s.name == "endDate")
        reason = next(s for s in specs if s.name == "reason")
        assert end.not_before == "startDate"
        assert reason.max_length == 200

    def test_fields_must_be_list(self):
        with pytest.raises(ValidationError):
            parse_field_specs({"fields": {"name": "x"}})

    def test_unsupported_type(self):
        with pytest.raises(ValidationError) as exc:
            parse_field_specs({"fields": [{"name": "x", "type": "blob"}]})
        assert "unsupported type 'blob'" in exc.value.errors[0]

    def test_enum_needs_options(self):
        with pytest.raises(ValidationError):
            parse_field_specs({"fields": [{"name": "x", "type": "enum"}]})

    def test_not_before_unknown_field(self):
        with pytest.raises(ValidationError):
            parse_field_specs({"fields": [{"name": "end", "type": "date", "notBefore": "start"}]})

    def test_duplicate_field(self):
        with pytest.raises(ValidationError):
            parse_field_specs({"fields": [{"name": "x"}, {"name": "x"}]})


@pytest.mark.unit
class TestValidateFormData:

    def test_valid_leave(self):
        data = validate_form_data(LEAVE_FORM, {
            "leaveType": "annual",
            "startDate": "2024-05-01",
            "endDate": "2024-05-03",
        })
        assert data == {"leaveType": "annual", "startDate": "2024-05-01", "endDate": "2024-05-03"}

    def test_missing_required(self):
        with pytest.raises(ValidationError) as exc:
            validate_form_data(LEAVE_FORM, {"leaveType": "annual"})
        joined = " ".join(exc.value.errors)
        assert "startDate" in joined
        assert "endDate" in joined

    def test_enum_option(self):
        with pytest.raises(ValidationError):
            validate_form_data(LEAVE_FORM, {
                "leaveType": "sabbatical",
                "startDate": "2024-05-01",
                "endDate": "2024-05-03",
            })

    def test_end_before_start(self):
        with pytest.raises(ValidationError) as exc:
            validate_form_data(LEAVE_FORM, {
                "leaveType": "annual",
                "startDate": "2024-05-03",
                "endDate": "2024-05-01",
            })
        assert exc.value.errors == ["endDate: must not be earlier than startDate"]

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            validate_form_data(LEAVE_FORM, {
                "leaveType": "annual",
                "startDate": "2024-05-01",
                "endDate": "2024-05-03",
                "bonus": True,
            })

    def test_max_length(self):
        with pytest.raises(ValidationError):
            validate_form_data(LEAVE_FORM, {
                "leaveType": "annual",
                "startDate": "2024-05-01",
                "endDate": "2024-05-03",
                "reason": "x" * 201,
            })

    def test_number_bounds(self):
        schema = {"fields": [{"name": "amount", "type": "number", "required": True, "minimum": 0}]}
        assert validate_form_data(schema, {"amount": 12.5}) == {"amount": 12.5}
        with pytest.raises(ValidationError):
            validate_form_data(schema, {"amount": -1})

    def test_no_schema_accepts_any_object(self):
        assert validate_form_data(None, {"anything": 1}) == {"anything": 1}

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            validate_form_data(LEAVE_FORM, ["annual"])

    def test_build_form_model_optional_fields_default_none(self):
        model = build_form_model(LEAVE_FORM)
        instance = model(leaveType="sick", startDate="2024-01-01", endDate="2024-01-02")
        assert instance.reason is None
