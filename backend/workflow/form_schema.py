"""Form schema validation for workflow instance data.

A definition's ``form_schema`` declares the fields its form accepts:

{
    "fields": [
        {"name": "leaveType", "type": "enum", "required": true,
         "options": ["annual", "sick"]},
        {"name": "startDate", "type": "date", "required": true},
        {"name": "endDate", "type": "date", "required": true,
         "notBefore": "startDate"},
        {"name": "reason", "type": "string", "maxLength": 500}
    ]
}

The declaration is compiled into a pydantic model so submitted data goes
through the same validation machinery as API payloads. Validated data is
stored back as JSON (dates as ISO strings).
"""

import logging
from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, create_model

from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

FIELD_TYPES: dict[str, Any] = {
    "string": str,
    "text": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "date": date,
    "datetime": datetime,
}


class FieldSpec(BaseModel):
    """One declared form field."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    type: str = "string"
    label: Optional[str] = None
    required: bool = False
    options: Optional[list[Any]] = None
    min_length: Optional[int] = Field(default=None, alias="minLength")
    max_length: Optional[int] = Field(default=None, alias="maxLength")
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    not_before: Optional[str] = Field(default=None, alias="notBefore")


def parse_field_specs(form_schema: Optional[dict[str, Any]]) -> list[FieldSpec]:
    """Parse the ``fields`` list of a form schema.

    Raises:
        ValidationError: if the schema itself is malformed
    """
    if not form_schema:
        return []
    raw_fields = form_schema.get("fields")
    if not isinstance(raw_fields, list):
        raise ValidationError("Invalid form schema", ["form_schema.fields must be a list"])

    errors: list[str] = []
    specs: list[FieldSpec] = []
    for index, raw in enumerate(raw_fields):
        try:
            spec = FieldSpec.model_validate(raw)
        except PydanticValidationError as e:
            errors.append(f"fields[{index}]: {e.errors()[0]['msg']}")
            continue
        if spec.type != "enum" and spec.type not in FIELD_TYPES:
            errors.append(f"fields[{index}]: unsupported type '{spec.type}'")
        if spec.type == "enum" and not spec.options:
            errors.append(f"fields[{index}]: enum field '{spec.name}' needs options")
        specs.append(spec)

    names = [s.name for s in specs]
    for spec in specs:
        if names.count(spec.name) > 1:
            errors.append(f"duplicate field '{spec.name}'")
        if spec.not_before and spec.not_before not in names:
            errors.append(f"field '{spec.name}' references unknown field '{spec.not_before}'")
        elif spec.not_before:
            other = next(s for s in specs if s.name == spec.not_before)
            if other.type != spec.type or spec.type not in ("date", "datetime", "integer", "number"):
                errors.append(f"field '{spec.name}' cannot be ordered against '{spec.not_before}'")
    if errors:
        raise ValidationError("Invalid form schema", sorted(set(errors)))
    return specs


def _annotation(spec: FieldSpec) -> Any:
    if spec.type == "enum":
        return Literal[tuple(spec.options)]
    return FIELD_TYPES[spec.type]


def _field_definition(spec: FieldSpec) -> tuple[Any, Any]:
    annotation = _annotation(spec)
    constraints: dict[str, Any] = {}
    if spec.type in ("string", "text"):
        if spec.min_length is not None:
            constraints["min_length"] = spec.min_length
        if spec.max_length is not None:
            constraints["max_length"] = spec.max_length
    if spec.type in ("integer", "number"):
        if spec.minimum is not None:
            constraints["ge"] = spec.minimum
        if spec.maximum is not None:
            constraints["le"] = spec.maximum

    if spec.required:
        return annotation, Field(..., **constraints)
    return Optional[annotation], Field(default=None, **constraints)


def build_form_model(form_schema: Optional[dict[str, Any]], model_name: str = "FormData") -> type[BaseModel]:
    """Compile a form schema into a pydantic model (unknown keys forbidden)."""
    specs = parse_field_specs(form_schema)
    fields = {spec.name: _field_definition(spec) for spec in specs}
    return create_model(
        model_name,
        __config__=ConfigDict(extra="forbid"),
        **fields,
    )


def validate_form_data(
    form_schema: Optional[dict[str, Any]],
    form_data: Any,
) -> dict[str, Any]:
    """Validate submitted data against a definition's form schema.

    Returns:
        The normalized data as a JSON-compatible dict

    Raises:
        ValidationError: with one entry per offending field
    """
    if not isinstance(form_data, dict):
        raise ValidationError("Form data must be an object", ["formData: expected an object"])
    if not form_schema:
        return dict(form_data)

    specs = parse_field_specs(form_schema)
    model = build_form_model(form_schema)
    try:
        validated = model.model_validate(form_data)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or 'formData'}: {err['msg']}"
            for err in e.errors()
        ]
        logger.info("Form data rejected: %s", errors)
        raise ValidationError("Form data does not match the workflow form", errors)

    errors = []
    for spec in specs:
        if not spec.not_before:
            continue
        value = getattr(validated, spec.name)
        lower = getattr(validated, spec.not_before)
        if value is not None and lower is not None and value < lower:
            errors.append(f"{spec.name}: must not be earlier than {spec.not_before}")
    if errors:
        raise ValidationError("Form data does not match the workflow form", errors)

    return validated.model_dump(mode="json", exclude_none=True)
