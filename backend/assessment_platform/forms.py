"""
Schema-driven dynamic forms: field definitions, conditional visibility and
per-field validation.

Field types form a tagged union on ``type``. A field may carry a
``condition`` ({field, operator, value}); when it evaluates false the field
is hidden and skipped by validation.

Validation order per field is fixed and the first failure wins:
required → min_length → max_length → pattern → custom validator.
"""

from __future__ import annotations

import logging
import re
from typing import Annotated, Any, Callable, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# Custom validators are referenced by name from form config and resolved here.
# Signature: (value, all_values) -> error message or None
FieldValidator = Callable[[Any, Mapping[str, Any]], "str | None"]


def is_blank(value: Any) -> bool:
    """Empty for `required` purposes. Zero is a real answer, not blank."""
    if value is None or value is False:
        return True
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def loose_equals(left: Any, right: Any) -> bool:
    """Equality that treats "5" and 5 as equal (form values arrive as strings)."""
    if left == right:
        return True
    if left is None or right is None:
        return False
    return str(left) == str(right)


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: str = "=="
    value: Any = None

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        current = values.get(self.field)
        op = self.operator
        if op in ("==", "==="):
            return loose_equals(current, self.value)
        if op in ("!=", "!=="):
            return not loose_equals(current, self.value)
        if op == "includes":
            return isinstance(current, (list, tuple, set)) and self.value in current
        if op == "empty":
            return is_blank(current)
        if op == "notEmpty":
            return not is_blank(current)
        # Unknown operators never hide a field
        return True


class Option(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Any
    label: str


class _FieldBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    label: str
    required: bool = False
    min_length: int | None = Field(default=None, alias="minLength")
    max_length: int | None = Field(default=None, alias="maxLength")
    pattern: str | None = None
    pattern_message: str | None = Field(default=None, alias="patternMessage")
    validator: str | None = None
    condition: Condition | None = None
    help_text: str | None = Field(default=None, alias="helpText")
    placeholder: str | None = None
    default: Any = None

    def is_visible(self, values: Mapping[str, Any]) -> bool:
        return self.condition is None or self.condition.evaluate(values)


class InputField(_FieldBase):
    type: Literal["text", "email", "password", "number", "date", "time"]


class TextareaField(_FieldBase):
    type: Literal["textarea"]
    rows: int = 4


class SelectField(_FieldBase):
    type: Literal["select"]
    # Either inline options or the name of a resource to populate them from
    options: list[Option] | str = Field(default_factory=list)
    multiple: bool = False


class RadioField(_FieldBase):
    type: Literal["radio"]
    options: list[Option] = Field(default_factory=list)


class CheckboxField(_FieldBase):
    type: Literal["checkbox"]


class FileField(_FieldBase):
    type: Literal["file"]
    accept: str | None = None
    max_size: int | None = Field(default=None, alias="maxSize")


FormField = Annotated[
    Union[InputField, TextareaField, SelectField, RadioField, CheckboxField, FileField],
    Field(discriminator="type"),
]


class FormSchema(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str | None = None
    fields: list[FormField] = Field(default_factory=list)
    submit_label: str = Field(default="Submit", alias="submitLabel")

    def get_field(self, name: str) -> _FieldBase | None:
        return next((f for f in self.fields if f.name == name), None)

    def visible_fields(self, values: Mapping[str, Any]) -> list[_FieldBase]:
        return [f for f in self.fields if f.is_visible(values)]

    def initial_values(self) -> dict[str, Any]:
        return {f.name: f.default for f in self.fields if f.default is not None}


def field_error(
    field: _FieldBase,
    value: Any,
    values: Mapping[str, Any] | None = None,
    validators: Mapping[str, FieldValidator] | None = None,
) -> str | None:
    """First failing rule's message for one field, or None."""
    if field.required and is_blank(value):
        return f"{field.label} is required"

    if is_blank(value):
        return None

    length = len(value) if isinstance(value, (str, list, tuple)) else None
    if field.min_length and length is not None and length < field.min_length:
        return f"{field.label} must be at least {field.min_length} characters"

    if field.max_length and length is not None and length > field.max_length:
        return f"{field.label} must not exceed {field.max_length} characters"

    if field.pattern and not re.search(field.pattern, str(value)):
        return field.pattern_message or f"{field.label} format is invalid"

    if field.validator:
        check = (validators or {}).get(field.validator)
        if check is None:
            logger.warning("Field %s names unknown validator %r; skipped", field.name, field.validator)
        else:
            error = check(value, values or {})
            if error:
                return error

    return None


def validate_form(
    schema: FormSchema,
    values: Mapping[str, Any],
    validators: Mapping[str, FieldValidator] | None = None,
) -> dict[str, str]:
    """Errors for every visible field that fails; hidden fields are skipped."""
    errors: dict[str, str] = {}
    for field in schema.visible_fields(values):
        error = field_error(field, values.get(field.name), values, validators)
        if error:
            errors[field.name] = error
    return errors


def rules_as_field(name: str, rules: Mapping[str, Any], label: str | None = None) -> InputField:
    """Wrap an entity validation-rule block ({required, minLength, ...}) as a text field."""
    return InputField(type="text", name=name, label=label or name, **dict(rules))
