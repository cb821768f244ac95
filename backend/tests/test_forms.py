"""Tests for dynamic form schemas: conditions, rule order and validation."""

import pytest
from pydantic import ValidationError as SchemaError

from assessment_platform.forms import Condition, FormSchema, field_error, rules_as_field, validate_form


SCHEMA = FormSchema.model_validate({
    "title": "New assessment",
    "fields": [
        {"name": "title", "label": "Title", "type": "text", "required": True,
         "minLength": 3, "maxLength": 20, "pattern": "^[a-zA-Z0-9 -]+$"},
        {"name": "scope", "label": "Scope", "type": "select", "required": True,
         "options": [{"value": "company", "label": "Company"}, {"value": "domain", "label": "Domain"}]},
        {"name": "domain", "label": "Domain", "type": "text", "required": True,
         "condition": {"field": "scope", "operator": "==", "value": "domain"}},
        {"name": "budget", "label": "Budget", "type": "number", "validator": "positive"},
        {"name": "agree", "label": "Agreement", "type": "checkbox", "required": True, "default": False},
    ],
})


def positive(value, values):
    return None if float(value) > 0 else "Budget must be positive"


class TestConditions:
    @pytest.mark.parametrize("operator,value,current,expected", [
        ("==", "5", 5, True),
        ("===", "a", "b", False),
        ("!=", "a", "b", True),
        ("!==", 1, "1", False),
        ("includes", "x", ["x", "y"], True),
        ("includes", "z", ["x", "y"], False),
        ("empty", None, "", True),
        ("notEmpty", None, [], False),
        ("notEmpty", None, 0, True),
        ("matches", "anything", "else", True),
    ])
    def test_operators(self, operator, value, current, expected):
        cond = Condition(field="f", operator=operator, value=value)
        assert cond.evaluate({"f": current}) is expected


class TestFieldRules:
    def field(self, name):
        return SCHEMA.get_field(name)

    def test_required_comes_first(self):
        assert field_error(self.field("title"), "") == "Title is required"

    def test_min_then_max_then_pattern(self):
        assert field_error(self.field("title"), "ab") == "Title must be at least 3 characters"
        assert field_error(self.field("title"), "a" * 21) == "Title must not exceed 20 characters"
        assert field_error(self.field("title"), "bad_title!") == "Title format is invalid"
        assert field_error(self.field("title"), "Good title") is None

    def test_zero_is_not_blank(self):
        assert field_error(self.field("budget"), 0, validators={"positive": positive}) == "Budget must be positive"

    def test_unknown_validator_is_skipped_with_warning(self, caplog):
        with caplog.at_level("WARNING", logger="assessment_platform.forms"):
            assert field_error(self.field("budget"), -1) is None
        assert "unknown validator 'positive'" in caplog.text

    def test_unchecked_required_checkbox(self):
        assert field_error(self.field("agree"), False) == "Agreement is required"

    def test_rules_as_field_uses_camel_case_rules(self):
        field = rules_as_field("description", {"maxLength": 5})
        assert field_error(field, "too long") == "description must not exceed 5 characters"


class TestValidateForm:
    def test_hidden_fields_are_skipped(self):
        errors = validate_form(SCHEMA, {"title": "Audit", "scope": "company", "agree": True})
        assert errors == {}

    def test_visible_conditional_field_is_validated(self):
        errors = validate_form(SCHEMA, {"title": "Audit", "scope": "domain", "agree": True})
        assert errors == {"domain": "Domain is required"}

    def test_all_failures_reported(self):
        errors = validate_form(SCHEMA, {})
        assert set(errors) == {"title", "scope", "agree"}

    def test_initial_values_use_defaults(self):
        assert SCHEMA.initial_values() == {"agree": False}


def test_unknown_field_type_rejected():
    with pytest.raises(SchemaError):
        FormSchema.model_validate({"fields": [{"name": "x", "label": "X", "type": "colour"}]})
