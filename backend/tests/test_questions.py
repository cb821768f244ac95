"""Tests for question parsing, answer validation and rubric scoring."""

import pytest

from assessment_platform.errors import ValidationError
from assessment_platform.questions import (
    MatrixQuestion, ResponseData, ScaleQuestion, calculate_score, parse_question, validate_response,
)
from assessment_platform.seed.reference_data import QUESTIONS


def question(question_id: str):
    return parse_question(next(q for q in QUESTIONS if q["id"] == question_id))


MFA = "iso27001.access_control.mfa"
MATRIX = "iso27001.incident_management.coverage"
OWNER = "iso27001.policies.owner"
MATURITY = "iso27001.policies.maturity"


class TestParsing:
    def test_discriminates_on_question_type(self):
        assert isinstance(question(MATURITY), ScaleQuestion)
        assert isinstance(question(MATRIX), MatrixQuestion)

    def test_accepts_question_id_key(self):
        q = parse_question({"question_id": "q1", "question_type": "text"})
        assert q.id == "q1"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            parse_question({"id": "q1", "question_type": "slider"})


class TestValidation:
    def test_required_empty_answer(self):
        with pytest.raises(ValidationError, match="Response is required"):
            validate_response(question(MFA), ResponseData())

    def test_optional_empty_answer_passes(self):
        validate_response(question(OWNER), ResponseData())

    def test_text_length_rules(self):
        with pytest.raises(ValidationError, match="at least 3"):
            validate_response(question(OWNER), ResponseData(text="CI"))
        validate_response(question(OWNER), ResponseData(text="The CISO"))

    def test_choice_must_be_an_option(self):
        with pytest.raises(ValidationError, match="Invalid option"):
            validate_response(question(MFA), ResponseData(data={"selected": "sometimes"}))
        validate_response(question(MFA), ResponseData(data={"selected": ["remote", "privileged"]}))

    def test_scale_bounds(self):
        with pytest.raises(ValidationError, match="between 1 and 5"):
            validate_response(question(MATURITY), ResponseData(data={"value": 6}))
        with pytest.raises(ValidationError, match="select a rating"):
            validate_response(question(MATURITY), ResponseData(data={"value": True}))
        validate_response(question(MATURITY), ResponseData(data={"value": 1}))

    def test_matrix_required_rows(self):
        with pytest.raises(ValidationError, match="Please answer: Escalation") as exc:
            validate_response(question(MATRIX), ResponseData(data={"matrix": {"detection": "full"}}))
        assert exc.value.field == "escalation"


class TestScoring:
    def test_text_is_not_scored(self):
        assert calculate_score(question(OWNER), ResponseData(text="The CISO")) is None

    def test_choice_uses_rubric(self):
        assert calculate_score(question(MFA), ResponseData(data={"selected": "privileged"})) == 4

    def test_multi_select_is_mean(self):
        score = calculate_score(question(MFA), ResponseData(data={"selected": ["remote", "all"]}))
        assert score == pytest.approx(3.5)

    def test_scale_direct_mapping(self):
        assert calculate_score(question(MATURITY), ResponseData(data={"value": 4})) == 4.0

    def test_scale_scaled_mapping(self):
        q = parse_question({
            "id": "s", "question_type": "scale", "scale_min": 0, "scale_max": 10,
            "scoring_rubric": {"max_value": 10, "max_score": 5},
        })
        assert calculate_score(q, ResponseData(data={"value": 7})) == pytest.approx(3.5)

    def test_matrix_mean_of_matched_rows(self):
        answer = ResponseData(data={"matrix": {"detection": "full", "escalation": "partial", "extra": "full"}})
        assert calculate_score(question(MATRIX), answer) == pytest.approx(3.75)

    def test_question_without_rubric_is_unscored(self):
        q = parse_question({"id": "m", "question_type": "multiple_choice",
                            "options": [{"id": "a", "label": "A"}]})
        assert calculate_score(q, ResponseData(data={"selected": "a"})) is None
