"""
Question types, answer validation and rubric scoring.

``question_type`` is the tag of a discriminated union; each variant owns its
validation and scoring rules:

  text             length / pattern rules from ``validation_rules``; not scored
  multiple_choice  selection must be one of the options; rubric option score
  scale            numeric value inside [scale_min, scale_max]; direct or scaled
  matrix           every required row answered; mean of matched row scores
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

from assessment_platform.errors import ValidationError


class ResponseData(BaseModel):
    """An answer as submitted: free text and/or structured data."""

    text: str | None = None
    data: dict[str, Any] | None = None

    def is_empty(self) -> bool:
        return not self.text and not self.data


class RubricOption(BaseModel):
    id: str | None = None
    value: Any = None
    score: float = 0.0


class RubricRow(BaseModel):
    id: str
    options: list[RubricOption] = Field(default_factory=list)


class ScoringRubric(BaseModel):
    options: list[RubricOption] = Field(default_factory=list)
    rows: list[RubricRow] = Field(default_factory=list)
    direct_mapping: bool = False
    max_value: float | None = None
    max_score: float | None = None


class ChoiceOption(BaseModel):
    id: str | None = None
    value: Any = None
    label: str = ""

    @property
    def key(self) -> Any:
        return self.id if self.id is not None else self.value


class MatrixRow(BaseModel):
    id: str
    label: str
    required: bool = False


class _QuestionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "question_id"))
    template_id: str | None = None
    dimension_id: str | None = None
    dimension_name: str | None = None
    question_text: str = ""
    help_text: str | None = None
    is_required: bool = False
    sort_order: int = 0
    validation_rules: dict[str, Any] = Field(default_factory=dict)
    scoring_rubric: ScoringRubric | None = None

    def validate_answer(self, response: ResponseData) -> None:
        raise NotImplementedError

    def score(self, response: ResponseData) -> float | None:
        return None


class TextQuestion(_QuestionBase):
    question_type: Literal["text"] = "text"

    def validate_answer(self, response: ResponseData) -> None:
        if not response.text:
            return
        text = response.text
        rules = self.validation_rules
        if rules.get("min_length") and len(text) < rules["min_length"]:
            raise ValidationError(f"Response must be at least {rules['min_length']} characters", field="text")
        if rules.get("max_length") and len(text) > rules["max_length"]:
            raise ValidationError(f"Response cannot exceed {rules['max_length']} characters", field="text")
        if rules.get("pattern") and not re.search(rules["pattern"], text):
            raise ValidationError("Response format is invalid", field="text")


class MultipleChoiceQuestion(_QuestionBase):
    question_type: Literal["multiple_choice"] = "multiple_choice"
    options: list[ChoiceOption] = Field(default_factory=list)

    def _selected(self, response: ResponseData) -> Any:
        return (response.data or {}).get("selected")

    def validate_answer(self, response: ResponseData) -> None:
        selected = self._selected(response)
        if not selected:
            raise ValidationError("Please select an option", field="selected")
        valid = {o.key for o in self.options}
        picks = selected if isinstance(selected, list) else [selected]
        if not all(p in valid for p in picks):
            raise ValidationError("Invalid option selected", field="selected")

    def score(self, response: ResponseData) -> float | None:
        if self.scoring_rubric is None:
            return None
        selected = self._selected(response)
        if not selected:
            return 0.0
        scores = {o.id: o.score for o in self.scoring_rubric.options}
        if isinstance(selected, list):
            # Multi-select scores as the mean of the picked options
            picked = [scores.get(s, 0.0) for s in selected]
            return sum(picked) / len(picked)
        return scores.get(selected, 0.0)


class ScaleQuestion(_QuestionBase):
    question_type: Literal["scale"] = "scale"
    scale_min: int = 1
    scale_max: int = 5
    scale_labels: dict[str, str] = Field(default_factory=dict)

    def _value(self, response: ResponseData) -> Any:
        return (response.data or {}).get("value")

    def validate_answer(self, response: ResponseData) -> None:
        value = self._value(response)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError("Please select a rating", field="value")
        if value < self.scale_min or value > self.scale_max:
            raise ValidationError(f"Rating must be between {self.scale_min} and {self.scale_max}", field="value")

    def score(self, response: ResponseData) -> float | None:
        rubric = self.scoring_rubric
        if rubric is None:
            return None
        value = self._value(response)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.0
        if rubric.direct_mapping:
            return float(value)
        max_value = rubric.max_value or self.scale_max
        max_score = rubric.max_score if rubric.max_score is not None else self.scale_max
        return value / max_value * max_score


class MatrixQuestion(_QuestionBase):
    question_type: Literal["matrix"] = "matrix"
    matrix_rows: list[MatrixRow] = Field(default_factory=list)
    matrix_columns: list[ChoiceOption] = Field(default_factory=list)

    def _matrix(self, response: ResponseData) -> dict[str, Any] | None:
        return (response.data or {}).get("matrix")

    def validate_answer(self, response: ResponseData) -> None:
        matrix = self._matrix(response)
        if not matrix:
            raise ValidationError("Please complete all matrix items", field="matrix")
        for row in self.matrix_rows:
            if row.required and not matrix.get(row.id):
                raise ValidationError(f"Please answer: {row.label}", field=row.id)

    def score(self, response: ResponseData) -> float | None:
        if self.scoring_rubric is None:
            return None
        matrix = self._matrix(response)
        if not matrix:
            return 0.0
        rows = {r.id: r for r in self.scoring_rubric.rows}
        total = 0.0
        counted = 0
        for row_id, value in matrix.items():
            rubric_row = rows.get(row_id)
            if rubric_row is None:
                continue
            option = next((o for o in rubric_row.options if o.value == value), None)
            if option is not None:
                total += option.score
                counted += 1
        return total / counted if counted else 0.0


Question = Annotated[
    Union[TextQuestion, MultipleChoiceQuestion, ScaleQuestion, MatrixQuestion],
    Field(discriminator="question_type"),
]


def validate_response(question: _QuestionBase, response: ResponseData) -> None:
    """Raise ValidationError if the answer is unacceptable for the question."""
    if response.is_empty():
        if question.is_required:
            raise ValidationError("Response is required")
        return
    question.validate_answer(response)


def calculate_score(question: _QuestionBase, response: ResponseData) -> float | None:
    return question.score(response)


_question_adapter: TypeAdapter[Question] = TypeAdapter(Question)


def parse_question(raw: dict[str, Any]) -> _QuestionBase:
    """Build the right question variant from a stored/loaded dict."""
    return _question_adapter.validate_python(raw)
