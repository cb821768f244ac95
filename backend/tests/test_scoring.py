"""Tests for dimension score aggregation."""

import pytest

from assessment_platform.errors import ValidationError
from assessment_platform.scoring import calculate_scores, round_half_up
from assessment_platform.seed.reference_data import TEMPLATES


def iso_dimensions(scores: dict[str, float] | None = None) -> list[dict]:
    template = next(t for t in TEMPLATES if t["id"] == "iso27001")
    scores = scores or {}
    return [{**d, "score": scores.get(d["id"])} for d in template["dimensions"]]


class TestCalculateScores:
    def test_nothing_scored(self):
        summary = calculate_scores(iso_dimensions())
        assert summary.total_dimensions == 9
        assert summary.scored_dimensions == 0
        assert summary.overall_score == 0
        assert summary.progress == 0

    def test_three_of_nine_scored(self):
        summary = calculate_scores(iso_dimensions({
            "policies": 2.5,          # 50%
            "access_control": 4,      # 80%
            "cryptography": 5,        # 100%
        }))
        assert summary.scored_dimensions == 3
        assert summary.overall_score == pytest.approx(76.6667, abs=1e-3)
        assert summary.rounded_overall == 76.7
        assert summary.progress == 33

    def test_unscored_dimensions_are_not_zeros(self):
        one = calculate_scores(iso_dimensions({"policies": 5}))
        assert one.overall_score == 100

    def test_weights_apply(self):
        dims = [
            {"id": "a", "score": 5, "max_score": 5, "weight": 3},
            {"id": "b", "score": 0, "max_score": 5, "weight": 1},
        ]
        assert calculate_scores(dims).overall_score == 75

    def test_zero_score_counts_as_scored(self):
        summary = calculate_scores([{"id": "a", "score": 0, "max_score": 5}])
        assert summary.scored_dimensions == 1
        assert summary.progress == 100

    def test_idempotent(self):
        dims = iso_dimensions({"policies": 3, "organization": 1})
        assert calculate_scores(dims) == calculate_scores(dims)

    def test_empty_dimension_list(self):
        summary = calculate_scores([])
        assert (summary.overall_score, summary.progress) == (0, 0)

    def test_non_positive_max_score_rejected(self):
        with pytest.raises(ValidationError):
            calculate_scores([{"id": "a", "score": 1, "max_score": 0}])

    def test_as_update_rounds_overall(self):
        update = calculate_scores(iso_dimensions({"policies": 2.5, "access_control": 4, "cryptography": 5})).as_update()
        assert update["overall_score"] == 76.7
        assert update["progress"] == 33
        assert [d["dimension_id"] for d in update["dimension_scores"]] == [
            "policies", "access_control", "cryptography",
        ]


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.25, 1) == 0.3
