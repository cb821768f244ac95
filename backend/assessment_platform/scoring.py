"""
Assessment score aggregation.

Algorithm:
  percentage(d)  = score / max_score × 100                 (scored dimensions only)
  overall        = Σ(percentage × weight) / Σ(weight)      (0 when nothing is scored)
  progress       = round(scored / total × 100)

Unscored dimensions (score is None) are left out of both sums; they are not
treated as zero. The computation is pure, so re-running it on the same
dimensions always yields the same summary.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping

from assessment_platform.errors import ValidationError

DEFAULT_WEIGHT = 1.0
DEFAULT_MAX_SCORE = 5.0


def round_half_up(value: float, places: int = 0) -> float:
    """Round like a spreadsheet (0.5 goes up), not banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class DimensionScore:
    dimension_id: str
    dimension_name: str | None
    score: float
    max_score: float
    percentage: float
    weight: float


@dataclass(frozen=True)
class ScoreSummary:
    overall_score: float
    progress: int
    scored_dimensions: int
    total_dimensions: int
    dimension_scores: list[DimensionScore] = field(default_factory=list)

    @property
    def rounded_overall(self) -> float:
        return round_half_up(self.overall_score, 1)

    def as_update(self) -> dict[str, Any]:
        """Fields to persist on the assessment (overall rounded to 1 dp)."""
        return {
            "overall_score": self.rounded_overall,
            "progress": self.progress,
            "dimension_scores": [asdict(d) for d in self.dimension_scores],
        }


def _read(dim: Any, key: str, default: Any = None) -> Any:
    if isinstance(dim, Mapping):
        value = dim.get(key, default)
    else:
        value = getattr(dim, key, default)
    return default if value is None and default is not None else value


def calculate_scores(dimensions: Iterable[Any]) -> ScoreSummary:
    """Aggregate dimension scores (dicts or objects with the same attributes)."""
    dims = list(dimensions)
    weighted_total = 0.0
    weight_total = 0.0
    scored: list[DimensionScore] = []

    for dim in dims:
        score = _read(dim, "score")
        if score is None:
            continue
        max_score = float(_read(dim, "max_score", DEFAULT_MAX_SCORE))
        if max_score <= 0:
            raise ValidationError(
                f"Dimension {_read(dim, 'id')} has non-positive max_score", field="max_score"
            )
        weight = float(_read(dim, "weight", DEFAULT_WEIGHT))
        percentage = float(score) / max_score * 100

        weighted_total += percentage * weight
        weight_total += weight
        scored.append(DimensionScore(
            dimension_id=str(_read(dim, "id")),
            dimension_name=_read(dim, "name"),
            score=float(score),
            max_score=max_score,
            percentage=percentage,
            weight=weight,
        ))

    overall = weighted_total / weight_total if weight_total > 0 else 0.0
    progress = int(round_half_up(len(scored) / len(dims) * 100)) if dims else 0

    return ScoreSummary(
        overall_score=overall,
        progress=progress,
        scored_dimensions=len(scored),
        total_dimensions=len(dims),
        dimension_scores=scored,
    )
