"""Domain maturity scoring algorithm.

A domain's achieved maturity level is derived from the current level of each
of its criteria against the domain's target level:

    1. percentage_at_target — share of criteria at or above target, rounded
       half up to one decimal place.
    2. meets_threshold      — at least 80% of criteria at or above target.
    3. penalty_applied      — any criterion two or more levels below target.
    4. calculated_level:
         meets, no penalty  -> target
         meets, penalty     -> one level below target (floor basic)
         does not meet      -> lower of the median current level and one
                               level below target (floor basic)

This module is intentionally independent of the database layer and performs
no I/O so that the scoring logic can be unit-tested without any infrastructure.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from maturion_assessment.core.maturity_levels import MAX_RANK, MIN_RANK, MaturityLevel
from maturion_assessment.errors import ScoringValidationError
from maturion_assessment.observability import get_logger

logger = get_logger(__name__)

DEFAULT_THRESHOLD_PERCENT: float = 80.0

# A criterion this many ordinal steps (or more) below target triggers the penalty
PENALTY_DEFICIT_STEPS: int = 2

_EVIDENCE_MIN: float = 0.0
_EVIDENCE_MAX: float = 100.0


@dataclass(frozen=True)
class CriteriaScore:
    """A scored response to a single criterion.

    Levels are coerced to MaturityLevel on construction, so an instance that
    exists is always structurally valid.

    Attributes:
        criteria_id: Identifier of the criterion being scored.
        current_level: Level the organisation currently demonstrates.
        target_level: Level the criterion is expected to reach.
        evidence_score: Strength of supporting evidence, 0-100.

    Raises:
        ScoringValidationError: On a missing id, unknown level, or evidence
            score outside 0-100.
    """

    criteria_id: str
    current_level: MaturityLevel
    target_level: MaturityLevel
    evidence_score: float

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not isinstance(self.criteria_id, str) or not self.criteria_id.strip():
            errors.append("Missing criteria ID")

        try:
            object.__setattr__(self, "current_level", MaturityLevel.parse(self.current_level))
        except ValueError:
            errors.append(f"Invalid current level {self.current_level!r}")

        try:
            object.__setattr__(self, "target_level", MaturityLevel.parse(self.target_level))
        except ValueError:
            errors.append(f"Invalid target level {self.target_level!r}")

        evidence = self.evidence_score
        if (
            isinstance(evidence, bool)
            or not isinstance(evidence, (int, float))
            or math.isnan(evidence)
            or not (_EVIDENCE_MIN <= evidence <= _EVIDENCE_MAX)
        ):
            errors.append(f"Evidence score must be between 0-100, got {evidence!r}")
        else:
            object.__setattr__(self, "evidence_score", float(evidence))

        if errors:
            raise ScoringValidationError(errors)


@dataclass(frozen=True)
class DomainMaturity:
    """Outcome of the domain maturity calculation.

    Attributes:
        calculated_level: Maturity level the domain achieves.
        meets_threshold: Whether at least 80% of criteria are at or above target.
        penalty_applied: Whether a two-level deficit downgraded the result.
        percentage_at_target: Share of criteria at or above target, one decimal.
    """

    calculated_level: MaturityLevel
    meets_threshold: bool
    penalty_applied: bool
    percentage_at_target: float


@dataclass(frozen=True)
class DomainScore:
    """Derived, always-recalculable maturity verdict for one domain."""

    domain_id: str
    domain_name: str
    criteria_scores: tuple[CriteriaScore, ...]
    calculated_level: MaturityLevel
    target_level: MaturityLevel
    meets_threshold: bool
    penalty_applied: bool
    percentage_at_target: float


@dataclass(frozen=True)
class AssessmentProgress:
    """Roll-up of several domain scores for an assessment session.

    Attributes:
        total_criteria: Criteria across all domains.
        completed_criteria: Criteria answered above the basic level.
        completion_percentage: completed_criteria / total_criteria * 100.
        overall_maturity_level: Rounded mean of domain calculated levels.
    """

    total_criteria: int
    completed_criteria: int
    completion_percentage: float
    overall_maturity_level: MaturityLevel


def parse_criteria_scores(raw_scores: Sequence[Mapping[str, object]]) -> list[CriteriaScore]:
    """Build CriteriaScore objects from raw response mappings.

    Collects every problem across the whole input before failing so that the
    caller receives the full list in one round-trip.

    Args:
        raw_scores: Mappings with keys criteria_id, current_level, target_level,
            evidence_score.

    Returns:
        CriteriaScore list in input order.

    Raises:
        ScoringValidationError: If the list is empty or any entry is invalid.
    """
    if not raw_scores:
        raise ScoringValidationError(["No criteria scores provided"])

    scores: list[CriteriaScore] = []
    errors: list[str] = []
    for index, raw in enumerate(raw_scores, start=1):
        try:
            scores.append(
                CriteriaScore(
                    criteria_id=raw.get("criteria_id"),  # type: ignore[arg-type]
                    current_level=raw.get("current_level"),  # type: ignore[arg-type]
                    target_level=raw.get("target_level"),  # type: ignore[arg-type]
                    evidence_score=raw.get("evidence_score"),  # type: ignore[arg-type]
                )
            )
        except ScoringValidationError as exc:
            errors.extend(f"Criteria score {index}: {error}" for error in exc.errors)

    if errors:
        raise ScoringValidationError(errors)
    return scores


class MaturityScorer:
    """Pure, deterministic scoring engine for domain maturity.

    Holds no state between calls; a single instance can be shared across
    concurrent requests.
    """

    def __init__(self, threshold_percent: float = DEFAULT_THRESHOLD_PERCENT) -> None:
        """Initialise the scorer.

        Args:
            threshold_percent: Share of criteria (0-100) that must be at or above
                target for the domain to meet its target.
        """
        self._threshold_percent = threshold_percent

    def calculate_domain_maturity(
        self,
        criteria_scores: Sequence[CriteriaScore],
        target_level: MaturityLevel | str,
    ) -> DomainMaturity:
        """Compute the achieved maturity level of a domain.

        Every criterion is compared with the domain target; each criterion's
        own target_level is carried for reporting only.

        Args:
            criteria_scores: Non-empty ordered list of criterion scores.
            target_level: The domain's target maturity level.

        Returns:
            DomainMaturity with calculated level, threshold, and penalty flags.

        Raises:
            ScoringValidationError: If criteria_scores is empty or target_level
                is not a valid level.
        """
        target = self._validate(criteria_scores, target_level)
        target_rank = target.rank
        total = len(criteria_scores)

        at_or_above = sum(1 for score in criteria_scores if score.current_level.rank >= target_rank)
        percentage_at_target = _percentage(at_or_above, total)
        meets_threshold = at_or_above / total * 100.0 >= self._threshold_percent

        penalty_applied = any(
            target_rank - score.current_level.rank >= PENALTY_DEFICIT_STEPS
            for score in criteria_scores
        )

        if meets_threshold and not penalty_applied:
            calculated_level = target
        elif meets_threshold:
            calculated_level = target.step_down()
        else:
            median_rank = _lower_median_rank(criteria_scores)
            calculated_rank = max(MIN_RANK, min(median_rank, target_rank - 1))
            calculated_level = MaturityLevel.from_rank(calculated_rank)

        return DomainMaturity(
            calculated_level=calculated_level,
            meets_threshold=meets_threshold,
            penalty_applied=penalty_applied,
            percentage_at_target=percentage_at_target,
        )

    def score_domain(
        self,
        domain_id: str,
        domain_name: str,
        criteria_scores: Sequence[CriteriaScore],
        target_level: MaturityLevel | str,
    ) -> DomainScore:
        """Score a domain and wrap the result in a DomainScore record.

        Args:
            domain_id: Domain identifier.
            domain_name: Display name of the domain.
            criteria_scores: Non-empty ordered list of criterion scores.
            target_level: The domain's target maturity level.

        Returns:
            DomainScore ready for rendering.

        Raises:
            ScoringValidationError: On invalid input.
        """
        maturity = self.calculate_domain_maturity(criteria_scores, target_level)
        target = MaturityLevel.parse(target_level)

        logger.debug(
            "Domain maturity calculated",
            domain_id=domain_id,
            criteria_count=len(criteria_scores),
            target_level=target.value,
            calculated_level=maturity.calculated_level.value,
            percentage_at_target=maturity.percentage_at_target,
            penalty_applied=maturity.penalty_applied,
        )

        return DomainScore(
            domain_id=domain_id,
            domain_name=domain_name,
            criteria_scores=tuple(criteria_scores),
            calculated_level=maturity.calculated_level,
            target_level=target,
            meets_threshold=maturity.meets_threshold,
            penalty_applied=maturity.penalty_applied,
            percentage_at_target=maturity.percentage_at_target,
        )

    def calculate_assessment_progress(
        self,
        domain_scores: Sequence[DomainScore],
    ) -> AssessmentProgress:
        """Roll several domain scores up into overall assessment progress.

        A criterion counts as completed once it is answered above basic. The
        overall level is the mean of domain levels rounded half up, clamped
        to 1-5, and basic when there are no domains.

        Args:
            domain_scores: Scored domains of one assessment.

        Returns:
            AssessmentProgress summary. Empty input yields zero counts.
        """
        total_criteria = sum(len(domain.criteria_scores) for domain in domain_scores)
        completed_criteria = sum(
            1
            for domain in domain_scores
            for score in domain.criteria_scores
            if score.current_level.rank > MIN_RANK
        )
        completion_percentage = (
            _percentage(completed_criteria, total_criteria) if total_criteria else 0.0
        )

        if domain_scores:
            mean_rank = sum(d.calculated_level.rank for d in domain_scores) / len(domain_scores)
            overall_rank = max(MIN_RANK, min(MAX_RANK, math.floor(mean_rank + 0.5)))
        else:
            overall_rank = MIN_RANK

        return AssessmentProgress(
            total_criteria=total_criteria,
            completed_criteria=completed_criteria,
            completion_percentage=completion_percentage,
            overall_maturity_level=MaturityLevel.from_rank(overall_rank),
        )

    def _validate(
        self,
        criteria_scores: Sequence[CriteriaScore],
        target_level: MaturityLevel | str,
    ) -> MaturityLevel:
        """Check the structural preconditions of a domain calculation.

        Returns:
            The parsed domain target level.

        Raises:
            ScoringValidationError: Listing every problem found.
        """
        errors: list[str] = []
        if not criteria_scores:
            errors.append("No criteria scores provided")

        for index, score in enumerate(criteria_scores, start=1):
            if not isinstance(score, CriteriaScore):
                errors.append(f"Criteria score {index}: expected CriteriaScore, got {type(score).__name__}")

        target: MaturityLevel | None = None
        try:
            target = MaturityLevel.parse(target_level)
        except ValueError:
            errors.append(f"Invalid domain target level {target_level!r}")

        if errors or target is None:
            raise ScoringValidationError(errors)
        return target


def _lower_median_rank(criteria_scores: Sequence[CriteriaScore]) -> int:
    """Return the lower median of the criteria's current level ranks.

    For an even count the lower of the two middle values is used so the
    result is always an achieved level, never an interpolation.
    """
    ranks = sorted(score.current_level.rank for score in criteria_scores)
    return ranks[(len(ranks) - 1) // 2]


def _percentage(part: int, whole: int) -> float:
    """Return part/whole as a percentage rounded half up to one decimal place."""
    exact = Decimal(part) * 100 / Decimal(whole)
    return float(exact.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
