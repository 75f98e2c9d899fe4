"""The five ordered maturity levels used throughout the assessment framework.

Levels:
    basic      (1) — ad-hoc, undocumented practice
    reactive   (2) — practice triggered by incidents
    compliant  (3) — practice meets the documented standard
    proactive  (4) — practice anticipates risk
    resilient  (5) — practice adapts and recovers under stress

Comparisons always go through ``rank``; the string value is the wire format.
"""

from enum import Enum


class MaturityLevel(str, Enum):
    """Ordered maturity level. Serialises as its lower-case name."""

    BASIC = "basic"
    REACTIVE = "reactive"
    COMPLIANT = "compliant"
    PROACTIVE = "proactive"
    RESILIENT = "resilient"

    @property
    def rank(self) -> int:
        """Ordinal value 1-5 used for comparisons and normalisation."""
        return _RANKS[self]

    @property
    def label(self) -> str:
        """Display label for reports."""
        return _LABELS[self]

    def step_down(self, steps: int = 1) -> "MaturityLevel":
        """Return the level ``steps`` ordinal positions lower, floored at basic.

        Args:
            steps: Number of ordinal steps to descend.

        Returns:
            The lower MaturityLevel (never below BASIC).
        """
        return MaturityLevel.from_rank(max(MIN_RANK, self.rank - steps))

    @classmethod
    def from_rank(cls, rank: int) -> "MaturityLevel":
        """Look up a level by its ordinal value.

        Args:
            rank: Integer in range 1-5.

        Returns:
            The matching MaturityLevel.

        Raises:
            ValueError: If rank is outside 1-5.
        """
        for level, level_rank in _RANKS.items():
            if level_rank == rank:
                return level
        raise ValueError(f"Maturity rank must be between {MIN_RANK} and {MAX_RANK}, got {rank!r}")

    @classmethod
    def parse(cls, value: object) -> "MaturityLevel":
        """Coerce a level name, level instance, or ordinal value into a MaturityLevel.

        Args:
            value: A MaturityLevel, a case-insensitive level name, or a rank 1-5
                given as an int or a digit string.

        Returns:
            The matching MaturityLevel.

        Raises:
            ValueError: If the value does not name one of the five levels.
        """
        if isinstance(value, MaturityLevel):
            return value
        if isinstance(value, bool):
            raise ValueError(f"{value!r} is not a valid maturity level")
        if isinstance(value, int):
            return cls.from_rank(value)
        if isinstance(value, str):
            normalised = value.strip().lower().replace("-", "")
            if normalised.isdigit():
                return cls.from_rank(int(normalised))
            for level in cls:
                if level.value == normalised:
                    return level
        raise ValueError(f"{value!r} is not a valid maturity level")


_RANKS: dict[MaturityLevel, int] = {
    MaturityLevel.BASIC: 1,
    MaturityLevel.REACTIVE: 2,
    MaturityLevel.COMPLIANT: 3,
    MaturityLevel.PROACTIVE: 4,
    MaturityLevel.RESILIENT: 5,
}

_LABELS: dict[MaturityLevel, str] = {
    MaturityLevel.BASIC: "Basic",
    MaturityLevel.REACTIVE: "Reactive",
    MaturityLevel.COMPLIANT: "Compliant",
    MaturityLevel.PROACTIVE: "Pro-active",
    MaturityLevel.RESILIENT: "Resilient",
}

MIN_RANK: int = 1
MAX_RANK: int = 5
