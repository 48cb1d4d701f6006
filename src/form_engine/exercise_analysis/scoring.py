"""
scoring.py - Threshold scorer and feedback items.

A measured value is compared with an ideal range and a wider acceptable range:

- inside ideal:        good, 100
- inside acceptable:   warning, 90 down to 60 by distance from the ideal edge
- outside acceptable:  error, 60 minus 2 points per unit beyond, floored at 0
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from ..exceptions import ConfigError


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive scores (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


class FeedbackLevel(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    ERROR = "error"


class Correction(str, Enum):
    UP = "up"
    DOWN = "down"
    FORWARD = "forward"
    BACKWARD = "backward"
    INWARD = "inward"
    OUTWARD = "outward"
    LEFT = "left"
    RIGHT = "right"
    RAISE = "raise"
    LOWER = "lower"
    STRAIGHTEN = "straighten"
    NONE = "none"


@dataclass(frozen=True)
class Range:
    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max

    def contains_range(self, other: "Range") -> bool:
        return self.min <= other.min and other.max <= self.max

    @property
    def centre(self) -> float:
        return (self.min + self.max) / 2

    def scaled(self, factor: float) -> "Range":
        """Scale the half-width about the centre."""
        half = (self.max - self.min) / 2 * factor
        return Range(self.centre - half, self.centre + half)

    def union(self, other: "Range") -> "Range":
        return Range(min(self.min, other.min), max(self.max, other.max))

    def to_dict(self) -> Dict[str, float]:
        return {"min": self.min, "max": self.max}

    @classmethod
    def from_value(cls, raw) -> "Range":
        if isinstance(raw, Range):
            return raw
        if isinstance(raw, Mapping):
            return cls(float(raw["min"]), float(raw["max"]))
        low, high = raw
        return cls(float(low), float(high))


ZERO_RANGE = Range(0.0, 0.0)


@dataclass(frozen=True)
class AngleThreshold:
    """Ideal and acceptable range for one measurement. acceptable always contains ideal."""
    ideal: Range
    acceptable: Range

    def __post_init__(self):
        if self.ideal.min > self.ideal.max or self.acceptable.min > self.acceptable.max:
            raise ConfigError(f"Inverted range in threshold {self}")
        if not self.acceptable.contains_range(self.ideal):
            raise ConfigError(f"Acceptable range {self.acceptable} does not contain ideal range {self.ideal}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AngleThreshold":
        try:
            ideal = Range.from_value(data["ideal"])
            acceptable = Range.from_value(data["acceptable"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Malformed threshold {data!r}: {e}") from e
        return cls(ideal, acceptable)

    def scaled(self, ideal_factor: float, acceptable_factor: Optional[float] = None) -> "AngleThreshold":
        """
        Scale both ranges about their centres. The acceptable range is widened
        where needed so that it keeps containing the scaled ideal range.
        """
        if acceptable_factor is None:
            acceptable_factor = ideal_factor
        ideal = self.ideal.scaled(ideal_factor)
        acceptable = self.acceptable.scaled(acceptable_factor).union(ideal)
        return AngleThreshold(ideal, acceptable)

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {"ideal": self.ideal.to_dict(), "acceptable": self.acceptable.to_dict()}


@dataclass
class FeedbackItem:
    level: FeedbackLevel
    message: str
    correction: Correction
    value: float
    ideal_range: Range
    acceptable_range: Range
    score: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "correction": self.correction.value,
            "value": self.value,
            "ideal_range": self.ideal_range.to_dict(),
            "acceptable_range": self.acceptable_range.to_dict(),
            "score": self.score,
        }


def score_value(value: float, threshold: AngleThreshold) -> int:
    """0-100 item score for ``value`` against ``threshold``."""
    ideal, acceptable = threshold.ideal, threshold.acceptable
    if ideal.contains(value):
        return 100
    if acceptable.contains(value):
        if value < ideal.min:
            distance = ideal.min - value
            max_distance = ideal.min - acceptable.min
        else:
            distance = value - ideal.max
            max_distance = acceptable.max - ideal.max
        ratio = distance / max_distance if max_distance > 0 else 0.0
        return round_half_up(90 - ratio * 30)
    if value < acceptable.min:
        distance = acceptable.min - value
    else:
        distance = value - acceptable.max
    return round_half_up(max(0.0, 60 - distance * 2))


def classify(value: float, threshold: AngleThreshold) -> Tuple[FeedbackLevel, Optional[str]]:
    """Level plus which side of the ideal range the value fell on ("below"/"above")."""
    if threshold.ideal.contains(value):
        return FeedbackLevel.GOOD, None
    side = "below" if value < threshold.ideal.min else "above"
    if threshold.acceptable.contains(value):
        return FeedbackLevel.WARNING, side
    return FeedbackLevel.ERROR, side


def evaluate(value: float, threshold: AngleThreshold, messages: Mapping[str, str],
             corrections: Sequence = (Correction.NONE, Correction.NONE),
             precision: int = 1) -> FeedbackItem:
    """
    Build a FeedbackItem for one measurement.

    Args:
        value: the measured quantity
        threshold: ideal/acceptable ranges
        messages: templates keyed "good", "warning_below", "warning_above",
            "error_below", "error_above"; a missing key falls back to the
            level-only key ("warning"/"error") and then to "good"
        corrections: correction hint when below / above the ideal range
        precision: decimals kept on the reported value

    Returns:
        FeedbackItem with its item score filled in
    """
    level, side = classify(value, threshold)
    if side is None:
        message = messages.get("good", "")
        correction = Correction.NONE
    else:
        key = f"{level.value}_{side}"
        message = messages.get(key) or messages.get(level.value) or messages.get("good", "")
        correction = Correction(corrections[0] if side == "below" else corrections[1])
    return FeedbackItem(
        level=level,
        message=message,
        correction=correction,
        value=round(float(value), precision),
        ideal_range=threshold.ideal,
        acceptable_range=threshold.acceptable,
        score=score_value(value, threshold),
    )


def make_feedback(level: FeedbackLevel, message: str, value: float, threshold: AngleThreshold,
                  correction: Correction = Correction.NONE, score: Optional[int] = None) -> FeedbackItem:
    """FeedbackItem with an explicit level, for overrides such as heel rise."""
    return FeedbackItem(
        level=level,
        message=message,
        correction=correction,
        value=round(float(value), 1),
        ideal_range=threshold.ideal,
        acceptable_range=threshold.acceptable,
        score=score_value(value, threshold) if score is None else score,
    )


def invalid_feedback(message: str) -> FeedbackItem:
    return FeedbackItem(
        level=FeedbackLevel.WARNING,
        message=message,
        correction=Correction.NONE,
        value=0.0,
        ideal_range=ZERO_RANGE,
        acceptable_range=ZERO_RANGE,
        score=0,
    )


def weighted_score(item_scores: Mapping[str, float], weights: Mapping[str, float]) -> int:
    """
    Fold item scores into one 0-100 score.

    Weighted items without a score (capability absent or invalid) count as 100.
    """
    total = 0.0
    for name, weight in weights.items():
        total += item_scores.get(name, 100.0) * weight
    return clamp_score(total)


def average_score(scores: Sequence[float]) -> float:
    return sum(scores) / len(scores) if scores else 100.0
