"""
trend_analyzer.py - After-session analysis of per-rep joint angles.

Runs once a session is over, on the RepAngleData and SessionRecord values
the recorder produced: fatigue (gradual angle drift across reps),
consistency (angle spread across reps), per-rep ranking and a comparison
with the previous session of the same exercise.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..exercise_analysis.scoring import round_half_up
from .recorder import IDEAL_ANGLES, JOINT_NAMES, RepAngleData, SessionRecord

logger = logging.getLogger(__name__)

MIN_REPS_FOR_FATIGUE = 5
# Degrees per rep
FATIGUE_RATE_LOW = 0.5
FATIGUE_RATE_MODERATE = 1.5
FATIGUE_RATE_HIGH = 2.5
FATIGUE_ONSET_CHANGE = 3.0
BASELINE_REPS = 3

JOINT_TREND_BAND = 2.0
SESSION_TREND_BAND = 5.0
COMPARISON_BAND = 5
MAX_SUGGESTIONS = 4
MAX_REP_NOTES = 3


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class FatigueSeverity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class RepRanking(str, Enum):
    BEST = "best"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"
    WORST = "worst"


@dataclass
class FatiguePattern:
    is_detected: bool
    severity: FatigueSeverity
    affected_joints: List[str]
    onset_rep_number: Optional[int]
    degradation_rate: float
    insight: str


@dataclass
class JointConsistency:
    joint_type: str
    score: int
    standard_deviation: float
    trend: TrendDirection


@dataclass
class ConsistencyMetrics:
    overall_score: int
    per_joint_scores: List[JointConsistency]
    most_consistent_joint: Optional[str]
    least_consistent_joint: Optional[str]


@dataclass
class RepQualityScore:
    rep_number: int
    quality_score: int
    ranking: RepRanking
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)


@dataclass
class JointImprovement:
    joint_type: str
    previous_average: float
    current_average: float
    change: float
    direction: TrendDirection


@dataclass
class SessionComparison:
    previous_session_id: str
    previous_session_timestamp: float
    overall_improvement: int
    joint_improvements: List[JointImprovement]
    previous_consistency: int
    current_consistency: int
    consistency_improved: bool
    insight: str


@dataclass
class SessionTrendSummary:
    session_id: str
    exercise: str
    timestamp_ms: float
    total_reps: int
    fatigue_pattern: FatiguePattern
    consistency_metrics: ConsistencyMetrics
    rep_quality_scores: List[RepQualityScore]
    best_rep_number: int
    worst_rep_number: int
    best_rep_score: int
    worst_rep_score: int
    overall_trend: TrendDirection
    session_insight: str
    improvement_suggestions: List[str]
    comparison_to_previous: Optional[SessionComparison] = None


def linear_regression_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against rep numbers 1..n."""
    if len(values) < 2:
        return 0.0
    x = np.arange(1, len(values) + 1, dtype=float)
    slope, _ = np.polyfit(x, np.asarray(values, dtype=float), 1)
    return float(slope)


def find_fatigue_onset_rep(values: Sequence[float], threshold: float = FATIGUE_ONSET_CHANGE) -> int:
    """First rep (1-indexed) deviating ``threshold`` degrees from the first-three-rep baseline."""
    if len(values) < BASELINE_REPS:
        return len(values)
    baseline = sum(values[:BASELINE_REPS]) / BASELINE_REPS
    for i in range(BASELINE_REPS, len(values)):
        if abs(values[i] - baseline) >= threshold:
            return i + 1
    return len(values)


def _joint_series(reps: Sequence[RepAngleData], joint_type: str) -> List[float]:
    series = []
    for rep in reps:
        sample = rep.angle(joint_type)
        if sample is not None:
            series.append(sample.value)
    return series


def _joint_types(reps: Sequence[RepAngleData]) -> List[str]:
    return [sample.joint_type for sample in reps[0].angles] if reps else []


def _fatigue_insight(severity: FatigueSeverity, joints: Sequence[str], onset_rep: int) -> str:
    names = ", ".join(JOINT_NAMES.get(j, j) for j in joints[:2])
    if severity == FatigueSeverity.LOW:
        return f"Mild signs of fatigue in {names} from rep {onset_rep}"
    if severity == FatigueSeverity.MODERATE:
        return f"Your {names} form is gradually breaking down. Consider resting"
    return "Severe fatigue pattern detected. End the set to avoid injury"


def calculate_fatigue_pattern(reps: Sequence[RepAngleData]) -> FatiguePattern:
    """
    Detect gradual form degradation across reps.

    Each joint's per-rep average is fitted against the rep number; a slope of
    at least 0.5 degrees per rep in either direction flags that joint. The
    steepest slope sets the severity and the earliest onset is reported.

    Args:
        reps: per-rep data in rep order

    Returns:
        FatiguePattern; not detected with fewer than five reps
    """
    if len(reps) < MIN_REPS_FOR_FATIGUE:
        return FatiguePattern(False, FatigueSeverity.LOW, [], None, 0.0,
                              "Not enough reps to analyze fatigue")

    degradations = []
    for joint_type in _joint_types(reps):
        # A rep without this joint counts as 0
        values = []
        for rep in reps:
            sample = rep.angle(joint_type)
            values.append(sample.value if sample is not None else 0.0)
        rate = abs(linear_regression_slope(values))
        if rate >= FATIGUE_RATE_LOW:
            degradations.append((joint_type, rate, find_fatigue_onset_rep(values)))

    if not degradations:
        return FatiguePattern(False, FatigueSeverity.LOW, [], None, 0.0,
                              "No signs of fatigue. You held your form well!")

    max_rate = max(rate for _, rate, _ in degradations)
    onset = min(onset for _, _, onset in degradations)
    affected = [joint for joint, _, _ in degradations]
    if max_rate >= FATIGUE_RATE_HIGH:
        severity = FatigueSeverity.HIGH
    elif max_rate >= FATIGUE_RATE_MODERATE:
        severity = FatigueSeverity.MODERATE
    else:
        severity = FatigueSeverity.LOW
    logger.debug(f"Fatigue detected in {affected}: {max_rate:.2f} deg/rep from rep {onset}")
    return FatiguePattern(True, severity, affected, onset, round(max_rate, 2),
                          _fatigue_insight(severity, affected, onset))


def _half_trend(values: Sequence[float], band: float) -> TrendDirection:
    mid = len(values) // 2
    first = sum(values[:mid]) / mid if mid > 0 else 0.0
    second = sum(values[mid:]) / (len(values) - mid) if len(values) - mid > 0 else 0.0
    if abs(second - first) < band:
        return TrendDirection.STABLE
    return TrendDirection.IMPROVING if second > first else TrendDirection.DECLINING


def calculate_consistency_scores(reps: Sequence[RepAngleData]) -> ConsistencyMetrics:
    """Per-joint score = max(0, 100 - 10 * std dev of the per-rep averages); overall is the mean."""
    if not reps:
        return ConsistencyMetrics(0, [], None, None)

    per_joint = []
    for joint_type in _joint_types(reps):
        values = _joint_series(reps, joint_type)
        if not values:
            continue
        std_dev = float(np.std(values))
        score = max(0.0, min(100.0, 100.0 - std_dev * 10))
        per_joint.append(JointConsistency(joint_type, round_half_up(score), round(std_dev, 1),
                                          _half_trend(values, JOINT_TREND_BAND)))

    overall = round_half_up(sum(j.score for j in per_joint) / len(per_joint)) if per_joint else 0
    ranked = sorted(per_joint, key=lambda j: j.score, reverse=True)
    return ConsistencyMetrics(
        overall_score=overall,
        per_joint_scores=per_joint,
        most_consistent_joint=ranked[0].joint_type if ranked else None,
        least_consistent_joint=ranked[-1].joint_type if ranked else None,
    )


def _ranking(percentile: float) -> RepRanking:
    if percentile <= 10:
        return RepRanking.BEST
    if percentile <= 25:
        return RepRanking.GOOD
    if percentile <= 75:
        return RepRanking.AVERAGE
    if percentile <= 90:
        return RepRanking.POOR
    return RepRanking.WORST


def identify_best_worst_reps(reps: Sequence[RepAngleData]) -> List[RepQualityScore]:
    """
    Score each rep by its mean deviation from the ideal joint angles and
    bucket the reps by percentile (top 10% best ... bottom 10% worst).

    Returns:
        One RepQualityScore per rep, in rep order
    """
    scores = []
    for rep in reps:
        deviations, strengths, weaknesses = [], [], []
        for sample in rep.angles:
            ideal = IDEAL_ANGLES.get(sample.joint_type)
            if ideal is None:
                continue
            target, tolerance = ideal
            deviation = abs(sample.value - target)
            deviations.append(deviation)
            name = JOINT_NAMES.get(sample.joint_type, sample.joint_type)
            if deviation <= tolerance:
                strengths.append(f"{name} is within the ideal range")
            elif deviation > tolerance * 2:
                weaknesses.append(f"{name} is outside the ideal range")
        average_deviation = sum(deviations) / len(deviations) if deviations else 0.0
        quality = max(0.0, min(100.0, 100.0 - average_deviation * 2))
        scores.append(RepQualityScore(rep.rep_number, round_half_up(quality), RepRanking.AVERAGE,
                                      strengths[:MAX_REP_NOTES], weaknesses[:MAX_REP_NOTES]))

    ordered = sorted(scores, key=lambda s: s.quality_score, reverse=True)
    for idx, score in enumerate(ordered):
        score.ranking = _ranking(idx / len(ordered) * 100)
    return scores


def _session_consistency(session: SessionRecord) -> float:
    if not session.angles:
        return 0.0
    return sum(max(0.0, 100 - a.std_dev * 10) for a in session.angles) / len(session.angles)


def _comparison_insight(improvement: int, joints: Sequence[JointImprovement]) -> str:
    if improvement > COMPARISON_BAND:
        improved = next((j for j in joints if j.direction == TrendDirection.IMPROVING), None)
        insight = f"{improvement}% better than your previous session!"
        if improved is not None:
            insight += f" Your {JOINT_NAMES.get(improved.joint_type, improved.joint_type)} improved the most."
        return insight
    if improvement < -COMPARISON_BAND:
        return f"{abs(improvement)}% lower than your previous session. Focus on your form."
    return "About the same level as your previous session."


def compare_sessions(current: SessionRecord,
                     previous_sessions: Sequence[SessionRecord]) -> Optional[SessionComparison]:
    """
    Compare ``current`` with the most recent earlier session of the same exercise.

    Args:
        current: the session just finished
        previous_sessions: any sessions; later ones and other exercises are ignored

    Returns:
        SessionComparison, or None when there is no earlier session
    """
    earlier = [s for s in previous_sessions
               if s.exercise == current.exercise and s.timestamp_ms < current.timestamp_ms]
    if not earlier:
        return None
    previous = max(earlier, key=lambda s: s.timestamp_ms)

    previous_by_joint = {a.joint_type: a for a in previous.angles}
    joints = []
    for angle in current.angles:
        before = previous_by_joint.get(angle.joint_type)
        if before is None:
            continue
        change = angle.average - before.average
        if abs(change) < JOINT_TREND_BAND:
            direction = TrendDirection.STABLE
        else:
            direction = TrendDirection.IMPROVING if change > 0 else TrendDirection.DECLINING
        joints.append(JointImprovement(angle.joint_type, round(before.average, 1), round(angle.average, 1),
                                       round(change, 1), direction))

    if previous.overall_score > 0:
        improvement = round_half_up((current.overall_score - previous.overall_score) / previous.overall_score * 100)
    else:
        improvement = 0
    current_consistency = _session_consistency(current)
    previous_consistency = _session_consistency(previous)
    return SessionComparison(
        previous_session_id=previous.id,
        previous_session_timestamp=previous.timestamp_ms,
        overall_improvement=improvement,
        joint_improvements=joints,
        previous_consistency=round_half_up(previous_consistency),
        current_consistency=round_half_up(current_consistency),
        consistency_improved=current_consistency > previous_consistency,
        insight=_comparison_insight(improvement, joints),
    )


def determine_overall_trend(scores: Sequence[RepQualityScore]) -> TrendDirection:
    """First-half vs second-half mean rep quality, with a 5 point dead band."""
    if len(scores) < 2:
        return TrendDirection.STABLE
    return _half_trend([s.quality_score for s in scores], SESSION_TREND_BAND)


def session_insight(exercise: str, fatigue: FatiguePattern, consistency: ConsistencyMetrics,
                    scores: Sequence[RepQualityScore]) -> str:
    average = sum(s.quality_score for s in scores) / len(scores) if scores else 0.0
    insight = f"{exercise.capitalize()} session: "
    if average >= 85:
        insight += "excellent form throughout. "
    elif average >= 70:
        insight += "good form overall. "
    else:
        insight += "your form needs work. "
    if consistency.overall_score >= 80:
        insight += "Your movement was very consistent."
    elif fatigue.is_detected and fatigue.severity != FatigueSeverity.LOW:
        insight += f"Fatigue changed your form after rep {fatigue.onset_rep_number}."
    return insight.strip()


def improvement_suggestions(fatigue: FatiguePattern, consistency: ConsistencyMetrics) -> List[str]:
    suggestions = []
    if fatigue.is_detected:
        if fatigue.severity == FatigueSeverity.HIGH:
            suggestions.append("Rest longer between sets to keep fatigue from building up")
            suggestions.append("Do fewer reps and focus on form")
        elif fatigue.severity == FatigueSeverity.MODERATE:
            suggestions.append("Try longer rests between sets to delay fatigue")
    if consistency.least_consistent_joint:
        name = JOINT_NAMES.get(consistency.least_consistent_joint, consistency.least_consistent_joint)
        suggestions.append(f"Practice in front of a mirror to keep your {name} consistent")
    if consistency.overall_score < 60:
        suggestions.append("Slow down and check your position on every rep")
    if len(suggestions) < 2:
        suggestions.append("Add core strengthening work to improve overall stability")
    return suggestions[:MAX_SUGGESTIONS]


def summarize_session(session: SessionRecord, reps: Sequence[RepAngleData],
                      previous_sessions: Sequence[SessionRecord] = ()) -> Optional[SessionTrendSummary]:
    """
    Full trend summary for one finished session.

    Args:
        session: aggregate record of the session
        reps: per-rep data of the same session
        previous_sessions: earlier sessions for the comparison

    Returns:
        SessionTrendSummary, or None when the session has no reps
    """
    if not reps:
        return None

    fatigue = calculate_fatigue_pattern(reps)
    consistency = calculate_consistency_scores(reps)
    scores = identify_best_worst_reps(reps)
    ordered = sorted(scores, key=lambda s: s.quality_score, reverse=True)
    best, worst = ordered[0], ordered[-1]
    summary = SessionTrendSummary(
        session_id=session.id,
        exercise=session.exercise,
        timestamp_ms=session.timestamp_ms,
        total_reps=session.rep_count,
        fatigue_pattern=fatigue,
        consistency_metrics=consistency,
        rep_quality_scores=scores,
        best_rep_number=best.rep_number,
        worst_rep_number=worst.rep_number,
        best_rep_score=best.quality_score,
        worst_rep_score=worst.quality_score,
        overall_trend=determine_overall_trend(scores),
        session_insight=session_insight(session.exercise, fatigue, consistency, scores),
        improvement_suggestions=improvement_suggestions(fatigue, consistency),
        comparison_to_previous=compare_sessions(session, previous_sessions),
    )
    logger.info(f"Session {session.id}: {session.rep_count} reps, trend {summary.overall_trend.value}")
    return summary


def summary_to_dict(summary: SessionTrendSummary) -> Dict[str, object]:
    """JSON-ready view of a summary (enums as their values)."""
    def convert(value):
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if hasattr(value, "__dataclass_fields__"):
            return {name: convert(getattr(value, name)) for name in value.__dataclass_fields__}
        return value
    return convert(summary)
