"""
Session recording and after-session trend analysis.
"""

from .recorder import AngleData, JointAngleSample, RepAngleData, SessionRecord, SessionRecorder
from .trend_analyzer import (
    ConsistencyMetrics,
    FatiguePattern,
    RepQualityScore,
    SessionComparison,
    SessionTrendSummary,
    TrendDirection,
    calculate_consistency_scores,
    calculate_fatigue_pattern,
    compare_sessions,
    determine_overall_trend,
    identify_best_worst_reps,
    summarize_session,
)

__all__ = [
    'AngleData',
    'ConsistencyMetrics',
    'FatiguePattern',
    'JointAngleSample',
    'RepAngleData',
    'RepQualityScore',
    'SessionComparison',
    'SessionRecord',
    'SessionRecorder',
    'SessionTrendSummary',
    'TrendDirection',
    'calculate_consistency_scores',
    'calculate_fatigue_pattern',
    'compare_sessions',
    'determine_overall_trend',
    'identify_best_worst_reps',
    'summarize_session',
]
