"""
Exercise analysis package for form validation and movement analysis.
"""

from .base_analyzer import (
    ANALYZER_REGISTRY,
    AnalysisResult,
    AnalyzerState,
    BaseExerciseAnalyzer,
    ExerciseKind,
    ItemScores,
    analyze,
    create_initial_state,
    get_analyzer,
    register_analyzer,
)
from .config_utils import JointRange, UserLevel
from .scoring import Correction, FeedbackItem, FeedbackLevel

# Importing the analyzers registers them
from .squat_analyzer import SquatAnalyzer
from .pushup_analyzer import PushupAnalyzer
from .lunge_analyzer import LungeAnalyzer
from .plank_analyzer import PlankAnalyzer
from .deadlift_analyzer import DeadliftAnalyzer
from .overhead_analyzer import OverheadAnalyzer

__all__ = [
    'ANALYZER_REGISTRY',
    'AnalysisResult',
    'AnalyzerState',
    'BaseExerciseAnalyzer',
    'Correction',
    'DeadliftAnalyzer',
    'ExerciseKind',
    'FeedbackItem',
    'FeedbackLevel',
    'ItemScores',
    'JointRange',
    'LungeAnalyzer',
    'OverheadAnalyzer',
    'PlankAnalyzer',
    'PushupAnalyzer',
    'SquatAnalyzer',
    'UserLevel',
    'analyze',
    'create_initial_state',
    'get_analyzer',
    'register_analyzer',
]
