"""
form_engine - Turns per-frame body landmarks into form scores, corrective
feedback, exercise phases and rep counts.
"""
import logging

# exercise_analysis first: the biomechanics modules import its submodules.
from .exercise_analysis import (
    AnalysisResult,
    AnalyzerState,
    ExerciseKind,
    FeedbackItem,
    FeedbackLevel,
    JointRange,
    UserLevel,
    analyze,
    create_initial_state,
    get_analyzer,
)
from .exceptions import ConfigError, FormEngineError, UnknownJointError

__version__ = "0.1.0"

LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'


def configure_logging(level=logging.INFO) -> None:
    """Attach a stream handler to the package logger."""
    logger = logging.getLogger(__name__)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)


__all__ = [
    'AnalysisResult',
    'AnalyzerState',
    'ConfigError',
    'ExerciseKind',
    'FeedbackItem',
    'FeedbackLevel',
    'FormEngineError',
    'JointRange',
    'UnknownJointError',
    'UserLevel',
    'analyze',
    'configure_logging',
    'create_initial_state',
    'get_analyzer',
]
