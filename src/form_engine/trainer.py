import logging
from typing import Optional, Sequence

from .exercise_analysis.base_analyzer import (AnalysisResult, AnalyzerState, ExerciseKind, create_initial_state,
                                              get_analyzer)
from .exercise_analysis.config_utils import UserLevel
from .pose_detection.landmarks import parse_keypoints
from .session.recorder import RepAngleData, SessionRecord, SessionRecorder
from .session.trend_analyzer import SessionTrendSummary, summarize_session

logger = logging.getLogger(__name__)


class FormTrainer:
    """Runs one exercise session: feeds frames through the analyzer and records reps."""

    def __init__(self, exercise_type="squat", user_level=UserLevel.INTERMEDIATE,
                 smoothing=None, depth_config=None, profile=None, session_id: Optional[str] = None):
        """
        Initialize the trainer.

        Args:
            exercise_type: ExerciseKind or its name
            user_level: UserLevel or its name
            smoothing: SmoothingConfig or partial dict
            depth_config: DepthNormalizationConfig or partial dict, None to disable
            profile: calibrated joint ranges
            session_id: id for the session record, random when omitted
        """
        self.exercise = ExerciseKind.from_value(exercise_type)
        self.user_level = UserLevel.from_value(user_level)
        self.smoothing = smoothing
        self.depth_config = depth_config
        self.profile = profile
        self.session_id = session_id
        self.analyzer = get_analyzer(self.exercise, self.user_level, profile)

        self.missing_landmarks_counter = 0
        self.missing_landmarks_threshold = 30
        self.reset()

    def reset(self) -> None:
        """Start a fresh session with the same settings."""
        self.state: AnalyzerState = create_initial_state(self.exercise, self.user_level, self.smoothing,
                                                         self.depth_config, self.profile)
        self.recorder = SessionRecorder(self.exercise, self.session_id)
        self.missing_landmarks_counter = 0

    @property
    def rep_count(self) -> int:
        return self.state.rep_count

    @property
    def reps(self) -> Sequence[RepAngleData]:
        return self.recorder.reps

    def process_keypoints(self, keypoints, timestamp_ms: Optional[float] = None) -> AnalysisResult:
        """
        Analyze one frame of landmarks.

        Args:
            keypoints: 33 landmarks as Keypoints, dicts or [x, y, z, score] rows
            timestamp_ms: frame time

        Returns:
            AnalysisResult for the frame
        """
        result, self.state = self.analyzer.analyze(parse_keypoints(keypoints), self.state, timestamp_ms)

        if not result.is_valid:
            self.missing_landmarks_counter += 1
            if self.missing_landmarks_counter == self.missing_landmarks_threshold:
                logger.warning(f"No usable pose for {self.missing_landmarks_counter} frames, "
                               f"check that the whole body is in view")
        else:
            self.missing_landmarks_counter = 0

        rep = self.recorder.record(result, timestamp_ms)
        if rep is not None:
            logger.info(f"Rep {rep.rep_number}: quality {rep.overall_quality}")
        return result

    def session_record(self) -> SessionRecord:
        return self.recorder.finish()

    def summary(self, previous_sessions: Sequence[SessionRecord] = ()) -> Optional[SessionTrendSummary]:
        """Trend summary of the session so far; None before the first rep."""
        record = self.recorder.finish()
        if record.invalid_frames:
            logger.warning(f"{record.invalid_frames} frames had no usable pose and were skipped")
        return summarize_session(record, self.recorder.reps, previous_sessions)
