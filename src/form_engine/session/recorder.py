"""
recorder.py - Aggregates per-frame analysis results into per-rep and
per-session angle statistics for the trend analyzer.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from ..exercise_analysis.base_analyzer import AnalysisResult, ExerciseKind
from ..exercise_analysis.scoring import round_half_up

logger = logging.getLogger(__name__)

# Frame clock used when results carry no timestamp.
FRAME_INTERVAL_MS = 1000.0 / 30.0

# joint type -> (target angle, tolerance)
IDEAL_ANGLES: Dict[str, Tuple[float, float]] = {
    "knee_flexion": (90.0, 15.0),
    "hip_flexion": (90.0, 15.0),
    "torso_angle": (15.0, 10.0),
    "ankle_angle": (25.0, 10.0),
    "elbow_angle": (90.0, 15.0),
    "shoulder_angle": (90.0, 15.0),
    "spine_alignment": (0.0, 5.0),
    "knee_valgus": (0.0, 5.0),
    "elbow_valgus": (0.0, 5.0),
    "arm_symmetry": (100.0, 10.0),
}

JOINT_NAMES = {
    "knee_flexion": "knee bend",
    "hip_flexion": "hip bend",
    "torso_angle": "torso lean",
    "ankle_angle": "ankle angle",
    "elbow_angle": "elbow angle",
    "shoulder_angle": "shoulder angle",
    "spine_alignment": "spine alignment",
    "knee_valgus": "knee alignment",
    "elbow_valgus": "elbow alignment",
    "arm_symmetry": "arm symmetry",
}

# Per exercise: joint type -> raw_angles keys averaged (as magnitudes) into that joint's value.
JOINT_SOURCES: Dict[ExerciseKind, Dict[str, Tuple[str, ...]]] = {
    ExerciseKind.SQUAT: {
        "knee_flexion": ("knee_angle",),
        "hip_flexion": ("hip_angle",),
        "torso_angle": ("torso_angle",),
        "ankle_angle": ("ankle_angle",),
        "knee_valgus": ("left_knee_deviation", "right_knee_deviation"),
    },
    ExerciseKind.PUSHUP: {
        "elbow_angle": ("elbow_angle",),
        "spine_alignment": ("body_alignment_angle",),
        "elbow_valgus": ("left_elbow_valgus", "right_elbow_valgus"),
        "arm_symmetry": ("arm_symmetry_score",),
    },
    ExerciseKind.LUNGE: {
        "knee_flexion": ("front_knee_angle",),
        "hip_flexion": ("front_hip_angle",),
        "torso_angle": ("torso_angle",),
    },
    ExerciseKind.PLANK: {
        "spine_alignment": ("body_alignment_angle",),
    },
    ExerciseKind.DEADLIFT: {
        "hip_flexion": ("hip_hinge_angle",),
        "knee_flexion": ("knee_angle",),
        "spine_alignment": ("spine_angle",),
    },
    ExerciseKind.OVERHEAD: {
        "shoulder_angle": ("shoulder_angle",),
        "arm_symmetry": ("arm_symmetry_score",),
    },
}


@dataclass
class JointAngleSample:
    """One joint's statistics over a single rep."""
    joint_type: str
    value: float
    min: float
    max: float
    deviation: float


@dataclass
class RepAngleData:
    rep_number: int
    timestamp_ms: float
    angles: List[JointAngleSample]
    rep_duration_ms: float
    overall_quality: int

    def angle(self, joint_type: str) -> Optional[JointAngleSample]:
        return next((a for a in self.angles if a.joint_type == joint_type), None)


@dataclass
class AngleData:
    """One joint's statistics over a whole session."""
    joint_type: str
    min: float
    max: float
    average: float
    std_dev: float
    sample_count: int


@dataclass
class SessionRecord:
    id: str
    timestamp_ms: float
    exercise: str
    duration_s: float
    rep_count: int
    overall_score: int
    angles: List[AngleData] = field(default_factory=list)
    invalid_frames: int = 0


def joint_values(raw_angles: Mapping[str, float], sources: Mapping[str, Tuple[str, ...]]) -> Dict[str, float]:
    """Joint values available in one frame's raw angles."""
    values = {}
    for joint_type, keys in sources.items():
        present = [abs(raw_angles[k]) for k in keys if k in raw_angles]
        if present:
            values[joint_type] = sum(present) / len(present)
    return values


class SessionRecorder:
    """
    Collects analysis results frame by frame.

    Frames between two completed reps make up one rep; the frame that
    completes a rep belongs to it. Invalid frames are counted and skipped.
    """

    def __init__(self, exercise, session_id: Optional[str] = None, start_ms: Optional[float] = None):
        self.exercise = ExerciseKind.from_value(exercise)
        self.session_id = session_id or str(uuid.uuid4())
        self.start_ms = start_ms if start_ms is not None else time.time() * 1000
        self.sources = JOINT_SOURCES[self.exercise]
        self.reps: List[RepAngleData] = []
        self.invalid_frames = 0
        self._frame_index = 0
        self._first_ms: Optional[float] = None
        self._last_ms: Optional[float] = None
        self._rep_frames: List[Tuple[float, Dict[str, float], int]] = []
        self._session_values: Dict[str, List[float]] = {}
        self._session_scores: List[int] = []

    def _clock(self, timestamp_ms: Optional[float]) -> float:
        if timestamp_ms is not None:
            return timestamp_ms
        return self.start_ms + self._frame_index * FRAME_INTERVAL_MS

    def record(self, result: AnalysisResult, timestamp_ms: Optional[float] = None) -> Optional[RepAngleData]:
        """
        Add one frame.

        Returns:
            The finished RepAngleData when this frame completed a rep, else None
        """
        now_ms = self._clock(timestamp_ms)
        self._frame_index += 1
        if not result.is_valid:
            self.invalid_frames += 1
            return None

        if self._first_ms is None:
            self._first_ms = now_ms
        self._last_ms = now_ms
        values = joint_values(result.raw_angles, self.sources)
        self._rep_frames.append((now_ms, values, result.score))
        self._session_scores.append(result.score)
        for joint_type, value in values.items():
            self._session_values.setdefault(joint_type, []).append(value)

        if result.rep_completed:
            return self._close_rep()
        return None

    def _close_rep(self) -> RepAngleData:
        frames, self._rep_frames = self._rep_frames, []
        samples = []
        for joint_type in self.sources:
            series = [values[joint_type] for _, values, _ in frames if joint_type in values]
            if not series:
                continue
            average = float(np.mean(series))
            target, _ = IDEAL_ANGLES[joint_type]
            samples.append(JointAngleSample(
                joint_type=joint_type,
                value=round(average, 1),
                min=round(min(series), 1),
                max=round(max(series), 1),
                deviation=round(abs(average - target), 1),
            ))
        scores = [score for _, _, score in frames]
        rep = RepAngleData(
            rep_number=len(self.reps) + 1,
            timestamp_ms=frames[0][0],
            angles=samples,
            rep_duration_ms=frames[-1][0] - frames[0][0],
            overall_quality=round_half_up(sum(scores) / len(scores)),
        )
        self.reps.append(rep)
        logger.debug(f"Recorded rep {rep.rep_number}: quality {rep.overall_quality}")
        return rep

    def finish(self) -> SessionRecord:
        """Aggregate record of everything recorded so far."""
        angles = []
        for joint_type, series in self._session_values.items():
            angles.append(AngleData(
                joint_type=joint_type,
                min=round(min(series), 1),
                max=round(max(series), 1),
                average=round(float(np.mean(series)), 1),
                std_dev=round(float(np.std(series)), 1),
                sample_count=len(series),
            ))
        duration = (self._last_ms - self._first_ms) / 1000.0 if self._first_ms is not None else 0.0
        overall = round_half_up(sum(self._session_scores) / len(self._session_scores)) if self._session_scores else 0
        return SessionRecord(
            id=self.session_id,
            timestamp_ms=self.start_ms,
            exercise=self.exercise.value,
            duration_s=round(duration, 1),
            rep_count=len(self.reps),
            overall_score=overall,
            angles=angles,
            invalid_frames=self.invalid_frames,
        )
