"""
pose_utils.py - Shared geometry utilities for pose analysis.

All functions are pure and total: degenerate geometry (zero-length vectors,
coincident points) yields 0 instead of NaN so that downstream scoring never has
to branch on non-finite values.
"""
import math
from typing import Iterable, List, Optional, Sequence

import numpy as np

from ..pose_detection.landmarks import Keypoint, Point3D

_EPSILON = 1e-9
# Projected shoulder/hip width below which transverse rotation is unmeasurable.
ROTATION_MIN_WIDTH = 0.01

VERTICAL_UP = np.array([0.0, -1.0, 0.0])
HORIZONTAL_RIGHT = np.array([1.0, 0.0, 0.0])


# --- Vector primitives ---
def create_vector(start: Point3D, end: Point3D) -> np.ndarray:
    """Vector from ``start`` to ``end``."""
    return np.array([end[0] - start[0], end[1] - start[1], end[2] - start[2]], dtype=float)


def magnitude(v: np.ndarray) -> float:
    return float(np.linalg.norm(v))


def normalize(v: np.ndarray) -> np.ndarray:
    mag = magnitude(v)
    if mag < _EPSILON:
        return np.zeros(3)
    return v / mag


def dot(v1: np.ndarray, v2: np.ndarray) -> float:
    return float(np.dot(v1, v2))


def cross(v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
    return np.cross(v1, v2)


def _angle_between(v1: np.ndarray, v2: np.ndarray) -> float:
    norm_1 = magnitude(v1)
    norm_2 = magnitude(v2)
    if norm_1 < _EPSILON or norm_2 < _EPSILON:
        return 0.0
    cosine_angle = np.clip(np.dot(v1, v2) / (norm_1 * norm_2), -1.0, 1.0)
    angle = float(np.degrees(np.arccos(cosine_angle)))
    return angle if math.isfinite(angle) else 0.0


# --- Angles ---
def calculate_angle(a: Point3D, b: Point3D, c: Point3D) -> float:
    """
    Angle at vertex ``b`` between vectors b->a and b->c, in degrees [0, 180].

    Point ordering convention:
    - a: First point (e.g., hip for knee angle)
    - b: Vertex (e.g., knee)
    - c: Last point (e.g., ankle)

    Returns 0.0 if either vector has zero length.
    """
    return _angle_between(create_vector(b, a), create_vector(b, c))


def angle_2d(a: Point3D, b: Point3D, c: Point3D) -> float:
    """Same as calculate_angle but ignoring depth."""
    return calculate_angle(project_to_xy(a), project_to_xy(b), project_to_xy(c))


def angle_with_vertical(start: Point3D, end: Point3D) -> float:
    """
    Angle between segment start->end and the screen's upward vertical, [0, 180].

    Screen y grows downward, so an upright torso (hip -> shoulder) reads 0.
    """
    return _angle_between(create_vector(start, end), VERTICAL_UP)


def angle_with_horizontal(start: Point3D, end: Point3D) -> float:
    """
    Signed angle of the line through start and end against the horizontal, [-90, 90].

    Positive when the line rises (towards smaller screen y) as x increases.
    Depth is ignored.
    """
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    if abs(dx) < _EPSILON and abs(dy) < _EPSILON:
        return 0.0
    angle = math.degrees(math.atan2(-dy, dx))
    if angle > 90.0:
        angle -= 180.0
    elif angle < -90.0:
        angle += 180.0
    return angle


def angle_between_segments(p1: Point3D, p2: Point3D, p3: Point3D, p4: Point3D) -> float:
    """Angle between segment p1->p2 and segment p3->p4, [0, 180]."""
    return _angle_between(create_vector(p1, p2), create_vector(p3, p4))


# --- Distances & points ---
def distance_3d(p1: Point3D, p2: Point3D) -> float:
    return magnitude(create_vector(p1, p2))


def distance_2d(p1: Point3D, p2: Point3D) -> float:
    """Euclidean distance in the image plane."""
    return float(math.hypot(p2[0] - p1[0], p2[1] - p1[1]))


def midpoint(p1: Point3D, p2: Point3D) -> Point3D:
    return Point3D((p1[0] + p2[0]) / 2, (p1[1] + p2[1]) / 2, (p1[2] + p2[2]) / 2)


def centroid(points: Sequence[Point3D]) -> Point3D:
    if not points:
        return Point3D(0.0, 0.0, 0.0)
    return Point3D.from_array(np.mean(np.array(points, dtype=float), axis=0))


def weighted_centroid(points: Sequence[Point3D], weights: Sequence[float]) -> Point3D:
    total = float(sum(weights))
    if total <= 0:
        return centroid(points)
    arr = np.array(points, dtype=float)
    return Point3D.from_array(np.average(arr, axis=0, weights=np.array(weights, dtype=float)))


def interpolate(start: Point3D, end: Point3D, ratio: float) -> Point3D:
    """Point ``ratio`` of the way from start to end."""
    s = np.array(start, dtype=float)
    e = np.array(end, dtype=float)
    return Point3D.from_array(s + (e - s) * ratio)


def estimate_mid_spine(shoulder_center: Point3D, hip_center: Point3D, ratio: float = 0.4) -> Point3D:
    """Mid-spine estimate, 40% of the way from the shoulders towards the hips."""
    return interpolate(shoulder_center, hip_center, ratio)


def project_to_xy(p: Point3D) -> Point3D:
    return Point3D(p[0], p[1], 0.0)


def project_to_xz(p: Point3D) -> Point3D:
    """Top-down (transverse plane) projection."""
    return Point3D(p[0], 0.0, p[2])


def project_to_yz(p: Point3D) -> Point3D:
    return Point3D(0.0, p[1], p[2])


def point_to_line_distance(point: Point3D, line_start: Point3D, line_end: Point3D) -> float:
    """
    Perpendicular distance from ``point`` to the line through line_start and line_end.

    Falls back to the direct distance to line_start when the line is degenerate.
    """
    line_vec = create_vector(line_start, line_end)
    line_len = magnitude(line_vec)
    if line_len < _EPSILON:
        return distance_3d(point, line_start)
    point_vec = create_vector(line_start, point)
    return magnitude(cross(line_vec, point_vec)) / line_len


def calculate_torso_rotation(left_shoulder: Point3D, right_shoulder: Point3D,
                             left_hip: Point3D, right_hip: Point3D) -> float:
    """
    Transverse-plane rotation between the shoulder line and the hip line.

    Both lines are projected onto the top-down plane. When either projected
    width is below ROTATION_MIN_WIDTH (user square to the camera, or no depth
    signal) rotation cannot be measured and 0 is returned.
    """
    ls, rs = project_to_xz(left_shoulder), project_to_xz(right_shoulder)
    lh, rh = project_to_xz(left_hip), project_to_xz(right_hip)
    if distance_3d(ls, rs) < ROTATION_MIN_WIDTH or distance_3d(lh, rh) < ROTATION_MIN_WIDTH:
        return 0.0
    return round(angle_between_segments(ls, rs, lh, rh), 1)


# --- Scores ---
def symmetry_score(left_value: float, right_value: float) -> int:
    """Left/right symmetry, 100 when equal, 0 at a 30 degree difference or more."""
    diff = abs(left_value - right_value)
    return int(round(max(0.0, 100.0 - (diff / 30.0) * 100.0)))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_angle(angle: float) -> float:
    """Keep an angle inside [0, 180]; non-finite input reads as 0."""
    if not math.isfinite(angle):
        return 0.0
    return clamp(angle, 0.0, 180.0)


# --- Keypoint helpers ---
def is_valid_keypoint(kp: Optional[Keypoint], min_score: float = 0.5) -> bool:
    """A keypoint is usable when present, finite and scored at or above ``min_score``."""
    if kp is None or not kp.is_finite():
        return False
    score = kp.score if kp.score is not None else 0.0
    return score >= min_score


def keypoint_to_point3d(kp: Keypoint) -> Point3D:
    """Drop the score; a missing z becomes 0 (2D fallback)."""
    return Point3D(float(kp.x), float(kp.y), float(kp.z) if kp.z is not None else 0.0)


def check_landmark_visibility(keypoints: Sequence[Keypoint], indices: Iterable[int],
                              min_score: float = 0.5) -> bool:
    """Check that all indexed keypoints exist and are valid."""
    for idx in indices:
        if idx >= len(keypoints) or not is_valid_keypoint(keypoints[idx], min_score):
            return False
    return True


def missing_landmarks(keypoints: Sequence[Keypoint], indices: Iterable[int],
                      min_score: float = 0.5) -> List[int]:
    return [idx for idx in indices
            if idx >= len(keypoints) or not is_valid_keypoint(keypoints[idx], min_score)]


def has_3d_coordinates(points: Sequence[Point3D], min_spread: float = 1e-6) -> bool:
    """True when the points carry a real depth signal (some z differs from 0)."""
    return any(abs(p[2]) > min_spread for p in points)


def round1(value: float) -> float:
    return round(float(value), 1)
