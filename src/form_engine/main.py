import argparse
import json
import logging
import os
import sys
from typing import Any, Iterator, List, Optional, Tuple

from . import configure_logging
from .exercise_analysis.base_analyzer import ExerciseKind
from .exercise_analysis.config_utils import UserLevel
from .session.trend_analyzer import SessionTrendSummary, summary_to_dict
from .trainer import FormTrainer

logger = logging.getLogger(__name__)

Frame = Tuple[Any, Optional[float]]


def _frame_entry(entry: Any) -> Frame:
    """A recorded frame is either the landmarks themselves or {"keypoints": ..., "timestamp_ms": ...}."""
    if isinstance(entry, dict) and "keypoints" in entry:
        return entry["keypoints"], entry.get("timestamp_ms")
    return entry, None


def load_frames(path: str) -> List[Frame]:
    """
    Read recorded frames from a JSON or JSONL file.

    JSON files hold a list of frames or {"frames": [...]}; JSONL files hold
    one frame per line.
    """
    with open(path, 'r') as f:
        if path.endswith(".jsonl"):
            entries = [json.loads(line) for line in f if line.strip()]
        else:
            data = json.load(f)
            entries = data["frames"] if isinstance(data, dict) else data
    return [_frame_entry(entry) for entry in entries]


def replay(trainer: FormTrainer, frames: List[Frame]) -> Iterator[dict]:
    """Feed frames through the trainer, yielding one line of output per completed rep."""
    for index, (keypoints, timestamp_ms) in enumerate(frames):
        result = trainer.process_keypoints(keypoints, timestamp_ms)
        if result.rep_completed:
            yield {
                "rep": result.rep_count,
                "frame": index,
                "score": result.score,
                "phase": result.phase.value,
                "issues": sorted(name for name, item in result.feedbacks.items() if item.level.value != "good"),
            }


def print_summary(summary: Optional[SessionTrendSummary]) -> None:
    if summary is None:
        print("No completed reps.")
        return
    print(f"Reps: {summary.total_reps}  best: #{summary.best_rep_number} ({summary.best_rep_score})"
          f"  worst: #{summary.worst_rep_number} ({summary.worst_rep_score})")
    print(f"Consistency: {summary.consistency_metrics.overall_score}  trend: {summary.overall_trend.value}")
    print(f"Fatigue: {summary.fatigue_pattern.insight}")
    print(summary.session_insight)
    for suggestion in summary.improvement_suggestions:
        print(f"- {suggestion}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="form-engine", description="Exercise form analysis engine")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    replay_parser = subparsers.add_parser("replay", help="Replay recorded keypoints through the analyzer")
    replay_parser.add_argument("file", help="JSON or JSONL file of recorded frames")
    replay_parser.add_argument(
        "--exercise",
        type=str,
        default="squat",
        choices=[kind.value for kind in ExerciseKind],
        help="Type of exercise to analyze"
    )
    replay_parser.add_argument(
        "--user-level",
        type=str,
        default="intermediate",
        choices=[level.value for level in UserLevel],
        help="User level (beginner/intermediate/advanced)"
    )
    replay_parser.add_argument(
        "--smoothing",
        action="store_true",
        help="Smooth angles across frames"
    )
    replay_parser.add_argument(
        "--json",
        action="store_true",
        help="Print reps and the summary as JSON"
    )
    replay_parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the form-engine command."""
    args = build_parser().parse_args(argv)
    configure_logging(getattr(logging, args.log_level))

    if not os.path.isfile(args.file):
        logger.error(f"Keypoint file not found: {args.file}")
        return 1
    try:
        frames = load_frames(args.file)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.error(f"Could not read {args.file}: {e}")
        return 1

    trainer = FormTrainer(args.exercise, args.user_level, smoothing={"enabled": args.smoothing})
    reps = []
    for rep in replay(trainer, frames):
        reps.append(rep)
        if not args.json:
            issues = ", ".join(rep["issues"]) or "none"
            print(f"Rep {rep['rep']}: score {rep['score']} (issues: {issues})")
    summary = trainer.summary()

    if args.json:
        output = {
            "exercise": trainer.exercise.value,
            "frames": len(frames),
            "reps": reps,
            "summary": summary_to_dict(summary) if summary is not None else None,
        }
        print(json.dumps(output, indent=2))
    else:
        print_summary(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
