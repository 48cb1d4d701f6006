"""
The form-engine replay command.
"""
import json
import logging

import pytest

from conftest import squat_pose, squat_rep_angles
from form_engine.main import load_frames, main


def recorded_frames(reps=1):
    frames = []
    for angle in squat_rep_angles(reps=reps):
        frames.append([[kp.x, kp.y, kp.z, kp.score] for kp in squat_pose(angle)])
    return frames


@pytest.fixture(autouse=True)
def package_logger():
    logger = logging.getLogger("form_engine")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)


class TestLoadFrames:
    def test_json_list(self, tmp_path):
        path = tmp_path / "frames.json"
        path.write_text(json.dumps(recorded_frames()))
        frames = load_frames(str(path))
        assert len(frames) == len(squat_rep_angles())
        assert frames[0][1] is None

    def test_json_with_timestamps(self, tmp_path):
        path = tmp_path / "frames.json"
        entries = [{"keypoints": frame, "timestamp_ms": i * 33.0} for i, frame in enumerate(recorded_frames())]
        path.write_text(json.dumps({"frames": entries}))
        frames = load_frames(str(path))
        assert frames[2][1] == 66.0

    def test_jsonl(self, tmp_path):
        path = tmp_path / "frames.jsonl"
        path.write_text("\n".join(json.dumps(frame) for frame in recorded_frames()) + "\n")
        assert len(load_frames(str(path))) == len(squat_rep_angles())


class TestMain:
    def test_replay(self, tmp_path, capsys):
        path = tmp_path / "frames.json"
        path.write_text(json.dumps(recorded_frames(reps=2)))
        assert main(["replay", str(path), "--smoothing"]) == 0
        out = capsys.readouterr().out
        assert "Rep 1: score" in out
        assert "Rep 2: score" in out
        assert "Reps: 2" in out

    def test_json_output(self, tmp_path, capsys):
        path = tmp_path / "frames.json"
        path.write_text(json.dumps(recorded_frames(reps=2)))
        assert main(["replay", str(path), "--smoothing", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["exercise"] == "squat"
        assert data["frames"] == len(squat_rep_angles(reps=2))
        assert [rep["rep"] for rep in data["reps"]] == [1, 2]
        assert data["summary"]["total_reps"] == 2

    def test_no_reps(self, tmp_path, capsys):
        path = tmp_path / "frames.json"
        path.write_text(json.dumps(recorded_frames()[:3]))
        assert main(["replay", str(path)]) == 0
        assert "No completed reps." in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        assert main(["replay", str(tmp_path / "nope.json")]) == 1

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "frames.json"
        path.write_text("{not json")
        assert main(["replay", str(path)]) == 1

    def test_unknown_exercise_is_rejected(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["replay", str(tmp_path / "frames.json"), "--exercise", "burpee"])
