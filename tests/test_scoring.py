"""
Threshold scorer, feedback items and weighted composition.
"""
import pytest

from form_engine.exceptions import ConfigError
from form_engine.exercise_analysis.scoring import (AngleThreshold, Correction, FeedbackLevel, Range, classify,
                                                   evaluate, invalid_feedback, round_half_up, score_value,
                                                   weighted_score)

KNEE = AngleThreshold(Range(80, 100), Range(70, 110))
MESSAGES = {
    "good": "Great knee angle",
    "warning_above": "Sit a little deeper",
    "error_above": "You need to squat deeper",
    "warning": "Check your knees",
}


class TestScoreValue:
    @pytest.mark.parametrize("value,expected", [
        (80, 100),
        (90, 100),
        (100, 100),
        (105, 75),
        (110, 60),
        (75, 75),
        (70, 60),
        (115, 50),
        (60, 40),
        (200, 0),
    ])
    def test_bands(self, value, expected):
        """100 inside ideal, 90 -> 60 across the warning band, 2 points per unit beyond."""
        assert score_value(value, KNEE) == expected

    def test_shared_lower_edge(self):
        threshold = AngleThreshold(Range(0, 10), Range(0, 20))
        assert score_value(0, threshold) == 100
        assert score_value(15, threshold) == 75

    def test_half_rounds_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.49) == 2


class TestClassify:
    def test_levels_and_sides(self):
        assert classify(90, KNEE) == (FeedbackLevel.GOOD, None)
        assert classify(75, KNEE) == (FeedbackLevel.WARNING, "below")
        assert classify(120, KNEE) == (FeedbackLevel.ERROR, "above")


class TestEvaluate:
    def test_good(self):
        item = evaluate(90.04, KNEE, MESSAGES, ("up", "down"))
        assert item.level == FeedbackLevel.GOOD
        assert item.message == "Great knee angle"
        assert item.correction == Correction.NONE
        assert item.value == 90.0
        assert item.score == 100

    def test_warning_above_uses_above_correction(self):
        item = evaluate(105, KNEE, MESSAGES, ("up", "down"))
        assert item.level == FeedbackLevel.WARNING
        assert item.message == "Sit a little deeper"
        assert item.correction == Correction.DOWN
        assert item.score == 75

    def test_missing_message_falls_back_to_level_key(self):
        item = evaluate(75, KNEE, MESSAGES, ("up", "down"))
        assert item.message == "Check your knees"
        assert item.correction == Correction.UP

    def test_ranges_are_reported(self):
        item = evaluate(120, KNEE, MESSAGES)
        assert item.ideal_range == Range(80, 100)
        assert item.acceptable_range == Range(70, 110)
        assert item.to_dict()["ideal_range"] == {"min": 80, "max": 100}

    def test_invalid_feedback(self):
        item = invalid_feedback("Pose not recognized")
        assert item.level == FeedbackLevel.WARNING
        assert item.score == 0
        assert item.value == 0.0


class TestThresholds:
    def test_acceptable_must_contain_ideal(self):
        with pytest.raises(ConfigError):
            AngleThreshold(Range(80, 100), Range(85, 110))

    def test_inverted_range(self):
        with pytest.raises(ConfigError):
            AngleThreshold(Range(100, 80), Range(70, 110))

    def test_malformed_dict(self):
        with pytest.raises(ConfigError):
            AngleThreshold.from_dict({"ideal": [80, 100]})

    def test_scaled_keeps_containment(self):
        """Shrinking only the acceptable band still leaves it around the ideal band."""
        scaled = KNEE.scaled(1.0, 0.5)
        assert scaled.ideal == Range(80, 100)
        assert scaled.acceptable.contains_range(scaled.ideal)


class TestWeightedScore:
    def test_weighted_mean(self):
        assert weighted_score({"a": 80, "b": 60}, {"a": 0.5, "b": 0.5}) == 70

    def test_missing_item_counts_as_full_marks(self):
        """A sub-analyzer without data never drags the score down."""
        assert weighted_score({"a": 50}, {"a": 0.5, "b": 0.5}) == 75

    def test_unweighted_items_are_ignored(self):
        assert weighted_score({"a": 100, "extra": 0}, {"a": 1.0}) == 100

    def test_clamped(self):
        assert weighted_score({"a": 0}, {"a": 1.0}) == 0
