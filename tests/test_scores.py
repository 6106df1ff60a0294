import math
import sys

import pytest

from tabulation.rounding import is_valid_score, round2
from tabulation.scores import ScoreAggregate, nested_to_rows, rows_to_nested


class TestRound2:
    def test_rounds_half_up_as_written(self):
        assert round2(2.675) == 2.68
        assert round2(1.005) == 1.01
        assert round2(9.874) == 9.87

    @pytest.mark.parametrize("value", [0, 1.005, 2.675, 3.14159, 99.995, 12345.678])
    def test_idempotent(self, value):
        assert round2(round2(value)) == round2(value)

    def test_rejects_non_finite(self):
        with pytest.raises(ValueError):
            round2(math.nan)
        with pytest.raises(ValueError):
            round2(math.inf)

    def test_very_large_values_round_without_error(self):
        assert round2(1e30) == 1e30
        assert round2(sys.float_info.max) == sys.float_info.max
        assert round2(123456789012345678901234567890.126) == 123456789012345678901234567890.126

    def test_valid_scores(self):
        assert is_valid_score(0)
        assert is_valid_score(7.5)
        for bad in (-1, math.nan, math.inf, True, "5", None):
            assert not is_valid_score(bad)


class TestScoreAggregate:
    def test_huge_finite_score_is_stored(self, aggregate):
        assert aggregate.set_score("prelim", "c1", "j1", "beauty", 1e30)
        assert aggregate.get_score("prelim", "c1", "j1", "beauty") == 1e30

    def test_write_then_read_keeps_rounded_value(self, aggregate):
        assert aggregate.set_score("prelim", "c1", "j1", "beauty", 9.876)
        assert aggregate.get_score("prelim", "c1", "j1", "beauty") == 9.88
        assert aggregate.records()[0].value == round2(9.876)

    def test_overwrite_keeps_one_value(self, aggregate):
        aggregate.set_score("prelim", "c1", "j1", "beauty", 10)
        aggregate.set_score("prelim", "c1", "j1", "beauty", 12.5)
        assert len(aggregate) == 1
        assert aggregate.get_score("prelim", "c1", "j1", "beauty") == 12.5

    def test_invalid_writes_are_rejected(self, aggregate):
        assert not aggregate.set_score("prelim", "c1", "j1", "beauty", -3)
        assert not aggregate.set_score("prelim", "c1", "j1", "beauty", math.nan)
        assert not aggregate.set_score("prelim", "", "j1", "beauty", 5)
        assert len(aggregate) == 0
        assert aggregate.as_dict() == {}

    def test_delete_prunes_empty_parents(self, aggregate):
        aggregate.set_score("prelim", "c1", "j1", "beauty", 10)
        assert aggregate.delete_score("prelim", "c1", "j1", "beauty")
        assert aggregate.as_dict() == {}
        assert not aggregate.delete_score("prelim", "c1", "j1", "beauty")

    def test_totals(self, aggregate):
        aggregate.set_score("prelim", "c1", "j1", "beauty", 10.25)
        aggregate.set_score("prelim", "c1", "j1", "talent", 20.5)
        aggregate.set_score("prelim", "c1", "j2", "beauty", 5)
        assert aggregate.total_for_judge("prelim", "c1", "j1") == 30.75
        assert aggregate.total_for_judge("prelim", "c1", "j1", ["talent"]) == 20.5
        assert aggregate.judge_totals("prelim", "c1") == {"j1": 30.75, "j2": 5.0}
        assert aggregate.total_for_contestant("prelim", "c1") == 35.75

    def test_judge_totals_frame_marks_unscored(self, aggregate):
        aggregate.set_score("prelim", "c1", "j1", "beauty", 10)
        frame = aggregate.judge_totals_frame("prelim", ["c1", "c2"], ["j1", "j2"])
        assert list(frame.index) == ["j1", "j2"]
        assert list(frame.columns) == ["c1", "c2"]
        assert frame.loc["j1", "c1"] == 10
        assert math.isnan(frame.loc["j2", "c1"])
        assert math.isnan(frame.loc["j1", "c2"])

    def test_reset_preserves_selected_criteria(self, aggregate):
        aggregate.set_score("prelim", "c1", "j1", "beauty", 10)
        aggregate.set_score("prelim", "c1", "j1", "interview", 24)
        aggregate.set_score("final", "c1", "j1", "qa", 50)
        removed = aggregate.reset([("prelim", "interview")])
        assert removed == 2
        assert [r.criterion_id for r in aggregate.records()] == ["interview"]

    def test_contestant_scores_is_a_copy(self, aggregate):
        aggregate.set_score("prelim", "c1", "j1", "beauty", 10)
        copy = aggregate.contestant_scores("prelim", "c1")
        copy["j1"]["beauty"] = 99
        assert aggregate.get_score("prelim", "c1", "j1", "beauty") == 10

    def test_equality_is_structural(self):
        a = ScoreAggregate({"prelim": {"c1": {"j1": {"beauty": 10}}}})
        b = ScoreAggregate()
        b.set_score("prelim", "c1", "j1", "beauty", 10.0)
        assert a == b


class TestStoreAdapter:
    def test_rows_to_nested_rounds_and_skips_invalid(self):
        rows = [
            {"segment_id": "prelim", "contestant_id": "c1", "judge_id": "j1", "criterion_id": "beauty", "score": 9.876},
            {"segment_id": "prelim", "contestant_id": "c1", "judge_id": "j2", "criterion_id": "beauty", "score": -1},
        ]
        assert rows_to_nested(rows) == {"prelim": {"c1": {"j1": {"beauty": 9.88}}}}

    def test_nested_to_rows_tags_competition(self):
        rows = nested_to_rows({"prelim": {"c1": {"j1": {"beauty": 9.876}}}}, competition_id=7)
        assert rows == [{
            "competition_id": 7,
            "segment_id": "prelim",
            "criterion_id": "beauty",
            "contestant_id": "c1",
            "judge_id": "j1",
            "score": 9.88,
        }]
