from tabulation.models import Contestant, Judge, RankingConfig
from tabulation.ranking import rank_segment
from tabulation.scores import ScoreAggregate
from tabulation.tiebreak import apply_tiebreaker, find_tie_groups

from conftest import fill

CONTESTANTS = [Contestant("c1", "Ana", "prelim"), Contestant("c2", "Bea", "prelim"), Contestant("c3", "Cid", "prelim")]
JUDGES = [Judge("j1", "J1"), Judge("j2", "J2"), Judge("j3", "J3")]


def tied_aggregate():
    """c1 and c2 both average 40; c3 averages 20."""
    agg = ScoreAggregate()
    fill(agg, "prelim", {
        "c1": {"j1": {"beauty": 30, "talent": 20}, "j2": {"beauty": 20, "talent": 20}, "j3": {"beauty": 15, "talent": 15}},
        "c2": {"j1": {"beauty": 45, "talent": 15}, "j2": {"beauty": 21, "talent": 20}, "j3": {"beauty": 10, "talent": 9}},
        "c3": {"j1": {"beauty": 10, "talent": 10}, "j2": {"beauty": 10, "talent": 10}, "j3": {"beauty": 10, "talent": 10}},
    })
    return agg


def ranks(results):
    return {c: r.rank for c, r in results.items()}


def test_find_tie_groups():
    assert find_tie_groups({"a": 1.0, "b": 1.0, "c": 2.0, "d": 2.001}) == [["a", "b"], ["c", "d"]]
    assert find_tie_groups({"a": 1.0, "b": 2.0}) == []


def test_no_tiebreaker_keeps_ties():
    results = rank_segment("prelim", CONTESTANTS, JUDGES, tied_aggregate(), RankingConfig(tiebreaker="none"))
    assert ranks(results) == {"c1": 1, "c2": 1, "c3": 3}


def test_highest_score_breaks_tie():
    # c2 holds the single highest score (45)
    results = rank_segment("prelim", CONTESTANTS, JUDGES, tied_aggregate(), RankingConfig(tiebreaker="highest-score"))
    assert ranks(results) == {"c2": 1, "c1": 2, "c3": 3}
    # reported scores are not nudged
    assert results["c1"].score == results["c2"].score == 40.0


def test_unlisted_judges_do_not_break_ties():
    agg = fill(tied_aggregate(), "prelim", {"c1": {"ghost": {"beauty": 50}}})
    results = rank_segment("prelim", CONTESTANTS, JUDGES, agg, RankingConfig(tiebreaker="highest-score"))
    assert results["c1"].score == results["c2"].score == 40.0
    assert ranks(results) == {"c2": 1, "c1": 2, "c3": 3}

    config = RankingConfig(tiebreaker="specific-criteria", tiebreaker_criterion_id="beauty")
    adjusted = apply_tiebreaker({"c1": 40.0, "c2": 40.0}, agg, "prelim", config, judge_ids=["j1", "j2", "j3"])
    # beauty averages without the unlisted judge: c1 21.67, c2 25.33
    assert adjusted["c2"] > adjusted["c1"]


def test_head_to_head_counts_judge_wins():
    # totals c1: 50, 40, 30   c2: 60, 41, 19 -> c2 wins under j1 and j2
    results = rank_segment("prelim", CONTESTANTS, JUDGES, tied_aggregate(), RankingConfig(tiebreaker="head-to-head"))
    assert ranks(results) == {"c2": 1, "c1": 2, "c3": 3}


def test_specific_criterion_average():
    # talent averages: c1 18.33, c2 14.67
    config = RankingConfig(tiebreaker="specific-criteria", tiebreaker_criterion_id="talent")
    results = rank_segment("prelim", CONTESTANTS, JUDGES, tied_aggregate(), config)
    assert ranks(results) == {"c1": 1, "c2": 2, "c3": 3}


def test_specific_criterion_without_criterion_orders_by_id():
    config = RankingConfig(tiebreaker="specific-criteria")
    results = rank_segment("prelim", CONTESTANTS, JUDGES, tied_aggregate(), config)
    assert ranks(results) == {"c1": 1, "c2": 2, "c3": 3}


def test_lower_is_better_methods_push_loser_down():
    config = RankingConfig(method="avg-rank", tiebreaker="highest-score")
    results = rank_segment("prelim", CONTESTANTS, JUDGES, tied_aggregate(), config)
    assert ranks(results) == {"c2": 1, "c1": 2, "c3": 3}


def test_nudges_stay_below_two_decimal_grain():
    scores = {c: 40.0 for c in ("a", "b", "c", "d", "e")}
    adjusted = apply_tiebreaker(scores, ScoreAggregate(), "prelim", RankingConfig(tiebreaker="highest-score"))
    assert len(set(adjusted.values())) == 5
    assert all(abs(adjusted[c] - 40.0) < 0.005 for c in scores)
    assert scores == {c: 40.0 for c in ("a", "b", "c", "d", "e")}
