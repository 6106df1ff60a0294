import pytest

from tabulation.awards import minor_awards

from conftest import fill

CRITERIA = [("prelim", "beauty"), ("prelim", "talent")]


@pytest.fixture
def two_judges(judges):
    return judges[:2]


@pytest.fixture
def scored(aggregate):
    return fill(aggregate, "prelim", {
        "c1": {"j1": {"beauty": 40, "talent": 40}, "j2": {"beauty": 30, "talent": 40}},
        "c2": {"j1": {"beauty": 35, "talent": 30}, "j2": {"beauty": 35, "talent": 30}},
        "c3": {"j1": {"beauty": 45}, "j2": {"beauty": 45}},
    })


def test_ranks_by_average_over_selected_criteria(settings, contestants, two_judges, scored):
    results = minor_awards(CRITERIA, settings, contestants, two_judges, scored)
    assert [r.contestant_id for r in results] == ["c1", "c2"]

    c1, c2 = results
    assert (c1.total_points, c1.average_score, c1.percentage_score, c1.rank) == (150.0, 37.5, 75.0, 1.0)
    assert (c2.total_points, c2.average_score, c2.percentage_score, c2.rank) == (130.0, 32.5, 65.0, 2.0)


def test_criterion_ranks_use_rank_avg(settings, contestants, two_judges, scored):
    c1, c2 = minor_awards(CRITERIA, settings, contestants, two_judges, scored)
    beauty = "prelim/beauty"
    assert c1.criteria[beauty].average == c2.criteria[beauty].average == 35.0
    assert c1.criteria[beauty].rank == c2.criteria[beauty].rank == 1.5
    assert c1.criteria[beauty].percentage == 70.0
    assert c1.criteria["prelim/talent"].rank == 1.0


def test_contestants_missing_a_criterion_are_left_out(settings, contestants, two_judges, scored):
    results = minor_awards(CRITERIA, settings, contestants, two_judges, scored)
    assert "c3" not in {r.contestant_id for r in results}

    beauty_only = minor_awards([("prelim", "beauty")], settings, contestants, two_judges, scored)
    assert beauty_only[0].contestant_id == "c3"
    assert beauty_only[0].rank == 1.0
    assert beauty_only[1].rank == beauty_only[2].rank == 2.5


def test_gender_separated_ranks(settings, contestants, two_judges, scored):
    scored.set_score("prelim", "c3", "j1", "talent", 10)
    scored.set_score("prelim", "c3", "j2", "talent", 10)
    results = minor_awards(CRITERIA, settings, contestants, two_judges, scored, separate_by_gender=True)
    ranks = {r.contestant_id: (r.gender, r.rank) for r in results}
    assert ranks == {"c1": ("Female", 1.0), "c2": ("Female", 2.0), "c3": ("Male", 1.0)}


def test_validates_selection(settings, contestants, two_judges, scored):
    with pytest.raises(ValueError):
        minor_awards([], settings, contestants, two_judges, scored)
    with pytest.raises(ValueError):
        minor_awards([("prelim", "swimsuit")], settings, contestants, two_judges, scored)
