import pytest

from tabulation.active import ActiveCriteriaGate
from tabulation.carry_forward import CarryForwardDeriver, derive_value
from tabulation.errors import FanOutError
from tabulation.fanout import fan_out
from tabulation.prejudged import PrejudgedScaler, scale

from conftest import fill


@pytest.fixture
def prelim_scores(aggregate):
    # c1 judge totals: j1 70, j2 50 ; c2 judge totals: j1 80, j2 60, j3 40
    return fill(aggregate, "prelim", {
        "c1": {"j1": {"beauty": 40, "talent": 30}, "j2": {"beauty": 30, "talent": 20}},
        "c2": {"j1": {"beauty": 40, "talent": 40}, "j2": {"beauty": 30, "talent": 30}, "j3": {"beauty": 20, "talent": 20}},
    })


class TestDeriveValue:
    def test_methods(self):
        totals = {"j1": 70, "j2": 50}
        assert derive_value(totals, "rawAverage", 0.3) == 60.0
        assert derive_value(totals, "percentage", 0.3) == 18.0
        assert derive_value(totals, "accumulatedPoints", 0.3) == 36.0

    def test_no_totals(self):
        assert derive_value({}, "percentage", 0.5) == 0.0

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            derive_value({"j1": 1}, "bonus", 1.0)


class TestCarryForward:
    def test_preview(self, settings, contestants, judges, prelim_scores):
        deriver = CarryForwardDeriver(settings, prelim_scores)
        previews = deriver.preview("final", "carry", contestants, judges)
        assert previews["c1"].raw_average == 60.0
        assert previews["c1"].score == 18.0
        assert previews["c1"].judge_totals == {"j1": 70.0, "j2": 50.0}
        assert previews["c2"].score == 18.0
        assert previews["c3"].score == 0.0

    def test_commit_fans_out_identically(self, settings, contestants, judges, prelim_scores):
        deriver = CarryForwardDeriver(settings, prelim_scores)
        values = deriver.commit("final", "carry", contestants, judges)
        for contestant_id, value in values.items():
            seen = {prelim_scores.get_score("final", contestant_id, j.id, "carry") for j in judges}
            assert seen == {value}

    def test_rerun_is_a_pure_overwrite(self, settings, contestants, judges, prelim_scores):
        deriver = CarryForwardDeriver(settings, prelim_scores)
        first = deriver.commit("final", "carry", contestants, judges)
        count = len(prelim_scores)
        second = deriver.commit("final", "carry", contestants, judges)
        assert first == second
        assert len(prelim_scores) == count

    def test_accumulated_points(self, settings, contestants, judges, prelim_scores):
        deriver = CarryForwardDeriver(settings, prelim_scores)
        deriver.configure("final", "carry", ["prelim"], scaling_factor=0.1, calculation_method="accumulatedPoints")
        assert deriver.preview("final", "carry", contestants, judges)["c2"].score == 18.0

    def test_configure_validates(self, settings, aggregate):
        deriver = CarryForwardDeriver(settings, aggregate)
        with pytest.raises(ValueError):
            deriver.configure("prelim", "beauty", ["final"])
        with pytest.raises(ValueError):
            deriver.configure("final", "qa", ["prelim"], scaling_factor=1.5)
        with pytest.raises(ValueError):
            deriver.configure("final", "qa", ["prelim"], calculation_method="bonus")
        with pytest.raises(ValueError):
            deriver.configure("final", "qa", [])
        with pytest.raises(ValueError):
            deriver.configure("final", "qa", ["semis"])

    def test_configure_closes_the_criterion(self, settings, aggregate):
        gate = ActiveCriteriaGate(settings)
        gate.activate("final", "qa")
        criterion = CarryForwardDeriver(settings, aggregate).configure("final", "qa", ["prelim"], gate=gate)
        assert criterion.is_carry_forward
        assert not gate.is_active("final", "qa")
        assert not gate.activate("final", "qa")

    def test_preview_needs_carry_forward_criterion(self, settings, contestants, aggregate):
        with pytest.raises(ValueError):
            CarryForwardDeriver(settings, aggregate).preview("final", "qa", contestants)


class TestFanOut:
    def test_failed_persist_applies_nothing(self, aggregate, judges):
        def persist(batch):
            raise IOError("store unavailable")

        with pytest.raises(FanOutError) as excinfo:
            fan_out(aggregate, "final", "carry", {"c1": 18.0, "c2": 12.0}, judges, persist)
        assert excinfo.value.failed_judges == ["j1", "j2", "j3"]
        assert len(aggregate) == 0

    def test_persist_receives_whole_batch(self, aggregate, judges):
        batches = []
        fan_out(aggregate, "final", "carry", {"c1": 18.004}, judges, batches.append)
        assert len(batches) == 1
        assert [(r.judge_id, r.value) for r in batches[0]] == [("j1", 18.0), ("j2", 18.0), ("j3", 18.0)]

    def test_rejects_invalid_values_and_missing_judges(self, aggregate, judges):
        with pytest.raises(FanOutError):
            fan_out(aggregate, "final", "carry", {"c1": -1}, judges)
        with pytest.raises(FanOutError):
            fan_out(aggregate, "final", "carry", {"c1": 1}, [])
        assert len(aggregate) == 0


class TestPrejudged:
    def test_scale(self):
        assert scale(80, 30, 100) == 24.0
        assert scale(80, 30, 80) == 30.0

    def test_rescale_on_max_raw_change(self, settings, judges, aggregate):
        scaler = PrejudgedScaler(settings, aggregate, "prelim")
        assert scaler.set_raw_score("c1", "interview", 80) == 24.0
        scaler.commit(judges)
        assert {aggregate.get_score("prelim", "c1", j.id, "interview") for j in judges} == {24.0}

        assert scaler.set_max_raw("interview", 80) == {"c1": 30.0}
        assert settings.criterion("prelim", "interview").max_raw_score == 80
        scaler.commit(judges)
        assert {aggregate.get_score("prelim", "c1", j.id, "interview") for j in judges} == {30.0}

    def test_only_prejudged_criteria(self, settings, aggregate):
        scaler = PrejudgedScaler(settings, aggregate, "prelim")
        with pytest.raises(ValueError):
            scaler.set_raw_score("c1", "beauty", 10)
        with pytest.raises(ValueError):
            scaler.set_max_raw("interview", 0)
        with pytest.raises(ValueError):
            PrejudgedScaler(settings, aggregate, "semis")

    def test_recovers_raw_scores_from_stored_values(self, settings, judges, aggregate):
        PrejudgedScaler(settings, aggregate, "prelim").set_raw_score("c2", "interview", 80)
        fan_out(aggregate, "prelim", "interview", {"c2": 24.0}, judges)

        scaler = PrejudgedScaler(settings, aggregate, "prelim")
        assert scaler.load_from_aggregate(judges) == 1
        assert scaler.raw_score("c2", "interview") == 80.0
        assert scaler.preview() == {"interview": {"c2": 24.0}}
