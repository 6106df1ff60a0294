from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np

from tabulation.active import ActiveCriteriaGate
from tabulation.fanout import PersistBatch, fan_out
from tabulation.log import get_logger
from tabulation.models import CALCULATION_METHODS, CompetitionSettings, Contestant, Criterion, Judge
from tabulation.rounding import round2
from tabulation.scores import ScoreAggregate

log = get_logger("carry_forward")


@dataclass(frozen=True)
class CarryForwardPreview:
    contestant_id: str
    score: float
    raw_average: float
    judge_totals: Dict[str, float] = field(default_factory=dict)


def derive_value(judge_totals: Dict[str, float], method: str, scaling_factor: float) -> float:
    """
    rawAverage        -> mean of judge totals
    percentage        -> mean of judge totals * scaling_factor
    accumulatedPoints -> sum of judge totals * scaling_factor
    """
    totals = list(judge_totals.values())
    raw_average = float(np.mean(totals)) if totals else 0.0
    if method == "rawAverage":
        value = raw_average
    elif method == "percentage":
        value = raw_average * scaling_factor
    elif method == "accumulatedPoints":
        value = float(sum(totals)) * scaling_factor
    else:
        raise ValueError(f"Unknown calculation method {method!r}")
    return round2(value)


class CarryForwardDeriver:
    """Derives a carry-forward criterion from judges' totals in earlier segments."""

    def __init__(self, settings: CompetitionSettings, aggregate: ScoreAggregate):
        self.settings = settings
        self.aggregate = aggregate

    def _criterion(self, segment_id: str, criterion_id: str) -> Criterion:
        criterion = self.settings.criterion(segment_id, criterion_id)
        if criterion is None:
            raise ValueError(f"Unknown criterion {segment_id}/{criterion_id}")
        return criterion

    def _check_sources(self, segment_id: str, source_segments: List[str]) -> None:
        target = self.settings.segment_index(segment_id)
        for source in source_segments:
            index = self.settings.segment_index(source)
            if index < 0:
                raise ValueError(f"Unknown source segment {source!r}")
            if index >= target:
                raise ValueError(f"Source segment {source!r} does not come before {segment_id!r}")

    def configure(
        self,
        segment_id: str,
        criterion_id: str,
        source_segments: List[str],
        scaling_factor: float = 1.0,
        calculation_method: str = "rawAverage",
        gate: Optional[ActiveCriteriaGate] = None,
    ) -> Criterion:
        """Mark a criterion as carry-forward and store its derivation settings."""
        if calculation_method not in CALCULATION_METHODS:
            raise ValueError(f"Unknown calculation method {calculation_method!r}")
        if not 0 <= scaling_factor <= 1:
            raise ValueError(f"scalingFactor must be a fraction between 0 and 1, got {scaling_factor}")
        if not source_segments:
            raise ValueError("A carry-forward criterion needs at least one source segment")
        self._check_sources(segment_id, source_segments)

        criterion = self._criterion(segment_id, criterion_id)
        criterion.is_carry_forward = True
        criterion.is_prejudged = False
        criterion.source_segments = list(source_segments)
        criterion.scaling_factor = float(scaling_factor)
        criterion.calculation_method = calculation_method
        if gate is not None:
            gate.deactivate(segment_id, criterion_id)
        return criterion

    def judge_totals(self, contestant_id: str, source_segments: List[str],
                     judges: Optional[Iterable[Judge]] = None) -> Dict[str, float]:
        """Each judge's total over every criterion of every source segment."""
        allowed = {j.id for j in judges} if judges is not None else None
        totals: Dict[str, float] = {}
        for source in source_segments:
            segment = self.settings.segment(source)
            if segment is None:
                log.warning("Skipping unknown source segment %s", source)
                continue
            criterion_ids = [c.id for c in segment.criteria]
            for judge_id in self.aggregate.judges_for(source, contestant_id):
                if allowed is not None and judge_id not in allowed:
                    continue
                total = self.aggregate.total_for_judge(source, contestant_id, judge_id, criterion_ids)
                totals[judge_id] = totals.get(judge_id, 0.0) + total
        return {j: round2(t) for j, t in totals.items()}

    def preview(
        self,
        segment_id: str,
        criterion_id: str,
        contestants: Iterable[Contestant],
        judges: Optional[Iterable[Judge]] = None,
    ) -> Dict[str, CarryForwardPreview]:
        """Compute derived values without writing anything."""
        criterion = self._criterion(segment_id, criterion_id)
        if not criterion.is_carry_forward or not criterion.source_segments:
            raise ValueError(f"Criterion {segment_id}/{criterion_id} is not configured for carry-forward")
        self._check_sources(segment_id, criterion.source_segments)
        judges = list(judges) if judges is not None else None

        previews = {}
        for contestant in contestants:
            totals = self.judge_totals(contestant.id, criterion.source_segments, judges)
            previews[contestant.id] = CarryForwardPreview(
                contestant_id=contestant.id,
                score=derive_value(totals, criterion.calculation_method, criterion.scaling_factor),
                raw_average=derive_value(totals, "rawAverage", 1.0),
                judge_totals=totals,
            )
        return previews

    def commit(
        self,
        segment_id: str,
        criterion_id: str,
        contestants: Iterable[Contestant],
        judges: Iterable[Judge],
        persist: Optional[PersistBatch] = None,
    ) -> Dict[str, float]:
        """Derive and fan out the value to every real judge; re-running overwrites."""
        judges = list(judges)
        previews = self.preview(segment_id, criterion_id, contestants, judges)
        values = {c: p.score for c, p in previews.items()}
        fan_out(self.aggregate, segment_id, criterion_id, values, judges, persist)
        return values
