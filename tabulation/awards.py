from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd

from tabulation.log import get_logger
from tabulation.models import CompetitionSettings, Contestant, Judge
from tabulation.ranks import fractional_ranks
from tabulation.rounding import round2
from tabulation.scores import ScoreAggregate

log = get_logger("awards")


@dataclass
class CriterionAverage:
    segment_id: str
    criterion_id: str
    average: float
    percentage: float
    rank: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segmentId": self.segment_id,
            "criterionId": self.criterion_id,
            "average": self.average,
            "percentage": self.percentage,
            "rank": self.rank,
        }


@dataclass
class MinorAwardResult:
    contestant_id: str
    name: str
    gender: str
    average_score: float
    percentage_score: float
    total_points: float
    rank: float = 0.0
    criteria: Dict[str, CriterionAverage] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contestantId": self.contestant_id,
            "name": self.name,
            "gender": self.gender,
            "averageScore": self.average_score,
            "percentageScore": self.percentage_score,
            "totalPoints": self.total_points,
            "rank": self.rank,
            "criteria": {k: v.to_dict() for k, v in self.criteria.items()},
        }


def criterion_key(segment_id: str, criterion_id: str) -> str:
    return f"{segment_id}/{criterion_id}"


def minor_awards(
    criteria: Sequence[Tuple[str, str]],
    settings: CompetitionSettings,
    contestants: Iterable[Contestant],
    judges: Iterable[Judge],
    aggregate: ScoreAggregate,
    separate_by_gender: bool = False,
) -> List[MinorAwardResult]:
    """
    Rank contestants on a hand-picked set of criteria, e.g. "Best in Talent".

    For every selected criterion the contestant's average over the judges who
    scored it is ranked with RANK.AVG. Only contestants scored on every
    selected criterion are included. Overall:

      total_points     = sum of every judge score over the selected criteria
      average_score    = total_points / (criteria * judges)
      percentage_score = total_points / (sum of max scores * judges) * 100

    Ranks use RANK.AVG on average_score, within each gender when separated.
    """
    if not criteria:
        raise ValueError("Select at least one criterion")
    max_scores = {}
    for segment_id, criterion_id in criteria:
        criterion = settings.criterion(segment_id, criterion_id)
        if criterion is None:
            raise ValueError(f"Unknown criterion {segment_id}/{criterion_id}")
        max_scores[(segment_id, criterion_id)] = criterion.max_score

    contestants = list(contestants)
    judge_ids = [j.id for j in judges]
    judge_count = len(judge_ids) or 1
    total_max = float(sum(max_scores.values()))

    # rows = contestant, one column per selected criterion
    averages = pd.DataFrame(index=[c.id for c in contestants], dtype=float)
    points: Dict[str, float] = {c.id: 0.0 for c in contestants}
    for segment_id, criterion_id in criteria:
        column = []
        for contestant in contestants:
            values = [
                aggregate.get_score(segment_id, contestant.id, j, criterion_id)
                for j in judge_ids
            ]
            values = [v for v in values if v is not None]
            points[contestant.id] += float(sum(values))
            column.append(float(np.mean(values)) if values else np.nan)
        averages[criterion_key(segment_id, criterion_id)] = column

    complete = averages.dropna()
    results: List[MinorAwardResult] = []
    criterion_ranks = {
        key: fractional_ranks({str(c): float(v) for c, v in complete[key].items()})
        for key in complete.columns
    }
    by_id = {c.id: c for c in contestants}
    for contestant_id, row in complete.iterrows():
        contestant = by_id[contestant_id]
        total = points[contestant_id]
        per_criterion = {}
        for segment_id, criterion_id in criteria:
            key = criterion_key(segment_id, criterion_id)
            avg = float(row[key])
            per_criterion[key] = CriterionAverage(
                segment_id=segment_id,
                criterion_id=criterion_id,
                average=round2(avg),
                percentage=round2(avg / max_scores[(segment_id, criterion_id)] * 100),
                rank=criterion_ranks[key][contestant_id],
            )
        results.append(MinorAwardResult(
            contestant_id=contestant_id,
            name=contestant.name,
            gender=contestant.gender,
            average_score=round2(total / (len(criteria) * judge_count)),
            percentage_score=round2(total / (total_max * judge_count) * 100),
            total_points=round2(total),
            criteria=per_criterion,
        ))

    skipped = len(contestants) - len(results)
    if skipped:
        log.info("Minor award: %d contestants lack scores on some selected criteria", skipped)

    groups: Dict[str, List[MinorAwardResult]] = {}
    for result in results:
        groups.setdefault(result.gender if separate_by_gender else "all", []).append(result)
    for members in groups.values():
        ranks = fractional_ranks({r.contestant_id: r.average_score for r in members})
        for r in members:
            r.rank = ranks[r.contestant_id]

    return sorted(results, key=lambda r: (r.gender if separate_by_gender else "", r.rank, r.contestant_id))
