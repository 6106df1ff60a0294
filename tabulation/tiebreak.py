from __future__ import annotations

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Set

from tabulation.log import get_logger
from tabulation.models import RankingConfig
from tabulation.rounding import round2
from tabulation.scores import ScoreAggregate

log = get_logger("tiebreak")

TIEBREAK_STEP = 1e-4


def find_tie_groups(final_scores: Dict[str, float]) -> List[List[str]]:
    """Groups of two or more contestants sharing a two-decimal final score."""
    groups: Dict[float, List[str]] = defaultdict(list)
    for contestant_id, score in final_scores.items():
        groups[round2(score)].append(contestant_id)
    return [sorted(ids) for _, ids in sorted(groups.items()) if len(ids) > 1]


# -----------------------
# Strategies: each returns the tied group ordered best -> worst
# -----------------------
def _judge_scores(aggregate: ScoreAggregate, segment_id: str, contestant_id: str,
                  judge_ids: Optional[Set[str]]) -> Dict[str, Dict[str, float]]:
    """judge -> criterion -> value, limited to ``judge_ids`` when given."""
    scores = aggregate.contestant_scores(segment_id, contestant_id)
    if judge_ids is None:
        return scores
    return {j: criteria for j, criteria in scores.items() if j in judge_ids}


def _by_highest_score(group: List[str], aggregate: ScoreAggregate, segment_id: str,
                      config: RankingConfig, judge_ids: Optional[Set[str]] = None) -> List[str]:
    highest: Dict[str, float] = {}
    for contestant_id in group:
        values = [
            value
            for criteria in _judge_scores(aggregate, segment_id, contestant_id, judge_ids).values()
            for value in criteria.values()
        ]
        highest[contestant_id] = max(values) if values else 0.0
    return sorted(group, key=lambda c: (-highest[c], c))


def _by_head_to_head(group: List[str], aggregate: ScoreAggregate, segment_id: str,
                     config: RankingConfig, judge_ids: Optional[Set[str]] = None) -> List[str]:
    totals = {
        c: {j: t for j, t in aggregate.judge_totals(segment_id, c).items() if judge_ids is None or j in judge_ids}
        for c in group
    }
    wins = {c: 0 for c in group}
    for i, a in enumerate(group):
        for b in group[i + 1:]:
            common = set(totals[a]) & set(totals[b])
            a_wins = sum(1 for j in common if totals[a][j] > totals[b][j])
            b_wins = sum(1 for j in common if totals[b][j] > totals[a][j])
            if a_wins > b_wins:
                wins[a] += 1
            elif b_wins > a_wins:
                wins[b] += 1
    return sorted(group, key=lambda c: (-wins[c], c))


def _by_specific_criterion(group: List[str], aggregate: ScoreAggregate, segment_id: str,
                           config: RankingConfig, judge_ids: Optional[Set[str]] = None) -> List[str]:
    criterion_id = config.tiebreaker_criterion_id
    if not criterion_id:
        log.warning("specific-criteria tiebreaker without a criterion; ordering tied group by id")
        return sorted(group)

    averages: Dict[str, float] = {}
    for contestant_id in group:
        values = [
            criteria[criterion_id]
            for criteria in _judge_scores(aggregate, segment_id, contestant_id, judge_ids).values()
            if criterion_id in criteria
        ]
        averages[contestant_id] = round2(sum(values) / len(values)) if values else 0.0
    return sorted(group, key=lambda c: (-averages[c], c))


TieBreakStrategy = Callable[[List[str], ScoreAggregate, str, RankingConfig, Optional[Set[str]]], List[str]]

TIEBREAK_STRATEGIES: Dict[str, TieBreakStrategy] = {
    "highest-score": _by_highest_score,
    "head-to-head": _by_head_to_head,
    "specific-criteria": _by_specific_criterion,
}


def apply_tiebreaker(
    final_scores: Dict[str, float],
    aggregate: ScoreAggregate,
    segment_id: str,
    config: RankingConfig,
    lower_is_better: Optional[bool] = None,
    judge_ids: Optional[Iterable[str]] = None,
) -> Dict[str, float]:
    """
    Return a copy of ``final_scores`` with tied groups nudged apart.

    Each tied group is ordered by the configured strategy, then every member
    gets a strictly ordered offset far below the two-decimal score grain so
    the ordinary rank conversion produces that order. With tiebreaker "none"
    the scores come back unchanged and ties survive into the ranks.

    When ``judge_ids`` is given the strategies only look at those judges'
    scores.
    """
    adjusted = dict(final_scores)
    strategy = TIEBREAK_STRATEGIES.get(config.tiebreaker)
    if strategy is None:
        return adjusted
    if lower_is_better is None:
        lower_is_better = config.lower_is_better
    allowed = set(judge_ids) if judge_ids is not None else None

    for group in find_tie_groups(final_scores):
        order = strategy(group, aggregate, segment_id, config, allowed)
        n = len(order)
        step = min(TIEBREAK_STEP, 0.01 / (n + 1))
        for index, contestant_id in enumerate(order):
            # Lower-is-better methods push worse entries up; others lift better ones
            offset = index if lower_is_better else (n - 1 - index)
            adjusted[contestant_id] = final_scores[contestant_id] + offset * step
        log.debug("Tiebreak %s resolved %s", config.tiebreaker, order)
    return adjusted
