from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from tabulation.errors import FormulaError
from tabulation.formula import compile_formula
from tabulation.log import get_logger
from tabulation.models import Contestant, Judge, RankingConfig
from tabulation.ranks import competition_ranks
from tabulation.rounding import round2
from tabulation.scores import ScoreAggregate
from tabulation.tiebreak import apply_tiebreaker

log = get_logger("ranking")


@dataclass(frozen=True)
class RankedScore:
    score: float
    rank: int

    def to_dict(self) -> Dict[str, float]:
        return {"score": self.score, "rank": self.rank}


# -----------------------
# Statistics over per-judge totals
# -----------------------
def average(values: List[float]) -> float:
    if not values:
        return 0.0
    return round2(float(np.mean(values)))


def median(values: List[float]) -> float:
    if not values:
        return 0.0
    return round2(float(np.median(values)))


def trimmed_mean(values: List[float], trim_percentage: float) -> float:
    """Drop floor(n * pct / 100 / 2) values from each end; needs at least 3 values."""
    if len(values) < 3:
        return average(values)
    ordered = sorted(values)
    trim = int(math.floor(len(ordered) * trim_percentage / 100 / 2))
    if trim == 0:
        return average(ordered)
    return average(ordered[trim:len(ordered) - trim])


# -----------------------
# Ranking methods
# -----------------------
@dataclass
class MethodInput:
    """
    totals:
      rows = judge_id
      cols = contestant_id
      values = that judge's total for the contestant (NaN if unscored)
    """
    segment_id: str
    totals: pd.DataFrame
    config: RankingConfig

    @property
    def contestant_ids(self) -> List[str]:
        return [str(c) for c in self.totals.columns]

    def judge_values(self, contestant_id: str) -> List[float]:
        return [float(v) for v in self.totals[contestant_id].dropna()]

    def judge_ranks(self) -> Dict[str, Dict[str, int]]:
        """judge -> contestant -> rank among the contestants that judge scored."""
        out: Dict[str, Dict[str, int]] = {}
        for judge_id, row in self.totals.iterrows():
            scored = row.dropna()
            if not scored.empty:
                out[str(judge_id)] = competition_ranks({str(k): float(v) for k, v in scored.items()})
        return out


RankingMethod = Callable[[MethodInput], Dict[str, float]]

RANKING_METHODS: Dict[str, RankingMethod] = {}


def ranking_method(name: str):
    def register(fn: RankingMethod) -> RankingMethod:
        RANKING_METHODS[name] = fn
        return fn
    return register


@ranking_method("avg")
def _avg(inp: MethodInput) -> Dict[str, float]:
    return {c: average(inp.judge_values(c)) for c in inp.contestant_ids}


@ranking_method("median")
def _median(inp: MethodInput) -> Dict[str, float]:
    return {c: median(inp.judge_values(c)) for c in inp.contestant_ids}


@ranking_method("trimmed")
def _trimmed(inp: MethodInput) -> Dict[str, float]:
    pct = inp.config.trim_percentage
    return {c: trimmed_mean(inp.judge_values(c), pct) for c in inp.contestant_ids}


@ranking_method("weighted")
def _weighted(inp: MethodInput) -> Dict[str, float]:
    weight = inp.config.segment_weight(inp.segment_id)
    return {c: round2(average(inp.judge_values(c)) * weight) for c in inp.contestant_ids}


@ranking_method("avg-rank")
def _avg_rank(inp: MethodInput) -> Dict[str, float]:
    ranks = competition_ranks(_avg(inp))
    return {c: float(r) for c, r in ranks.items()}


@ranking_method("rank-avg-rank")
def _rank_avg_rank(inp: MethodInput) -> Dict[str, float]:
    judge_ranks = inp.judge_ranks()
    # Unscored contestants sit behind every possible rank
    unscored = float(len(inp.contestant_ids) + 1)
    out = {}
    for c in inp.contestant_ids:
        ranks = [r[c] for r in judge_ranks.values() if c in r]
        out[c] = average(ranks) if ranks else unscored
    return out


@ranking_method("borda")
def _borda(inp: MethodInput) -> Dict[str, float]:
    count = len(inp.contestant_ids)
    points = {c: 0.0 for c in inp.contestant_ids}
    for ranks in inp.judge_ranks().values():
        for c, rank in ranks.items():
            points[c] += count - rank + 1
    return {c: round2(p) for c, p in points.items()}


def formula_inputs(values: List[float]) -> Dict[str, float]:
    return {
        "avg_score": average(values),
        "median_score": median(values),
        "min_score": round2(min(values)) if values else 0.0,
        "max_score": round2(max(values)) if values else 0.0,
        "judge_count": float(len(values)),
    }


@ranking_method("custom")
def _custom(inp: MethodInput) -> Dict[str, float]:
    fallback = _avg(inp)
    text = (inp.config.custom_formula or "").strip()
    if not text:
        return fallback

    try:
        formula = compile_formula(text)
    except FormulaError as e:
        log.error("Custom formula %r is invalid, using average: %s", text, e)
        return fallback

    out = {}
    for c in inp.contestant_ids:
        values = inp.judge_values(c)
        if not values:
            out[c] = 0.0
            continue
        try:
            out[c] = round2(formula.evaluate(formula_inputs(values)))
        except (FormulaError, ArithmeticError) as e:
            log.error("Custom formula failed for contestant %s, using average: %s", c, e)
            out[c] = fallback[c]
    return out


# -----------------------
# Segment ranking
# -----------------------
def segment_scores(
    segment_id: str,
    contestant_ids: List[str],
    judge_ids: List[str],
    aggregate: ScoreAggregate,
    config: RankingConfig,
) -> Dict[str, float]:
    """Final method score per contestant, before tiebreaking and ranking."""
    totals = aggregate.judge_totals_frame(segment_id, contestant_ids, judge_ids)
    method = RANKING_METHODS.get(config.method)
    if method is None:
        log.error("Unknown ranking method %r, using average", config.method)
        method = RANKING_METHODS["avg"]
    scores = method(MethodInput(segment_id=segment_id, totals=totals, config=config))
    return {c: round2(scores.get(c, 0.0)) for c in contestant_ids}


def rank_scores(
    final_scores: Dict[str, float],
    aggregate: ScoreAggregate,
    segment_id: str,
    config: RankingConfig,
    judge_ids: Optional[List[str]] = None,
) -> Dict[str, RankedScore]:
    """Apply the tiebreaker and rank conversion to already computed method scores."""
    adjusted = final_scores
    if config.tiebreaker != "none":
        adjusted = apply_tiebreaker(final_scores, aggregate, segment_id, config, judge_ids=judge_ids)
    ranks = competition_ranks(adjusted, ascending=config.lower_is_better)
    return {c: RankedScore(score=final_scores[c], rank=ranks[c]) for c in final_scores}


def rank_segment(
    segment_id: str,
    contestants: Iterable[Contestant],
    judges: Iterable[Judge],
    aggregate: ScoreAggregate,
    config: RankingConfig,
) -> Dict[str, RankedScore]:
    """
    Rank the contestants currently in ``segment_id``.

    Only the listed judges count; scores held under any other judge id are
    ignored. Returns contestant_id -> RankedScore(score, rank).
    """
    contestant_ids = [c.id for c in contestants if c.current_segment_id == segment_id]
    judge_ids = [j.id for j in judges]
    if not contestant_ids:
        return {}
    final_scores = segment_scores(segment_id, contestant_ids, judge_ids, aggregate, config)
    return rank_scores(final_scores, aggregate, segment_id, config, judge_ids)


def rank_by_group(
    segment_id: str,
    contestants: Iterable[Contestant],
    judges: Iterable[Judge],
    aggregate: ScoreAggregate,
    config: RankingConfig,
    separate_by_gender: bool = False,
) -> Dict[str, Dict[str, RankedScore]]:
    """Rank each gender group on its own, or everyone under the key "all"."""
    contestants = list(contestants)
    judges = list(judges)
    if not separate_by_gender:
        return {"all": rank_segment(segment_id, contestants, judges, aggregate, config)}

    groups: Dict[str, List[Contestant]] = {}
    for c in contestants:
        groups.setdefault(c.gender, []).append(c)
    return {
        gender: rank_segment(segment_id, members, judges, aggregate, config)
        for gender, members in groups.items()
    }


def rank_overall(
    segment_ids: List[str],
    contestants: Iterable[Contestant],
    judges: Iterable[Judge],
    aggregate: ScoreAggregate,
    config: RankingConfig,
) -> Dict[str, RankedScore]:
    """
    Rank contestants across several segments.

    Score-oriented methods add up each segment's method score times that
    segment's weight. Rank-oriented methods average the per-segment ranks.
    Ties are kept as ties.
    """
    contestant_ids = [c.id for c in contestants]
    judge_ids = [j.id for j in judges]
    if not contestant_ids or not segment_ids:
        return {}

    per_segment = pd.DataFrame(
        {s: segment_scores(s, contestant_ids, judge_ids, aggregate, config) for s in segment_ids},
        index=contestant_ids,
    )
    if config.lower_is_better:
        combined = per_segment.mean(axis=1)
    else:
        weights = pd.Series({s: config.segment_weight(s) for s in segment_ids})
        # weighted already applies segment weights inside the method
        if config.method == "weighted":
            weights[:] = 1.0
        combined = (per_segment * weights).sum(axis=1)

    final_scores = {str(c): round2(float(v)) for c, v in combined.items()}
    ranks = competition_ranks(final_scores, ascending=config.lower_is_better)
    return {c: RankedScore(score=final_scores[c], rank=ranks[c]) for c in final_scores}


def results_frame(results: Dict[str, RankedScore], contestants: Iterable[Contestant]) -> pd.DataFrame:
    """Results table: Rank, ContestantId, Name, Score sorted best first."""
    names = {c.id: c.name for c in contestants}
    df = pd.DataFrame(
        {
            "Rank": [r.rank for r in results.values()],
            "ContestantId": list(results.keys()),
            "Name": [names.get(c, "") for c in results.keys()],
            "Score": [r.score for r in results.values()],
        },
        columns=["Rank", "ContestantId", "Name", "Score"],
    )
    return df.sort_values(by=["Rank", "ContestantId"], kind="mergesort").reset_index(drop=True)
