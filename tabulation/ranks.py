"""
Rank conversion rules.

``competition`` is the default everywhere a set of scores becomes ranks:
ties share the lower numeral and the next distinct score skips ahead by the
size of the tie group ({A: 10, B: 10, C: 8} -> {A: 1, B: 1, C: 3}).

``fractional`` is the RANK.AVG rule used for minor awards: tied entries
share the mean of the positions they occupy ({A: 10, B: 10, C: 8} ->
{A: 1.5, B: 1.5, C: 3}).
"""

from __future__ import annotations

from typing import Callable, Dict, List

import pandas as pd

from tabulation.rounding import round2


def competition_ranks(scores_by_id: Dict[str, float], ascending: bool = False) -> Dict[str, int]:
    """
    Convert scores into standard competition ranks.

    Highest score => rank 1 unless ``ascending`` (then lowest => rank 1).
    Equal scores compare exactly; callers round before converting.
    """
    if not scores_by_id:
        return {}
    series = pd.Series(scores_by_id, dtype=float)
    ranks = series.rank(method="min", ascending=ascending)
    return {str(k): int(v) for k, v in ranks.items()}


def fractional_ranks(scores_by_id: Dict[str, float], ascending: bool = False) -> Dict[str, float]:
    """Convert scores into RANK.AVG ranks, rounded to two decimals."""
    if not scores_by_id:
        return {}
    series = pd.Series(scores_by_id, dtype=float)
    ranks = series.rank(method="average", ascending=ascending)
    return {str(k): round2(float(v)) for k, v in ranks.items()}


RANK_RULES: Dict[str, Callable[..., Dict[str, float]]] = {
    "competition": competition_ranks,
    "fractional": fractional_ranks,
}


def convert_scores_to_ranks(scores_by_id: Dict[str, float], rule: str = "competition",
                            ascending: bool = False) -> Dict[str, float]:
    try:
        convert = RANK_RULES[rule]
    except KeyError:
        raise ValueError(f"Unknown rank rule {rule!r}") from None
    return convert(scores_by_id, ascending=ascending)


def order_by_rank(ranks: Dict[str, float]) -> List[str]:
    """Ids from best to worst rank; equal ranks fall back to id order."""
    return sorted(ranks, key=lambda k: (ranks[k], str(k)))
