from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from tabulation.log import get_logger
from tabulation.models import ScoreRecord
from tabulation.rounding import is_valid_score, round2

log = get_logger("scores")

# segment -> contestant -> judge -> criterion -> value
NestedScores = Dict[str, Dict[str, Dict[str, Dict[str, float]]]]


class ScoreAggregate:
    """In-memory score table for one competition.

    Every value is rounded to two decimals on write. A tuple
    (segment, contestant, judge, criterion) holds at most one value and
    writing again overwrites it.
    """

    def __init__(self, scores: Optional[NestedScores] = None):
        self._scores: NestedScores = {}
        if scores:
            self.replace_all(scores)

    # -----------------------
    # Mutation
    # -----------------------
    def set_score(self, segment_id: str, contestant_id: str, judge_id: str, criterion_id: str, value) -> bool:
        if not segment_id or not contestant_id or not judge_id or not criterion_id:
            log.warning(
                "Rejected score with missing identifier: segment=%r contestant=%r judge=%r criterion=%r",
                segment_id, contestant_id, judge_id, criterion_id,
            )
            return False
        if not is_valid_score(value):
            log.warning("Rejected invalid score value %r for %s/%s/%s/%s",
                        value, segment_id, contestant_id, judge_id, criterion_id)
            return False

        rounded = round2(value)
        judge_scores = (
            self._scores.setdefault(segment_id, {})
            .setdefault(contestant_id, {})
            .setdefault(judge_id, {})
        )
        previous = judge_scores.get(criterion_id)
        if previous is not None and previous != rounded:
            log.debug("Replacing score %s -> %s for %s/%s/%s", previous, rounded, judge_id, contestant_id, criterion_id)
        judge_scores[criterion_id] = rounded
        return True

    def delete_score(self, segment_id: str, contestant_id: str, judge_id: str, criterion_id: str) -> bool:
        judge_scores = self._scores.get(segment_id, {}).get(contestant_id, {}).get(judge_id)
        if judge_scores is None or criterion_id not in judge_scores:
            return False

        del judge_scores[criterion_id]
        # Prune now-empty parents so empty maps never accumulate
        if not judge_scores:
            del self._scores[segment_id][contestant_id][judge_id]
        if not self._scores[segment_id][contestant_id]:
            del self._scores[segment_id][contestant_id]
        if not self._scores[segment_id]:
            del self._scores[segment_id]
        return True

    def replace_all(self, scores: NestedScores) -> None:
        """Replace the whole table, re-validating and rounding every value."""
        self._scores = {}
        for segment_id, contestants in scores.items():
            for contestant_id, judges in contestants.items():
                for judge_id, criteria in judges.items():
                    for criterion_id, value in criteria.items():
                        self.set_score(segment_id, contestant_id, judge_id, criterion_id, value)

    def clear(self) -> None:
        self._scores = {}

    def reset(self, preserve: Iterable[Tuple[str, str]] = ()) -> int:
        """Drop every score except those whose (segment, criterion) is preserved.

        Returns the number of removed scores.
        """
        keep: Set[Tuple[str, str]] = set(preserve)
        removed = 0
        for record in self.records():
            if (record.segment_id, record.criterion_id) in keep:
                continue
            self.delete_score(record.segment_id, record.contestant_id, record.judge_id, record.criterion_id)
            removed += 1
        return removed

    # -----------------------
    # Accessors
    # -----------------------
    def get_score(self, segment_id: str, contestant_id: str, judge_id: str, criterion_id: str) -> Optional[float]:
        return self._scores.get(segment_id, {}).get(contestant_id, {}).get(judge_id, {}).get(criterion_id)

    def has_score(self, segment_id: str, contestant_id: str, judge_id: str, criterion_id: str) -> bool:
        return self.get_score(segment_id, contestant_id, judge_id, criterion_id) is not None

    def judge_scores(self, segment_id: str, contestant_id: str, judge_id: str) -> Dict[str, float]:
        return dict(self._scores.get(segment_id, {}).get(contestant_id, {}).get(judge_id, {}))

    def contestant_scores(self, segment_id: str, contestant_id: str) -> Dict[str, Dict[str, float]]:
        """judge -> criterion -> value for one contestant in one segment."""
        return copy.deepcopy(self._scores.get(segment_id, {}).get(contestant_id, {}))

    def total_for_judge(self, segment_id: str, contestant_id: str, judge_id: str,
                        criterion_ids: Optional[Iterable[str]] = None) -> float:
        scores = self._scores.get(segment_id, {}).get(contestant_id, {}).get(judge_id, {})
        if criterion_ids is not None:
            wanted = set(criterion_ids)
            return float(sum(v for c, v in scores.items() if c in wanted))
        return float(sum(scores.values()))

    def total_for_contestant(self, segment_id: str, contestant_id: str) -> float:
        judges = self._scores.get(segment_id, {}).get(contestant_id, {})
        return float(sum(self.total_for_judge(segment_id, contestant_id, j) for j in judges))

    def judge_totals(self, segment_id: str, contestant_id: str) -> Dict[str, float]:
        """One rounded total per judge who scored this contestant in this segment."""
        judges = self._scores.get(segment_id, {}).get(contestant_id, {})
        return {j: round2(self.total_for_judge(segment_id, contestant_id, j)) for j in judges}

    def judges_for(self, segment_id: str, contestant_id: str) -> List[str]:
        return list(self._scores.get(segment_id, {}).get(contestant_id, {}).keys())

    def judge_totals_frame(self, segment_id: str, contestant_ids: List[str], judge_ids: List[str]) -> pd.DataFrame:
        """
        rows = judge_id
        cols = contestant_id
        values = that judge's rounded total over all criteria (NaN if unscored)
        """
        rows = []
        for judge_id in judge_ids:
            row = []
            for contestant_id in contestant_ids:
                scores = self._scores.get(segment_id, {}).get(contestant_id, {}).get(judge_id)
                row.append(round2(sum(scores.values())) if scores else np.nan)
            rows.append(row)
        return pd.DataFrame(rows, index=list(judge_ids), columns=list(contestant_ids), dtype=float)

    def records(self) -> List[ScoreRecord]:
        return [
            ScoreRecord(segment_id, contestant_id, judge_id, criterion_id, value)
            for segment_id, contestants in self._scores.items()
            for contestant_id, judges in contestants.items()
            for judge_id, criteria in judges.items()
            for criterion_id, value in criteria.items()
        ]

    def as_dict(self) -> NestedScores:
        return copy.deepcopy(self._scores)

    def __len__(self) -> int:
        return len(self.records())

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ScoreAggregate):
            return NotImplemented
        return self._scores == other._scores


# -----------------------
# Store <-> aggregate adapter
# -----------------------
def rows_to_nested(rows: Iterable[Dict[str, Any]]) -> NestedScores:
    """Convert flat store rows into the nested map, rounding every value.

    Rows use the store's snake_case keys: segment_id, contestant_id,
    judge_id, criterion_id, score.
    """
    nested: NestedScores = {}
    for row in rows:
        value = row["score"]
        if not is_valid_score(value):
            log.warning("Skipping stored score with invalid value %r: %r", value, row)
            continue
        (
            nested.setdefault(str(row["segment_id"]), {})
            .setdefault(str(row["contestant_id"]), {})
            .setdefault(str(row["judge_id"]), {})
        )[str(row["criterion_id"])] = round2(value)
    return nested


def nested_to_rows(scores: NestedScores, competition_id: int) -> List[Dict[str, Any]]:
    """Flatten the nested map into store rows, rounding every value."""
    rows = []
    for segment_id, contestants in scores.items():
        for contestant_id, judges in contestants.items():
            for judge_id, criteria in judges.items():
                for criterion_id, value in criteria.items():
                    rows.append({
                        "competition_id": competition_id,
                        "segment_id": segment_id,
                        "criterion_id": criterion_id,
                        "contestant_id": contestant_id,
                        "judge_id": judge_id,
                        "score": round2(value),
                    })
    return rows
