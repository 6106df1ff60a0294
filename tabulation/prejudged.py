from __future__ import annotations

from typing import Dict, Iterable, Optional

from tabulation.fanout import PersistBatch, fan_out
from tabulation.log import get_logger
from tabulation.models import CompetitionSettings, Criterion, Judge
from tabulation.rounding import is_valid_score, round2
from tabulation.scores import ScoreAggregate

log = get_logger("prejudged")

DEFAULT_MAX_RAW = 100.0


def scale(raw: float, max_score: float, max_raw: float) -> float:
    """raw * (max_score / max_raw), two decimals."""
    return round2(raw * (max_score / max_raw))


class PrejudgedScaler:
    """Rescales externally judged raw scores onto a segment's prejudged criteria.

    Raw inputs are kept per (contestant, criterion) so that changing a
    criterion's configured maximum raw score rescales everything already
    entered, not just new input.
    """

    def __init__(self, settings: CompetitionSettings, aggregate: ScoreAggregate, segment_id: str):
        if settings.segment(segment_id) is None:
            raise ValueError(f"Unknown segment {segment_id!r}")
        self.settings = settings
        self.aggregate = aggregate
        self.segment_id = segment_id
        # criterion -> contestant -> raw
        self._raw: Dict[str, Dict[str, float]] = {}

    def _criterion(self, criterion_id: str) -> Criterion:
        criterion = self.settings.criterion(self.segment_id, criterion_id)
        if criterion is None or not criterion.is_prejudged:
            raise ValueError(f"{self.segment_id}/{criterion_id} is not a prejudged criterion")
        return criterion

    def max_raw(self, criterion_id: str) -> float:
        return self._criterion(criterion_id).max_raw_score or DEFAULT_MAX_RAW

    def set_max_raw(self, criterion_id: str, max_raw: float) -> Dict[str, float]:
        """Change the raw scale and return the rescaled values for every entered raw score."""
        if not is_valid_score(max_raw) or max_raw <= 0:
            raise ValueError(f"Maximum raw score must be positive, got {max_raw!r}")
        criterion = self._criterion(criterion_id)
        criterion.max_raw_score = round2(max_raw)
        return self.scaled_for(criterion_id)

    def set_raw_score(self, contestant_id: str, criterion_id: str, raw: float) -> float:
        if not contestant_id:
            raise ValueError("contestant id is required")
        if not is_valid_score(raw):
            raise ValueError(f"Raw score must be a finite number >= 0, got {raw!r}")
        self._criterion(criterion_id)
        self._raw.setdefault(criterion_id, {})[contestant_id] = round2(raw)
        return self.scaled(contestant_id, criterion_id)

    def raw_score(self, contestant_id: str, criterion_id: str) -> Optional[float]:
        return self._raw.get(criterion_id, {}).get(contestant_id)

    def scaled(self, contestant_id: str, criterion_id: str) -> float:
        criterion = self._criterion(criterion_id)
        raw = self._raw.get(criterion_id, {}).get(contestant_id)
        if raw is None:
            raise KeyError(f"No raw score for {contestant_id} on {criterion_id}")
        return scale(raw, criterion.max_score, self.max_raw(criterion_id))

    def scaled_for(self, criterion_id: str) -> Dict[str, float]:
        return {c: self.scaled(c, criterion_id) for c in self._raw.get(criterion_id, {})}

    def preview(self) -> Dict[str, Dict[str, float]]:
        """criterion -> contestant -> scaled value, nothing written."""
        return {criterion_id: self.scaled_for(criterion_id) for criterion_id in self._raw}

    def load_from_aggregate(self, judges: Iterable[Judge]) -> int:
        """Recover raw inputs from already stored scaled scores.

        Prejudged values are identical across judges, so the first real judge
        holding a value is enough. Returns the number of raw scores recovered.
        """
        judge_ids = [j.id for j in judges]
        segment = self.settings.segment(self.segment_id)
        recovered = 0
        for criterion in segment.criteria:
            if not criterion.is_prejudged:
                continue
            max_raw = criterion.max_raw_score or DEFAULT_MAX_RAW
            for record in self.aggregate.records():
                if record.segment_id != self.segment_id or record.criterion_id != criterion.id:
                    continue
                if record.judge_id not in judge_ids:
                    continue
                if record.contestant_id in self._raw.get(criterion.id, {}):
                    continue
                raw = round2(record.value * max_raw / criterion.max_score)
                self._raw.setdefault(criterion.id, {})[record.contestant_id] = raw
                recovered += 1
        return recovered

    def commit(self, judges: Iterable[Judge], persist: Optional[PersistBatch] = None,
               criterion_id: Optional[str] = None) -> Dict[str, Dict[str, float]]:
        """Fan every scaled value out to all judges, one batch per criterion."""
        judges = list(judges)
        committed = {}
        criterion_ids = [criterion_id] if criterion_id else list(self._raw)
        for cid in criterion_ids:
            values = self.scaled_for(cid)
            if not values:
                continue
            fan_out(self.aggregate, self.segment_id, cid, values, judges, persist)
            committed[cid] = values
        log.info("Applied prejudged scores for %d criteria in segment %s", len(committed), self.segment_id)
        return committed
