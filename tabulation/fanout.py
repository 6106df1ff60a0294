from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from tabulation.errors import FanOutError
from tabulation.log import get_logger
from tabulation.models import Judge, ScoreRecord
from tabulation.rounding import is_valid_score, round2
from tabulation.scores import ScoreAggregate

log = get_logger("fanout")

# Writes a whole batch to the authoritative store or raises
PersistBatch = Callable[[List[ScoreRecord]], None]


def build_batch(segment_id: str, criterion_id: str, values: Dict[str, float],
                judges: Iterable[Judge]) -> List[ScoreRecord]:
    """One record per (contestant, judge), every judge getting the same value."""
    judge_ids = [j.id for j in judges]
    return [
        ScoreRecord(segment_id, contestant_id, judge_id, criterion_id, round2(value))
        for contestant_id, value in values.items()
        for judge_id in judge_ids
    ]


def fan_out(
    aggregate: ScoreAggregate,
    segment_id: str,
    criterion_id: str,
    values: Dict[str, float],
    judges: Iterable[Judge],
    persist: Optional[PersistBatch] = None,
) -> List[ScoreRecord]:
    """
    Write one derived value per contestant identically to every judge.

    The batch goes to ``persist`` first; the local aggregate only changes once
    the store accepted all of it, so a failure leaves nothing half applied.
    """
    judges = list(judges)
    if not judges:
        raise FanOutError(f"No judges to receive {segment_id}/{criterion_id}")
    invalid = {c: v for c, v in values.items() if not is_valid_score(v)}
    if invalid:
        raise FanOutError(f"Invalid derived values for {segment_id}/{criterion_id}: {invalid}")
    batch = build_batch(segment_id, criterion_id, values, judges)

    if persist is not None:
        try:
            persist(batch)
        except Exception as e:
            log.error("Fan-out of %s/%s failed: %s", segment_id, criterion_id, e)
            raise FanOutError(
                f"Failed to write {segment_id}/{criterion_id} to all judges: {e}",
                failed_judges=[j.id for j in judges],
            ) from e

    for record in batch:
        aggregate.set_score(record.segment_id, record.contestant_id, record.judge_id,
                            record.criterion_id, record.value)
    log.info("Fanned out %s/%s to %d judges for %d contestants",
             segment_id, criterion_id, len(judges), len(values))
    return batch
