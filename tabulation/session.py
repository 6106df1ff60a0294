from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from tabulation.active import ActiveCriteriaGate
from tabulation.awards import MinorAwardResult, minor_awards
from tabulation.carry_forward import CarryForwardDeriver, CarryForwardPreview
from tabulation.config import load_settings
from tabulation.events import EventChannel, ScoreEventConsumer
from tabulation.log import get_logger
from tabulation.models import (
    CompetitionSettings,
    CompetitionSnapshot,
    Contestant,
    Judge,
    RankingConfig,
    ScoreEvent,
    ScoreRecord,
)
from tabulation.poller import ConsistencyPoller
from tabulation.prejudged import PrejudgedScaler
from tabulation.ranking import RankedScore, rank_by_group, rank_overall
from tabulation.ranks import order_by_rank
from tabulation.rounding import is_valid_score, round2
from tabulation.scores import ScoreAggregate, rows_to_nested
from tabulation.store import ScoreStore

log = get_logger("session")


class CompetitionSession:
    """
    One competition as seen by one client: settings, scores, the active
    criteria gate and judge finalization, optionally backed by a store.

    Writes go to the store first and to local state after, so a failed write
    never leaves local state ahead of the authoritative copy.
    """

    def __init__(
        self,
        competition_id: int,
        snapshot: CompetitionSnapshot,
        store: Optional[ScoreStore] = None,
        scores: Optional[Dict] = None,
        finalized: Iterable[Tuple[str, str]] = (),
        events: Optional[EventChannel] = None,
    ):
        self.competition_id = competition_id
        self.snapshot = snapshot
        self.store = store
        self.events = events
        self.aggregate = ScoreAggregate(scores)
        self.gate = ActiveCriteriaGate(snapshot.settings)
        self.gate.replace(snapshot.active_criteria, notify=False)
        self.gate.subscribe(self._reopen_judges)
        # (judge_id, segment_id)
        self.finalized: Set[Tuple[str, str]] = set(finalized)

    @classmethod
    def load(cls, store: ScoreStore, competition_id: int,
             events: Optional[EventChannel] = None) -> "CompetitionSession":
        state = cls.fetch_state(store, competition_id)
        session = cls(competition_id, CompetitionSnapshot.from_dict(state["competition"]), store=store, events=events)
        session.apply_state(state)
        return session

    @property
    def settings(self) -> CompetitionSettings:
        return self.snapshot.settings

    @property
    def contestants(self) -> List[Contestant]:
        return self.snapshot.contestants

    @property
    def judges(self) -> List[Judge]:
        return self.snapshot.judges

    # -----------------------
    # Reconciliation
    # -----------------------
    @staticmethod
    def fetch_state(store: ScoreStore, competition_id: int) -> Dict[str, Any]:
        """Plain, comparable copy of everything the store holds for a competition."""
        return {
            "competition": store.fetch_competition(competition_id).to_dict(),
            "scores": store.fetch_scores(competition_id),
            "finalized": sorted(store.finalized_judges(competition_id)),
        }

    def apply_state(self, state: Dict[str, Any]) -> None:
        """Replace local state wholesale with a fetched authoritative copy."""
        self.snapshot = CompetitionSnapshot.from_dict(state["competition"])
        self.gate.bind(self.snapshot.settings)
        self.gate.replace(self.snapshot.active_criteria, notify=False)
        self.aggregate.replace_all(rows_to_nested(state["scores"]))
        self.finalized = {tuple(pair) for pair in state["finalized"]}

    def reload(self) -> None:
        if self.store is None:
            return
        self.apply_state(self.fetch_state(self.store, self.competition_id))

    def poller(self, interval: Optional[float] = None) -> ConsistencyPoller:
        """A poller that keeps this session in step with the store."""
        if self.store is None:
            raise ValueError("Polling needs a store")
        store, competition_id = self.store, self.competition_id

        async def fetch() -> Dict[str, Any]:
            return await asyncio.to_thread(self.fetch_state, store, competition_id)

        return ConsistencyPoller(
            fetch,
            interval or load_settings().judge_poll_seconds,
            on_change=self.apply_state,
            name=f"competition-{competition_id}",
        )

    def follow(self, channel: EventChannel):
        """Apply other clients' score events to this session. Returns the unsubscribe handle."""
        return channel.subscribe(ScoreEventConsumer(self.competition_id, self.aggregate, self.reload))

    def _publish(self, record: ScoreRecord, deleted: bool = False) -> None:
        if self.events is None:
            return
        self.events.publish(ScoreEvent(
            competition_id=self.competition_id,
            segment_id=record.segment_id,
            contestant_id=record.contestant_id,
            judge_id=record.judge_id,
            criterion_id=record.criterion_id,
            deleted=deleted,
        ))

    def _persist_batch(self, records: List[ScoreRecord]) -> None:
        if self.store is not None:
            self.store.persist_scores(self.competition_id, records)

    def save(self) -> None:
        if self.store is not None:
            self.store.save_competition(self.competition_id, self.snapshot)

    # -----------------------
    # Judge commands
    # -----------------------
    def submit_score(self, judge_id: str, segment_id: str, contestant_id: str, criterion_id: str, value) -> bool:
        """Record one judge's score. Returns False when the submission is not accepted."""
        if not any(j.id == judge_id for j in self.judges):
            log.warning("Rejected score from unknown judge %r", judge_id)
            return False
        if not any(c.id == contestant_id for c in self.contestants):
            log.warning("Rejected score for unknown contestant %r", contestant_id)
            return False
        if not self.gate.can_submit(segment_id, criterion_id):
            log.info("Rejected score for inactive criterion %s/%s from %s", segment_id, criterion_id, judge_id)
            return False
        if (judge_id, segment_id) in self.finalized:
            log.info("Rejected score from %s: segment %s is finalized", judge_id, segment_id)
            return False
        if not is_valid_score(value):
            log.warning("Rejected invalid score value %r from %s", value, judge_id)
            return False

        record = ScoreRecord(segment_id, contestant_id, judge_id, criterion_id, round2(value))
        if self.store is not None:
            self.store.persist_score(self.competition_id, record)
        self.aggregate.set_score(segment_id, contestant_id, judge_id, criterion_id, record.value)
        self._publish(record)
        return True

    def delete_score(self, judge_id: str, segment_id: str, contestant_id: str, criterion_id: str) -> bool:
        removed = False
        if self.store is not None:
            removed = self.store.delete_score(self.competition_id, segment_id, contestant_id, judge_id, criterion_id)
        removed = self.aggregate.delete_score(segment_id, contestant_id, judge_id, criterion_id) or removed
        if removed:
            self._publish(ScoreRecord(segment_id, contestant_id, judge_id, criterion_id, 0.0), deleted=True)
        return removed

    def finalize_judge(self, judge_id: str, segment_id: str) -> None:
        if not any(j.id == judge_id for j in self.judges):
            raise ValueError(f"Unknown judge {judge_id!r}")
        if self.settings.segment(segment_id) is None:
            raise ValueError(f"Unknown segment {segment_id!r}")
        if self.store is not None:
            self.store.finalize_judge(self.competition_id, judge_id, segment_id)
        self.finalized.add((judge_id, segment_id))
        log.info("Judge %s finalized segment %s", judge_id, segment_id)

    def is_finalized(self, judge_id: str, segment_id: str) -> bool:
        return (judge_id, segment_id) in self.finalized

    # -----------------------
    # Admin commands
    # -----------------------
    def _reopen_judges(self, segment_id: str, criterion_id: str) -> None:
        if self.finalized:
            log.info("Activation of %s/%s reopens %d finalized judges", segment_id, criterion_id, len(self.finalized))
        self.finalized.clear()
        if self.store is not None:
            self.store.reset_finalization(self.competition_id)

    def _save_active(self) -> None:
        self.snapshot.active_criteria = self.gate.items()
        if self.store is not None:
            self.store.set_active_criteria(self.competition_id, self.snapshot.active_criteria)

    def toggle_criterion(self, segment_id: str, criterion_id: str) -> bool:
        active = self.gate.toggle(segment_id, criterion_id)
        self._save_active()
        return active

    def clear_active_criteria(self) -> None:
        self.gate.clear()
        self._save_active()

    def set_ranking_config(self, config: RankingConfig) -> None:
        self.settings.ranking = config
        self.save()

    def remove_segment(self, segment_id: str) -> bool:
        if not self.settings.remove_segment(segment_id):
            return False
        purged = self.gate.purge_segment(segment_id)
        self.save()
        self._save_active()
        log.info("Removed segment %s (%d active criteria purged)", segment_id, purged)
        return True

    def advance_contestants(self, segment_id: str) -> Dict[str, List[str]]:
        """
        Move the top ``advancingCandidates`` of each ranking group in
        ``segment_id`` on to the following segment.

        Returns group -> advanced contestant ids, best first. Equal ranks at
        the cut fall back to contestant id order.
        """
        index = self.settings.segment_index(segment_id)
        if index < 0:
            raise ValueError(f"Unknown segment {segment_id!r}")
        if index + 1 >= len(self.settings.segments):
            raise ValueError(f"{segment_id!r} is the last segment; nobody can advance from it")
        count = self.settings.segments[index].advancing_candidates
        if count <= 0:
            raise ValueError(f"Set the number of advancing candidates for {segment_id!r} first")
        next_segment = self.settings.segments[index + 1]

        advanced: Dict[str, List[str]] = {}
        for group, results in self.segment_rankings(segment_id).items():
            advanced[group] = order_by_rank({c: r.rank for c, r in results.items()})[:count]

        moving = {c for ids in advanced.values() for c in ids}
        for contestant in self.contestants:
            if contestant.id in moving:
                contestant.current_segment_id = next_segment.id
        self.save()
        log.info("Advanced %d contestants from %s to %s", len(moving), segment_id, next_segment.id)
        return advanced

    def reset_scores(self, preserve_prejudged: bool = True) -> int:
        """Delete scores, keeping prejudged criteria unless told otherwise; reopens every judge."""
        preserve = self.settings.derived_criteria(prejudged_only=True) if preserve_prejudged else []
        if self.store is not None:
            self.store.reset_scores(self.competition_id, preserve)
            self.store.reset_finalization(self.competition_id)
        removed = self.aggregate.reset(preserve)
        self.finalized.clear()
        return removed

    # -----------------------
    # Derived scores
    # -----------------------
    def carry_forward(self) -> CarryForwardDeriver:
        return CarryForwardDeriver(self.settings, self.aggregate)

    def configure_carry_forward(self, segment_id: str, criterion_id: str, source_segments: List[str],
                                scaling_factor: float = 1.0, calculation_method: str = "rawAverage") -> None:
        self.carry_forward().configure(
            segment_id, criterion_id, source_segments, scaling_factor, calculation_method, gate=self.gate,
        )
        self.save()
        self._save_active()

    def preview_carry_forward(self, segment_id: str, criterion_id: str, source_segments: Optional[List[str]] = None,
                              scaling_factor: float = 1.0,
                              calculation_method: str = "rawAverage") -> Dict[str, CarryForwardPreview]:
        """
        Derived values without writing anything. Given ``source_segments`` the
        preview uses that configuration on a scratch copy of the settings.
        """
        deriver = self.carry_forward()
        if source_segments is not None:
            deriver = CarryForwardDeriver(copy.deepcopy(self.settings), self.aggregate)
            deriver.configure(segment_id, criterion_id, source_segments, scaling_factor, calculation_method)
        return deriver.preview(segment_id, criterion_id, self.contestants, self.judges)

    def apply_carry_forward(self, segment_id: str, criterion_id: str) -> Dict[str, float]:
        return self.carry_forward().commit(
            segment_id, criterion_id, self.contestants, self.judges, persist=self._persist_batch,
        )

    def prejudged(self, segment_id: str) -> PrejudgedScaler:
        scaler = PrejudgedScaler(self.settings, self.aggregate, segment_id)
        scaler.load_from_aggregate(self.judges)
        return scaler

    def apply_prejudged(
        self,
        segment_id: str,
        raw_scores: Dict[str, Dict[str, float]],
        max_raw: Optional[Dict[str, float]] = None,
    ) -> Dict[str, Dict[str, float]]:
        """
        raw_scores: contestant -> criterion -> raw score
        max_raw:    criterion -> configured maximum raw score
        """
        scaler = self.prejudged(segment_id)
        for criterion_id, value in (max_raw or {}).items():
            scaler.set_max_raw(criterion_id, value)
        for contestant_id, criteria in raw_scores.items():
            for criterion_id, raw in criteria.items():
                scaler.set_raw_score(contestant_id, criterion_id, raw)
        committed = scaler.commit(self.judges, persist=self._persist_batch)
        if max_raw:
            self.save()
        return committed

    # -----------------------
    # Results
    # -----------------------
    def segment_rankings(self, segment_id: str) -> Dict[str, Dict[str, RankedScore]]:
        if self.settings.segment(segment_id) is None:
            raise ValueError(f"Unknown segment {segment_id!r}")
        return rank_by_group(
            segment_id,
            self.contestants,
            self.judges,
            self.aggregate,
            self.settings.ranking,
            separate_by_gender=self.settings.separate_ranking_by_gender,
        )

    def overall_rankings(self, segment_ids: Optional[Sequence[str]] = None) -> Dict[str, Dict[str, RankedScore]]:
        segment_ids = list(segment_ids or [s.id for s in self.settings.segments])
        for segment_id in segment_ids:
            if self.settings.segment(segment_id) is None:
                raise ValueError(f"Unknown segment {segment_id!r}")
        groups: Dict[str, List[Contestant]] = {}
        for c in self.contestants:
            key = c.gender if self.settings.separate_ranking_by_gender else "all"
            groups.setdefault(key, []).append(c)
        return {
            key: rank_overall(segment_ids, members, self.judges, self.aggregate, self.settings.ranking)
            for key, members in groups.items()
        }

    def minor_awards(self, criteria: Sequence[Tuple[str, str]]) -> List[MinorAwardResult]:
        return minor_awards(
            criteria,
            self.settings,
            self.contestants,
            self.judges,
            self.aggregate,
            separate_by_gender=self.settings.separate_ranking_by_gender,
        )
