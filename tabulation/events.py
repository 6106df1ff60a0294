from __future__ import annotations

from typing import Any, Callable, List

from tabulation.log import get_logger
from tabulation.models import ScoreEvent
from tabulation.scores import ScoreAggregate

log = get_logger("events")

EventListener = Callable[[ScoreEvent], Any]


class EventChannel:
    """In-process change feed: every published event goes to every subscriber."""

    def __init__(self):
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ScoreEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def __len__(self) -> int:
        return len(self._listeners)


class ScoreEventConsumer:
    """
    Applies score change events to one competition's aggregate.

    Deletes are applied directly. Any other change only says "something
    moved", so the consumer asks for a full reconciliation instead of
    trusting the event payload.
    """

    def __init__(self, competition_id: int, aggregate: ScoreAggregate, reconcile: Callable[[], Any]):
        self.competition_id = competition_id
        self.aggregate = aggregate
        self._reconcile = reconcile

    def __call__(self, event: ScoreEvent) -> str:
        return self.handle(event)

    def handle(self, event: ScoreEvent) -> str:
        """Returns "ignored", "deleted" or "reconciled"."""
        if event.competition_id != self.competition_id:
            return "ignored"

        if event.deleted:
            ids = (event.segment_id, event.contestant_id, event.judge_id, event.criterion_id)
            if not all(ids):
                log.warning("Delete event without a full score key, reconciling instead: %r", event)
            else:
                self.aggregate.delete_score(*ids)
                return "deleted"

        self._reconcile()
        return "reconciled"
