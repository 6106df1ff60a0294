from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Set, Tuple

from tabulation.log import get_logger
from tabulation.models import ActiveCriterion, CompetitionSettings

log = get_logger("active")

ActivationListener = Callable[[str, str], None]


class ActiveCriteriaGate:
    """The set of (segment, criterion) pairs currently open for live judging.

    Activating a criterion that was not active before notifies every
    subscriber with (segment_id, criterion_id). The gate itself does not
    reopen judge finalization; subscribers do.
    """

    def __init__(self, settings: CompetitionSettings):
        self._settings = settings
        self._active: Set[Tuple[str, str]] = set()
        self._order: List[Tuple[str, str]] = []
        self._listeners: List[ActivationListener] = []

    def bind(self, settings: CompetitionSettings) -> None:
        """Point the gate at new settings and drop entries they no longer allow."""
        self._settings = settings
        for pair in list(self._order):
            if not self._allowed(*pair):
                self._discard(pair)

    def subscribe(self, listener: ActivationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _allowed(self, segment_id: str, criterion_id: str) -> bool:
        criterion = self._settings.criterion(segment_id, criterion_id)
        return criterion is not None and not criterion.is_derived

    def _discard(self, pair: Tuple[str, str]) -> None:
        self._active.discard(pair)
        if pair in self._order:
            self._order.remove(pair)

    # -----------------------
    # Set mutations
    # -----------------------
    def activate(self, segment_id: str, criterion_id: str) -> bool:
        """Open a criterion for judging. Returns True if it was newly activated."""
        if not self._allowed(segment_id, criterion_id):
            log.info("Ignoring activation of derived or unknown criterion %s/%s", segment_id, criterion_id)
            return False
        pair = (segment_id, criterion_id)
        if pair in self._active:
            return False
        self._active.add(pair)
        self._order.append(pair)
        for listener in list(self._listeners):
            listener(segment_id, criterion_id)
        return True

    def deactivate(self, segment_id: str, criterion_id: str) -> bool:
        pair = (segment_id, criterion_id)
        if pair not in self._active:
            return False
        self._discard(pair)
        return True

    def toggle(self, segment_id: str, criterion_id: str) -> bool:
        """Flip a criterion; returns whether it is active afterwards."""
        if self.is_active(segment_id, criterion_id):
            self.deactivate(segment_id, criterion_id)
            return False
        return self.activate(segment_id, criterion_id)

    def clear(self) -> None:
        self._active.clear()
        self._order.clear()

    def purge_segment(self, segment_id: str) -> int:
        """Remove every entry for a deleted segment."""
        doomed = [p for p in self._order if p[0] == segment_id]
        for pair in doomed:
            self._discard(pair)
        return len(doomed)

    def replace(self, pairs: Iterable[ActiveCriterion], notify: bool = True) -> List[Tuple[str, str]]:
        """Reconcile with an authoritative list.

        Entries not in ``pairs`` are dropped; new entries go through
        ``activate`` so derived criteria stay out and listeners fire.
        Returns the newly activated pairs.
        """
        wanted = [(p.segment_id, p.criterion_id) for p in pairs]
        for pair in list(self._order):
            if pair not in wanted:
                self._discard(pair)
        added = []
        listeners: Optional[List[ActivationListener]] = None
        if not notify:
            listeners, self._listeners = self._listeners, []
        try:
            for pair in wanted:
                if self.activate(*pair):
                    added.append(pair)
        finally:
            if listeners is not None:
                self._listeners = listeners
        return added

    # -----------------------
    # Queries
    # -----------------------
    def is_active(self, segment_id: str, criterion_id: str) -> bool:
        return (segment_id, criterion_id) in self._active

    def can_submit(self, segment_id: str, criterion_id: str) -> bool:
        """Judges may only score active, non-derived criteria."""
        return self.is_active(segment_id, criterion_id) and self._allowed(segment_id, criterion_id)

    def items(self) -> List[ActiveCriterion]:
        return [ActiveCriterion(s, c) for s, c in self._order]

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, pair) -> bool:
        return tuple(pair) in self._active
