"""
Per-entity append-only logs of items awaiting network acceptance.

Game moves and data anchors are both tracked items: submitted with a
reference id, then flipped to confirmed once by the reconciler. Each entity
(game, device) has its own ordered sequence guarded by its own lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)


@dataclass
class TrackedItem:
    """An event anchored to the network; ``confirmed`` is its only mutable state."""

    entity_id: str
    payload: Any
    reference: str
    submitted_at: float = field(default_factory=time.time)
    confirmed: bool = False

    def confirm(self) -> bool:
        """Set confirmed; returns True only on the False -> True transition."""
        if self.confirmed:
            return False
        self.confirmed = True
        return True


T = TypeVar("T", bound=TrackedItem)


class EventRegistry(Generic[T]):
    """Ordered item sequences keyed by entity id."""

    kind = "event"

    def __init__(self, kind: Optional[str] = None) -> None:
        if kind:
            self.kind = kind
        self._sequences: Dict[str, List[T]] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._lock = threading.Lock()
        self.tip_score: Optional[int] = None

    def _lock_for(self, entity_id: str) -> threading.RLock:
        with self._lock:
            lock = self._locks.get(entity_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[entity_id] = lock
                self._sequences[entity_id] = []
            return lock

    def entity_lock(self, entity_id: str) -> threading.RLock:
        """Reentrant lock serializing every mutation of one entity's sequence."""
        return self._lock_for(entity_id)

    def register(self, entity_id: str) -> None:
        """Create an empty sequence for an entity if it does not exist."""
        self._lock_for(entity_id)

    def append(self, entity_id: str, item: T) -> T:
        lock = self._lock_for(entity_id)
        with lock:
            self._sequences[entity_id].append(item)
        return item

    def items(self, entity_id: str) -> List[T]:
        """Items for an entity in submission order."""
        with self._lock:
            lock = self._locks.get(entity_id)
        if lock is None:
            return []
        with lock:
            return list(self._sequences[entity_id])

    def entities(self) -> List[str]:
        with self._lock:
            return list(self._sequences.keys())

    def __contains__(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._sequences

    def pending(self) -> List[T]:
        """Snapshot of every unconfirmed item across all entities."""
        result: List[T] = []
        for entity_id in self.entities():
            result.extend(item for item in self.items(entity_id) if not item.confirmed)
        return result

    def mark_confirmed(self, item: T) -> bool:
        with self._lock:
            lock = self._locks.get(item.entity_id)
        if lock is None:
            return False
        with lock:
            flipped = item.confirm()
        if flipped:
            logger.info(
                "Tracked %s confirmed",
                self.kind,
                extra={"event": f"{self.kind}.confirmed", "entity": item.entity_id, "reference": item.reference},
            )
        return flipped

    def observe_tip(self, tip_score: int) -> None:
        """Record the tip ordering score seen by the latest reconcile tick."""
        self.tip_score = tip_score

    def stats(self) -> Dict[str, int]:
        total = confirmed = 0
        for entity_id in self.entities():
            items = self.items(entity_id)
            total += len(items)
            confirmed += sum(1 for i in items if i.confirmed)
        return {"entities": len(self.entities()), "items": total, "confirmed": confirmed}
