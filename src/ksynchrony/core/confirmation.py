"""
Probabilistic confirmation estimates over a block-DAG.

For a submitted transaction the estimator answers "how likely is this now
irreversibly included?" from two signals measured against the virtual tip:

- depth: tip ordering score minus the accepting block's ordering score
- confirming blocks: blocks built on top of the accepting block, approximated
  by the same ordering-score delta

Each signal feeds a saturating term ``1 - exp(-x / k)``; the terms are
weighted 60/40 in favour of depth and clamped to [0, 1].

Node failures never escape ``estimate``. A subject with no accepting block
gets a zero-confidence result; a transient node failure repeats the last
estimate produced for that subject so a polling caller never sees the
probability collapse because of a network hiccup.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterator, Optional

from ksynchrony.core.exceptions import NodeNotFoundError, NodeUnavailableError
from ksynchrony.core.metrics import KSynchronyMetrics
from ksynchrony.core.node_client import BlockInfo, NodeClient
from ksynchrony.core.validation import validate_tx_id

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.99
DEPTH_DECAY = 3.0
CONFIRMING_DECAY = 5.0
DEPTH_WEIGHT = 0.6
CONFIRMING_WEIGHT = 0.4
MAX_WAIT_BLOCKS = 10


@dataclass(frozen=True)
class ConfirmationResult:
    """Immutable snapshot of one confirmation estimate."""

    subject_id: str
    probability: float
    depth: int
    confirming_blocks: int
    estimated_time_to_confidence: float
    timestamp: float

    @classmethod
    def zero(
        cls, subject_id: str, timestamp: Optional[float] = None, block_time: float = 1.0
    ) -> "ConfirmationResult":
        return cls(
            subject_id=subject_id,
            probability=0.0,
            depth=0,
            confirming_blocks=0,
            estimated_time_to_confidence=MAX_WAIT_BLOCKS * block_time,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    @property
    def is_confident(self) -> bool:
        return self.probability >= CONFIDENCE_THRESHOLD

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["confident"] = self.is_confident
        return data


def inclusion_probability(depth: int, confirming_blocks: int) -> float:
    """Combine the depth and confirming-block terms into a probability."""
    depth_term = 1.0 - math.exp(-max(0, depth) / DEPTH_DECAY)
    confirming_term = 1.0 - math.exp(-max(0, confirming_blocks) / CONFIRMING_DECAY)
    probability = DEPTH_WEIGHT * depth_term + CONFIRMING_WEIGHT * confirming_term
    return min(1.0, max(0.0, probability))


def time_to_confidence(probability: float, block_time: float = 1.0) -> float:
    """Seconds until the probability is expected to reach the threshold."""
    if probability >= CONFIDENCE_THRESHOLD:
        return 0.0
    gap = (CONFIDENCE_THRESHOLD - max(0.0, probability)) / CONFIDENCE_THRESHOLD
    return gap * MAX_WAIT_BLOCKS * block_time


class BlockCache:
    """Bounded block cache with oldest-inserted-first eviction.

    Accepted blocks are immutable, so entries never expire on their own.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._blocks: "OrderedDict[str, BlockInfo]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, block_hash: str) -> Optional[BlockInfo]:
        with self._lock:
            block = self._blocks.get(block_hash)
            if block is None:
                self.misses += 1
            else:
                self.hits += 1
            return block

    def put(self, block: BlockInfo) -> None:
        with self._lock:
            if block.hash in self._blocks:
                return
            self._blocks[block.hash] = block
            while len(self._blocks) > self.capacity:
                self._blocks.popitem(last=False)

    def __contains__(self, block_hash: str) -> bool:
        with self._lock:
            return block_hash in self._blocks

    def __len__(self) -> int:
        with self._lock:
            return len(self._blocks)


class ConfirmationEstimator:
    """Computes ``ConfirmationResult`` snapshots from live node state."""

    def __init__(
        self,
        node_client: NodeClient,
        *,
        block_time: float = 1.0,
        poll_interval: Optional[float] = None,
        cache_size: int = 100,
        remembered_results: int = 1000,
        metrics: Optional[KSynchronyMetrics] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.node_client = node_client
        self.block_time = block_time
        self.poll_interval = block_time if poll_interval is None else poll_interval
        self.block_cache = BlockCache(cache_size)
        self.metrics = metrics
        self._clock = clock
        self._sleep = sleep
        self._remembered_limit = max(1, remembered_results)
        self._last_results: "OrderedDict[str, ConfirmationResult]" = OrderedDict()
        self._results_lock = threading.Lock()

    def estimate(self, subject_id: str) -> ConfirmationResult:
        """Estimate inclusion probability for a transaction id.

        Raises:
            ValidationError: if the id is malformed (before any node call)
        """
        validate_tx_id(subject_id)
        try:
            result = self._compute(subject_id)
        except NodeNotFoundError:
            self._record_node_error("not_found")
            self._forget(subject_id)
            return self._zero(subject_id, "not_found")
        except NodeUnavailableError as exc:
            self._record_node_error("unavailable")
            previous = self._recall(subject_id)
            logger.warning(
                "Node unavailable while estimating %s; reusing last estimate",
                subject_id[:16],
                extra={
                    "event": "confirmation.node_unavailable",
                    "subject": subject_id[:16] + "...",
                    "has_previous": previous is not None,
                    "error": str(exc),
                },
            )
            if previous is None:
                return self._zero(subject_id, "stale")
            if self.metrics:
                self.metrics.estimates_total.labels(outcome="stale").inc()
            return previous

        if result is None:
            self._forget(subject_id)
            return self._zero(subject_id, "not_found")

        self._remember(result)
        if self.metrics:
            self.metrics.estimates_total.labels(outcome="accepted").inc()
            self.metrics.estimate_probability.observe(result.probability)
        return result

    def monitor(self, subject_id: str, poll_interval: Optional[float] = None) -> Iterator[ConfirmationResult]:
        """Yield a fresh estimate every poll interval until it is confident.

        The sequence ends after the first confident result. Callers cancel by
        simply no longer consuming it (or by calling ``close()``).
        """
        validate_tx_id(subject_id)
        interval = self.poll_interval if poll_interval is None else poll_interval
        return self._monitor(subject_id, interval)

    def _monitor(self, subject_id: str, interval: float) -> Iterator[ConfirmationResult]:
        while True:
            result = self.estimate(subject_id)
            yield result
            if result.is_confident:
                logger.debug(
                    "Monitor reached confidence",
                    extra={"event": "confirmation.monitor_done", "subject": subject_id[:16] + "..."},
                )
                return
            self._sleep(interval)

    def _compute(self, subject_id: str) -> Optional[ConfirmationResult]:
        accepting = self.node_client.get_accepting_block(subject_id)
        if accepting is None:
            return None

        accepting_score = accepting.ordering_score
        if accepting_score is None:
            accepting_score = self._fetch_block(accepting.hash).ordering_score

        tip_score = self.node_client.get_virtual_tip_score()
        depth = max(0, tip_score - accepting_score)
        # Sibling traversal would need one extra node read per block; the
        # ordering-score delta is used as the confirming-block count instead.
        confirming_blocks = depth

        probability = inclusion_probability(depth, confirming_blocks)
        return ConfirmationResult(
            subject_id=subject_id,
            probability=probability,
            depth=depth,
            confirming_blocks=confirming_blocks,
            estimated_time_to_confidence=time_to_confidence(probability, self.block_time),
            timestamp=self._clock(),
        )

    def _fetch_block(self, block_hash: str) -> BlockInfo:
        block = self.block_cache.get(block_hash)
        if block is None:
            block = self.node_client.get_block(block_hash)
            self.block_cache.put(block)
        return block

    def _zero(self, subject_id: str, outcome: str) -> ConfirmationResult:
        if self.metrics:
            self.metrics.estimates_total.labels(outcome=outcome).inc()
        return ConfirmationResult.zero(subject_id, timestamp=self._clock(), block_time=self.block_time)

    def _record_node_error(self, kind: str) -> None:
        if self.metrics:
            self.metrics.node_errors_total.labels(kind=kind).inc()

    def _remember(self, result: ConfirmationResult) -> None:
        with self._results_lock:
            self._last_results[result.subject_id] = result
            self._last_results.move_to_end(result.subject_id)
            while len(self._last_results) > self._remembered_limit:
                self._last_results.popitem(last=False)

    def _recall(self, subject_id: str) -> Optional[ConfirmationResult]:
        with self._results_lock:
            return self._last_results.get(subject_id)

    def _forget(self, subject_id: str) -> None:
        with self._results_lock:
            self._last_results.pop(subject_id, None)
