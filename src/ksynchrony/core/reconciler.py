"""
Background reconciler that confirms tracked items and sweeps expired nonces.

One tick reads the virtual tip once, re-checks every unconfirmed item in the
registered event registries, then sweeps the nonce registry. A stop
request ends the tick at the next item without sweeping. A failure on a
single item never aborts the tick; a failure reading the tip skips the tick
and the next one retries on schedule.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from ksynchrony.core.event_registry import EventRegistry
from ksynchrony.core.exceptions import KSynchronyError, NodeError
from ksynchrony.core.metrics import KSynchronyMetrics
from ksynchrony.core.node_client import NodeClient
from ksynchrony.core.nonce_registry import NonceRegistry

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """Outcome of one reconcile tick."""

    tip_score: Optional[int] = None
    checked: int = 0
    confirmed: int = 0
    failed: int = 0
    swept: int = 0
    skipped: bool = False
    interrupted: bool = False
    finished_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Reconciler:
    """Periodic tick over event registries and a nonce registry."""

    def __init__(
        self,
        node_client: NodeClient,
        registries: Iterable[EventRegistry] = (),
        nonce_registry: Optional[NonceRegistry] = None,
        *,
        interval: float = 1.0,
        metrics: Optional[KSynchronyMetrics] = None,
        name: str = "ksync-reconciler",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.node_client = node_client
        self.registries: List[EventRegistry] = list(registries)
        self.nonce_registry = nonce_registry
        self.interval = interval
        self.metrics = metrics
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self._last_report: Optional[ReconcileReport] = None
        self._ticks = 0

    def add_registry(self, registry: EventRegistry) -> None:
        self.registries.append(registry)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval: Optional[float] = None) -> bool:
        if interval is not None:
            if interval <= 0:
                raise ValueError("interval must be positive")
            self.interval = interval
        with self._state_lock:
            if self._thread and self._thread.is_alive():
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
            self._thread.start()
        logger.info(
            "Reconciler started",
            extra={"event": "reconciler.started", "interval": self.interval, "registries": len(self.registries)},
        )
        return True

    def stop(self) -> None:
        """Signal the loop and wait for the background thread to exit."""
        with self._state_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            thread.join()
            self._thread = None
            self._stop_event.clear()
        logger.info("Reconciler stopped", extra={"event": "reconciler.stopped", "ticks": self._ticks})

    def run_once(self) -> ReconcileReport:
        """Run exactly one tick in the calling thread (useful for tests)."""
        return self._tick()

    @property
    def last_report(self) -> Optional[ReconcileReport]:
        return self._last_report

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            start = time.monotonic()
            try:
                self._tick()
            except (KSynchronyError, RuntimeError, ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.error(
                    "Reconciler tick failed: %s",
                    exc,
                    extra={"event": "reconciler.tick_failed", "error_type": type(exc).__name__},
                )
            elapsed = time.monotonic() - start
            if self._stop_event.wait(max(0.0, self.interval - elapsed)):
                break

    def _tick(self) -> ReconcileReport:
        report = ReconcileReport()
        try:
            report.tip_score = self.node_client.get_virtual_tip_score()
        except NodeError as exc:
            report.skipped = True
            report.finished_at = time.time()
            self._finish(report)
            logger.warning(
                "Reconciler tick skipped; tip unavailable",
                extra={"event": "reconciler.tick_skipped", "error": str(exc)},
            )
            return report

        if self.metrics:
            self.metrics.tip_score.set(report.tip_score)

        for registry in self.registries:
            if self._stop_event.is_set():
                report.interrupted = True
                break
            registry.observe_tip(report.tip_score)
            for item in registry.pending():
                if self._stop_event.is_set():
                    report.interrupted = True
                    break
                report.checked += 1
                try:
                    accepting = self.node_client.get_accepting_block(item.reference)
                except NodeError as exc:
                    report.failed += 1
                    logger.debug(
                        "Acceptance check failed; retrying next tick",
                        extra={
                            "event": "reconciler.item_failed",
                            "kind": registry.kind,
                            "reference": item.reference,
                            "error": str(exc),
                        },
                    )
                    continue
                if accepting is not None and registry.mark_confirmed(item):
                    report.confirmed += 1
                    if self.metrics:
                        self.metrics.items_confirmed_total.labels(kind=registry.kind).inc()
            if report.interrupted:
                break

        if self.nonce_registry is not None and not report.interrupted:
            report.swept = self.nonce_registry.sweep_expired()

        report.finished_at = time.time()
        self._finish(report)
        if report.confirmed or report.swept:
            logger.info(
                "Reconcile tick finished",
                extra={"event": "reconciler.tick", **report.to_dict()},
            )
        return report

    def _finish(self, report: ReconcileReport) -> None:
        self._ticks += 1
        self._last_report = report
        if self.metrics:
            self.metrics.reconciler_ticks_total.labels(status="skipped" if report.skipped else "ok").inc()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval": self.interval,
            "ticks": self._ticks,
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }
