"""
KSynchrony subsystem instance.

Wires one node client, one confirmation estimator, the payment, gaming and
IoT engines and a single reconciler over their registries. Every instance
owns its own state, so several can coexist in one process.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, Optional

from ksynchrony.core.config import KSynchronyConfig
from ksynchrony.core.confirmation import ConfirmationEstimator, ConfirmationResult
from ksynchrony.core.metrics import KSynchronyMetrics
from ksynchrony.core.node_client import KaspaRPCClient, NodeClient
from ksynchrony.core.nonce_registry import NonceRegistry, NonceToken
from ksynchrony.core.reconciler import Reconciler, ReconcileReport
from ksynchrony.gaming.engine import GamingEngine
from ksynchrony.iot.engine import IoTEngine
from ksynchrony.payments.engine import PaymentEngine

logger = logging.getLogger(__name__)


class KSynchrony:
    """Facade exposing confirmation estimates, payment nonces and reconciliation."""

    def __init__(
        self,
        config: Optional[KSynchronyConfig] = None,
        node_client: Optional[NodeClient] = None,
        metrics: Optional[KSynchronyMetrics] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or KSynchronyConfig()
        self.config.validate()
        self.metrics = metrics or KSynchronyMetrics()
        self.node_client = node_client or KaspaRPCClient(
            self.config.node_url,
            network=self.config.network.value,
            timeout=self.config.rpc_timeout,
            api_key=self.config.api_key,
        )
        self.estimator = ConfirmationEstimator(
            self.node_client,
            block_time=self.config.block_time,
            poll_interval=self.config.monitor_poll_interval,
            cache_size=self.config.block_cache_size,
            metrics=self.metrics,
            clock=clock,
            sleep=sleep,
        )
        self.nonce_registry = NonceRegistry(ttl=self.config.nonce_ttl, clock=clock, metrics=self.metrics)

        self.payments = PaymentEngine(self.node_client, self.estimator, self.nonce_registry)
        self.gaming = GamingEngine(clock=clock)
        self.iot = IoTEngine(clock=clock)

        self.reconciler = Reconciler(
            self.node_client,
            [self.gaming.registry, self.iot.registry],
            self.nonce_registry,
            interval=self.config.reconcile_interval,
            metrics=self.metrics,
        )

    def initialize(self) -> None:
        """Probe the node; raises ``NodeUnavailableError`` if it cannot be reached."""
        self.node_client.connect()
        logger.info(
            "KSynchrony initialized",
            extra={"event": "ksync.initialized", "network": self.config.network.value},
        )

    # ==================== Outward interface ====================

    def estimate_confirmation(self, subject_id: str) -> ConfirmationResult:
        return self.estimator.estimate(subject_id)

    def stream_confirmation(self, subject_id: str, poll_interval: Optional[float] = None) -> Iterator[ConfirmationResult]:
        return self.estimator.monitor(subject_id, poll_interval=poll_interval)

    def issue_payment_nonce(self, address: str) -> NonceToken:
        return self.payments.issue_payment_nonce(address)

    def validate_nonce(self, address: str, nonce: str) -> bool:
        return self.payments.validate_nonce(address, nonce)

    def mark_nonce_used(self, address: str, nonce: str) -> None:
        self.payments.mark_nonce_used(address, nonce)

    def start_reconciler(self, interval: Optional[float] = None) -> bool:
        return self.reconciler.start(interval)

    def stop_reconciler(self) -> None:
        self.reconciler.stop()

    def reconcile_once(self) -> ReconcileReport:
        return self.reconciler.run_once()

    # ==================== Lifecycle ====================

    def shutdown(self) -> None:
        """Stop background work; returns once every background thread has exited."""
        self.stop_reconciler()
        self.iot.shutdown()
        self.node_client.close()
        logger.info("KSynchrony shutdown complete", extra={"event": "ksync.shutdown"})

    def __enter__(self) -> "KSynchrony":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
