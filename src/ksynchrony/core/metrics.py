"""
KSynchrony - Prometheus Metrics

Each KSynchrony instance owns its own registry so isolated instances (and
tests) never share counters.
"""

from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)


class KSynchronyMetrics:
    """Metrics for the estimator, nonce registry and reconciler."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        # ==================== CONFIRMATION METRICS ====================
        self.estimates_total = Counter(
            "ksync_confirmation_estimates_total",
            "Confirmation estimates computed",
            ["outcome"],  # accepted, not_found, stale
            registry=self.registry,
        )
        self.estimate_probability = Histogram(
            "ksync_confirmation_probability",
            "Distribution of reported inclusion probabilities",
            buckets=[0.1, 0.25, 0.5, 0.75, 0.9, 0.95, 0.99, 1.0],
            registry=self.registry,
        )
        self.node_errors_total = Counter(
            "ksync_node_errors_total",
            "Node read failures by kind",
            ["kind"],  # unavailable, not_found
            registry=self.registry,
        )

        # ==================== NONCE METRICS ====================
        self.nonces_issued_total = Counter(
            "ksync_nonces_issued_total", "Payment nonces issued", registry=self.registry
        )
        self.nonces_used_total = Counter(
            "ksync_nonces_used_total", "Payment nonces marked used", registry=self.registry
        )
        self.nonces_swept_total = Counter(
            "ksync_nonces_swept_total", "Expired nonces removed by sweeps", registry=self.registry
        )
        self.active_nonce_addresses = Gauge(
            "ksync_nonce_addresses", "Addresses with outstanding nonces", registry=self.registry
        )

        # ==================== RECONCILER METRICS ====================
        self.reconciler_ticks_total = Counter(
            "ksync_reconciler_ticks_total",
            "Reconciler ticks by status",
            ["status"],  # ok, skipped
            registry=self.registry,
        )
        self.items_confirmed_total = Counter(
            "ksync_items_confirmed_total",
            "Tracked async items flipped to confirmed",
            ["kind"],
            registry=self.registry,
        )
        self.tip_score = Gauge(
            "ksync_virtual_tip_score", "Last observed virtual tip ordering score", registry=self.registry
        )

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)
