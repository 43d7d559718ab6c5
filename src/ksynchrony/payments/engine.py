"""
Payment Engine

Provides merchant-facing payment capabilities:
- Real-time probability of inclusion for submitted payments
- Collision-free payment nonces for concurrent requests to one address
- Encoded NFC/QR payment requests embedding the nonce
- Merchant statistics
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, Optional

from ksynchrony.core.confirmation import ConfirmationEstimator, ConfirmationResult
from ksynchrony.core.node_client import NodeClient
from ksynchrony.core.nonce_registry import NonceRegistry, NonceToken
from ksynchrony.core.validation import validate_address, validate_amount
from ksynchrony.utils.qr import build_payment_uri, generate_qr_code

logger = logging.getLogger(__name__)


@dataclass
class PaymentRequest:
    """Encoded payment request handed to a customer wallet."""

    encoded: str
    qr_code: str
    uri: str
    nonce: str
    expires_at: float
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def decode(encoded: str) -> Dict[str, Any]:
        """Inverse of the ``encoded`` field: base64 JSON back to the request data."""
        return json.loads(base64.b64decode(encoded.encode("ascii")).decode("utf-8"))


class PaymentEngine:
    """Confirmation estimates and nonce issuance for merchant payments."""

    def __init__(
        self,
        node_client: NodeClient,
        estimator: ConfirmationEstimator,
        nonce_registry: NonceRegistry,
    ) -> None:
        self.node_client = node_client
        self.estimator = estimator
        self.nonce_registry = nonce_registry

    # ==================== Confirmation ====================

    def estimate_confirmation(self, tx_id: str) -> ConfirmationResult:
        """Real-time probability that a payment transaction is irreversibly included."""
        return self.estimator.estimate(tx_id)

    def stream_confirmation(self, tx_id: str, poll_interval: Optional[float] = None) -> Iterator[ConfirmationResult]:
        return self.estimator.monitor(tx_id, poll_interval=poll_interval)

    # ==================== Nonces ====================

    def issue_payment_nonce(self, address: str) -> NonceToken:
        """
        Issue a unique nonce for a payment to ``address``.

        Any number of concurrent requests to the same merchant address each
        get a distinct token.
        """
        validate_address(address)
        return self.nonce_registry.issue(address)

    def validate_nonce(self, address: str, nonce: str) -> bool:
        validate_address(address)
        return self.nonce_registry.validate(address, nonce)

    def mark_nonce_used(self, address: str, nonce: str) -> None:
        validate_address(address)
        self.nonce_registry.mark_used(address, nonce)

    def cleanup_expired_nonces(self) -> int:
        return self.nonce_registry.sweep_expired()

    # ==================== Requests ====================

    def create_payment_request(
        self,
        address: str,
        amount: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentRequest:
        """
        Create an NFC/QR payment request with an embedded nonce.

        Args:
            address: Merchant address
            amount: Amount in sompi
            metadata: Free-form merchant data (order id, item, ...)
        """
        validate_address(address)
        validate_amount(amount)
        token = self.nonce_registry.issue(address)

        data = {
            "address": address,
            "amount": amount,
            "nonce": token.value,
            "expires": token.expires_at,
            "metadata": metadata or {},
        }
        encoded = base64.b64encode(json.dumps(data, sort_keys=True).encode("utf-8")).decode("ascii")
        uri = build_payment_uri(address, amount, token.value)

        logger.info(
            "Payment request created",
            extra={
                "event": "payment.request_created",
                "address": address[:18] + "...",
                "amount": amount,
                "nonce": token.value,
            },
        )
        return PaymentRequest(
            encoded=encoded,
            qr_code=generate_qr_code(uri),
            uri=uri,
            nonce=token.value,
            expires_at=token.expires_at,
            data=data,
        )

    def get_merchant_stats(self, address: str) -> Dict[str, Any]:
        """Balance from the node plus request counters from the registry."""
        validate_address(address)
        tokens = self.nonce_registry.tokens(address)
        return {
            "address": address,
            "balance": self.node_client.get_balance(address),
            "active_payment_requests": len(self.nonce_registry.active_tokens(address)),
            "completed_payments": sum(1 for t in tokens if t.used),
            "total_requests": len(tokens),
        }
