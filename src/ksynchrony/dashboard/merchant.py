"""
Merchant dashboard: tracks submitted payments and reports revenue.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from ksynchrony.core.validation import validate_amount, validate_tx_id
from ksynchrony.payments.engine import PaymentEngine
from ksynchrony.utils.formatting import (
    format_address,
    format_kas,
    format_probability,
    format_timestamp,
    format_tx_id,
)

logger = logging.getLogger(__name__)


@dataclass
class TrackedPayment:
    tx_id: str
    amount: int
    timestamp: float
    status: str = "pending"  # pending, confirmed, failed
    probability: float = 0.0


class MerchantDashboard:
    """Revenue and confirmation overview for one merchant address."""

    def __init__(
        self,
        payment_engine: PaymentEngine,
        merchant_address: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.payment_engine = payment_engine
        self.merchant_address = merchant_address
        self._clock = clock
        self._payments: Dict[str, TrackedPayment] = {}
        self._lock = threading.Lock()

    def track_transaction(self, tx_id: str, amount: int) -> TrackedPayment:
        validate_tx_id(tx_id)
        validate_amount(amount)
        payment = TrackedPayment(tx_id=tx_id, amount=amount, timestamp=self._clock())
        with self._lock:
            self._payments[tx_id] = payment
        return payment

    def update_transaction_status(self, tx_id: str, status: str) -> None:
        if status not in ("confirmed", "failed"):
            raise ValueError(f"Unsupported status {status!r}")
        with self._lock:
            payment = self._payments.get(tx_id)
            if payment is not None:
                payment.status = status

    def refresh_statuses(self) -> int:
        """Re-estimate pending payments; confident ones become confirmed."""
        with self._lock:
            pending = [p for p in self._payments.values() if p.status == "pending"]
        confirmed = 0
        for payment in pending:
            result = self.payment_engine.estimate_confirmation(payment.tx_id)
            with self._lock:
                payment.probability = result.probability
                if result.is_confident:
                    payment.status = "confirmed"
                    confirmed += 1
        return confirmed

    def get_stats(self) -> Dict[str, Any]:
        merchant = self.payment_engine.get_merchant_stats(self.merchant_address)
        with self._lock:
            payments = list(self._payments.values())

        confirmed = [p for p in payments if p.status == "confirmed"]
        revenue = sum(p.amount for p in confirmed)
        recent = sorted(payments, key=lambda p: p.timestamp, reverse=True)[:10]
        return {
            "total_revenue": revenue,
            "total_transactions": len(payments),
            "active_requests": merchant["active_payment_requests"],
            "balance": merchant["balance"],
            "average_transaction_value": revenue / len(confirmed) if confirmed else 0,
            "success_rate": len(confirmed) / len(payments) if payments else 0.0,
            "recent_transactions": [asdict(p) for p in recent],
        }

    def generate_report(self, stats: Optional[Dict[str, Any]] = None) -> str:
        stats = stats or self.get_stats()
        lines: List[str] = [
            "MERCHANT DASHBOARD REPORT",
            "=" * 60,
            f"Merchant Address:   {format_address(self.merchant_address)}",
            f"Balance:            {format_kas(stats['balance'])} KAS",
            "",
            "REVENUE",
            "-" * 60,
            f"Total Revenue:      {format_kas(stats['total_revenue'])} KAS",
            f"Total Transactions: {stats['total_transactions']}",
            f"Average Value:      {format_kas(int(stats['average_transaction_value']))} KAS",
            f"Success Rate:       {format_probability(stats['success_rate'])}",
            f"Active Requests:    {stats['active_requests']}",
            "",
            "RECENT TRANSACTIONS",
            "-" * 60,
        ]
        for i, tx in enumerate(stats["recent_transactions"], start=1):
            lines.append(f"{i}. {format_tx_id(tx['tx_id'])}")
            lines.append(f"   Amount: {format_kas(tx['amount'])} KAS")
            lines.append(f"   Status: {tx['status'].upper()} ({format_probability(tx['probability'])})")
            lines.append(f"   Time:   {format_timestamp(tx['timestamp'])}")
        lines.append("")
        lines.append(f"Generated: {format_timestamp(self._clock())}")
        return "\n".join(lines)
