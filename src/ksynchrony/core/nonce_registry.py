"""
KSynchrony - Payment Nonce Registry

Issues collision-free, time-bounded request tokens per destination address.
Many concurrent payment requests of the same amount to the same address can
each be matched back to exactly one token, which is what makes concurrent
issuance unambiguous.

Locking is per address bucket. A small registry-level lock only guards
bucket creation/retirement and the global index of live token values.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from ksynchrony.core.exceptions import NonceCollisionError
from ksynchrony.core.metrics import KSynchronyMetrics

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_nonce_value(now: float) -> str:
    """``<base36 millisecond timestamp>-<16 random hex chars>``."""
    return f"{_base36(int(now * 1000))}-{secrets.token_hex(8)}"


@dataclass(frozen=True)
class NonceToken:
    """An issued payment nonce. Replaced, never mutated, when marked used."""

    value: str
    address: str
    created_at: float
    expires_at: float
    used: bool = False

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def is_active(self, now: float) -> bool:
        return not self.used and not self.is_expired(now)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class _Bucket:
    tokens: Dict[str, NonceToken] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)
    retired: bool = False


class NonceRegistry:
    """
    Track outstanding payment nonces per destination address

    Tokens are globally unique, ``used`` only ever goes from False to True,
    and expired tokens are invalid whatever their ``used`` flag says.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
        metrics: Optional[KSynchronyMetrics] = None,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self.metrics = metrics
        self._buckets: Dict[str, _Bucket] = {}
        self._live_values: Set[str] = set()
        self._lock = threading.Lock()
        self._issued_total = 0
        self._used_total = 0

    def _bucket_for(self, address: str) -> _Bucket:
        with self._lock:
            bucket = self._buckets.get(address)
            if bucket is None:
                bucket = _Bucket()
                self._buckets[address] = bucket
            return bucket

    def _claim_value(self, value: str) -> None:
        with self._lock:
            if value in self._live_values:
                raise NonceCollisionError(value)
            self._live_values.add(value)

    def issue(self, address: str, ttl: Optional[float] = None) -> NonceToken:
        """
        Issue a fresh token for an address

        Args:
            address: Destination address the payment will target
            ttl: Lifetime in seconds (defaults to the registry TTL)

        Returns:
            NonceToken: the new token, already tracked as outstanding
        """
        lifetime = self.ttl if ttl is None else ttl
        now = self._clock()
        token = NonceToken(
            value=generate_nonce_value(now),
            address=address,
            created_at=now,
            expires_at=now + lifetime,
        )
        self._claim_value(token.value)

        while True:
            bucket = self._bucket_for(address)
            with bucket.lock:
                # A sweep may retire the bucket between lookup and lock
                if bucket.retired:
                    continue
                bucket.tokens[token.value] = token
                break

        with self._lock:
            self._issued_total += 1
        if self.metrics:
            self.metrics.nonces_issued_total.inc()
        logger.debug(
            "Issued payment nonce",
            extra={"event": "nonce.issued", "address": address[:18] + "...", "expires_at": token.expires_at},
        )
        return token

    def mark_used(self, address: str, value: str) -> bool:
        """
        Flip a token to used

        Unknown, expired or already used tokens are ignored; a caller racing
        a sweep or confirming twice must not crash.

        Returns:
            bool: True only if this call flipped the flag
        """
        with self._lock:
            bucket = self._buckets.get(address)
        if bucket is None:
            return False
        with bucket.lock:
            token = bucket.tokens.get(value)
            if token is None or not token.is_active(self._clock()):
                return False
            bucket.tokens[value] = replace(token, used=True)

        with self._lock:
            self._used_total += 1
        if self.metrics:
            self.metrics.nonces_used_total.inc()
        logger.info(
            "Payment nonce marked used",
            extra={"event": "nonce.used", "address": address[:18] + "...", "nonce": value},
        )
        return True

    def get(self, address: str, value: str) -> Optional[NonceToken]:
        with self._lock:
            bucket = self._buckets.get(address)
        if bucket is None:
            return None
        with bucket.lock:
            return bucket.tokens.get(value)

    def validate(self, address: str, value: str) -> bool:
        """True if the token exists, is unused and has not expired."""
        token = self.get(address, value)
        return token is not None and token.is_active(self._clock())

    def active_tokens(self, address: str) -> FrozenSet[NonceToken]:
        """Tokens for an address that are unused and unexpired."""
        with self._lock:
            bucket = self._buckets.get(address)
        if bucket is None:
            return frozenset()
        now = self._clock()
        with bucket.lock:
            return frozenset(t for t in bucket.tokens.values() if t.is_active(now))

    def tokens(self, address: str) -> List[NonceToken]:
        """Every tracked token for an address, including used ones."""
        with self._lock:
            bucket = self._buckets.get(address)
        if bucket is None:
            return []
        with bucket.lock:
            return list(bucket.tokens.values())

    def sweep_expired(self) -> int:
        """
        Drop expired tokens from every bucket and retire empty buckets

        Returns:
            int: number of tokens removed
        """
        now = self._clock()
        removed = 0
        with self._lock:
            buckets = list(self._buckets.items())

        for address, bucket in buckets:
            with bucket.lock:
                expired = [v for v, t in bucket.tokens.items() if t.is_expired(now)]
                for value in expired:
                    del bucket.tokens[value]
                removed += len(expired)
                if expired:
                    with self._lock:
                        self._live_values.difference_update(expired)
                if not bucket.tokens:
                    with self._lock:
                        bucket.retired = True
                        if self._buckets.get(address) is bucket:
                            del self._buckets[address]

        if self.metrics:
            self.metrics.nonces_swept_total.inc(removed)
            self.metrics.active_nonce_addresses.set(len(self.addresses()))
        if removed:
            logger.info(
                "Swept expired payment nonces",
                extra={"event": "nonce.swept", "removed": removed},
            )
        return removed

    def addresses(self) -> List[str]:
        with self._lock:
            return list(self._buckets.keys())

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        with self._lock:
            buckets = list(self._buckets.values())
            issued, used = self._issued_total, self._used_total
        outstanding = active = 0
        for bucket in buckets:
            with bucket.lock:
                outstanding += len(bucket.tokens)
                active += sum(1 for t in bucket.tokens.values() if t.is_active(now))
        return {
            "addresses": len(buckets),
            "outstanding": outstanding,
            "active": active,
            "issued_total": issued,
            "used_total": used,
        }
