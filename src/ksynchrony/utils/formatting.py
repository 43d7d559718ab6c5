"""Display helpers for amounts, identifiers and times."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal

SOMPI_PER_KAS = 100_000_000


def sompi_to_kas(sompi: int) -> Decimal:
    return Decimal(sompi) / SOMPI_PER_KAS


def kas_to_sompi(kas) -> int:
    amount = Decimal(str(kas)) * SOMPI_PER_KAS
    return int(amount.to_integral_value(rounding=ROUND_DOWN))


def format_kas(sompi: int, decimals: int = 8) -> str:
    quantum = Decimal(1).scaleb(-decimals)
    return str(sompi_to_kas(sompi).quantize(quantum, rounding=ROUND_DOWN))


def format_address(address: str, start_chars: int = 10, end_chars: int = 8) -> str:
    """Truncate the middle of an address for display."""
    if len(address) <= start_chars + end_chars:
        return address
    return f"{address[:start_chars]}...{address[-end_chars:]}"


def format_tx_id(tx_id: str, chars: int = 16) -> str:
    if len(tx_id) <= chars:
        return tx_id
    return f"{tx_id[:chars]}..."


def format_probability(probability: float, decimals: int = 2) -> str:
    return f"{probability * 100:.{decimals}f}%"


def format_timestamp(timestamp: float) -> str:
    """Unix seconds to an ISO-8601 UTC string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
