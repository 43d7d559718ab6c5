from decimal import Decimal

from ksynchrony.utils.formatting import (
    format_address,
    format_duration,
    format_kas,
    format_probability,
    format_timestamp,
    format_tx_id,
    kas_to_sompi,
    sompi_to_kas,
)
from ksynchrony.utils.qr import build_payment_uri


def test_kas_conversions():
    assert sompi_to_kas(150_000_000) == Decimal("1.5")
    assert kas_to_sompi("1.5") == 150_000_000
    assert kas_to_sompi(0.000000019) == 1
    assert format_kas(123_456_789) == "1.23456789"
    assert format_kas(123_456_789, decimals=2) == "1.23"


def test_identifier_truncation(address):
    assert format_address(address) == f"{address[:10]}...{address[-8:]}"
    assert format_address("kaspa:abc") == "kaspa:abc"
    assert format_tx_id("ab" * 32) == "abababababababab..."


def test_probability_and_time():
    assert format_probability(0.99898) == "99.90%"
    assert format_timestamp(0) == "1970-01-01T00:00:00+00:00"


def test_durations():
    assert format_duration(0.25) == "250ms"
    assert format_duration(9.5) == "9.5s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(7260) == "2h 1m"


def test_payment_uri(address):
    assert build_payment_uri(address) == address
    assert build_payment_uri(address, 100_000_000) == f"{address}?amount=1"
    assert build_payment_uri(address, 1, "n-1") == f"{address}?amount=0.00000001&nonce=n-1"
