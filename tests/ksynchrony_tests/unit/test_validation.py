import pytest

from ksynchrony.core.exceptions import ValidationError
from ksynchrony.core.validation import (
    is_valid_address,
    is_valid_tx_id,
    sanitize_string,
    validate_address,
    validate_amount,
    validate_entity_id,
    validate_nonce_format,
    validate_tx_id,
)


def test_addresses(address, other_address):
    assert is_valid_address(address)
    assert is_valid_address(other_address)
    for bad in ("", "kaspa:", "bitcoin:" + "q" * 61, address.upper(), "kaspa:" + "q" * 64, None, 42):
        assert not is_valid_address(bad)
    with pytest.raises(ValidationError) as exc:
        validate_address("nope")
    assert exc.value.code == "VALIDATION_ERROR"


def test_transaction_ids(tx_id):
    assert is_valid_tx_id(tx_id)
    assert is_valid_tx_id(tx_id.upper())
    assert is_valid_tx_id("tx_abc")
    assert is_valid_tx_id("anchor_0123")
    assert is_valid_tx_id("covenant_0123")
    for bad in ("", "ab" * 31, "zz" * 32, "txabc", "tx_" + "a" * 200, None):
        assert not is_valid_tx_id(bad)
    with pytest.raises(ValidationError):
        validate_tx_id("nope")


def test_entity_ids():
    assert validate_entity_id("game_01-x") == "game_01-x"
    with pytest.raises(ValidationError) as exc:
        validate_entity_id("no spaces", "device")
    assert exc.value.details == {"device": "no spaces"}


def test_nonce_format():
    assert validate_nonce_format("lq1abc-0123456789abcdef")
    with pytest.raises(ValidationError):
        validate_nonce_format("lq1abc-XYZ")


def test_amounts():
    assert validate_amount(1) == 1
    for bad in (0, -1, 1.0, False, "5"):
        with pytest.raises(ValidationError):
            validate_amount(bad)


def test_sanitize_string():
    assert sanitize_string("  <b>hi</b> ") == "bhi/b"
    assert sanitize_string(None) == ""
    assert sanitize_string("x" * 500, max_length=10) == "x" * 10
