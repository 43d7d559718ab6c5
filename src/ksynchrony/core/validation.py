"""
Synchronous input validation.

Every public entry point validates identifiers here before touching the
node, so malformed input is rejected with ``ValidationError`` instead of
turning into a confusing node error later.
"""

from __future__ import annotations

import re
from typing import Any

from ksynchrony.core.exceptions import ValidationError

ADDRESS_PATTERN = re.compile(r"^(kaspa|kaspatest):[a-z0-9]{61,63}$")
TX_ID_PATTERN = re.compile(r"^[a-fA-F0-9]{64}$")
REFERENCE_PREFIXES = ("tx_", "anchor_", "covenant_")
ENTITY_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,64}$")
NONCE_PATTERN = re.compile(r"^[a-z0-9]+-[a-f0-9]{16}$")


def is_valid_address(address: Any) -> bool:
    return isinstance(address, str) and bool(ADDRESS_PATTERN.match(address))


def is_valid_tx_id(tx_id: Any) -> bool:
    """64-char hex transaction ids, or locally assigned references."""
    if not isinstance(tx_id, str) or not tx_id:
        return False
    if TX_ID_PATTERN.match(tx_id):
        return True
    return tx_id.startswith(REFERENCE_PREFIXES) and len(tx_id) <= 128


def is_valid_entity_id(entity_id: Any) -> bool:
    return isinstance(entity_id, str) and bool(ENTITY_ID_PATTERN.match(entity_id))


def is_valid_nonce(nonce: Any) -> bool:
    return isinstance(nonce, str) and bool(NONCE_PATTERN.match(nonce))


def is_valid_amount(amount: Any) -> bool:
    """Amounts are positive integers in sompi."""
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


def validate_address(address: Any) -> str:
    if not is_valid_address(address):
        raise ValidationError("Invalid Kaspa address", details={"address": str(address)[:80]})
    return address


def validate_tx_id(tx_id: Any) -> str:
    if not is_valid_tx_id(tx_id):
        raise ValidationError("Invalid transaction id", details={"tx_id": str(tx_id)[:80]})
    return tx_id


def validate_entity_id(entity_id: Any, kind: str = "entity") -> str:
    if not is_valid_entity_id(entity_id):
        raise ValidationError(f"Invalid {kind} id", details={kind: str(entity_id)[:80]})
    return entity_id


def validate_nonce_format(nonce: Any) -> str:
    if not is_valid_nonce(nonce):
        raise ValidationError("Invalid nonce format", details={"nonce": str(nonce)[:80]})
    return nonce


def validate_amount(amount: Any) -> int:
    if not is_valid_amount(amount):
        raise ValidationError("Amount must be a positive integer in sompi", details={"amount": amount})
    return amount


def sanitize_string(value: Any, max_length: int = 256) -> str:
    """Trim, truncate and strip angle brackets from free-form text."""
    if not value:
        return ""
    return str(value).strip()[:max_length].replace("<", "").replace(">", "")
