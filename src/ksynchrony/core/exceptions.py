"""
Exception hierarchy for KSynchrony.

Node failures (unavailable, not found) are absorbed by the estimator and the
reconciler and surface to callers as zero-confidence data. Validation errors
reach callers immediately. Invariant errors indicate a bug and are never
caught inside the library.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class KSynchronyError(Exception):
    """Base exception for all KSynchrony errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
        code: Stable machine-readable error code
    """

    code = "UNKNOWN_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


# ==================== Input Errors ====================


class ValidationError(KSynchronyError):
    """Raised when an address, identifier or amount is malformed."""

    code = "VALIDATION_ERROR"


# ==================== Node Errors ====================


class NodeError(KSynchronyError):
    """Base class for failures talking to the chain node."""

    code = "NODE_ERROR"


class NodeUnavailableError(NodeError):
    """Node unreachable, timed out, or returned an unusable payload.

    Treated as insufficient evidence, never as a negative answer.
    """

    code = "NETWORK_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details=details, recoverable=True)


class NodeNotFoundError(NodeError):
    """The node does not know the requested transaction or block (yet)."""

    code = "NOT_FOUND"


# ==================== Invariant Errors ====================


class InvariantError(KSynchronyError):
    """An internal guarantee was violated; indicates a bug."""

    code = "INVARIANT_VIOLATION"


class NonceCollisionError(InvariantError):
    """A freshly generated nonce value matched a live token."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Nonce collision for value {value}", details={"nonce": value})


# ==================== Registry Errors ====================


class GameError(KSynchronyError):
    """Raised for invalid game operations (unknown game, foreign player)."""

    code = "GAME_ERROR"


class IoTError(KSynchronyError):
    """Raised for invalid device anchoring operations."""

    code = "IOT_ERROR"
