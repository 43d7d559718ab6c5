"""
KSynchrony - real-time confirmation estimates and collision-free payment
nonces over a proof-of-work block-DAG.
"""

from ksynchrony.client import KSynchrony
from ksynchrony.core.config import KSynchronyConfig, NetworkType
from ksynchrony.core.confirmation import ConfirmationEstimator, ConfirmationResult
from ksynchrony.core.exceptions import (
    KSynchronyError,
    NodeNotFoundError,
    NodeUnavailableError,
    ValidationError,
)
from ksynchrony.core.nonce_registry import NonceRegistry, NonceToken
from ksynchrony.core.reconciler import Reconciler
from ksynchrony.dashboard.merchant import MerchantDashboard

__version__ = "0.3.0"

__all__ = [
    "KSynchrony",
    "KSynchronyConfig",
    "NetworkType",
    "ConfirmationEstimator",
    "ConfirmationResult",
    "NonceRegistry",
    "NonceToken",
    "Reconciler",
    "MerchantDashboard",
    "KSynchronyError",
    "NodeNotFoundError",
    "NodeUnavailableError",
    "ValidationError",
]
