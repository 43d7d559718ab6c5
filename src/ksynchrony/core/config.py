"""
KSynchrony Configuration

Supports testnet and mainnet with separate node defaults. All values can be
overridden through ``KSYNC_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class NetworkType(Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


DEFAULT_NODE_URLS = {
    NetworkType.MAINNET: "http://127.0.0.1:16110",
    NetworkType.TESTNET: "http://127.0.0.1:16210",
}

DEFAULT_RPC_TIMEOUT = 5.0
DEFAULT_BLOCK_TIME = 1.0
DEFAULT_NONCE_TTL = 300.0
DEFAULT_BLOCK_CACHE_SIZE = 100


def _env_float(env_var: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be a number, got {raw!r}") from exc


def _env_int(env_var: str, default: int) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from exc


def _parse_network(value: str) -> NetworkType:
    try:
        return NetworkType(value.strip().lower())
    except ValueError as exc:
        raise ConfigurationError(
            f"Unknown network {value!r}; expected one of "
            f"{', '.join(n.value for n in NetworkType)}"
        ) from exc


@dataclass
class KSynchronyConfig:
    """Runtime settings shared by every engine of one KSynchrony instance."""

    network: NetworkType = NetworkType.TESTNET
    node_url: Optional[str] = None
    api_key: Optional[str] = None
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    block_time: float = DEFAULT_BLOCK_TIME
    reconcile_interval: Optional[float] = None
    monitor_poll_interval: Optional[float] = None
    nonce_ttl: float = DEFAULT_NONCE_TTL
    block_cache_size: int = DEFAULT_BLOCK_CACHE_SIZE
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.network, str):
            self.network = _parse_network(self.network)
        if not self.node_url:
            self.node_url = DEFAULT_NODE_URLS[self.network]
        if self.reconcile_interval is None:
            self.reconcile_interval = self.block_time
        if self.monitor_poll_interval is None:
            self.monitor_poll_interval = self.block_time

    @classmethod
    def from_env(cls) -> "KSynchronyConfig":
        """Build a configuration from ``KSYNC_*`` environment variables."""
        config = cls(
            network=_parse_network(os.getenv("KSYNC_NETWORK", "testnet")),
            node_url=os.getenv("KSYNC_NODE_URL", "").strip() or None,
            api_key=os.getenv("KSYNC_API_KEY", "").strip() or None,
            rpc_timeout=_env_float("KSYNC_RPC_TIMEOUT", DEFAULT_RPC_TIMEOUT),
            block_time=_env_float("KSYNC_BLOCK_TIME_SECONDS", DEFAULT_BLOCK_TIME),
            reconcile_interval=_env_float("KSYNC_RECONCILE_INTERVAL", None),
            monitor_poll_interval=_env_float("KSYNC_MONITOR_POLL_SECONDS", None),
            nonce_ttl=_env_float("KSYNC_NONCE_TTL_SECONDS", DEFAULT_NONCE_TTL),
            block_cache_size=_env_int("KSYNC_BLOCK_CACHE_SIZE", DEFAULT_BLOCK_CACHE_SIZE),
            log_level=os.getenv("KSYNC_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            api_host=os.getenv("KSYNC_API_HOST", "127.0.0.1").strip() or "127.0.0.1",
            api_port=_env_int("KSYNC_API_PORT", 8080),
        )
        config.validate()
        logger.debug(
            "Loaded configuration from environment",
            extra={"event": "config.loaded", "network": config.network.value},
        )
        return config

    def validate(self) -> None:
        """Reject settings that would stall or disable the core loops."""
        for name in ("rpc_timeout", "block_time", "reconcile_interval", "monitor_poll_interval", "nonce_ttl"):
            value = getattr(self, name)
            if value is None or value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value!r}")
        if self.block_cache_size < 1:
            raise ConfigurationError("block_cache_size must be at least 1")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown log level {self.log_level!r}")
        if not 0 < self.api_port < 65536:
            raise ConfigurationError(f"api_port out of range: {self.api_port}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network.value,
            "node_url": self.node_url,
            "rpc_timeout": self.rpc_timeout,
            "block_time": self.block_time,
            "reconcile_interval": self.reconcile_interval,
            "monitor_poll_interval": self.monitor_poll_interval,
            "nonce_ttl": self.nonce_ttl,
            "block_cache_size": self.block_cache_size,
            "log_level": self.log_level,
        }
