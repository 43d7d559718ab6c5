"""
Node client facade.

The core only needs four reads from the chain node: a transaction's
accepting block, a block's ordering score, the virtual tip's ordering score
and (for reporting) an address balance. ``NodeClient`` names that surface;
``KaspaRPCClient`` implements it over the node's JSON-RPC endpoint.

Every call is bounded by a per-request timeout. Failures are mapped onto
``NodeUnavailableError`` (transient) or ``NodeNotFoundError`` so callers can
tell "no evidence yet" apart from "node down".
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from requests import RequestException

from ksynchrony.core.exceptions import NodeNotFoundError, NodeUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockRef:
    """Pointer to an accepting block; the score is filled when the node reports it."""

    hash: str
    ordering_score: Optional[int] = None


@dataclass(frozen=True)
class BlockInfo:
    hash: str
    ordering_score: int
    timestamp: int
    parent_hashes: List[str] = field(default_factory=list)


class NodeClient(ABC):
    """Read-only capability the core needs from a chain node."""

    @abstractmethod
    def get_accepting_block(self, subject_id: str) -> Optional[BlockRef]:
        """Return the accepting block of a transaction, or None if not accepted yet."""

    @abstractmethod
    def get_block(self, block_hash: str) -> BlockInfo:
        """Fetch a block by hash."""

    @abstractmethod
    def get_virtual_tip_score(self) -> int:
        """Ordering score of the current virtual tip."""

    @abstractmethod
    def get_balance(self, address: str) -> int:
        """Balance of an address in sompi."""

    def get_block_dag_info(self) -> Dict[str, Any]:
        return {}

    def connect(self) -> None:
        """Probe the node; implementations raise ``NodeUnavailableError`` on failure."""
        self.get_block_dag_info()

    def close(self) -> None:
        pass


class KaspaRPCClient(NodeClient):
    """JSON-RPC 2.0 client for a Kaspa node."""

    def __init__(
        self,
        endpoint: str,
        network: str = "testnet",
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        self.endpoint = endpoint
        self.network = network
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers["X-API-Key"] = api_key
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def rpc_call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params or {}}
        try:
            resp = self.session.post(self.endpoint, json=body, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except RequestException as exc:
            logger.debug(
                "Node RPC transport failure",
                extra={"event": "node.rpc_transport_error", "method": method, "error": str(exc)},
            )
            raise NodeUnavailableError(f"RPC call {method} failed: {exc}", details={"method": method}) from exc
        except ValueError as exc:
            raise NodeUnavailableError(f"RPC call {method} returned invalid JSON", details={"method": method}) from exc

        if not isinstance(payload, dict):
            raise NodeUnavailableError(f"RPC call {method} returned malformed payload", details={"method": method})

        error = payload.get("error")
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if "not found" in message.lower():
                raise NodeNotFoundError(message, details={"method": method})
            raise NodeUnavailableError(f"RPC call {method} failed: {message}", details={"method": method})

        result = payload.get("result")
        if not isinstance(result, dict):
            raise NodeUnavailableError(f"RPC call {method} returned no result", details={"method": method})
        return result

    def get_block_dag_info(self) -> Dict[str, Any]:
        return self.rpc_call("getBlockDagInfoRequest")

    def connect(self) -> None:
        info = self.get_block_dag_info()
        logger.info(
            "Connected to Kaspa node",
            extra={
                "event": "node.connected",
                "network": self.network,
                "endpoint": self.endpoint,
                "dag_network": info.get("networkName"),
            },
        )

    def get_accepting_block(self, subject_id: str) -> Optional[BlockRef]:
        result = self.rpc_call("getTransactionRequest", {"txId": subject_id})
        accepting_hash = result.get("acceptingBlockHash")
        if not accepting_hash:
            return None
        score = result.get("acceptingBlockBlueScore")
        return BlockRef(hash=str(accepting_hash), ordering_score=_as_int(score, "acceptingBlockBlueScore", allow_none=True))

    def get_block(self, block_hash: str) -> BlockInfo:
        result = self.rpc_call("getBlockRequest", {"hash": block_hash})
        header = result.get("header")
        if not isinstance(header, dict):
            raise NodeUnavailableError("Block response missing header", details={"hash": block_hash})
        return BlockInfo(
            hash=str(result.get("hash") or block_hash),
            ordering_score=_as_int(header.get("blueScore"), "blueScore"),
            timestamp=_as_int(header.get("timestamp", 0), "timestamp"),
            parent_hashes=list(header.get("parents") or []),
        )

    def get_virtual_tip_score(self) -> int:
        result = self.rpc_call("getVirtualSelectedParentBlueScoreRequest")
        return _as_int(result.get("blueScore"), "blueScore")

    def get_balance(self, address: str) -> int:
        result = self.rpc_call("getBalanceByAddressRequest", {"address": address})
        return _as_int(result.get("balance") or 0, "balance")

    def close(self) -> None:
        self.session.close()


def _as_int(value: Any, name: str, allow_none: bool = False) -> Optional[int]:
    if value is None and allow_none:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise NodeUnavailableError(f"Malformed node field {name}: {value!r}") from exc
