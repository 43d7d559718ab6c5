"""
IoT Engine

Anchors sensor readings to the network as a tamper-evident "black box"
ledger. Readings may be covenant-locked: they only verify when the anchored
data satisfies the attached conditions.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ksynchrony.core.event_registry import EventRegistry, TrackedItem
from ksynchrony.core.exceptions import IoTError, KSynchronyError
from ksynchrony.core.validation import validate_entity_id

logger = logging.getLogger(__name__)


@dataclass
class CovenantConditions:
    """Predicates checked against anchored data at verification time."""

    max_temperature: Optional[float] = None
    min_temperature: Optional[float] = None
    max_humidity: Optional[float] = None
    allowed_locations: Optional[List[str]] = None
    time_window: Optional[Tuple[float, float]] = None

    def check(self, data: Dict[str, Any], now: Optional[float] = None) -> bool:
        temperature = data.get("temperature")
        if self.max_temperature is not None and temperature is not None and temperature > self.max_temperature:
            return False
        if self.min_temperature is not None and temperature is not None and temperature < self.min_temperature:
            return False

        humidity = data.get("humidity")
        if self.max_humidity is not None and humidity is not None and humidity > self.max_humidity:
            return False

        if self.allowed_locations is not None and data.get("location") not in self.allowed_locations:
            return False

        if self.time_window is not None:
            start, end = self.time_window
            current = time.time() if now is None else now
            if current < start or current > end:
                return False

        return True

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class DataAnchor(TrackedItem):
    data_hash: str = ""
    covenant_conditions: Optional[CovenantConditions] = None
    verified: bool = False

    @property
    def device_id(self) -> str:
        return self.entity_id

    @property
    def covenant_locked(self) -> bool:
        return self.covenant_conditions is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.entity_id,
            "data_hash": self.data_hash,
            "data": self.payload,
            "timestamp": self.submitted_at,
            "tx_id": self.reference,
            "covenant_locked": self.covenant_locked,
            "covenant_conditions": self.covenant_conditions.to_dict() if self.covenant_conditions else None,
            "verified": self.verified,
            "confirmed": self.confirmed,
        }


def hash_data(data: Any) -> str:
    """SHA-256 over canonical JSON."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def default_anchor_reference(prefix: str, device_id: str, data_hash: str) -> str:
    payload = json.dumps({"deviceId": device_id, "dataHash": data_hash, "timestamp": time.time()})
    return f"{prefix}_{hashlib.sha256(payload.encode()).hexdigest()[:16]}"


class IoTEngine:
    """Device data anchoring, covenant checks and continuous anchoring."""

    def __init__(
        self,
        registry: Optional[EventRegistry[DataAnchor]] = None,
        broadcaster: Optional[Callable[[str, str, str], str]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry or EventRegistry(kind="data_anchor")
        self.broadcaster = broadcaster or default_anchor_reference
        self._clock = clock
        self._workers: Dict[str, Tuple[threading.Thread, threading.Event]] = {}
        self._workers_lock = threading.Lock()

    def _anchor(self, device_id: str, data: Any, conditions: Optional[CovenantConditions]) -> DataAnchor:
        validate_entity_id(device_id, "device")
        data_hash = hash_data(data)
        prefix = "covenant" if conditions is not None else "anchor"
        anchor = DataAnchor(
            entity_id=device_id,
            payload=data,
            reference=self.broadcaster(prefix, device_id, data_hash),
            submitted_at=self._clock(),
            data_hash=data_hash,
            covenant_conditions=conditions,
        )
        self.registry.append(device_id, anchor)
        logger.debug(
            "Data anchored",
            extra={
                "event": "iot.anchored",
                "device_id": device_id,
                "tx_id": anchor.reference,
                "covenant": conditions is not None,
            },
        )
        return anchor

    def anchor_data(self, device_id: str, data: Any) -> DataAnchor:
        return self._anchor(device_id, data, None)

    def anchor_with_covenant(self, device_id: str, data: Any, conditions: CovenantConditions) -> DataAnchor:
        """Anchor data that only verifies while ``conditions`` hold."""
        return self._anchor(device_id, data, conditions)

    def verify_data(self, device_id: str, data: Any, reference: str) -> bool:
        """
        Verify data against its anchor

        Checks the data hash and, for covenant-locked anchors, the covenant
        conditions. Records the outcome on the anchor.
        """
        anchor = next((a for a in self.registry.items(device_id) if a.reference == reference), None)
        if anchor is None:
            logger.info(
                "Anchor not found",
                extra={"event": "iot.anchor_missing", "device_id": device_id, "tx_id": reference},
            )
            return False

        verified = anchor.data_hash == hash_data(data)
        if verified and anchor.covenant_conditions is not None:
            verified = isinstance(data, dict) and anchor.covenant_conditions.check(data, self._clock())
        anchor.verified = verified
        return verified

    def get_data_history(
        self,
        device_id: str,
        from_time: Optional[float] = None,
        to_time: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[DataAnchor]:
        anchors = self.registry.items(device_id)
        if from_time is not None:
            anchors = [a for a in anchors if a.submitted_at >= from_time]
        if to_time is not None:
            anchors = [a for a in anchors if a.submitted_at <= to_time]
        if limit is not None:
            anchors = anchors[-limit:] if limit > 0 else []
        return anchors

    def get_device_stats(self, device_id: str) -> Dict[str, Any]:
        anchors = self.registry.items(device_id)
        return {
            "device_id": device_id,
            "total_anchors": len(anchors),
            "verified_anchors": sum(1 for a in anchors if a.verified),
            "confirmed_anchors": sum(1 for a in anchors if a.confirmed),
            "covenant_locked_anchors": sum(1 for a in anchors if a.covenant_locked),
            "first_anchor": anchors[0].submitted_at if anchors else None,
            "last_anchor": anchors[-1].submitted_at if anchors else None,
            "is_continuous": self.is_continuous(device_id),
        }

    def get_registered_devices(self) -> List[str]:
        return self.registry.entities()

    # ==================== Continuous anchoring ====================

    def is_continuous(self, device_id: str) -> bool:
        with self._workers_lock:
            return device_id in self._workers

    def start_continuous_anchoring(
        self,
        device_id: str,
        data_source: Callable[[], Any],
        interval: float = 1.0,
    ) -> None:
        """Anchor ``data_source()`` every ``interval`` seconds in a background thread."""
        validate_entity_id(device_id, "device")
        if interval <= 0:
            raise IoTError("interval must be positive", details={"device_id": device_id})
        with self._workers_lock:
            if device_id in self._workers:
                raise IoTError(f"Device {device_id} already has continuous anchoring", details={"device_id": device_id})
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._anchor_loop,
                args=(device_id, data_source, interval, stop_event),
                name=f"ksync-anchor-{device_id}",
                daemon=True,
            )
            self._workers[device_id] = (thread, stop_event)
            thread.start()
        logger.info(
            "Started continuous anchoring for %s",
            device_id,
            extra={"event": "iot.continuous_started", "device_id": device_id, "interval": interval},
        )

    def _anchor_loop(
        self,
        device_id: str,
        data_source: Callable[[], Any],
        interval: float,
        stop_event: threading.Event,
    ) -> None:
        while not stop_event.wait(interval):
            try:
                self.anchor_data(device_id, data_source())
            except (KSynchronyError, OSError, ValueError, TypeError, KeyError, RuntimeError) as exc:
                logger.error(
                    "Anchoring error for %s: %s",
                    device_id,
                    exc,
                    extra={"event": "iot.continuous_failed", "device_id": device_id},
                )

    def stop_continuous_anchoring(self, device_id: str) -> None:
        with self._workers_lock:
            worker = self._workers.pop(device_id, None)
        if worker is None:
            return
        thread, stop_event = worker
        stop_event.set()
        thread.join()
        logger.info(
            "Stopped continuous anchoring for %s",
            device_id,
            extra={"event": "iot.continuous_stopped", "device_id": device_id},
        )

    def shutdown(self) -> None:
        with self._workers_lock:
            devices = list(self._workers.keys())
        for device_id in devices:
            self.stop_continuous_anchoring(device_id)
