import threading

import pytest

from ksynchrony.core.exceptions import IoTError, ValidationError
from ksynchrony.core.reconciler import Reconciler
from ksynchrony.iot.engine import CovenantConditions, IoTEngine, hash_data


@pytest.fixture
def engine(clock):
    return IoTEngine(clock=clock)


def test_anchor_and_verify(engine):
    reading = {"temperature": 4.5, "humidity": 40, "location": "warehouse-1"}
    anchor = engine.anchor_data("sensor-001", reading)

    assert anchor.reference.startswith("anchor_")
    assert anchor.data_hash == hash_data(reading)
    assert not anchor.covenant_locked

    assert engine.verify_data("sensor-001", reading, anchor.reference)
    assert engine.get_data_history("sensor-001")[0].verified


def test_tampered_data_fails_verification(engine):
    anchor = engine.anchor_data("sensor-001", {"temperature": 4.5})
    assert not engine.verify_data("sensor-001", {"temperature": 9.0}, anchor.reference)
    assert not engine.verify_data("sensor-001", {"temperature": 4.5}, "anchor_unknown")


def test_hash_is_key_order_independent():
    assert hash_data({"a": 1, "b": 2}) == hash_data({"b": 2, "a": 1})


def test_covenant_conditions(engine, clock):
    conditions = CovenantConditions(max_temperature=8, min_temperature=2, allowed_locations=["dock"])
    good = {"temperature": 5, "location": "dock"}
    bad = {"temperature": 9, "location": "dock"}

    good_anchor = engine.anchor_with_covenant("truck-7", good, conditions)
    bad_anchor = engine.anchor_with_covenant("truck-7", bad, conditions)

    assert good_anchor.reference.startswith("covenant_")
    assert good_anchor.covenant_locked
    assert engine.verify_data("truck-7", good, good_anchor.reference)
    assert not engine.verify_data("truck-7", bad, bad_anchor.reference)


def test_covenant_skips_missing_fields():
    conditions = CovenantConditions(max_temperature=8, max_humidity=50)
    assert conditions.check({"location": "anywhere"})
    assert not conditions.check({"humidity": 51})
    assert not CovenantConditions(allowed_locations=["dock"]).check({})


def test_covenant_time_window():
    conditions = CovenantConditions(time_window=(100.0, 200.0))
    assert conditions.check({}, now=150.0)
    assert not conditions.check({}, now=250.0)
    assert conditions.to_dict() == {"time_window": (100.0, 200.0)}


def test_history_filters_and_stats(engine, clock):
    for i in range(5):
        engine.anchor_data("sensor-001", {"seq": i})
        clock.advance(10)
    start = clock.now - 50

    window = engine.get_data_history("sensor-001", from_time=start + 10, to_time=start + 30)
    assert [a.payload["seq"] for a in window] == [1, 2, 3]
    assert [a.payload["seq"] for a in engine.get_data_history("sensor-001", limit=2)] == [3, 4]

    stats = engine.get_device_stats("sensor-001")
    assert stats["total_anchors"] == 5
    assert stats["first_anchor"] == start
    assert engine.get_registered_devices() == ["sensor-001"]


def test_invalid_device_id(engine):
    with pytest.raises(ValidationError):
        engine.anchor_data("a", {})


def test_reconciler_confirms_anchors(engine, node):
    anchor = engine.anchor_data("sensor-001", {"v": 1})
    node.accept(anchor.reference, score=999)

    Reconciler(node, [engine.registry]).run_once()

    assert engine.get_device_stats("sensor-001")["confirmed_anchors"] == 1


def test_continuous_anchoring_start_stop(engine):
    produced = threading.Event()
    counter = {"n": 0}

    def source():
        counter["n"] += 1
        if counter["n"] >= 3:
            produced.set()
        return {"n": counter["n"]}

    engine.start_continuous_anchoring("sensor-002", source, interval=0.01)
    assert engine.is_continuous("sensor-002")
    with pytest.raises(IoTError):
        engine.start_continuous_anchoring("sensor-002", source, interval=0.01)

    assert produced.wait(5)
    engine.stop_continuous_anchoring("sensor-002")

    assert not engine.is_continuous("sensor-002")
    assert len(engine.get_data_history("sensor-002")) >= 3
    engine.stop_continuous_anchoring("sensor-002")


def test_continuous_anchoring_survives_source_errors(engine):
    calls = []
    recovered = threading.Event()

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise ValueError("sensor glitch")
        recovered.set()
        return {"ok": True}

    engine.start_continuous_anchoring("sensor-003", flaky, interval=0.01)
    assert recovered.wait(5)
    engine.shutdown()
    assert not engine.is_continuous("sensor-003")


def test_continuous_interval_must_be_positive(engine):
    with pytest.raises(IoTError):
        engine.start_continuous_anchoring("sensor-004", dict, interval=0)


def test_history_limit_zero_returns_nothing(engine):
    engine.anchor_data("sensor-001", {"seq": 1})
    assert engine.get_data_history("sensor-001", limit=0) == []
