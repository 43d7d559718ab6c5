import threading

from ksynchrony.core.event_registry import EventRegistry, TrackedItem


def test_items_keep_submission_order():
    registry = EventRegistry(kind="sample")
    for i in range(5):
        registry.append("alpha", TrackedItem(entity_id="alpha", payload=i, reference=f"tx_{i}"))

    assert [i.payload for i in registry.items("alpha")] == [0, 1, 2, 3, 4]
    assert registry.items("missing") == []
    assert "alpha" in registry
    assert registry.kind == "sample"


def test_confirm_flips_once():
    registry = EventRegistry()
    item = registry.append("alpha", TrackedItem(entity_id="alpha", payload=None, reference="tx_1"))

    assert registry.mark_confirmed(item) is True
    assert registry.mark_confirmed(item) is False
    assert registry.pending() == []


def test_mark_confirmed_ignores_unknown_entity():
    registry = EventRegistry()
    stray = TrackedItem(entity_id="ghost", payload=None, reference="tx_1")
    assert registry.mark_confirmed(stray) is False
    assert not stray.confirmed


def test_items_returns_a_copy():
    registry = EventRegistry()
    registry.register("alpha")
    snapshot = registry.items("alpha")
    snapshot.append("junk")
    assert registry.items("alpha") == []


def test_concurrent_appends_across_entities():
    registry = EventRegistry()

    def worker(entity):
        for i in range(200):
            registry.append(entity, TrackedItem(entity_id=entity, payload=i, reference=f"tx_{entity}_{i}"))

    threads = [threading.Thread(target=worker, args=(f"e{n}",)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert registry.stats() == {"entities": 4, "items": 800, "confirmed": 0}
    for n in range(4):
        assert [i.payload for i in registry.items(f"e{n}")] == list(range(200))
