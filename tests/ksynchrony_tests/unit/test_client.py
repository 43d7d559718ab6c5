import time

from ksynchrony import KSynchrony, KSynchronyConfig
from ksynchrony.core.nonce_registry import NonceRegistry


def test_instances_are_isolated(node, clock, address):
    first = KSynchrony(node_client=node, clock=clock)
    second = KSynchrony(node_client=node, clock=clock)

    token = first.issue_payment_nonce(address)
    assert first.validate_nonce(address, token.value)
    assert not second.validate_nonce(address, token.value)
    assert first.metrics.registry is not second.metrics.registry


def test_reconcile_once_covers_games_anchors_and_nonces(ksync, node, clock, address):
    ksync.gaming.create_game("game-1", "race", ["p1"])
    move = ksync.gaming.submit_move("game-1", "p1", {"score": 1})
    anchor = ksync.iot.anchor_data("sensor-1", {"t": 1})
    ksync.issue_payment_nonce(address)
    node.accept(move.tx_id, score=999)
    node.accept(anchor.reference, score=999)
    clock.advance(301)

    report = ksync.reconcile_once()

    assert report.confirmed == 2
    assert report.swept == 1
    assert ksync.nonce_registry.addresses() == []


def test_background_reconciler_and_shutdown(node, clock):
    config = KSynchronyConfig(reconcile_interval=0.01)
    ksync = KSynchrony(config, node_client=node, clock=clock)
    ksync.gaming.create_game("game-1", "race", ["p1"])
    move = ksync.gaming.submit_move("game-1", "p1", {})
    node.accept(move.tx_id, score=999)

    assert ksync.start_reconciler()
    deadline = time.time() + 5
    while not ksync.gaming.get_moves("game-1")[0].confirmed and time.time() < deadline:
        time.sleep(0.01)
    ksync.shutdown()

    assert ksync.gaming.get_moves("game-1")[0].confirmed
    assert not ksync.reconciler.running
    assert node.closed


def test_context_manager_initializes_and_closes(node):
    with KSynchrony(node_client=node) as ksync:
        ksync.initialize()
        assert isinstance(ksync.nonce_registry, NonceRegistry)
    assert node.closed
