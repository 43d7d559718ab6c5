import pytest

from ksynchrony import MerchantDashboard
from ksynchrony.core.exceptions import ValidationError
from ksynchrony.utils.formatting import format_timestamp


@pytest.fixture
def dashboard(ksync, address, clock):
    return MerchantDashboard(ksync.payments, address, clock=clock)


def test_refresh_confirms_confident_payments(dashboard, node):
    paid = "aa" * 32
    pending = "bb" * 32
    dashboard.track_transaction(paid, 300_000_000)
    dashboard.track_transaction(pending, 100_000_000)
    node.accept(paid, score=900)

    assert dashboard.refresh_statuses() == 1
    stats = dashboard.get_stats()
    assert stats["total_revenue"] == 300_000_000
    assert stats["total_transactions"] == 2
    assert stats["success_rate"] == 0.5


def test_manual_status_updates(dashboard):
    dashboard.track_transaction("cc" * 32, 10)
    dashboard.update_transaction_status("cc" * 32, "failed")
    assert dashboard.get_stats()["recent_transactions"][0]["status"] == "failed"

    with pytest.raises(ValueError):
        dashboard.update_transaction_status("cc" * 32, "maybe")


def test_report_lists_transactions(dashboard, node, address):
    node.balances[address] = 123_000_000
    dashboard.track_transaction("dd" * 32, 50_000_000)
    dashboard.update_transaction_status("dd" * 32, "confirmed")

    report = dashboard.generate_report()
    assert "MERCHANT DASHBOARD REPORT" in report
    assert "1.23000000 KAS" in report
    assert "0.50000000 KAS" in report
    assert "Status: CONFIRMED" in report


def test_malformed_ids_are_rejected_when_tracked(dashboard, node):
    with pytest.raises(ValidationError):
        dashboard.track_transaction("not-a-tx", 10)
    with pytest.raises(ValidationError):
        dashboard.track_transaction("ee" * 32, 0)

    dashboard.track_transaction("ff" * 32, 10)
    node.accept("ff" * 32, score=970)

    assert dashboard.refresh_statuses() == 1
    assert dashboard.get_stats()["total_transactions"] == 1


def test_timestamps_come_from_injected_clock(dashboard, clock):
    payment = dashboard.track_transaction("aa" * 32, 10)
    assert payment.timestamp == clock.now

    clock.advance(60)
    assert dashboard.generate_report().endswith(format_timestamp(clock.now))
