"""
Unit tests for visibility-triggered reconciliation.
"""

from unittest.mock import MagicMock, call

import pytest

from realtime_sync.client.reconciliation import (
    Invalidator,
    RecordingInvalidator,
    VisibilityReconciler,
    register_reconciliation,
)
from realtime_sync.shared.events import VisibilityMonitor, VisibilityState

K1 = ("assignments",)
K2 = ("groups", "list", "c-42")
K3 = ("assignments", "list", {"userId": "c-42"})


class FakeInvalidator:
    """Test double standing in for the cache layer."""

    def __init__(self):
        self.calls = []

    def invalidate(self, query_key):
        self.calls.append(query_key)


@pytest.fixture
def monitor():
    return VisibilityMonitor(initial_state=VisibilityState.VISIBLE)


@pytest.fixture
def invalidator():
    return FakeInvalidator()


class TestRegisterReconciliation:
    """Test cases for register_reconciliation."""

    def test_hidden_then_visible_sweeps_in_order(self, monitor, invalidator):
        """Test K1, K2, K3 are invalidated in declared order and nothing else."""
        register_reconciliation([K1, K2, K3], invalidator, monitor)

        monitor.report(VisibilityState.HIDDEN)
        monitor.report(VisibilityState.VISIBLE)

        assert invalidator.calls == [K1, K2, K3]

    def test_n_keys_give_n_calls(self, monitor):
        keys = [("q", i) for i in range(7)]
        mock = MagicMock()
        register_reconciliation(keys, mock, monitor)

        monitor.report(VisibilityState.VISIBLE)

        assert mock.invalidate.call_args_list == [call(key) for key in keys]

    def test_hidden_report_does_nothing(self, monitor, invalidator):
        register_reconciliation([K1], invalidator, monitor)

        monitor.report(VisibilityState.HIDDEN)
        monitor.report(VisibilityState.HIDDEN)

        assert invalidator.calls == []

    def test_nothing_fires_on_registration(self, monitor, invalidator):
        register_reconciliation([K1, K2], invalidator, monitor)
        assert invalidator.calls == []

    def test_consecutive_visible_reports_each_sweep(self, monitor, invalidator):
        """Test two visible reports with no hidden in between give two full sweeps."""
        register_reconciliation([K1, K2, K3], invalidator, monitor)

        monitor.report(VisibilityState.VISIBLE)
        monitor.report(VisibilityState.VISIBLE)

        assert invalidator.calls == [K1, K2, K3, K1, K2, K3]

    def test_cancel_twice_is_safe_and_stops_sweeps(self, monitor, invalidator):
        cancel = register_reconciliation([K1, K2], invalidator, monitor)

        cancel()
        cancel()
        monitor.report(VisibilityState.HIDDEN)
        monitor.report(VisibilityState.VISIBLE)

        assert invalidator.calls == []
        assert monitor.listener_count == 0

    def test_cancel_only_releases_own_listener(self, monitor, invalidator):
        cancel_a = register_reconciliation([K1], invalidator, monitor, label="a")
        register_reconciliation([K2], invalidator, monitor, label="b")

        cancel_a()
        monitor.report(VisibilityState.VISIBLE)

        assert invalidator.calls == [K2]

    def test_list_keys_are_normalized_to_tuples(self, monitor, invalidator):
        register_reconciliation([["groups", "list"]], invalidator, monitor)
        monitor.report(VisibilityState.VISIBLE)
        assert invalidator.calls == [("groups", "list")]

    def test_later_mutation_of_set_is_ignored(self, monitor, invalidator):
        keys = [K1]
        register_reconciliation(keys, invalidator, monitor)
        keys.append(K2)

        monitor.report(VisibilityState.VISIBLE)

        assert invalidator.calls == [K1]

    def test_invalid_key_rejected_at_registration(self, monitor, invalidator):
        with pytest.raises(ValueError):
            register_reconciliation(["assignments"], invalidator, monitor)

    def test_missing_visibility_api_degrades_silently(self, invalidator):
        """Test no monitor means no sweeps and a harmless cancel."""
        cancel = register_reconciliation([K1], invalidator, None)
        cancel()
        cancel()
        assert invalidator.calls == []

    def test_invalidation_errors_propagate(self, monitor):
        """Test the trigger does not swallow cache failures itself."""
        mock = MagicMock()
        mock.invalidate.side_effect = RuntimeError("cache down")
        reconciler = VisibilityReconciler(monitor, mock, [K1])

        with pytest.raises(RuntimeError):
            reconciler.sweep()


class TestVisibilityReconciler:
    """Test cases for the reconciler object."""

    def test_start_is_idempotent(self, monitor, invalidator):
        reconciler = VisibilityReconciler(monitor, invalidator, [K1])
        reconciler.start()
        reconciler.start()

        monitor.report(VisibilityState.VISIBLE)

        assert invalidator.calls == [K1]
        assert monitor.listener_count == 1

    def test_sweep_count_and_active(self, monitor, invalidator):
        reconciler = VisibilityReconciler(monitor, invalidator, [K1])
        assert not reconciler.active
        reconciler.start()
        assert reconciler.active

        monitor.report(VisibilityState.VISIBLE)
        monitor.report(VisibilityState.HIDDEN)
        monitor.report(VisibilityState.VISIBLE)

        assert reconciler.sweep_count == 2
        reconciler.cancel()
        assert not reconciler.active

    def test_fakes_satisfy_protocol(self, invalidator):
        assert isinstance(invalidator, Invalidator)
        assert isinstance(RecordingInvalidator(), Invalidator)


class TestRecordingInvalidator:
    """Test cases for RecordingInvalidator."""

    def test_records_and_forwards(self):
        inner = FakeInvalidator()
        recorder = RecordingInvalidator(inner=inner)

        recorder.invalidate(K1)
        recorder.invalidate(K2)

        assert recorder.keys == [K1, K2]
        assert inner.calls == [K1, K2]

    def test_max_records_keeps_latest(self):
        recorder = RecordingInvalidator(max_records=2)
        for key in (K1, K2, K3):
            recorder.invalidate(key)
        assert recorder.keys == [K2, K3]
