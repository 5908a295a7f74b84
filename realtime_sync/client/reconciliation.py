"""
MODULE OVERVIEW:
Visibility-triggered reconciliation of cached queries.

WHAT IS HAPPENING HERE:
The push transport is best-effort. While the client is backgrounded the socket
can go quiet without an error, and nothing tells us which messages we missed.
So every time the host reports "visible", we invalidate a fixed list of query
keys and let the cache fetch the authoritative state again. The push channel
becomes a latency optimization; this sweep is what actually guarantees
freshness.

A "visible" report is never de-duplicated. Hosts do not promise clean
hidden -> visible edges, so two reports in a row mean two sweeps.
"""
from typing import Callable, Iterable, Protocol, Sequence, runtime_checkable

from loguru import logger

from realtime_sync.shared.events import VisibilityMonitor, VisibilityState
from realtime_sync.shared.models import InvalidationRecord
from realtime_sync.shared.query_keys import QueryKey, normalize_query_key


@runtime_checkable
class Invalidator(Protocol):
    """
    The cache layer's invalidation primitive.

    Implementations must be safe to call redundantly and own their own
    refetch scheduling, retry and de-duplication. `invalidate` returns as soon
    as the request is issued.
    """
    def invalidate(self, query_key: QueryKey) -> None:
        ...


class RecordingInvalidator:
    """Keeps a log of every invalidation, then forwards it to `inner` if given."""
    def __init__(self, inner: Invalidator | None = None, max_records: int | None = None):
        self.inner = inner
        self.max_records = max_records
        self.records: list[InvalidationRecord] = []

    @property
    def keys(self) -> list[QueryKey]:
        return [record.query_key for record in self.records]

    def invalidate(self, query_key: QueryKey) -> None:
        self.records.append(InvalidationRecord(query_key=query_key))
        if self.max_records is not None and len(self.records) > self.max_records:
            del self.records[: len(self.records) - self.max_records]
        if self.inner is not None:
            self.inner.invalidate(query_key)


class VisibilityReconciler:
    def __init__(
        self,
        monitor: VisibilityMonitor,
        invalidator: Invalidator,
        reconciliation_set: Iterable[Sequence],
        label: str = "surface",
    ):
        self.monitor = monitor
        self.invalidator = invalidator
        self.query_keys: tuple[QueryKey, ...] = tuple(
            normalize_query_key(key) for key in reconciliation_set
        )
        self.label = label
        self.sweep_count = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self.monitor.add_listener(self._on_visibility_change)
        self._active = True
        logger.debug(f"surface={self.label} event=register keys={len(self.query_keys)}")

    def cancel(self) -> None:
        """Release the visibility listener. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self.monitor.remove_listener(self._on_visibility_change)
        logger.debug(f"surface={self.label} event=deregister sweeps={self.sweep_count}")

    def sweep(self) -> None:
        """Invalidate every registered key, in declared order."""
        self.sweep_count += 1
        logger.info(
            f"surface={self.label} event=reconcile sweep={self.sweep_count} keys={len(self.query_keys)}"
        )
        # Errors from the cache propagate; the cache owns its own failure reporting
        for query_key in self.query_keys:
            self.invalidator.invalidate(query_key)

    def _on_visibility_change(self, state: VisibilityState) -> None:
        # The host may deliver a report already queued before cancel()
        if not self._active:
            return
        if state is VisibilityState.VISIBLE:
            self.sweep()


def _noop() -> None:
    return None


def register_reconciliation(
    reconciliation_set: Iterable[Sequence],
    invalidator: Invalidator,
    monitor: VisibilityMonitor | None,
    label: str = "surface",
) -> Callable[[], None]:
    """
    Re-fetch `reconciliation_set` every time `monitor` reports the foreground.

    Returns the cancel function the owning surface calls on teardown. Without
    a visibility monitor the client can only be as fresh as its push channel,
    so a warning is logged and a no-op cancel is returned.
    """
    query_keys = [normalize_query_key(key) for key in reconciliation_set]
    if monitor is None:
        logger.warning(f"surface={label} event=register reason=no_visibility_api")
        return _noop

    reconciler = VisibilityReconciler(monitor, invalidator, query_keys, label=label)
    reconciler.start()
    return reconciler.cancel
