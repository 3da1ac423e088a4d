from __future__ import annotations

import pytest

from storewatch.checks.failures import FailureTracker
from storewatch.models import StoreStatus


@pytest.mark.parametrize("failures", [1, 2, 3, 4, 5, 6, 7])
def test_store_deactivated_once_threshold_reached(repository, failures: int) -> None:
    store = repository.add_store("shop.example.com")
    tracker = FailureTracker(repository, max_failures=5)

    for _ in range(failures):
        tracker.record_connectivity_failure(store.id)

    reloaded = repository.get_store(store.id)
    assert reloaded.failed_attempts == failures
    expected = StoreStatus.INACTIVE if failures >= 5 else StoreStatus.ACTIVE
    assert reloaded.status == expected


def test_record_returns_new_count(repository) -> None:
    store = repository.add_store("shop.example.com")
    repository.update_store(store.id, failed_attempts=2)
    tracker = FailureTracker(repository)

    assert tracker.record_connectivity_failure(store.id) == 3


def test_reset_clears_counter_but_not_status(repository) -> None:
    store = repository.add_store("shop.example.com")
    repository.update_store(store.id, failed_attempts=6, status=StoreStatus.INACTIVE)
    tracker = FailureTracker(repository)

    tracker.reset(store.id)

    reloaded = repository.get_store(store.id)
    assert reloaded.failed_attempts == 0
    assert reloaded.status == StoreStatus.INACTIVE
