"""Consecutive connectivity-failure tracking with auto-deactivation."""

from __future__ import annotations

import structlog

from storewatch.models import StoreStatus
from storewatch.storage.database import StoreRepository


logger = structlog.get_logger(__name__)

DEFAULT_MAX_FAILURES = 5


class FailureTracker:
    """Counts back-to-back connectivity failures and deactivates unreachable stores.

    Deactivation is a one-way latch here; reactivating a store is a manual
    operation on the store row.
    """

    def __init__(self, repository: StoreRepository, max_failures: int = DEFAULT_MAX_FAILURES):
        self.repository = repository
        self.max_failures = max_failures

    def record_connectivity_failure(self, store_id: int) -> int:
        """Increment the store's failure counter and return the new value."""
        store = self.repository.get_store(store_id)
        count = (store.failed_attempts if store else 0) + 1

        fields: dict = {"failed_attempts": count}
        if count >= self.max_failures:
            fields["status"] = StoreStatus.INACTIVE
        self.repository.update_store(store_id, **fields)

        if "status" in fields:
            logger.warning("Store inactivated after consecutive failures", store_id=store_id, failures=count)
        else:
            logger.info("Connectivity failure recorded", store_id=store_id, failures=count)
        return count

    def reset(self, store_id: int) -> None:
        """A successful capture proves the store is reachable again."""
        self.repository.update_store(store_id, failed_attempts=0)
