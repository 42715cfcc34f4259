"""
In-memory purchase ledger.

System of record for "what has this customer bought". Keyed by customer
identity; each customer owns an append-only list of purchase records whose
status moves active -> canceled or active -> revoked. Nothing is persisted,
so a restart starts from an empty ledger.

Mutations and reads for one customer are serialized by a per-customer lock.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from relay.features.billing.resolver import ProductPlanResolver

logger = logging.getLogger("relay")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PurchaseStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    REVOKED = "revoked"


@dataclass
class PurchaseRecord:
    """One purchase of one plan by one customer."""
    customer_id: str
    plan_id: str
    order_id: str
    purchased_at: datetime = field(default_factory=utc_now)
    status: PurchaseStatus = PurchaseStatus.ACTIVE
    status_changed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == PurchaseStatus.ACTIVE


class PurchaseLedger:
    """Process-wide purchase store with per-customer serialized access."""

    def __init__(self, resolver: ProductPlanResolver):
        self._resolver = resolver
        self._records: Dict[str, List[PurchaseRecord]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, customer_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(customer_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[customer_id] = lock
            return lock

    def _active_record(self, customer_id: str, plan_id: str) -> Optional[PurchaseRecord]:
        # Caller holds the customer lock
        for record in self._records.get(customer_id, ()):
            if record.plan_id == plan_id and record.is_active:
                return record
        return None

    def _find_record(self, customer_id: str, plan_id: str, order_id: str) -> Optional[PurchaseRecord]:
        # Caller holds the customer lock; any status counts
        for record in self._records.get(customer_id, ()):
            if record.plan_id == plan_id and record.order_id == order_id:
                return record
        return None

    def plan_for_product(self, product_id: Optional[str]) -> Optional[str]:
        return self._resolver.resolve(product_id)

    def record_purchase(
        self,
        customer_id: str,
        product_id: str,
        order_id: str,
        purchased_at: Optional[datetime] = None,
    ) -> Optional[PurchaseRecord]:
        """
        Record an active purchase for the plan behind product_id.

        Returns the new record, or None when nothing was recorded: unknown
        product, the plan is already active for this customer, or this
        order id was already recorded for the plan. A redelivered activation
        never brings back a canceled or revoked purchase.
        """
        plan_id = self._resolver.resolve(product_id)
        if plan_id is None:
            logger.warning(
                "ledger.unknown_product",
                extra={"customer_id": customer_id, "product_id": product_id, "order_id": order_id},
            )
            return None

        with self._lock_for(customer_id):
            existing = self._active_record(customer_id, plan_id) or self._find_record(customer_id, plan_id, order_id)
            if existing is not None:
                logger.info(
                    "ledger.duplicate",
                    extra={
                        "customer_id": customer_id,
                        "plan_id": plan_id,
                        "order_id": order_id,
                        "outcome": existing.status.value,
                    },
                )
                return None

            record = PurchaseRecord(
                customer_id=customer_id,
                plan_id=plan_id,
                order_id=order_id,
                purchased_at=purchased_at or utc_now(),
            )
            self._records.setdefault(customer_id, []).append(record)
            snapshot = replace(record)

        logger.info(
            "ledger.recorded",
            extra={"customer_id": customer_id, "plan_id": plan_id, "order_id": order_id},
        )
        return snapshot

    def _transition(self, customer_id: str, plan_id: str, status: PurchaseStatus) -> bool:
        with self._lock_for(customer_id):
            record = self._active_record(customer_id, plan_id)
            if record is None:
                logger.info(
                    "ledger.not_active",
                    extra={"customer_id": customer_id, "plan_id": plan_id, "outcome": status.value},
                )
                return False
            record.status = status
            record.status_changed_at = utc_now()
            order_id = record.order_id

        logger.info(
            f"ledger.{status.value}",
            extra={"customer_id": customer_id, "plan_id": plan_id, "order_id": order_id},
        )
        return True

    def cancel_purchase(self, customer_id: str, plan_id: str) -> bool:
        """Mark the active record canceled. False if there was none."""
        return self._transition(customer_id, plan_id, PurchaseStatus.CANCELED)

    def revoke_purchase(self, customer_id: str, plan_id: str) -> bool:
        """Mark the active record revoked, removing access immediately."""
        return self._transition(customer_id, plan_id, PurchaseStatus.REVOKED)

    def get_purchased_plan_ids(self, customer_id: str) -> FrozenSet[str]:
        with self._lock_for(customer_id):
            return frozenset(
                record.plan_id
                for record in self._records.get(customer_id, ())
                if record.is_active
            )

    def has_purchased_plan(self, customer_id: str, plan_id: str) -> bool:
        with self._lock_for(customer_id):
            return self._active_record(customer_id, plan_id) is not None

    def history(self, customer_id: str) -> List[PurchaseRecord]:
        """Copies of every record for the customer, oldest first."""
        with self._lock_for(customer_id):
            return [replace(record) for record in self._records.get(customer_id, ())]
