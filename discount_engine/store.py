from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List

from discount_engine.errors import DuplicateDiscountError
from discount_engine.models import Discount

logger = logging.getLogger(__name__)


class DiscountStore(ABC):
    """
    Persistence boundary for discounts.

    The store is the only place that mutates durable state. The engine relies on:
    - a batch lookup by a set of codes
    - an atomic "decrement if still positive" that reports whether it happened
    - a read-only listing

    Counter operations raise KeyError for an unknown id. `add` raises
    DuplicateDiscountError when the id or the code is taken.

    Creating discounts belongs to the admin flow; `add` exists for it and for seeding.
    """

    @abstractmethod
    def find_all_by_codes(self, codes: Iterable[str]) -> List[Discount]: ...

    @abstractmethod
    def find_all(self) -> List[Discount]: ...

    @abstractmethod
    def decrement_if_positive(self, discount_id: int) -> bool: ...

    @abstractmethod
    def increment_if_below_quota(self, discount_id: int) -> bool: ...

    @abstractmethod
    def add(self, discount: Discount) -> Discount: ...

    # Seed helper (tests/demo)
    def add_discount(
        self,
        code: str,
        remaining_uses: int,
        percentage: Decimal,
        valid_from: date,
        valid_until: date,
    ) -> Discount:
        discount = Discount(
            id=max((d.id for d in self.find_all()), default=0) + 1,
            code=code,
            percentage=percentage,
            remaining_uses=remaining_uses,
            valid_from=valid_from,
            valid_until=valid_until,
        )
        return self.add(discount)


class InMemoryDiscountStore(DiscountStore):
    """
    Process-local store. Each record has its own lock, held only while its
    counter is checked and changed. Readers get copies, so nothing outside the
    store can change a stored counter.
    """

    def __init__(self) -> None:
        self._discounts: Dict[int, Discount] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def find_all_by_codes(self, codes: Iterable[str]) -> List[Discount]:
        wanted = set(codes)
        with self._registry_lock:
            records = list(self._discounts.values())
        return [self._read(d) for d in records if d.code in wanted]

    def find_all(self) -> List[Discount]:
        with self._registry_lock:
            records = list(self._discounts.values())
        return [self._read(d) for d in records]

    def decrement_if_positive(self, discount_id: int) -> bool:
        discount, lock = self._record(discount_id)
        with lock:
            if discount.remaining_uses <= 0:
                logger.warning("decrement refused: %s has no remaining uses", discount.code)
                return False
            discount.remaining_uses -= 1
            remaining = discount.remaining_uses
        logger.info("discount redeemed: %s (remaining=%s)", discount.code, remaining)
        return True

    def increment_if_below_quota(self, discount_id: int) -> bool:
        discount, lock = self._record(discount_id)
        with lock:
            if discount.remaining_uses >= discount.quota:
                logger.warning("restore refused: %s already at quota=%s", discount.code, discount.quota)
                return False
            discount.remaining_uses += 1
            remaining = discount.remaining_uses
        logger.info("discount use restored: %s (remaining=%s)", discount.code, remaining)
        return True

    def add(self, discount: Discount) -> Discount:
        stored = replace(discount)
        with self._registry_lock:
            if stored.id in self._discounts or any(d.code == stored.code for d in self._discounts.values()):
                raise DuplicateDiscountError(stored.id, stored.code)
            self._discounts[stored.id] = stored
            self._locks[stored.id] = threading.Lock()
        return replace(stored)

    def get(self, code: str) -> Discount:
        """Current state of a discount by code (tests/demo)."""
        matches = self.find_all_by_codes([code])
        if not matches:
            raise KeyError(code)
        return matches[0]

    def _record(self, discount_id: int):
        with self._registry_lock:
            discount = self._discounts.get(discount_id)
            lock = self._locks.get(discount_id)
        if discount is None:
            raise KeyError(f"Discount {discount_id} not found")
        return discount, lock

    def _read(self, discount: Discount) -> Discount:
        with self._locks[discount.id]:
            return replace(discount)
