from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Iterable, List, Optional, Sequence

from discount_engine.errors import (
    DiscountCodeNotFoundError,
    DiscountExhaustedError,
    DiscountExpiredError,
    DiscountNotYetValidError,
)
from discount_engine.models import Discount
from discount_engine.store import DiscountStore

logger = logging.getLogger(__name__)


class DiscountService:
    """
    Validates requested codes and consumes their uses.

    Validation is a read-only pre-check that produces a precise error for the
    customer. The authoritative check is the store's atomic decrement performed
    by `update_discount_usage`, since other checkouts may redeem the same codes
    between the two calls.
    """

    def __init__(self, store: DiscountStore, clock: Callable[[], date] = date.today):
        self.store = store
        self.clock = clock

    def get_all_discounts(self) -> List[Discount]:
        return self.store.find_all()

    def validate_and_get_discounts(self, codes: Optional[Sequence[str]]) -> List[Discount]:
        if not codes:
            return []

        requested = list(dict.fromkeys(codes))
        found = {d.code: d for d in self.store.find_all_by_codes(set(requested))}
        if len(found) < len(requested):
            missing = next(code for code in requested if code not in found)
            raise DiscountCodeNotFoundError(missing)

        today = self.clock()
        discounts = [found[code] for code in requested]
        for discount in discounts:
            self._check(discount, today)
        logger.info("discounts validated: %s", ", ".join(requested))
        return discounts

    def update_discount_usage(self, discounts: Iterable[Discount]) -> None:
        redeemed: List[Discount] = []
        for discount in discounts:
            try:
                decremented = self.store.decrement_if_positive(discount.id)
            except KeyError as e:
                # Removed after validation.
                raise DiscountCodeNotFoundError(discount.code) from e
            if not decremented:
                raise DiscountExhaustedError(discount.code, redeemed=redeemed)
            discount.remaining_uses = max(discount.remaining_uses - 1, 0)
            redeemed.append(discount)

    def release_discount_usage(self, discounts: Iterable[Discount]) -> List[Discount]:
        """Give back one use per discount, never above its quota. Returns what was restored."""
        released: List[Discount] = []
        for discount in discounts:
            try:
                restored = self.store.increment_if_below_quota(discount.id)
            except KeyError:
                restored = False
            if not restored:
                logger.warning("use of %s was not restored", discount.code)
                continue
            discount.remaining_uses = min(discount.remaining_uses + 1, discount.quota)
            released.append(discount)
        return released

    @staticmethod
    def _check(discount: Discount, today: date) -> None:
        if today > discount.valid_until:
            raise DiscountExpiredError(discount.code)
        if today < discount.valid_from:
            raise DiscountNotYetValidError(discount.code)
        if discount.remaining_uses <= 0:
            raise DiscountExhaustedError(discount.code)
