from __future__ import annotations

from typing import List, Optional

from discount_engine.models import Discount


class InvalidDiscountError(Exception):
    """Business-rule rejection of a discount code. Never retried."""

    reason = "invalid discount"

    def __init__(self, code: str, reason: Optional[str] = None):
        self.code = code
        if reason is not None:
            self.reason = reason
        super().__init__(f"{self.reason}: {code}")


class DiscountCodeNotFoundError(InvalidDiscountError):
    reason = "discount code not found"


class DiscountExpiredError(InvalidDiscountError):
    reason = "discount has expired"


class DiscountNotYetValidError(InvalidDiscountError):
    reason = "discount is not yet valid"


class DiscountExhaustedError(InvalidDiscountError):
    reason = "discount has no remaining uses"

    def __init__(self, code: str, redeemed: Optional[List[Discount]] = None):
        super().__init__(code)
        # Discounts already decremented in the same redemption call.
        self.redeemed: List[Discount] = list(redeemed or [])


class DuplicateDiscountError(Exception):
    """A discount with the same id or code is already stored."""

    def __init__(self, discount_id: int, code: str):
        self.discount_id = discount_id
        self.code = code
        super().__init__(f"Discount id={discount_id} code={code} already exists")
