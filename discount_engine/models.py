from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional


@dataclass(slots=True)
class Discount:
    id: int
    code: str
    percentage: Decimal
    remaining_uses: int
    valid_from: date
    valid_until: date
    # Original number of uses; restoring a use never goes above it.
    quota: Optional[int] = None

    def __post_init__(self) -> None:
        if self.quota is None:
            self.quota = self.remaining_uses


@dataclass(slots=True)
class CheckoutRequest:
    """
    Input of one checkout: which order and which discount codes the customer typed.
    Order totals are not part of it; the caller's charge step owns pricing.
    """

    order_id: int
    codes: List[str] = field(default_factory=list)
