from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from discount_engine.models import CheckoutRequest, Discount
from discount_engine.services import DiscountService

logger = logging.getLogger(__name__)

ChargeFn = Callable[[List[Discount]], None]


class CheckoutError(Exception):
    pass


class Step(ABC):
    def __init__(self, saga: "CheckoutSaga", order_id: int):
        self.saga = saga
        self.order_id = order_id
        self.done = False

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def execute(self) -> None: ...

    @abstractmethod
    def compensate(self) -> None: ...

    def needs_compensation(self) -> bool:
        return self.done

    def run(self) -> None:
        self.saga.log(f"[order={self.order_id}] STEP {self.name()}")
        self.execute()
        self.done = True
        self.saga.log(f"[order={self.order_id}] STEP {self.name()} OK")

    def run_compensation(self) -> None:
        self.saga.log(f"[order={self.order_id}] COMPENSATE {self.name()}")
        self.compensate()
        self.saga.log(f"[order={self.order_id}] COMPENSATE {self.name()} OK")


class RedeemDiscounts(Step):
    def __init__(self, saga: "CheckoutSaga", order_id: int, discounts: List[Discount]):
        super().__init__(saga, order_id)
        self.discounts = discounts
        self.redeemed: List[Discount] = []

    def name(self) -> str:
        return "RedeemDiscounts"

    def execute(self) -> None:
        # One call per code, so uses taken before any failure are known here.
        for discount in self.discounts:
            self.saga.service.update_discount_usage([discount])
            self.redeemed.append(discount)

    def needs_compensation(self) -> bool:
        return bool(self.redeemed)

    def compensate(self) -> None:
        released = self.saga.service.release_discount_usage(self.redeemed)
        codes = ", ".join(d.code for d in released) or "-"
        self.saga.log(f"[order={self.order_id}] discount uses restored: {codes}")


class ChargeOrder(Step):
    def __init__(self, saga: "CheckoutSaga", order_id: int, discounts: List[Discount], charge: ChargeFn):
        super().__init__(saga, order_id)
        self.discounts = discounts
        self.charge = charge

    def name(self) -> str:
        return "ChargeOrder"

    def execute(self) -> None:
        self.charge(self.discounts)

    def compensate(self) -> None:
        # Refunds belong to the payment collaborator.
        self.saga.log(f"[order={self.order_id}] charge has no compensation")


class FinalizeOrder(Step):
    def name(self) -> str:
        return "FinalizeOrder"

    def execute(self) -> None:
        self.saga.log(f"[order={self.order_id}] order finalized")

    def compensate(self) -> None:
        self.saga.log(f"[order={self.order_id}] finalize has no compensation")


@dataclass(slots=True)
class CheckoutResult:
    order_id: int
    success: bool
    discounts: List[Discount] = field(default_factory=list)
    error: Optional[Exception] = None


class CheckoutSaga:
    """
    Caller side of the validate/redeem protocol.

    Validation errors are raised straight to the caller: the checkout is rejected
    and nothing was consumed. Once redemption starts, a failing step rolls back
    the completed ones in reverse order and the failure is reported in the result.
    Redemption that stopped partway counts as completed for the codes it took.
    """

    def __init__(self, service: DiscountService):
        self.service = service
        self.logs: List[str] = []

    def log(self, message: str) -> None:
        self.logs.append(message)
        logger.info(message)

    def execute(
        self,
        req: CheckoutRequest,
        charge: ChargeFn,
        fail_at_step: Optional[str] = None,
    ) -> CheckoutResult:
        self.log(f"[order={req.order_id}] CHECKOUT START codes={req.codes}")

        discounts = self.service.validate_and_get_discounts(req.codes)

        steps: List[Step] = []
        if discounts:
            steps.append(RedeemDiscounts(self, req.order_id, discounts))
        steps.append(ChargeOrder(self, req.order_id, discounts, charge))
        steps.append(FinalizeOrder(self, req.order_id))

        started: List[Step] = []
        try:
            for step in steps:
                if fail_at_step == step.name():
                    raise CheckoutError(f"Artificial failure at step {step.name()}")
                started.append(step)
                step.run()

            self.log(f"[order={req.order_id}] CHECKOUT OK")
            return CheckoutResult(order_id=req.order_id, success=True, discounts=discounts)
        except Exception as e:
            self.log(f"[order={req.order_id}] CHECKOUT FAILED: {e}")
            # A step that failed halfway may still have side effects to undo.
            for step in reversed(started):
                if not step.needs_compensation():
                    continue
                try:
                    step.run_compensation()
                except Exception as comp_exc:
                    self.log(f"[order={req.order_id}] COMPENSATION FAILED at {step.name()}: {comp_exc}")
            self.log(f"[order={req.order_id}] CHECKOUT END (failed)")
            return CheckoutResult(order_id=req.order_id, success=False, discounts=discounts, error=e)
