from __future__ import annotations

import argparse
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import List

from discount_engine.checkout import CheckoutSaga
from discount_engine.config import EngineSettings, build_store
from discount_engine.errors import DiscountExhaustedError, InvalidDiscountError
from discount_engine.models import CheckoutRequest, Discount
from discount_engine.services import DiscountService
from discount_engine.store import DiscountStore


def seed(store: DiscountStore) -> None:
    today = date.today()
    store.add_discount("VALID10", 5, Decimal("10.00"), today - timedelta(days=1), today + timedelta(days=30))
    store.add_discount("ONETIME", 1, Decimal("20.00"), today - timedelta(days=1), today + timedelta(days=30))
    store.add_discount("EXPIRED20", 3, Decimal("20.00"), today - timedelta(days=30), today - timedelta(days=1))
    store.add_discount("FUTURE15", 2, Decimal("15.00"), today + timedelta(days=1), today + timedelta(days=30))
    store.add_discount("NOUSE25", 0, Decimal("25.00"), today - timedelta(days=1), today + timedelta(days=30))


def race(service: DiscountService, code: str, attempts: int, workers: int) -> None:
    discount = service.validate_and_get_discounts([code])[0]

    def redeem(_: int) -> bool:
        mine = replace(discount)
        try:
            service.update_discount_usage([mine])
            return True
        except DiscountExhaustedError:
            return False

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(redeem, range(attempts)))
    print(f"attempts={attempts} succeeded={results.count(True)} exhausted={results.count(False)}")


def main() -> None:
    settings = EngineSettings.load_from_env()
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    p = argparse.ArgumentParser(description="Run one checkout (or a redemption race) and print the discounts.")
    p.add_argument("--order-id", type=int, default=1)
    p.add_argument("--code", dest="codes", action="append", default=[], help="Discount code; repeat for several")
    p.add_argument("--fail-at", type=str, default=None, help="Step name to fail artificially (e.g. FinalizeOrder)")
    p.add_argument("--race", type=int, default=0, help="Redeem the first --code this many times concurrently")
    args = p.parse_args()

    store = build_store(settings)
    if not store.find_all():
        seed(store)
    service = DiscountService(store)

    if args.race:
        if not args.codes:
            p.error("--race needs --code")
        race(service, args.codes[0], args.race, settings.redeem_workers)
    else:
        def charge(discounts: List[Discount]) -> None:
            print("charging with:", [f"{d.code} ({d.percentage}%)" for d in discounts])

        print("\n=== RESULT ===")
        try:
            result = CheckoutSaga(service).execute(
                CheckoutRequest(order_id=args.order_id, codes=args.codes),
                charge,
                fail_at_step=args.fail_at,
            )
        except InvalidDiscountError as e:
            print(f"rejected: code={e.code} reason={e.reason}")
        else:
            print("success:", result.success)
            if result.error is not None:
                print("error:", result.error)

    print("discounts:", service.get_all_discounts())


if __name__ == "__main__":
    main()
