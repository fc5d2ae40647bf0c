"""Engine settings: environment variables with the DISCOUNT_ENGINE_ prefix."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from discount_engine.sql_store import SqlDiscountStore
from discount_engine.store import DiscountStore, InMemoryDiscountStore

ENV_PREFIX = "DISCOUNT_ENGINE_"


@dataclass(slots=True)
class EngineSettings:
    database_url: Optional[str] = None
    log_level: str = "INFO"
    redeem_workers: int = 10

    @classmethod
    def load_from_env(cls, environ: Optional[Mapping[str, str]] = None, **defaults: Any) -> "EngineSettings":
        """
        DISCOUNT_ENGINE_DATABASE_URL=sqlite:///discounts.db -> database_url="sqlite:///discounts.db".
        Unknown keys are ignored; explicit defaults are overridden by the environment.
        """
        environ = os.environ if environ is None else environ
        values = dict(defaults)
        for key, value in environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            name = key[len(ENV_PREFIX):].lower()
            if name in cls.__dataclass_fields__:
                values[name] = value
        if "redeem_workers" in values:
            values["redeem_workers"] = int(values["redeem_workers"])
        if "log_level" in values:
            values["log_level"] = str(values["log_level"]).upper()
        return cls(**values)


def build_store(settings: EngineSettings) -> DiscountStore:
    if settings.database_url:
        return SqlDiscountStore.from_url(settings.database_url)
    return InMemoryDiscountStore()
