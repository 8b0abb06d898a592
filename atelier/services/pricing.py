"""
Server-side pricing. Every amount the platform charges is derived here from
the pricing tables; client-supplied amounts are never read.
"""
import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Callable

from sqlmodel import Session, select

from atelier.core.config import settings
from atelier.models import AddonPrice, ServicePrice, SizePrice

log = logging.getLogger("atelier.pricing")


class PricingError(ValueError):
    pass


class InvalidServiceError(PricingError):
    def __init__(self, service: str):
        super().__init__(f"Invalid service: {service}")
        self.service = service


class InvalidSizeError(PricingError):
    def __init__(self, size: str):
        super().__init__(f"Invalid size: {size}")
        self.size = size


@dataclass(frozen=True)
class PriceEntry:
    name: str
    price: int


@dataclass(frozen=True)
class Pricing:
    services: dict[str, PriceEntry]
    sizes: dict[str, PriceEntry]
    addons: dict[str, PriceEntry]

    def as_dict(self) -> dict:
        return {
            "services": {k: asdict(v) for k, v in self.services.items()},
            "sizes": {k: asdict(v) for k, v in self.sizes.items()},
            "addons": {k: asdict(v) for k, v in self.addons.items()},
        }


@dataclass(frozen=True)
class PriceBreakdown:
    service: str
    service_name: str
    base_price: int
    size: str
    size_name: str
    size_price: int
    addons: str
    addons_name: str
    addons_price: int
    total: int
    advance: int
    remaining: int


DEFAULT_SERVICES = {
    "charcoal": PriceEntry("Charcoal Portrait", 1500),
    "anime": PriceEntry("Anime Art", 1000),
    "couple": PriceEntry("Couple Portrait", 3000),
    "custom": PriceEntry("Custom", 2000),
}
DEFAULT_SIZES = {
    "a4": PriceEntry("A4 (standard)", 0),
    "a3": PriceEntry("A3", 1500),
}
DEFAULT_ADDONS = {
    "none": PriceEntry("None", 0),
    "framing": PriceEntry("Framing", 600),
    "express": PriceEntry("Express Delivery", 500),
    "both": PriceEntry("Framing + Express", 1100),
}
NO_ADDON = "none"


def advance_for(total: int) -> int:
    """Deposit due upfront: half the total, rounded up."""
    return math.ceil(total / 2)


def _load(db: Session, model, defaults: dict[str, PriceEntry]) -> dict[str, PriceEntry]:
    rows = db.exec(select(model).where(model.is_active == True)).all()  # noqa: E712
    if not rows:
        return dict(defaults)
    return {row.key: PriceEntry(row.name, row.price) for row in rows}


class PricingEngine:
    """
    Loads the active pricing tables with a time-based cache. Each table falls
    back to the built-in defaults on its own when it has no active rows.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = settings.pricing_cache_seconds if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self._cached: Pricing | None = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    def get_pricing(self, db: Session) -> Pricing:
        now = self.clock()
        if self._cached is not None and now - self._cached_at < self.ttl_seconds:
            return self._cached
        pricing = Pricing(
            services=_load(db, ServicePrice, DEFAULT_SERVICES),
            sizes=_load(db, SizePrice, DEFAULT_SIZES),
            addons=_load(db, AddonPrice, DEFAULT_ADDONS),
        )
        self._cached = pricing
        self._cached_at = now
        log.debug("Pricing reloaded: %d services, %d sizes, %d addons",
                  len(pricing.services), len(pricing.sizes), len(pricing.addons))
        return pricing

    def calculate_order_price(
        self,
        db: Session,
        service: str,
        size: str,
        addons: str | None = NO_ADDON,
    ) -> PriceBreakdown:
        pricing = self.get_pricing(db)
        service_entry = pricing.services.get(service)
        if service_entry is None:
            raise InvalidServiceError(service)
        size_entry = pricing.sizes.get(size)
        if size_entry is None:
            raise InvalidSizeError(size)
        addon_key = addons if addons in pricing.addons else NO_ADDON
        addon_entry = pricing.addons.get(addon_key) or DEFAULT_ADDONS[NO_ADDON]

        total = service_entry.price + size_entry.price + addon_entry.price
        advance = advance_for(total)
        return PriceBreakdown(
            service=service,
            service_name=service_entry.name,
            base_price=service_entry.price,
            size=size,
            size_name=size_entry.name,
            size_price=size_entry.price,
            addons=addon_key,
            addons_name=addon_entry.name,
            addons_price=addon_entry.price,
            total=total,
            advance=advance,
            remaining=total - advance,
        )


pricing_engine = PricingEngine()
