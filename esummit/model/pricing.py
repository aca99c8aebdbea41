"""
Prices for everything the registration desk sells:
- tiered per-head ticket pricing (external vs. internal attendees)
- fixed passes (solo/duo/quad/bumper)
- accommodation by number of nights
- merchandise bundles (early-bird)

All amounts are whole rupees.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PricingTier:
    min: int
    max: Optional[int]  # None means "and above"
    price: int
    label: str

    def matches(self, count: int) -> bool:
        return count >= self.min and (self.max is None or count <= self.max)


EXTERNAL_PRICING: List[PricingTier] = [
    PricingTier(1, 1, 349, "Solo Pass"),
    PricingTier(2, 6, 325, "Group Pass (Small)"),
    PricingTier(7, None, 300, "Group Pass (Large)"),
]

INTERNAL_PRICING: List[PricingTier] = [
    PricingTier(1, 1, 199, "Solo Pass"),
    PricingTier(2, 3, 180, "Group Pass (Mini)"),
    PricingTier(4, 9, 170, "Group Pass (Mid)"),
    PricingTier(10, None, 149, "Group Pass (Mega)"),
]


@dataclass(frozen=True)
class PriceCalculation:
    total_amount: int
    price_per_head: int
    label: str
    is_external: bool


def calculate_ticket_price(count: int, role: str) -> PriceCalculation:
    is_external = role != "internal"
    tiers = EXTERNAL_PRICING if is_external else INTERNAL_PRICING

    tier = next((t for t in tiers if t.matches(count)), None)
    # open-ended last tier; only reached for counts below 1
    active = tier or tiers[-1]

    return PriceCalculation(
        total_amount=active.price * count,
        price_per_head=active.price,
        label=active.label,
        is_external=is_external,
    )


# ----------------------------
# Fixed passes
# ----------------------------
@dataclass(frozen=True)
class PassInfo:
    amount: int
    pax: int
    label: str


TICKET_PRICES: Dict[str, PassInfo] = {
    "solo": PassInfo(200, 1, "Solo Pass"),
    "duo": PassInfo(360, 2, "Duo Pass"),
    "quad": PassInfo(680, 4, "Quad Pass"),
    "bumper": PassInfo(1499, 10, "Bumper Pass"),
}


# ----------------------------
# Accommodation
# ----------------------------
ACCOMMODATION_PRICES: Dict[int, int] = {1: 399, 2: 699, 3: 999}

ACCOMMODATION_DATES = [
    {"id": "day1", "date": "2026-01-30", "label": "30th Jan 2026 (Day 1)"},
    {"id": "day2", "date": "2026-01-31", "label": "31st Jan 2026 (Day 2)"},
    {"id": "day3", "date": "2026-02-01", "label": "1st Feb 2026 (Day 3)"},
]


def get_accommodation_price(days_selected: int) -> int:
    return ACCOMMODATION_PRICES.get(days_selected, 0)


# ----------------------------
# Merchandise
# ----------------------------
MERCH_ITEMS: Dict[str, Dict[str, str]] = {
    "tshirt1": {
        "label": "T-Shirt Design 1",
        "description": "E-Summit Classic Design",
        "image": "/merch/tshirt1.png",
    },
    "tshirt2": {
        "label": "T-Shirt Design 2",
        "description": "E-Summit Signature Edition",
        "image": "/merch/tshirt2.png",
    },
    "tshirt3": {
        "label": "T-Shirt Design 3",
        "description": "E-Summit Premium Collection",
        "image": "/merch/tshirt3.png",
    },
}

MERCH_SIZES = ("XS", "S", "M", "L", "XL", "XXL")


@dataclass(frozen=True)
class MerchBundle:
    quantity: int
    early_bird_price: int
    actual_price: int
    label: str
    description: str
    discount: float


MERCH_BUNDLES: Dict[str, MerchBundle] = {
    "solo": MerchBundle(1, 349, 399, "Solo Bundle", "1 T-Shirt", 0.13),
    "duo": MerchBundle(2, 679, 799, "Duo Bundle", "2 T-Shirts", 0.15),
    "triple": MerchBundle(3, 999, 1199, "Triple Bundle", "3 T-Shirts", 0.17),
    "quad": MerchBundle(4, 1299, 1499, "Quad Bundle", "4 T-Shirts", 0.13),
}


def calculate_bundle_price(bundle_type: str) -> int:
    return MERCH_BUNDLES[bundle_type].early_bird_price


def bundle_for_quantity(quantity: int) -> Optional[str]:
    for name, bundle in MERCH_BUNDLES.items():
        if bundle.quantity == quantity:
            return name
    return None
