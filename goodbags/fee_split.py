"""
Fee split constants and donation tiers.

Every launched token carries a 1% royalty stream, expressed here as 10000 basis
points. The base split gives 7500 bps to the charity, 500 bps to the platform
(buyback) wallet and 2000 bps to the creator. Creators may donate 0, 25, 50, 75
or 100 percent of their own share to the charity; the platform share never
changes. All fee split math in the service goes through this module.
"""

from typing import Optional

from pydantic import BaseModel, model_validator

from .errors import ConfigurationError

BASE_CHARITY_BPS = 7500
BASE_PLATFORM_BPS = 500
BASE_CREATOR_BPS = 2000
TOTAL_FEE_BPS = 10000

DONATION_TIERS = (0, 25, 50, 75, 100)

# Percentage points a stored split may drift from a tier and still snap to it.
TIER_SNAP_TOLERANCE = 5


class FeeSplit(BaseModel):
    creator_bps: int
    charity_bps: int
    platform_bps: int
    donated_creator_bps: int = 0

    @model_validator(mode="after")
    def _check_total(self) -> "FeeSplit":
        for value in (self.creator_bps, self.charity_bps, self.platform_bps):
            if value < 0:
                raise ValueError("Fee split basis points cannot be negative")
        total = self.creator_bps + self.charity_bps + self.platform_bps
        if total != TOTAL_FEE_BPS:
            raise ValueError(f"Fee split must sum to {TOTAL_FEE_BPS} bps, got {total}")
        return self


def assert_split_invariant() -> None:
    """Fail loudly if the base constants or any tier stop adding up to 100%."""
    base_sum = BASE_CHARITY_BPS + BASE_PLATFORM_BPS + BASE_CREATOR_BPS
    if base_sum != TOTAL_FEE_BPS:
        raise ConfigurationError(
            f"Base fee constants sum to {base_sum} bps, expected {TOTAL_FEE_BPS}"
        )
    for tier in DONATION_TIERS:
        try:
            compute_fee_split(tier)
        except ValueError as e:
            raise ConfigurationError(f"Donation tier {tier}% produces an invalid split: {e}") from e


def compute_fee_split(donate_percent: int = 0) -> FeeSplit:
    """Split for a creator donating `donate_percent` of their share to charity."""
    if donate_percent not in DONATION_TIERS:
        raise ValueError(f"Donation percent must be one of {DONATION_TIERS}, got {donate_percent}")
    donated = round(donate_percent / 100 * BASE_CREATOR_BPS)
    return FeeSplit(
        creator_bps=BASE_CREATOR_BPS - donated,
        charity_bps=BASE_CHARITY_BPS + donated,
        platform_bps=BASE_PLATFORM_BPS,
        donated_creator_bps=donated,
    )


def derive_tier_from_bps(
    charity_bps: Optional[int],
    platform_bps: Optional[int],
    creator_bps: Optional[int],
) -> Optional[int]:
    """Donation tier matching stored bps values, or None for a custom split.

    Missing values fall back to the base constants (tokens launched before the
    per-token split was stored).
    """
    charity = BASE_CHARITY_BPS if charity_bps is None else charity_bps
    platform = BASE_PLATFORM_BPS if platform_bps is None else platform_bps
    creator = BASE_CREATOR_BPS if creator_bps is None else creator_bps

    donated = max(0, min(BASE_CREATOR_BPS, charity - BASE_CHARITY_BPS))
    raw_percent = donated / BASE_CREATOR_BPS * 100

    for tier in DONATION_TIERS:
        if abs(raw_percent - tier) <= TIER_SNAP_TOLERANCE:
            split = compute_fee_split(tier)
            if (split.charity_bps, split.platform_bps, split.creator_bps) == (charity, platform, creator):
                return tier
    return None


def is_bps_anomaly(
    charity_bps: Optional[int],
    platform_bps: Optional[int],
    creator_bps: Optional[int],
) -> bool:
    total = (charity_bps or 0) + (platform_bps or 0) + (creator_bps or 0)
    return total != TOTAL_FEE_BPS


def tier_label(tier: Optional[int]) -> str:
    if tier is None:
        return "Custom"
    if tier == 0:
        return "Keep All"
    if tier == 100:
        return "Give All"
    return f"{tier}% to Charity"


def bps_to_percent(bps: int) -> str:
    """7500 -> "75.00" (percent of the royalty stream)."""
    return f"{bps / 100:.2f}"


assert_split_invariant()
