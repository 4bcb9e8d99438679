"""
Pricing Rules - Customer tiers and volume brackets.

Tiers carry a default discount and margin adjustment; volume brackets map a
quantity range to an additional discount. Both can be overridden from CSV
files in the data directory.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pandas as pd

from .errors import ValidationError


DEFAULT_TIER = 'standard'


@dataclass(frozen=True)
class TierConfig:
    """Discount levels for a customer tier."""
    tier: str
    label: str
    base_discount_percent: float = 0.0
    # Extra discount once an order total reaches volume_threshold
    volume_discount_percent: float = 0.0
    volume_threshold: float = 0.0
    max_discount_percent: float = 100.0
    # Added to the margin when computing sale prices (may be negative)
    margin_adjustment_percent: float = 0.0

    def discount_for(self, order_total: Optional[float] = None) -> float:
        """Tier discount, including the order-total bonus, capped at max_discount_percent."""
        discount = self.base_discount_percent
        if order_total is not None and self.volume_threshold > 0 and order_total >= self.volume_threshold:
            discount += self.volume_discount_percent
        return min(discount, self.max_discount_percent)


@dataclass(frozen=True)
class VolumeBracket:
    """A quantity range mapped to an additional discount."""
    min_quantity: int
    max_quantity: Optional[int]  # None = unlimited
    discount_percent: float
    label: str

    def contains(self, quantity: int) -> bool:
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity


DEFAULT_TIERS: dict[str, TierConfig] = {
    'standard': TierConfig('standard', 'Standard', 0, 0, 0, 5),
    'silver': TierConfig('silver', 'Silver', 5, 2, 50_000, 10),
    'preferred': TierConfig('preferred', 'Preferred', 10, 3, 100_000, 18),
    'wholesale': TierConfig('wholesale', 'Wholesale', 15, 5, 200_000, 25, margin_adjustment_percent=-5),
}

DEFAULT_VOLUME_BRACKETS: tuple[VolumeBracket, ...] = (
    VolumeBracket(1, 9, 0, 'Single'),
    VolumeBracket(10, 24, 3, '10+ pcs'),
    VolumeBracket(25, 49, 5, '25+ pcs'),
    VolumeBracket(50, 99, 8, '50+ pcs'),
    VolumeBracket(100, None, 12, '100+ pcs'),
)


def validate_brackets(brackets) -> tuple[VolumeBracket, ...]:
    """Check brackets are ordered, non-overlapping and have sane percentages."""
    ordered = tuple(sorted(brackets, key=lambda b: b.min_quantity))
    previous_max = 0
    for i, bracket in enumerate(ordered):
        if not 0 <= bracket.discount_percent <= 100:
            raise ValidationError(f"Bracket '{bracket.label}' discount must be between 0 and 100")
        if bracket.min_quantity < 1:
            raise ValidationError(f"Bracket '{bracket.label}' must start at quantity 1 or above")
        if bracket.max_quantity is not None and bracket.max_quantity < bracket.min_quantity:
            raise ValidationError(f"Bracket '{bracket.label}' has max below min")
        if i > 0:
            if previous_max is None or bracket.min_quantity <= previous_max:
                raise ValidationError(f"Bracket '{bracket.label}' overlaps the previous bracket")
        previous_max = bracket.max_quantity
    return ordered


def get_volume_discount(quantity: int, brackets=DEFAULT_VOLUME_BRACKETS) -> tuple[float, str]:
    """
    Get the volume discount for a quantity.

    Returns (discount_percent, bracket_label). Quantities that fall in no
    bracket get no discount.
    """
    for bracket in brackets:
        if bracket.contains(quantity):
            return float(bracket.discount_percent), bracket.label
    return 0.0, 'None'


def apply_discount(price: float, discount_percent: float) -> float:
    """Apply a percentage discount, never going below zero."""
    discount_percent = min(max(discount_percent, 0.0), 100.0)
    return max(0.0, price * (1 - discount_percent / 100.0))


class PricingConfig:
    """Tier table and volume brackets used by the resolver."""

    def __init__(self, tiers: Optional[dict[str, TierConfig]] = None, volume_brackets=None):
        self.tiers = dict(tiers) if tiers else dict(DEFAULT_TIERS)
        if DEFAULT_TIER not in self.tiers:
            self.tiers[DEFAULT_TIER] = DEFAULT_TIERS[DEFAULT_TIER]
        self.volume_brackets = validate_brackets(volume_brackets or DEFAULT_VOLUME_BRACKETS)

    @classmethod
    def from_csv(cls, tiers_csv: Optional[Path] = None, brackets_csv: Optional[Path] = None) -> 'PricingConfig':
        """Load tiers and brackets from CSV, falling back to defaults for missing files."""
        tiers = None
        brackets = None

        if tiers_csv and tiers_csv.exists():
            df = _load_csv(tiers_csv)
            tiers = {}
            for _, row in df.iterrows():
                key = str(row['tier']).strip().lower()
                tiers[key] = TierConfig(
                    tier=key,
                    label=str(row.get('label') or key.title()),
                    base_discount_percent=_float(row.get('base_discount_percent')),
                    volume_discount_percent=_float(row.get('volume_discount_percent')),
                    volume_threshold=_float(row.get('volume_threshold')),
                    max_discount_percent=_float(row.get('max_discount_percent'), 100.0),
                    margin_adjustment_percent=_float(row.get('margin_adjustment_percent')),
                )

        if brackets_csv and brackets_csv.exists():
            df = _load_csv(brackets_csv)
            brackets = [
                VolumeBracket(
                    min_quantity=int(_float(row['min_quantity'])),
                    max_quantity=int(_float(row['max_quantity'])) if str(row.get('max_quantity', '')).strip() else None,
                    discount_percent=_float(row['discount_percent']),
                    label=str(row.get('label') or f"{row['min_quantity']}+"),
                )
                for _, row in df.iterrows()
            ]

        return cls(tiers=tiers, volume_brackets=brackets)

    def tier(self, name: Optional[str]) -> TierConfig:
        """Tier config by name; unknown or unset tiers resolve to standard."""
        if name:
            config = self.tiers.get(str(name).strip().lower())
            if config:
                return config
        return self.tiers[DEFAULT_TIER]

    def volume_discount(self, quantity: int) -> tuple[float, str]:
        return get_volume_discount(quantity, self.volume_brackets)


def _load_csv(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str).fillna('')
    df.columns = [c.strip() for c in df.columns]
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    return df


def _float(value, default: float = 0.0) -> float:
    if value is None or str(value).strip() == '':
        return default
    return float(value)
