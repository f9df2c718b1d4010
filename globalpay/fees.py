"""
Fee Calculator Module

Fees are a pure function of amount, corridor and payment method:

    total = amount * (corridor rate + method surcharge) + corridor fixed fee

rounded half-up to the transfer currency's minor unit. Nothing here touches
the ledger, so quotes and committed fees always agree.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum

from .currency import Money
from .errors import InvalidAmount
from .payment_methods import PaymentMethod


class Corridor(Enum):
    """Fee tier of a money movement"""
    LOCAL = "local"                  # Same country
    INTERNATIONAL = "international"  # Cross-border
    EXPRESS = "express"              # Caller-requested fast delivery


@dataclass(frozen=True)
class FeeTier:
    rate: Decimal
    fixed: Decimal


@dataclass(frozen=True)
class FeeSchedule:
    """Rates and fixed fees per corridor plus per-method surcharges"""
    tiers: Dict[Corridor, FeeTier] = field(default_factory=lambda: {
        Corridor.LOCAL: FeeTier(Decimal("0.005"), Decimal("0.50")),
        Corridor.INTERNATIONAL: FeeTier(Decimal("0.02"), Decimal("3.00")),
        Corridor.EXPRESS: FeeTier(Decimal("0.03"), Decimal("5.00")),
    })
    surcharges: Dict[PaymentMethod, Decimal] = field(default_factory=lambda: {
        PaymentMethod.CARD: Decimal("0.029"),
        PaymentMethod.PAYPAL: Decimal("0.039"),
        PaymentMethod.CRYPTO: Decimal("0.01"),
    })

    def __post_init__(self):
        for corridor in Corridor:
            tier = self.tiers.get(corridor)
            if tier is None:
                raise ValueError(f"Fee schedule is missing the {corridor.value} tier")
            if tier.rate < 0 or tier.fixed < 0:
                raise ValueError(f"Fees for the {corridor.value} tier cannot be negative")
        if any(value < 0 for value in self.surcharges.values()):
            raise ValueError("Method surcharges cannot be negative")

    @classmethod
    def from_config(cls, config) -> 'FeeSchedule':
        return cls(
            tiers={
                Corridor.LOCAL: FeeTier(Decimal(config.fee_local_rate), Decimal(config.fee_local_fixed)),
                Corridor.INTERNATIONAL: FeeTier(
                    Decimal(config.fee_international_rate), Decimal(config.fee_international_fixed)
                ),
                Corridor.EXPRESS: FeeTier(Decimal(config.fee_express_rate), Decimal(config.fee_express_fixed)),
            },
            surcharges={
                PaymentMethod.CARD: Decimal(config.fee_card_surcharge),
                PaymentMethod.PAYPAL: Decimal(config.fee_paypal_surcharge),
                PaymentMethod.CRYPTO: Decimal(config.fee_crypto_surcharge),
            }
        )

    def surcharge(self, method: Optional[PaymentMethod]) -> Decimal:
        if method is None:
            return Decimal("0")
        return self.surcharges.get(method, Decimal("0"))


@dataclass(frozen=True)
class FeeBreakdown:
    """Result of a fee computation"""
    corridor: Corridor
    method: Optional[PaymentMethod]
    rate: Decimal      # Combined fraction applied to the amount
    fixed: Money
    total: Money

    @property
    def percentage(self) -> Decimal:
        """Combined rate expressed in percent"""
        return self.rate * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "corridor": self.corridor.value,
            "method": self.method.value if self.method else None,
            "percentage": str(self.percentage.normalize()),
            "fixed": str(self.fixed.amount),
            "total": str(self.total.amount),
            "currency": self.total.currency.code
        }


class FeeCalculator:
    """Deterministic fee computation over a fee schedule"""

    def __init__(self, schedule: Optional[FeeSchedule] = None):
        self.schedule = schedule or FeeSchedule()

    def compute_fee(self, amount: Money, corridor: Corridor,
                    method: Optional[PaymentMethod] = None) -> FeeBreakdown:
        """
        Compute the fee for moving an amount through a corridor

        Args:
            amount: Amount being moved (fee is in the same currency)
            corridor: Fee tier to apply
            method: Payment method; card, paypal and crypto add a surcharge

        Returns:
            FeeBreakdown with the combined rate, fixed fee and total fee
        """
        if amount.amount < 0:
            raise InvalidAmount("Cannot compute a fee on a negative amount")
        if method is not None:
            method = PaymentMethod.from_value(method)

        tier = self.schedule.tiers[corridor]
        rate = tier.rate + self.schedule.surcharge(method)
        fixed = Money(tier.fixed, amount.currency)
        total = Money(amount.amount * rate + tier.fixed, amount.currency)

        return FeeBreakdown(
            corridor=corridor,
            method=method,
            rate=rate,
            fixed=fixed,
            total=total
        )

    @staticmethod
    def corridor_for(from_country: str, to_country: str, express: bool = False) -> Corridor:
        """Classify a movement between two countries"""
        if express:
            return Corridor.EXPRESS
        if (from_country or "").strip().upper() == (to_country or "").strip().upper():
            return Corridor.LOCAL
        return Corridor.INTERNATIONAL
