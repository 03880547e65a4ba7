"""Processing fees in points.

base = percentage + fixed (converted at 10 points per dollar), then times
the risk multiplier, then less the volume discount, floored at 1 point.
"""

from __future__ import annotations

from rewards.payouts.schemas import FeeBreakdown, PayoutMethod, RiskLevel

POINTS_PER_DOLLAR = 10

# method -> (percent of amount, fixed fee in cents)
FEE_TABLE: dict[PayoutMethod, tuple[float, int]] = {
    PayoutMethod.STRIPE: (2.9, 30),
    PayoutMethod.PAYPAL: (2.9, 30),
    PayoutMethod.BANK_TRANSFER: (0.5, 25),
    PayoutMethod.CRYPTO: (1.5, 50),
}

RISK_MULTIPLIERS: dict[RiskLevel, float] = {
    RiskLevel.LOW: 1.0,
    RiskLevel.MEDIUM: 1.2,
    RiskLevel.HIGH: 1.5,
}

# (completed volume over the trailing 30 days must exceed, discount), largest first
VOLUME_DISCOUNTS: list[tuple[int, float]] = [
    (10_000, 0.20),
    (5_000, 0.10),
]

MIN_FEE = 1.0


def volume_discount(monthly_volume: int) -> float:
    for threshold, discount in VOLUME_DISCOUNTS:
        if monthly_volume > threshold:
            return discount
    return 0.0


def fee_for(
    amount: int,
    method: PayoutMethod,
    risk_multiplier: float = 1.0,
    discount: float = 0.0,
) -> FeeBreakdown:
    percent, fixed_cents = FEE_TABLE[method]
    percentage_fee = amount * percent / 100
    fixed_fee = fixed_cents * POINTS_PER_DOLLAR / 100
    base_fee = percentage_fee + fixed_fee
    final_fee = max(MIN_FEE, round(base_fee * risk_multiplier * (1 - discount), 2))
    return FeeBreakdown(
        percentage_fee=round(percentage_fee, 2),
        fixed_fee=round(fixed_fee, 2),
        base_fee=round(base_fee, 2),
        risk_multiplier=risk_multiplier,
        volume_discount=discount,
        final_fee=final_fee,
        net_amount=round(amount - final_fee, 2),
    )


def calculate_fee(amount: int, method: PayoutMethod, risk_level: RiskLevel, monthly_volume: int) -> FeeBreakdown:
    return fee_for(amount, method, RISK_MULTIPLIERS[risk_level], volume_discount(monthly_volume))
