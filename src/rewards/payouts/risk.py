"""Composite payout risk score.

Starts from the account's base score and adds penalties for amount, method,
geography, frequency, suspicious patterns and the external fraud score. The
total is clamped to [0, 100] and classified low (<60), medium (60-79) or
high (>=80).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from rewards.payouts.schemas import PaymentRecord, PayoutAccount, PayoutMethod, RiskAssessment, RiskFactor, RiskLevel

# (amount must exceed, penalty), largest first
AMOUNT_PENALTIES: list[tuple[int, int]] = [
    (10_000, 20),
    (5_000, 10),
]

METHOD_PENALTIES: dict[PayoutMethod, int] = {
    PayoutMethod.STRIPE: 0,
    PayoutMethod.PAYPAL: 5,
    PayoutMethod.BANK_TRANSFER: 10,
    PayoutMethod.CRYPTO: 25,
}

REGION_PENALTIES: dict[str, int] = {
    "US": 0,
    "CA": 5,
    "UK": 5,
    "EU": 10,
    "OTHER": 20,
}
UNKNOWN_REGION_PENALTY = 20

FREQUENCY_WINDOW = timedelta(days=30)
FREQUENCY_THRESHOLD = 5
FREQUENCY_PENALTY = 15

BURST_COUNT = 3
BURST_WINDOW = timedelta(hours=24)
BURST_PENALTY = 20
SPIKE_FACTOR = 3
SPIKE_PENALTY = 15

FRAUD_THRESHOLD = 0.7
FRAUD_PENALTY = 30

MEDIUM_THRESHOLD = 60
HIGH_THRESHOLD = 80

RECOMMENDATIONS: dict[RiskLevel, list[str]] = {
    RiskLevel.HIGH: [
        "Manual review required",
        "Consider additional verification",
        "Monitor for suspicious activity",
    ],
    RiskLevel.MEDIUM: [
        "Enhanced due diligence recommended",
        "Consider payment limits",
    ],
    RiskLevel.LOW: ["Standard processing"],
}


def classify(score: int) -> RiskLevel:
    if score >= HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def amount_penalty(amount: int) -> int:
    for threshold, penalty in AMOUNT_PENALTIES:
        if amount > threshold:
            return penalty
    return 0


def region_penalty(region: str | None) -> int:
    if region is None:
        return UNKNOWN_REGION_PENALTY
    return REGION_PENALTIES.get(region.upper(), UNKNOWN_REGION_PENALTY)


def assess_risk(
    account: PayoutAccount,
    amount: int,
    method: PayoutMethod | None,
    history: Sequence[PaymentRecord],
    now: datetime,
    fraud_score: float | None = None,
    fraud_unavailable: bool = False,
) -> RiskAssessment:
    """Score one request. ``method`` is None when the requested method is unknown."""
    factors = [RiskFactor(name="base", points=account.base_risk_score)]

    def add(name: str, points: int) -> None:
        if points:
            factors.append(RiskFactor(name=name, points=points))

    add("amount", amount_penalty(amount))
    add("method", METHOD_PENALTIES[method] if method is not None else max(METHOD_PENALTIES.values()))
    add("geography", region_penalty(account.region))

    recent = [p for p in history if p.created_at >= now - FREQUENCY_WINDOW]
    if len(recent) > FREQUENCY_THRESHOLD:
        add("frequency", FREQUENCY_PENALTY)

    latest = sorted(recent, key=lambda p: p.created_at, reverse=True)[:BURST_COUNT]
    if len(latest) == BURST_COUNT and all(now - p.created_at <= BURST_WINDOW for p in latest):
        add("burst", BURST_PENALTY)
    if recent:
        average = sum(p.amount for p in recent) / len(recent)
        if amount > SPIKE_FACTOR * average:
            add("amount_spike", SPIKE_PENALTY)

    if fraud_score is not None and fraud_score > FRAUD_THRESHOLD:
        add("fraud_score", FRAUD_PENALTY)

    score = max(0, min(100, sum(f.points for f in factors)))
    level = classify(score)
    return RiskAssessment(
        score=score,
        level=level,
        factors=factors,
        fraud_score=fraud_score,
        fraud_unavailable=fraud_unavailable,
        recommendations=list(RECOMMENDATIONS[level]),
    )
