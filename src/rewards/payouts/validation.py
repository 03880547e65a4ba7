"""Payout request validation. Fails fast with a distinct error code per rule."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from rewards.errors import ValidationError
from rewards.payouts.schemas import KycStatus, PaymentRecord, PaymentStatus, PayoutAccount, PayoutMethod

MIN_AMOUNT: dict[PayoutMethod, int] = {
    PayoutMethod.STRIPE: 100,
    PayoutMethod.PAYPAL: 100,
    PayoutMethod.BANK_TRANSFER: 500,
    PayoutMethod.CRYPTO: 200,
}

BASE_MAX_AMOUNT = 50_000
ABSOLUTE_MAX_AMOUNT = 100_000

DAILY_LIMIT = 10_000
WEEKLY_LIMIT = 50_000
MAX_OPEN_PAYMENTS = 3

REQUIRED_DETAILS: dict[PayoutMethod, tuple[str, ...]] = {
    PayoutMethod.STRIPE: ("card_token",),
    PayoutMethod.PAYPAL: ("email",),
    PayoutMethod.BANK_TRANSFER: ("account_number", "routing_number"),
    PayoutMethod.CRYPTO: ("wallet_address",),
}

# Payments that count against the daily/weekly caps
CAP_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.COMPLETED})
# Payments that are still open and reserve balance
OPEN_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.PENDING_REVIEW})


def parse_method(method: str) -> PayoutMethod:
    try:
        return PayoutMethod(method)
    except ValueError as exc:
        raise ValidationError(f"Unsupported payout method: {method}", code="invalid_payment_method") from exc


def max_amount(level: int) -> int:
    """Level-scaled maximum, capped at the absolute ceiling."""
    return min(int(BASE_MAX_AMOUNT * (level / 10)), ABSOLUTE_MAX_AMOUNT)


def _sum_since(history: Iterable[PaymentRecord], since: datetime) -> int:
    return sum(p.amount for p in history if p.status in CAP_STATUSES and p.created_at >= since)


def open_payments(history: Iterable[PaymentRecord]) -> list[PaymentRecord]:
    return [p for p in history if p.status in OPEN_STATUSES]


def validate_request(
    account: PayoutAccount,
    amount: int,
    method: str,
    details: dict[str, object],
    history: Sequence[PaymentRecord],
    now: datetime,
) -> PayoutMethod:
    """Run every rule in order and return the parsed method.

    ``history`` must hold the user's payments from at least the trailing
    seven days plus every still-open payment.
    """
    if not account.is_active:
        raise ValidationError("Account is not active", code="account_inactive")
    if account.kyc_status != KycStatus.VERIFIED:
        raise ValidationError("KYC verification required", code="kyc_required")
    if amount <= 0:
        raise ValidationError("Amount must be positive", code="invalid_amount")

    open_now = open_payments(history)
    reserved = sum(p.amount for p in open_now)
    if account.current_points - reserved < amount:
        raise ValidationError(
            f"Insufficient balance: {account.current_points - reserved} available, {amount} requested",
            code="insufficient_balance",
        )

    payout_method = parse_method(method)
    minimum = MIN_AMOUNT[payout_method]
    if amount < minimum:
        raise ValidationError(f"Minimum payout for {payout_method.value} is {minimum}", code="below_minimum")
    maximum = max_amount(account.level)
    if amount > maximum:
        raise ValidationError(f"Maximum payout at level {account.level} is {maximum}", code="above_maximum")

    if _sum_since(history, now - timedelta(days=1)) + amount > DAILY_LIMIT:
        raise ValidationError(f"Daily payout limit of {DAILY_LIMIT} exceeded", code="daily_limit_exceeded")
    if _sum_since(history, now - timedelta(days=7)) + amount > WEEKLY_LIMIT:
        raise ValidationError(f"Weekly payout limit of {WEEKLY_LIMIT} exceeded", code="weekly_limit_exceeded")

    missing = [field for field in REQUIRED_DETAILS[payout_method] if not details.get(field)]
    if missing:
        raise ValidationError(
            f"Missing {payout_method.value} details: {', '.join(missing)}", code="invalid_payment_details",
        )

    if len(open_now) >= MAX_OPEN_PAYMENTS:
        raise ValidationError(
            f"{len(open_now)} payments are still open; wait for them to settle", code="too_many_pending",
        )
    return payout_method
