"""PayoutRiskEngine: validate, price, score and route a payout request."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog

from rewards.config import Settings, get_settings
from rewards.errors import ValidationError
from rewards.locks import KeyedLock, LocalKeyedLock
from rewards.payouts.fees import calculate_fee
from rewards.payouts.ports import FraudScorer, PaymentProcessor
from rewards.payouts.repository import PayoutRepository
from rewards.payouts.risk import assess_risk
from rewards.payouts.schemas import (
    Decision,
    FeeBreakdown,
    Outcome,
    PaymentRecord,
    PaymentStatus,
    PayoutAccount,
    PayoutMethod,
    RiskAssessment,
    RiskLevel,
)
from rewards.payouts.validation import parse_method, validate_request
from rewards.time_utils import ensure_utc, utcnow

logger = structlog.get_logger()

HISTORY_WINDOW = timedelta(days=30)

OUTCOME_STATUS: dict[Outcome, PaymentStatus] = {
    Outcome.AUTO_APPROVE: PaymentStatus.PENDING,
    Outcome.MANUAL_REVIEW: PaymentStatus.PENDING_REVIEW,
    Outcome.REJECT: PaymentStatus.REJECTED,
}


def completed_volume(history: list[PaymentRecord], since: datetime) -> int:
    return sum(p.amount for p in history if p.status == PaymentStatus.COMPLETED and p.created_at >= since)


def decide(risk: RiskAssessment, validation_error: ValidationError | None) -> tuple[Outcome, str | None]:
    """High risk always goes to review, then validation failures reject,
    then an unreachable fraud scorer sends the request to review."""
    if risk.level == RiskLevel.HIGH:
        return Outcome.MANUAL_REVIEW, "high_risk"
    if validation_error is not None:
        return Outcome.REJECT, validation_error.code
    if risk.fraud_unavailable:
        return Outcome.MANUAL_REVIEW, "dependency_unavailable"
    return Outcome.AUTO_APPROVE, None


class PayoutRiskEngine:
    def __init__(
        self,
        repository: PayoutRepository,
        fraud_scorer: FraudScorer,
        processor: PaymentProcessor,
        lock: KeyedLock | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.fraud_scorer = fraud_scorer
        self.processor = processor
        self.lock = lock or LocalKeyedLock(wait_seconds=settings.lock_wait_seconds)
        self.fraud_timeout = settings.fraud_timeout_seconds
        self.processor_timeout = settings.processor_timeout_seconds

    async def _fraud_score(self, context: dict[str, Any]) -> float | None:
        """External fraud score, or None when the scorer fails or times out."""
        try:
            value = await asyncio.wait_for(self.fraud_scorer.score(context), timeout=self.fraud_timeout)
        except asyncio.TimeoutError:
            logger.warning("fraud_scorer_unavailable", user_id=context.get("user_id"), error="timeout")
            return None
        except Exception as exc:
            logger.warning("fraud_scorer_unavailable", user_id=context.get("user_id"), error=str(exc))
            return None
        return max(0.0, min(1.0, float(value)))

    def assess(
        self,
        account: PayoutAccount,
        amount: int,
        method: str,
        details: dict[str, Any],
        history: list[PaymentRecord],
        now: datetime,
        fraud_score: float | None,
        fraud_unavailable: bool = False,
    ) -> tuple[Decision, PayoutMethod | None]:
        """Pure decision for one request against a history snapshot."""
        validation_error: ValidationError | None = None
        payout_method: PayoutMethod | None = None
        try:
            payout_method = validate_request(account, amount, method, details, history, now)
        except ValidationError as exc:
            validation_error = exc
            try:
                payout_method = parse_method(method)
            except ValidationError:
                payout_method = None

        risk = assess_risk(
            account, amount, payout_method, history, now,
            fraud_score=fraud_score, fraud_unavailable=fraud_unavailable,
        )
        fee: FeeBreakdown | None = None
        if payout_method is not None and amount > 0:
            fee = calculate_fee(amount, payout_method, risk.level, completed_volume(history, now - HISTORY_WINDOW))

        outcome, reason = decide(risk, validation_error)
        return Decision(
            outcome=outcome,
            status=OUTCOME_STATUS[outcome],
            fee=fee,
            risk_score=risk.score,
            risk_level=risk.level,
            error_code=validation_error.code if validation_error is not None else None,
            reason=reason,
            recommendations=risk.recommendations,
        ), payout_method

    async def evaluate(
        self,
        user_id: str,
        amount: int,
        method: str,
        details: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> Decision:
        """Decide a payout and, when auto-approved, submit it to the processor.

        The decision and the pending record are made under the per-user lock,
        so concurrent requests see each other's reservations against the caps.
        """
        now = ensure_utc(now) or utcnow()
        details = details or {}

        async with self.lock.hold(f"payout:{user_id}"):
            account = await self.repository.get_account(user_id)
            if account is None:
                logger.info("payout_decision", user_id=user_id, outcome=Outcome.REJECT.value, error_code="user_not_found")
                return Decision(
                    outcome=Outcome.REJECT,
                    status=PaymentStatus.REJECTED,
                    risk_score=0,
                    risk_level=RiskLevel.LOW,
                    error_code="user_not_found",
                    reason="user_not_found",
                )
            history = await self.repository.list_payments(user_id, now - HISTORY_WINDOW)
            fraud_score = await self._fraud_score({
                "user_id": user_id,
                "amount": amount,
                "method": method,
                "region": account.region,
            })
            decision, payout_method = self.assess(
                account, amount, method, details, history, now,
                fraud_score=fraud_score, fraud_unavailable=fraud_score is None,
            )

            if payout_method is not None and amount > 0:
                record = PaymentRecord(
                    payment_id=str(uuid.uuid4()),
                    user_id=user_id,
                    amount=amount,
                    method=payout_method,
                    details=details,
                    fee=decision.fee.final_fee if decision.fee else 0.0,
                    final_amount=decision.fee.net_amount if decision.fee else float(amount),
                    risk_score=decision.risk_score,
                    risk_level=decision.risk_level,
                    status=decision.status,
                    error_code=decision.error_code,
                    created_at=now,
                )
                await self.repository.create_payment(record)
                decision = decision.model_copy(update={"payment_id": record.payment_id})
                if decision.outcome == Outcome.AUTO_APPROVE:
                    await self.repository.update_payment(record.payment_id, PaymentStatus.PROCESSING, now)

        logger.info(
            "payout_decision",
            user_id=user_id,
            amount=amount,
            method=method,
            outcome=decision.outcome.value,
            risk_score=decision.risk_score,
            risk_level=decision.risk_level.value,
            error_code=decision.error_code,
            reason=decision.reason,
        )
        if decision.outcome != Outcome.AUTO_APPROVE or decision.payment_id is None:
            return decision
        return await self._process(decision, payout_method, details)  # type: ignore[arg-type]

    async def _process(self, decision: Decision, method: PayoutMethod, details: dict[str, Any]) -> Decision:
        """Submit once; a failure or timeout marks the payment failed and is not retried here."""
        payment_id = decision.payment_id
        amount = decision.fee.net_amount if decision.fee else 0.0
        try:
            result = await asyncio.wait_for(
                self.processor.submit(method.value, details, amount),
                timeout=self.processor_timeout,
            )
        except asyncio.TimeoutError:
            return await self._fail(decision, "processor_timeout")
        except Exception as exc:
            logger.warning("payment_processor_failed", payment_id=payment_id, error=str(exc))
            return await self._fail(decision, "processor_error")

        await self.repository.complete_payment(payment_id, result.transaction_id, utcnow())  # type: ignore[arg-type]
        logger.info("payout_completed", payment_id=payment_id, transaction_id=result.transaction_id)
        return decision.model_copy(update={"status": PaymentStatus.COMPLETED, "transaction_id": result.transaction_id})

    async def _fail(self, decision: Decision, error_code: str) -> Decision:
        logger.warning("payment_processor_failed", payment_id=decision.payment_id, error_code=error_code)
        await self.repository.update_payment(
            decision.payment_id, PaymentStatus.FAILED, utcnow(), error_code=error_code,  # type: ignore[arg-type]
        )
        return decision.model_copy(update={"status": PaymentStatus.FAILED, "error_code": error_code})
