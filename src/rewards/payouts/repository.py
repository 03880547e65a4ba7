"""Payout repository contract and its SQLAlchemy adapter."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards.db import models
from rewards.errors import NotFoundError, StateConflictError
from rewards.payouts.schemas import (
    KycStatus,
    PaymentRecord,
    PaymentStatus,
    PayoutAccount,
    PayoutMethod,
    RiskLevel,
)
from rewards.payouts.validation import OPEN_STATUSES
from rewards.time_utils import ensure_utc


class PayoutRepository(Protocol):
    async def get_account(self, user_id: str) -> PayoutAccount | None: ...

    async def list_payments(self, user_id: str, since: datetime) -> list[PaymentRecord]:
        """Payments created since ``since`` plus every still-open payment."""
        ...

    async def create_payment(self, record: PaymentRecord) -> None: ...

    async def update_payment(
        self,
        payment_id: str,
        status: PaymentStatus,
        updated_at: datetime,
        *,
        error_code: str | None = None,
    ) -> None: ...

    async def complete_payment(self, payment_id: str, transaction_id: str, completed_at: datetime) -> None:
        """Mark completed and debit the user's points in one commit."""
        ...


def payment_from_row(row: models.Payment) -> PaymentRecord:
    return PaymentRecord(
        payment_id=row.payment_id,
        user_id=row.user_id,
        amount=row.amount,
        method=PayoutMethod(row.method),
        details=row.details or {},
        fee=row.fee,
        final_amount=row.final_amount,
        risk_score=row.risk_score,
        risk_level=RiskLevel(row.risk_level),
        status=PaymentStatus(row.status),
        transaction_id=row.transaction_id,
        error_code=row.error_code,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


class SqlPayoutRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_account(self, user_id: str) -> PayoutAccount | None:
        async with self._session_factory() as db:
            profile = await db.get(models.UserProfile, user_id)
            if profile is None:
                return None
            stats = await db.get(models.UserStats, user_id)
            return PayoutAccount(
                user_id=user_id,
                is_active=profile.is_active,
                kyc_status=KycStatus(profile.kyc_status),
                region=profile.region,
                base_risk_score=profile.base_risk_score,
                level=stats.user_level if stats is not None else 1,
                current_points=stats.current_points if stats is not None else 0,
            )

    async def list_payments(self, user_id: str, since: datetime) -> list[PaymentRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(models.Payment)
                .where(
                    models.Payment.user_id == user_id,
                    or_(
                        models.Payment.created_at >= since,
                        models.Payment.status.in_([s.value for s in OPEN_STATUSES]),
                    ),
                )
                .order_by(models.Payment.created_at)
            )
            return [payment_from_row(row) for row in result.scalars()]

    async def create_payment(self, record: PaymentRecord) -> None:
        async with self._session_factory() as db:
            db.add(models.Payment(
                payment_id=record.payment_id,
                user_id=record.user_id,
                amount=record.amount,
                method=record.method.value,
                details=record.details,
                fee=record.fee,
                final_amount=record.final_amount,
                risk_score=record.risk_score,
                risk_level=record.risk_level.value,
                status=record.status.value,
                transaction_id=record.transaction_id,
                error_code=record.error_code,
                created_at=record.created_at,
                updated_at=record.updated_at,
            ))
            await db.commit()

    async def update_payment(
        self,
        payment_id: str,
        status: PaymentStatus,
        updated_at: datetime,
        *,
        error_code: str | None = None,
    ) -> None:
        async with self._session_factory() as db:
            result = await db.execute(
                update(models.Payment)
                .where(models.Payment.payment_id == payment_id)
                .values(status=status.value, error_code=error_code, updated_at=updated_at)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise NotFoundError(f"Payment {payment_id} not found")
            await db.commit()

    async def complete_payment(self, payment_id: str, transaction_id: str, completed_at: datetime) -> None:
        async with self._session_factory() as db:
            payment = await db.get(models.Payment, payment_id)
            if payment is None:
                raise NotFoundError(f"Payment {payment_id} not found")
            if payment.status != PaymentStatus.PROCESSING.value:
                raise StateConflictError(f"Payment {payment_id} is {payment.status}, not processing")
            user_id, amount = payment.user_id, payment.amount

            result = await db.execute(
                update(models.Payment)
                .where(
                    models.Payment.payment_id == payment_id,
                    models.Payment.status == PaymentStatus.PROCESSING.value,
                )
                .values(status=PaymentStatus.COMPLETED.value, transaction_id=transaction_id, updated_at=completed_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise StateConflictError(f"Payment {payment_id} left processing before completion")

            # Balance arithmetic runs in SQL; grants may commit concurrently.
            stats = models.UserStats
            result = await db.execute(
                update(stats)
                .where(stats.user_id == user_id)
                .values(
                    current_points=stats.current_points - amount,
                    total_payouts_received=stats.total_payouts_received + amount,
                    version=stats.version + 1,
                    updated_at=completed_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise NotFoundError(f"No balance row for {user_id}")
            await db.commit()
