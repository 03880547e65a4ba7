"""Value objects for payout validation, fees, risk and decisions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PayoutMethod(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    PENDING_REVIEW = "pending_review"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Outcome(str, Enum):
    AUTO_APPROVE = "auto_approve"
    MANUAL_REVIEW = "manual_review"
    REJECT = "reject"


class KycStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class PayoutAccount(BaseModel):
    """Everything the rules need to know about the requesting user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    is_active: bool = True
    kyc_status: KycStatus = KycStatus.PENDING
    region: str | None = None
    base_risk_score: int = 30
    level: int = 1
    current_points: int = 0


class PaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    payment_id: str
    user_id: str
    amount: int
    method: PayoutMethod
    details: dict[str, Any] = Field(default_factory=dict)
    fee: float = 0.0
    final_amount: float = 0.0
    risk_score: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: str | None = None
    error_code: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class FeeBreakdown(BaseModel):
    """Fee in points. ``final_fee`` is what the user pays, never below the minimum."""

    model_config = ConfigDict(frozen=True)

    percentage_fee: float
    fixed_fee: float
    base_fee: float
    risk_multiplier: float
    volume_discount: float
    final_fee: float
    net_amount: float


class RiskFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    points: int


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    level: RiskLevel
    factors: list[RiskFactor] = Field(default_factory=list)
    fraud_score: float | None = None
    fraud_unavailable: bool = False
    recommendations: list[str] = Field(default_factory=list)


class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    status: PaymentStatus
    fee: FeeBreakdown | None = None
    risk_score: int
    risk_level: RiskLevel
    error_code: str | None = None
    reason: str | None = None
    recommendations: list[str] = Field(default_factory=list)
    payment_id: str | None = None
    transaction_id: str | None = None
