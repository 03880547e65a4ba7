"""External capabilities the payout engine consumes but does not implement."""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict


class ProcessorResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str


class FraudScorer(Protocol):
    async def score(self, context: dict[str, Any]) -> float:
        """Fraud likelihood in [0, 1]."""
        ...


class PaymentProcessor(Protocol):
    async def submit(self, method: str, details: dict[str, Any], amount: float) -> ProcessorResult:
        """Move money. Raises on any processor-side failure."""
        ...
