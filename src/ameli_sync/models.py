from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReimbursementSummary(BaseModel):
    date: dt.date
    line_id: str
    detail_url: str
    is_third_party_payer: bool = False


class HealthCareLine(BaseModel):
    label: str
    date: dt.date
    amount_billed: Decimal
    reimbursement_base: Decimal
    rate: str
    amount_paid: Decimal


class ParticipationLine(BaseModel):
    label: str
    date: dt.date
    amount_paid: Decimal


class ReimbursementDetail(ReimbursementSummary):
    document_link: Optional[str] = None
    # Insertion order is the order beneficiaries appear on the detail page.
    beneficiaries: dict[str, list[HealthCareLine]] = Field(default_factory=dict)
    participation: Optional[ParticipationLine] = None

    @classmethod
    def from_summary(cls, summary: ReimbursementSummary) -> "ReimbursementDetail":
        return cls(**summary.model_dump())


class BillingRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["health"] = "health"
    subtype: str
    beneficiary: Optional[str] = None
    is_third_party_payer: bool
    issue_date: dt.date
    original_date: dt.date
    payee: str = "Ameli"
    amount: Decimal
    original_amount: Optional[Decimal] = None
    document_url: Optional[str] = None
    document_name: str

    def record_key(self) -> str:
        # Used for idempotency. Keep stable and human-readable.
        parts = [
            self.issue_date.isoformat(),
            self.original_date.isoformat(),
            self.subtype,
            self.beneficiary or "",
            str(self.amount),
            str(self.original_amount) if self.original_amount is not None else "",
        ]
        return "|".join(parts)
