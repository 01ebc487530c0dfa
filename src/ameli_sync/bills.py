from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Iterable, Optional

from .models import BillingRecord, ReimbursementDetail


logger = logging.getLogger(__name__)

PAYEE = "Ameli"


def document_name(issue_date: date) -> str:
    return f"{issue_date.strftime('%Y%m%d')}_ameli.pdf"


def assemble_billing_records(
    details: Iterable[ReimbursementDetail],
    *,
    build_document_url: Callable[[str], str],
) -> list[BillingRecord]:
    """
    Flatten reimbursements into one bill per care line, plus one per participation.

    Order: reimbursements as given; inside each, beneficiaries in page order, their lines in page
    order, then the participation bill.
    """
    bills: list[BillingRecord] = []
    for detail in details:
        doc_url: Optional[str] = build_document_url(detail.document_link) if detail.document_link else None
        doc_name = document_name(detail.date)

        for beneficiary, lines in detail.beneficiaries.items():
            for line in lines:
                bills.append(
                    BillingRecord(
                        subtype=line.label,
                        beneficiary=beneficiary,
                        is_third_party_payer=detail.is_third_party_payer,
                        issue_date=detail.date,
                        original_date=line.date,
                        payee=PAYEE,
                        amount=line.amount_paid,
                        original_amount=line.amount_billed,
                        document_url=doc_url,
                        document_name=doc_name,
                    )
                )

        if detail.participation is not None:
            bills.append(
                BillingRecord(
                    subtype=detail.participation.label,
                    is_third_party_payer=detail.is_third_party_payer,
                    issue_date=detail.date,
                    original_date=detail.participation.date,
                    payee=PAYEE,
                    amount=detail.participation.amount_paid,
                    document_url=doc_url,
                    document_name=doc_name,
                )
            )

    logger.debug("Assembled %d bills from reimbursements", len(bills))
    return bills
