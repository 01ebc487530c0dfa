from __future__ import annotations

from datetime import date
from decimal import Decimal

from ameli_sync.bills import assemble_billing_records, document_name
from ameli_sync.models import HealthCareLine, ParticipationLine, ReimbursementDetail


def _doc_url(link: str) -> str:
    return "https://assure.ameli.fr" + link


def _line(label: str, day: int, billed: str, paid: str) -> HealthCareLine:
    return HealthCareLine(
        label=label,
        date=date(2023, 6, day),
        amount_billed=Decimal(billed),
        reimbursement_base=Decimal(billed),
        rate="70 %",
        amount_paid=Decimal(paid),
    )


def test_document_name_is_issue_date_based() -> None:
    assert document_name(date(2023, 1, 5)) == "20230105_ameli.pdf"


def test_assemble_two_lines_and_participation_for_third_party_payment() -> None:
    detail = ReimbursementDetail(
        date=date(2023, 6, 12),
        line_id="00",
        detail_url="https://assure.ameli.fr/PortailAS/paiements.do?actionEvt=chargerDetailPaiements",
        is_third_party_payer=True,
        document_link="/PortailAS/PDFServletReleveMensuel.dopdf?idPaiement=P1",
        beneficiaries={"JEAN DUPONT": [_line("Consultation", 3, "25.00", "16.50"), _line("Pharmacie", 5, "12.40", "8.06")]},
        participation=ParticipationLine(label="Participation forfaitaire", date=date(2023, 6, 3), amount_paid=Decimal("-1.00")),
    )

    bills = assemble_billing_records([detail], build_document_url=_doc_url)
    assert [b.subtype for b in bills] == ["Consultation", "Pharmacie", "Participation forfaitaire"]
    assert [b.beneficiary for b in bills] == ["JEAN DUPONT", "JEAN DUPONT", None]
    assert [b.amount for b in bills] == [Decimal("16.50"), Decimal("8.06"), Decimal("-1.00")]
    assert [b.original_amount for b in bills] == [Decimal("25.00"), Decimal("12.40"), None]
    assert {b.document_name for b in bills} == {"20230612_ameli.pdf"}
    assert {b.document_url for b in bills} == {"https://assure.ameli.fr/PortailAS/PDFServletReleveMensuel.dopdf?idPaiement=P1"}
    assert all(b.is_third_party_payer for b in bills)
    assert all(b.issue_date == date(2023, 6, 12) for b in bills)


def test_assemble_keeps_beneficiary_page_order_across_reimbursements() -> None:
    first = ReimbursementDetail(
        date=date(2023, 6, 12),
        line_id="00",
        detail_url="d0",
        beneficiaries={
            "LÉA DUPONT": [_line("Radiologie", 7, "48.00", "33.60")],
            "JEAN DUPONT": [_line("Consultation", 3, "25.00", "16.50")],
        },
    )
    second = ReimbursementDetail(date=date(2023, 5, 30), line_id="01", detail_url="d1")

    bills = assemble_billing_records([first, second], build_document_url=_doc_url)
    assert [b.beneficiary for b in bills] == ["LÉA DUPONT", "JEAN DUPONT"]
    # No statement link on the page means no document URL, but the name is still set.
    assert all(b.document_url is None for b in bills)
    assert bills[0].document_name == "20230612_ameli.pdf"


def test_assemble_reimbursement_without_lines_yields_nothing() -> None:
    empty = ReimbursementDetail(date=date(2023, 6, 12), line_id="00", detail_url="d0", document_link="/x.pdf")
    assert assemble_billing_records([empty], build_document_url=_doc_url) == []


def test_record_key_distinguishes_beneficiaries() -> None:
    detail = ReimbursementDetail(
        date=date(2023, 6, 12),
        line_id="00",
        detail_url="d0",
        beneficiaries={
            "JEAN DUPONT": [_line("Consultation", 3, "25.00", "16.50")],
            "LÉA DUPONT": [_line("Consultation", 3, "25.00", "16.50")],
        },
    )
    a, b = assemble_billing_records([detail], build_document_url=_doc_url)
    assert a.record_key() != b.record_key()
