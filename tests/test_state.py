from __future__ import annotations

import time
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest

from ameli_sync.models import BillingRecord
from ameli_sync.state import BillStore


def _bill(
    *,
    subtype: str = "Consultation",
    beneficiary: Optional[str] = "JEAN DUPONT",
    issue: date = date(2023, 6, 12),
    amount: str = "16.50",
    doc_url: Optional[str] = "https://assure.ameli.fr/PortailAS/PDFServletReleveMensuel.dopdf?idPaiement=P1",
) -> BillingRecord:
    return BillingRecord(
        subtype=subtype,
        beneficiary=beneficiary,
        is_third_party_payer=False,
        issue_date=issue,
        original_date=date(2023, 6, 3),
        amount=Decimal(amount),
        original_amount=Decimal("25.00"),
        document_url=doc_url,
        document_name=f"{issue.strftime('%Y%m%d')}_ameli.pdf",
    )


def test_state_creates_backup(tmp_path: Path) -> None:
    db_path = tmp_path / "bills.db"
    s = BillStore(str(db_path))
    try:
        rid = s.record_run_start()
        s.record_run_finish(rid, ok=True, message="test")
    finally:
        s.close()

    bak = tmp_path / "bills.db.bak"
    assert db_path.exists()
    assert bak.exists()
    assert bak.stat().st_size > 0


def test_state_restores_from_backup_when_db_corrupted(tmp_path: Path) -> None:
    db_path = tmp_path / "bills.db"

    s1 = BillStore(str(db_path))
    try:
        s1.save([_bill()], str(tmp_path / "docs"))
        rid = s1.record_run_start()
        s1.record_run_finish(rid, ok=True, message="test")
    finally:
        s1.close()

    # Corrupt the main DB file.
    db_path.write_bytes(b"not a sqlite db")

    s2 = BillStore(str(db_path))
    try:
        assert s2.count_bills() == 1
        assert s2.has_bill(_bill().record_key())
    finally:
        s2.close()

    quarantined = list(tmp_path.glob("bills.db.corrupt-*"))
    assert quarantined, "expected quarantined corrupted db file to be created"


def test_save_skips_bills_within_matching_window(tmp_path: Path) -> None:
    s = BillStore(str(tmp_path / "bills.db"))
    try:
        first = s.save([_bill()], str(tmp_path / "docs"))
        assert first.saved == 1

        again = s.save(
            [
                _bill(issue=date(2023, 6, 20), amount="16.55"),  # 8 days, 0.05 apart: same bill
                _bill(issue=date(2023, 6, 23), amount="16.50"),  # 11 days apart
                _bill(amount="16.70"),  # 0.20 apart
                _bill(beneficiary="LÉA DUPONT"),
                _bill(subtype="Pharmacie"),
            ],
            str(tmp_path / "docs"),
        )
        assert again.duplicates == 1
        assert again.saved == 4
        assert s.count_bills() == 5
    finally:
        s.close()


def test_save_matches_participation_bills_without_beneficiary(tmp_path: Path) -> None:
    s = BillStore(str(tmp_path / "bills.db"))
    try:
        p = _bill(subtype="Participation forfaitaire", beneficiary=None, amount="-1.00")
        assert s.save([p], str(tmp_path)).saved == 1
        assert s.save([p], str(tmp_path)).duplicates == 1
    finally:
        s.close()


def test_save_defers_remaining_bills_after_deadline(tmp_path: Path) -> None:
    s = BillStore(str(tmp_path / "bills.db"))
    try:
        result = s.save(
            [_bill(), _bill(subtype="Pharmacie")],
            str(tmp_path / "docs"),
            deadline=time.time() - 1,
        )
        assert result.saved == 0
        assert result.deferred == 2
        assert s.count_bills() == 0
    finally:
        s.close()


def test_save_downloads_each_statement_once(tmp_path: Path) -> None:
    fetched: list[str] = []

    def fetch(url: str) -> bytes:
        fetched.append(url)
        return b"%PDF-1.4"

    docs = tmp_path / "docs"
    s = BillStore(str(tmp_path / "bills.db"))
    try:
        result = s.save(
            [_bill(), _bill(subtype="Pharmacie"), _bill(subtype="Radiologie", doc_url=None)],
            str(docs),
            fetch_document=fetch,
        )
    finally:
        s.close()

    assert result.saved == 3
    assert result.documents_downloaded == 1
    assert len(fetched) == 1
    assert (docs / "20230612_ameli.pdf").read_bytes() == b"%PDF-1.4"
    assert not list(docs.glob("*.part"))


def test_save_records_payee_identifiers(tmp_path: Path) -> None:
    s = BillStore(str(tmp_path / "bills.db"))
    try:
        s.save([_bill()], str(tmp_path), identifiers="CPAM PARIS")
        row = s._conn.execute("SELECT identifiers, payee FROM bills;").fetchone()
    finally:
        s.close()
    assert row == ("CPAM PARIS", "Ameli")


def test_save_keeps_identical_lines_of_one_statement(tmp_path: Path) -> None:
    s = BillStore(str(tmp_path / "bills.db"))
    try:
        result = s.save([_bill(), _bill(), _bill(issue=date(2023, 6, 15))], str(tmp_path / "docs"))
        assert result.saved == 3
        assert result.duplicates == 0
        assert s.count_bills() == 3

        # A later run sees all of them as already saved.
        again = s.save([_bill(), _bill()], str(tmp_path / "docs"))
        assert again.saved == 0
        assert again.duplicates == 2
        assert s.count_bills() == 3
    finally:
        s.close()


def test_save_persists_nothing_when_a_document_download_fails(tmp_path: Path) -> None:
    calls: list[str] = []

    def fetch(url: str) -> bytes:
        calls.append(url)
        if len(calls) == 2:
            raise ConnectionError("statement download failed")
        return b"%PDF-1.4"

    s = BillStore(str(tmp_path / "bills.db"))
    try:
        with pytest.raises(ConnectionError):
            s.save(
                [_bill(), _bill(issue=date(2023, 5, 2), doc_url="https://assure.ameli.fr/P2.pdf")],
                str(tmp_path / "docs"),
                fetch_document=fetch,
            )
        assert s.count_bills() == 0

        # The next run starts clean and saves both.
        assert s.save([_bill(), _bill(issue=date(2023, 5, 2))], str(tmp_path / "docs")).saved == 2
    finally:
        s.close()
