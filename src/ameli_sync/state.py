from __future__ import annotations

import logging
import shutil
import sqlite3
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Optional

from .models import BillingRecord


logger = logging.getLogger(__name__)

DEFAULT_PAYEE_IDENTIFIERS = "C.P.A.M."

_INSERT_BILL = """
INSERT INTO bills(
  key, subtype, beneficiary, is_third_party_payer, issue_date, original_date, payee, amount,
  original_amount, document_url, document_name, identifiers, created_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""


@dataclass
class SaveResult:
    saved: int = 0
    duplicates: int = 0
    deferred: int = 0
    documents_downloaded: int = 0


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _healthy_connection(path: Path) -> Optional[sqlite3.Connection]:
    conn = sqlite3.connect(path)
    try:
        row = conn.execute("PRAGMA quick_check;").fetchone()
    except sqlite3.DatabaseError:
        row = None
    if row and row[0] == "ok":
        return conn
    conn.close()
    return None


class BillStore:
    """
    Local bill storage. Deduplicates against bills saved by earlier runs and optionally keeps the
    statement PDFs next to them.

    A copy of the DB is kept at `<db_path>.bak` after every successful run; an unreadable DB is moved
    aside and replaced by that copy on open.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._backup_path = self.db_path.with_name(self.db_path.name + ".bak")

        self._conn = self._open()
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

        if not self._backup_path.exists():
            self._refresh_backup()

    def close(self) -> None:
        self._conn.close()

    def _open(self) -> sqlite3.Connection:
        if not self.db_path.exists():
            return sqlite3.connect(self.db_path)

        conn = _healthy_connection(self.db_path)
        if conn is not None:
            return conn

        logger.warning("Bill DB %s is unreadable; moving it aside.", self.db_path)
        self._move_aside()
        if self._backup_path.exists():
            shutil.copy2(self._backup_path, self.db_path)
            conn = _healthy_connection(self.db_path)
            if conn is not None:
                logger.warning("Restored bill DB from %s", self._backup_path)
                return conn
            self._move_aside()

        logger.warning("No usable bill DB backup; starting from an empty DB.")
        return sqlite3.connect(self.db_path)

    def _move_aside(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for suffix in ("", "-wal", "-shm"):
            p = Path(f"{self.db_path}{suffix}")
            if p.exists():
                p.replace(p.with_name(f"{p.name}.corrupt-{stamp}"))

    def backup(self) -> None:
        """
        Write the current DB to `<db_path>.bak` (through a temp file, so a crash never leaves a half backup).
        """
        tmp = self._backup_path.with_name(self._backup_path.name + ".tmp")
        tmp.unlink(missing_ok=True)
        dst = sqlite3.connect(tmp)
        try:
            self._conn.backup(dst)
        finally:
            dst.close()
        tmp.replace(self._backup_path)

    def _refresh_backup(self) -> None:
        try:
            self.backup()
        except (OSError, sqlite3.Error):
            logger.warning("Failed to write bill DB backup.", exc_info=True)

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS bills (
              key TEXT PRIMARY KEY,
              subtype TEXT NOT NULL,
              beneficiary TEXT,
              is_third_party_payer INTEGER NOT NULL,
              issue_date TEXT NOT NULL,
              original_date TEXT NOT NULL,
              payee TEXT NOT NULL,
              amount TEXT NOT NULL,
              original_amount TEXT,
              document_url TEXT,
              document_name TEXT NOT NULL,
              identifiers TEXT,
              created_at TEXT NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              started_at TEXT NOT NULL,
              finished_at TEXT,
              ok INTEGER,
              message TEXT
            );
            """
        )
        cols = {row[1] for row in self._conn.execute("PRAGMA table_info(bills);").fetchall()}
        if "identifiers" not in cols:
            self._conn.execute("ALTER TABLE bills ADD COLUMN identifiers TEXT;")
        self._conn.commit()

    def has_bill(self, key: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM bills WHERE key = ? LIMIT 1;", (key,)).fetchone()
        return row is not None

    def count_bills(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM bills;").fetchone()[0])

    def find_matching_bill(
        self,
        record: BillingRecord,
        *,
        date_delta: int,
        amount_delta: Decimal,
    ) -> Optional[str]:
        """
        Return the key of an already-saved bill for the same care (subtype + beneficiary) whose issue date
        and amount are within the matching window, if any.
        """
        lo = (record.issue_date - timedelta(days=date_delta)).isoformat()
        hi = (record.issue_date + timedelta(days=date_delta)).isoformat()
        rows = self._conn.execute(
            """
            SELECT key, amount FROM bills
            WHERE subtype = ? AND beneficiary IS ? AND issue_date BETWEEN ? AND ?;
            """,
            (record.subtype, record.beneficiary, lo, hi),
        ).fetchall()
        for key, amount in rows:
            if abs(Decimal(amount) - record.amount) <= amount_delta:
                return key
        return None

    def save(
        self,
        records: Iterable[BillingRecord],
        target_folder: str,
        *,
        identifiers: str = DEFAULT_PAYEE_IDENTIFIERS,
        date_delta: int = 10,
        amount_delta: Decimal = Decimal("0.1"),
        deadline: Optional[float] = None,
        fetch_document: Optional[Callable[[str], bytes]] = None,
    ) -> SaveResult:
        """
        Persist new bills in a single transaction: either every new bill is saved or none is.

        Records are only matched against bills saved by earlier calls, so identical lines of one
        reimbursement are all kept. `deadline` is a `time.time()` timestamp; records left when it passes
        are not saved (counted as deferred) and will be picked up by the next run.
        """
        records = list(records)
        result = SaveResult()
        folder = Path(target_folder)

        new: list[BillingRecord] = []
        for idx, record in enumerate(records):
            if deadline is not None and time.time() > deadline:
                result.deferred = len(records) - idx
                logger.warning("Save deadline reached; %d bills left for the next run.", result.deferred)
                break

            if self.find_matching_bill(record, date_delta=date_delta, amount_delta=amount_delta):
                result.duplicates += 1
                continue

            if fetch_document is not None and record.document_url:
                if self._store_document(folder, record, fetch_document):
                    result.documents_downloaded += 1
            new.append(record)

        now = _utc_now()
        seen: Counter[str] = Counter()
        rows = []
        for record in new:
            key = record.record_key()
            seen[key] += 1
            if seen[key] > 1:
                # Same care billed twice on one statement.
                key = f"{key}|{seen[key]}"
            rows.append(
                (
                    key,
                    record.subtype,
                    record.beneficiary,
                    1 if record.is_third_party_payer else 0,
                    record.issue_date.isoformat(),
                    record.original_date.isoformat(),
                    record.payee,
                    str(record.amount),
                    str(record.original_amount) if record.original_amount is not None else None,
                    record.document_url,
                    record.document_name,
                    identifiers,
                    now,
                )
            )
        with self._conn:
            self._conn.executemany(_INSERT_BILL, rows)
        result.saved = len(rows)

        logger.info(
            "Saved %d bills (duplicates=%d deferred=%d documents=%d)",
            result.saved,
            result.duplicates,
            result.deferred,
            result.documents_downloaded,
        )
        return result

    def _store_document(self, folder: Path, record: BillingRecord, fetch_document: Callable[[str], bytes]) -> bool:
        path = folder / record.document_name
        if path.exists():
            return False
        folder.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(fetch_document(record.document_url))
        tmp.replace(path)
        logger.info("Downloaded statement %s", path.name)
        return True

    def record_run_start(self) -> int:
        cur = self._conn.execute("INSERT INTO runs(started_at) VALUES (?);", (_utc_now(),))
        self._conn.commit()
        return int(cur.lastrowid)

    def record_run_finish(self, run_id: int, *, ok: bool, message: Optional[str] = None) -> None:
        self._conn.execute(
            "UPDATE runs SET finished_at = ?, ok = ?, message = ? WHERE id = ?;",
            (_utc_now(), 1 if ok else 0, message, run_id),
        )
        self._conn.commit()

        # A failed run may have left the DB in a state not worth keeping as the fallback.
        if ok:
            self._refresh_backup()
