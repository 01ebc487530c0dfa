from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import AppConfig, load_config
from .errors import AmeliSyncError, LoginFailedError, MarkupMismatchError, UserActionNeededError
from .logging_config import configure_logging
from .models import BillingRecord
from .portal.client import AmeliPortalClient, PortalCredentials
from .state import BillStore
from .util.debug_bundle import create_debug_bundle
from .util.money import format_amount


logger = logging.getLogger("ameli_sync")

EXIT_CODES = {
    LoginFailedError: 2,
    UserActionNeededError: 3,
    MarkupMismatchError: 4,
}


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ameli-sync")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    sync = sub.add_parser("sync", help="Fetch the last 6 months of ameli reimbursements and save them as bills")
    sync.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    sync.add_argument("--dry-run", action="store_true", help="Do not save anything; log the bills that were found")
    sync.add_argument(
        "--download-documents",
        action="store_true",
        help="Also download each reimbursement statement PDF into ameli.target_folder (default: save.download_documents).",
    )
    sync.add_argument(
        "--debug-dir",
        default="data/debug",
        help="Where portal pages are saved when parsing fails (default: data/debug). Empty string disables it.",
    )

    check = sub.add_parser("check-login", help="Only log into the portal and report whether it worked")
    check.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    return p


def _portal(cfg: AppConfig, *, debug_dir: Optional[str] = None) -> AmeliPortalClient:
    return AmeliPortalClient(
        creds=PortalCredentials(identifier=cfg.ameli.identifier, secret=cfg.ameli.secret),
        base_url=cfg.ameli.base_url,
        timeout_s=cfg.ameli.request_timeout_s,
        debug_dir=debug_dir or None,
    )


def _exit_code(err: AmeliSyncError) -> int:
    for cls, code in EXIT_CODES.items():
        if isinstance(err, cls):
            return code
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)

    try:
        if args.cmd == "check-login":
            with _portal(cfg) as portal:
                portal.login()
            logger.info("Login OK")
            return 0

        if args.cmd == "sync":
            return _sync(cfg, args)
    except AmeliSyncError as e:
        logger.error("%s: %s", e.code, e)
        return _exit_code(e)

    return 1


def _sync(cfg: AppConfig, args: argparse.Namespace) -> int:
    logger.info("Starting sync (dry_run=%s)", args.dry_run)
    t0 = time.time()
    # The save budget counts from run start, not from when saving begins.
    deadline = t0 + cfg.save.timeout_s
    download = bool(args.download_documents or cfg.save.download_documents)

    try:
        with _portal(cfg, debug_dir=args.debug_dir) as portal:
            bills = portal.extract()

            if args.dry_run:
                _log_dry_run(bills)
                logger.info("Run finished (dry-run seconds=%.2f)", time.time() - t0)
                return 0

            store = BillStore(cfg.state.db_path)
            run_id = store.record_run_start()
            try:
                result = store.save(
                    bills,
                    cfg.ameli.target_folder,
                    identifiers=cfg.ameli.payee_identifiers,
                    date_delta=cfg.save.date_delta_days,
                    amount_delta=cfg.save.amount_delta,
                    deadline=deadline,
                    fetch_document=portal.download_document if download else None,
                )
                store.record_run_finish(run_id, ok=True, message=f"saved={result.saved} duplicates={result.duplicates}")
            except Exception as e:
                store.record_run_finish(run_id, ok=False, message=str(e))
                raise
            finally:
                store.close()

        logger.info("Run finished (run_id=%s ok=true seconds=%.2f)", run_id, time.time() - t0)
        return 0
    except Exception:
        logger.error("Run failed (seconds=%.2f)", time.time() - t0)
        # Auto-bundle debug artifacts + log for easy sharing.
        if args.debug_dir:
            try:
                bundle = create_debug_bundle(
                    debug_dir=args.debug_dir,
                    log_file=cfg.logging.file_path or "data/sync.log",
                    out_dir="data",
                )
                logger.error("Wrote debug bundle: %s", bundle)
            except OSError:
                logger.debug("Failed to create debug bundle.", exc_info=True)
        raise


def _log_dry_run(bills: List[BillingRecord]) -> None:
    logger.info("DRY RUN: %d bills found", len(bills))
    for b in bills:
        logger.info(
            "DRY RUN: bill date=%s care_date=%s subtype=%r beneficiary=%r amount=%s original=%s third_party=%s file=%s",
            b.issue_date.isoformat(),
            b.original_date.isoformat(),
            b.subtype,
            b.beneficiary,
            format_amount(b.amount),
            format_amount(b.original_amount) if b.original_amount is not None else "-",
            b.is_third_party_payer,
            b.document_name,
        )


if __name__ == "__main__":
    sys.exit(main())
