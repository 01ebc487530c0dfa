from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import requests
from bs4 import BeautifulSoup

from ..bills import assemble_billing_records
from ..errors import MarkupMismatchError
from ..models import BillingRecord, ReimbursementDetail, ReimbursementSummary
from ..util.dates import parse_portal_date
from ..util.debug_bundle import save_debug_html
from .login import classify_login_page, normalize_identifier, raise_for_login_outcome
from .parsing import parse_reimbursement_detail, parse_reimbursement_list
from .selectors import PortalSelectors
from .urls import DEFAULT_BASE_URL, PortalUrls


logger = logging.getLogger(__name__)

# The list endpoint does not serve anything older than 6 months before the end date.
LOOKBACK_MONTHS = 6

DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


@dataclass(frozen=True)
class PortalCredentials:
    identifier: str
    secret: str = field(repr=False)


def _mask(identifier: str) -> str:
    return f"{identifier[:3]}***{identifier[-2:]}" if len(identifier) > 5 else "***"


class AmeliPortalClient:
    """
    ameli.fr reimbursement history over plain HTTP (`https://assure.ameli.fr`).

    One instance = one run = one cookie jar. Every request is sequential: the login handshake mutates
    the jar, and the portal keys detail pages on the session's list state.
    """

    def __init__(
        self,
        *,
        creds: PortalCredentials,
        base_url: str = DEFAULT_BASE_URL,
        selectors: Optional[PortalSelectors] = None,
        session: Optional[requests.Session] = None,
        timeout_s: float = 30.0,
        debug_dir: Optional[str] = None,
    ) -> None:
        self.creds = creds
        self.urls = PortalUrls(base_url)
        self.selectors = selectors or PortalSelectors()
        self.timeout_s = timeout_s
        self.debug_dir = debug_dir

        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": DEFAULT_USER_AGENT})
        self._session = session

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "AmeliPortalClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def extract(self) -> list[BillingRecord]:
        """
        Run the whole pipeline: login, list, every detail page (one at a time), then flatten to bills.
        Any failure aborts; nothing is returned partially.
        """
        t0 = time.time()
        landing = self.login()
        list_doc = self.fetch_list(landing)
        try:
            summaries = parse_reimbursement_list(
                list_doc,
                build_detail_url=self.urls.detail_url,
                selectors=self.selectors,
            )
        except MarkupMismatchError:
            save_debug_html(str(list_doc), debug_dir=self.debug_dir, name_prefix="reimbursement_list")
            raise
        logger.info("Found %d reimbursements in the last %d months", len(summaries), LOOKBACK_MONTHS)

        details = [self.fetch_detail(s) for s in summaries]
        bills = assemble_billing_records(details, build_document_url=self.urls.document_url)
        logger.info("Portal extract complete (bills=%d seconds=%.2f)", len(bills), time.time() - t0)
        return bills

    def login(self) -> BeautifulSoup:
        """
        Two-step login. Returns the reimbursement landing page of the authenticated session.
        """
        identifier = normalize_identifier(self.creds.identifier)
        logger.info("Logging in (identifier=%s)", _mask(identifier))

        # First request only seeds the session cookie.
        self._request("GET", self.urls.login_url())

        sel = self.selectors
        form = {
            sel.login_field: identifier,
            sel.secret_field: self.creds.secret,
            sel.action_field: sel.action_value,
            sel.submit_field: sel.submit_value,
        }
        resp = self._request("POST", self.urls.submit_url(), data=form)
        doc = self._parse(resp)

        check = classify_login_page(doc, sel)
        if not check.ok:
            save_debug_html(resp.text, debug_dir=self.debug_dir, name_prefix="login_failed")
        raise_for_login_outcome(check)
        logger.info("Correctly logged in")

        return self._get(self.urls.reimbursement_landing_url())

    def fetch_list(self, landing: BeautifulSoup) -> BeautifulSoup:
        logger.info("Fetching the list of reimbursements")
        end_date = self._read_end_date(landing)
        return self._get(self.urls.bill_list_url(end_date, LOOKBACK_MONTHS))

    def fetch_detail(self, summary: ReimbursementSummary) -> ReimbursementDetail:
        logger.debug("Fetching reimbursement detail (line_id=%s date=%s)", summary.line_id, summary.date)
        resp = self._request("GET", summary.detail_url)
        try:
            return parse_reimbursement_detail(self._parse(resp), summary, self.selectors)
        except MarkupMismatchError:
            save_debug_html(resp.text, debug_dir=self.debug_dir, name_prefix=f"detail_{summary.line_id}")
            raise

    def download_document(self, url: str) -> bytes:
        return self._request("GET", url).content

    def _read_end_date(self, landing: BeautifulSoup) -> date:
        field_el = landing.select_one(self.selectors.end_date_input)
        raw = (field_el.get("value") or "").strip() if field_el is not None else ""
        if not raw:
            save_debug_html(str(landing), debug_dir=self.debug_dir, name_prefix="landing_no_end_date")
            raise MarkupMismatchError(f"Reimbursement page has no end date field ({self.selectors.end_date_input})")
        try:
            return parse_portal_date(raw)
        except (ValueError, OverflowError) as e:
            raise MarkupMismatchError(f"Unparsable reimbursement end date: {raw!r}") from e

    def _get(self, url: str) -> BeautifulSoup:
        return self._parse(self._request("GET", url))

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        resp = self._session.request(method, url, timeout=self.timeout_s, **kwargs)
        resp.raise_for_status()
        return resp

    def _parse(self, resp: requests.Response) -> BeautifulSoup:
        return BeautifulSoup(resp.text, "html.parser")
