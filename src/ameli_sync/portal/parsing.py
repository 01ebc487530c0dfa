from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Union

from bs4 import BeautifulSoup, Tag

from ..errors import MarkupMismatchError
from ..models import HealthCareLine, ParticipationLine, ReimbursementDetail, ReimbursementSummary
from ..util.dates import parse_day_month_year, parse_portal_date
from ..util.money import parse_amount
from .selectors import PortalSelectors


logger = logging.getLogger(__name__)

DetailUrlBuilder = Callable[[str, str, str, str], str]


@dataclass(frozen=True)
class HandlerTokens:
    payment_id: str
    payment_nature: str
    group_index: str
    payment_index: str

    @property
    def line_id(self) -> str:
        return f"{self.group_index}{self.payment_index}"


def parse_handler_tokens(raw: str) -> HandlerTokens:
    """
    Pull the detail-page parameters out of a list row's inline click handler, e.g.

        afficherDetailPaiement('4815162342','PAIEMENT_A_UN_TIERS','0','1');

    Splitting on the single quote puts the four values at positions 1, 3, 5 and 7.
    """
    tokens = (raw or "").split("'")
    if len(tokens) < 8:
        raise MarkupMismatchError(f"Click handler has {len(tokens)} quote-delimited tokens, expected at least 8: {raw!r}")
    return HandlerTokens(
        payment_id=tokens[1],
        payment_nature=tokens[3],
        group_index=tokens[5],
        payment_index=tokens[7],
    )


def _text(el: Optional[Tag]) -> str:
    return el.get_text().strip() if el is not None else ""


def _required(scope: Tag, selector: str, *, what: str) -> Tag:
    el = scope.select_one(selector)
    if el is None:
        raise MarkupMismatchError(f"Missing {what} ({selector})")
    return el


def _amount(scope: Tag, selector: str, *, what: str) -> Decimal:
    raw = _text(_required(scope, selector, what=what))
    try:
        return parse_amount(raw)
    except ValueError as e:
        raise MarkupMismatchError(f"Unparsable {what}: {raw!r}") from e


def _date(raw: str, *, what: str) -> date:
    try:
        return parse_portal_date(raw)
    except (ValueError, OverflowError) as e:
        raise MarkupMismatchError(f"Unparsable {what}: {raw!r}") from e


def _is_header_row(row: Tag) -> bool:
    return row.find("th") is not None


# ---------------------------------------------------------------------------
# Reimbursement list
# ---------------------------------------------------------------------------


def _block_year(block: Tag, sel: PortalSelectors) -> str:
    # The month label reads "janvier 2023"; the year is its second word.
    label = _text(_required(block, sel.month_block_label, what="month block label"))
    parts = label.split()
    if len(parts) < 2:
        raise MarkupMismatchError(f"Month block label has no year: {label!r}")
    return parts[1]


def _select_row(block: Tag, index: int, sel: PortalSelectors) -> Optional[Tag]:
    # `[id^=lignePaiement1]` also matches lignePaiement10..19, so reject ids where another digit follows.
    prefix = f"{sel.line_id_prefix}{index}"
    for el in block.select(f'[id^="{prefix}"]'):
        rest = (el.get("id") or "")[len(prefix):]
        if not rest[:1].isdigit():
            return el
    return None


def _parse_list_row(row: Tag, year: str, sel: PortalSelectors, build_detail_url: DetailUrlBuilder) -> ReimbursementSummary:
    day = _text(_required(row, sel.line_day, what="list row day"))
    month = _text(_required(row, sel.line_month, what="list row month"))
    try:
        row_date = parse_day_month_year(day, month, year)
    except (ValueError, OverflowError) as e:
        raise MarkupMismatchError(f"Unparsable list row date: day={day!r} month={month!r} year={year!r}") from e

    tokens = parse_handler_tokens(row.get(sel.line_handler_attr) or "")
    return ReimbursementSummary(
        date=row_date,
        line_id=tokens.line_id,
        detail_url=build_detail_url(
            tokens.payment_id,
            tokens.payment_nature,
            tokens.group_index,
            tokens.payment_index,
        ),
        is_third_party_payer=tokens.payment_nature == sel.third_party_nature,
    )


def parse_month_block(
    block: Tag,
    *,
    start_index: int,
    build_detail_url: DetailUrlBuilder,
    selectors: Optional[PortalSelectors] = None,
) -> tuple[list[ReimbursementSummary], int]:
    """
    Parse one monthly block. Row ids are numbered across the whole page, so the block's rows start
    at `start_index`; returns the summaries and the index the next block starts at.
    """
    sel = selectors or PortalSelectors()
    year = _block_year(block, sel)

    out: list[ReimbursementSummary] = []
    index = start_index
    while True:
        row = _select_row(block, index, sel)
        if row is None:
            break
        out.append(_parse_list_row(row, year, sel, build_detail_url))
        index += 1

    if not out and block.select(f'[id^="{sel.line_id_prefix}"]'):
        raise MarkupMismatchError(f"Month block has payment rows but none numbered {start_index}")
    return out, index


def parse_reimbursement_list(
    doc: BeautifulSoup,
    *,
    build_detail_url: DetailUrlBuilder,
    selectors: Optional[PortalSelectors] = None,
) -> list[ReimbursementSummary]:
    sel = selectors or PortalSelectors()
    summaries: list[ReimbursementSummary] = []
    next_index = 0
    for block in doc.select(sel.month_block):
        block_summaries, next_index = parse_month_block(
            block,
            start_index=next_index,
            build_detail_url=build_detail_url,
            selectors=sel,
        )
        summaries.extend(block_summaries)
    return summaries


# ---------------------------------------------------------------------------
# Reimbursement detail
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AwaitingBeneficiary:
    pass


@dataclass(frozen=True)
class HaveBeneficiary:
    name: str


DetailState = Union[AwaitingBeneficiary, HaveBeneficiary]


def _text_after_last_break(cell: Tag) -> str:
    segments: list[list[str]] = [[]]
    for node in cell.children:
        if isinstance(node, Tag):
            if node.name == "br":
                segments.append([])
                continue
            segments[-1].append(node.get_text())
        else:
            segments[-1].append(str(node))
    return "".join(segments[-1]).strip()


def parse_health_care_lines(container: Tag, selectors: Optional[PortalSelectors] = None) -> list[HealthCareLine]:
    sel = selectors or PortalSelectors()
    lines: list[HealthCareLine] = []
    for row in container.find_all("tr"):
        if _is_header_row(row):
            continue
        nature_cell = _required(row, sel.care_nature_date, what="care nature/date cell")
        lines.append(
            HealthCareLine(
                label=_text(row.select_one(sel.care_label)),
                date=_date(_text_after_last_break(nature_cell), what="care date"),
                amount_billed=_amount(row, sel.care_amount_billed, what="amount billed"),
                reimbursement_base=_amount(row, sel.care_reimbursement_base, what="reimbursement base"),
                rate=_text(row.select_one(sel.care_rate)),
                amount_paid=_amount(row, sel.amount_paid, what="amount paid"),
            )
        )
    return lines


def parse_participation(
    container: Tag,
    detail: ReimbursementDetail,
    selectors: Optional[PortalSelectors] = None,
) -> None:
    sel = selectors or PortalSelectors()
    for row in container.find_all("tr"):
        if _is_header_row(row):
            continue
        if detail.participation is not None:
            # Not expected on real pages; keep the latest value until we know what it means.
            logger.warning(
                "Reimbursement line_id=%s has more than one participation; keeping the last one.",
                detail.line_id,
            )
        detail.participation = ParticipationLine(
            label=_text(row.select_one(sel.participation_label)),
            date=_date(_text(_required(row, sel.participation_date, what="participation date")), what="participation date"),
            amount_paid=_amount(row, sel.amount_paid, what="participation amount paid"),
        )


def _step(state: DetailState, container: Tag, detail: ReimbursementDetail, sel: PortalSelectors) -> DetailState:
    beneficiary = container.select_one(sel.beneficiary_name)
    if beneficiary is not None:
        name = _text(beneficiary)
        if not name:
            # A blank name opens no beneficiary; the next container is read as a participation.
            logger.warning("Empty beneficiary name in reimbursement line_id=%s.", detail.line_id)
            return AwaitingBeneficiary()
        return HaveBeneficiary(name=name)

    if isinstance(state, HaveBeneficiary):
        # The container right after a beneficiary name holds that beneficiary's care lines.
        for line in parse_health_care_lines(container, sel):
            detail.beneficiaries.setdefault(state.name, []).append(line)
        return AwaitingBeneficiary()

    parse_participation(container, detail, sel)
    return state


def parse_reimbursement_detail(
    doc: BeautifulSoup,
    summary: ReimbursementSummary,
    selectors: Optional[PortalSelectors] = None,
) -> ReimbursementDetail:
    sel = selectors or PortalSelectors()
    detail = ReimbursementDetail.from_summary(summary)

    link = doc.select_one(sel.statement_link)
    if link is not None and link.get("href"):
        detail.document_link = link["href"]
    else:
        logger.warning("No statement link found for reimbursement line_id=%s.", summary.line_id)

    state: DetailState = AwaitingBeneficiary()
    for container in doc.select(sel.detail_container):
        state = _step(state, container, detail, sel)

    if isinstance(state, HaveBeneficiary):
        logger.warning("Beneficiary %r has no care lines container (line_id=%s).", state.name, summary.line_id)
    return detail
