from __future__ import annotations

from datetime import date, datetime

from dateutil import parser as date_parser


class FrenchParserInfo(date_parser.parserinfo):
    """
    Month names and ordinal suffixes as printed by the portal ("1er janvier 2023", "3 févr. 2023").
    """

    JUMP = date_parser.parserinfo.JUMP + ["er", "e", "de", "le"]
    MONTHS = [
        ("janv", "janvier"),
        ("févr", "fevr", "février", "fevrier"),
        ("mars",),
        ("avr", "avril"),
        ("mai",),
        ("juin",),
        ("juil", "juillet"),
        ("août", "aout"),
        ("sept", "septembre"),
        ("oct", "octobre"),
        ("nov", "novembre"),
        ("déc", "dec", "décembre", "decembre"),
    ]


_PARSER_INFOS: dict[str, date_parser.parserinfo] = {
    "fr": FrenchParserInfo(dayfirst=True),
    "en": date_parser.parserinfo(),
}


# Two defaults that differ in every field: a component dateutil had to fill in shows up as a mismatch.
_FILL_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def parse_portal_date(value: str, *, locale: str = "fr") -> date:
    """
    Parse dates like:
    - "03/01/2023" (day first)
    - "1er janvier 2023"
    - "15 mars 2023"

    Day, month and year must all be present; dateutil is never allowed to fill one in from today.
    """
    if value is None:
        raise ValueError("parse_portal_date: value is None")
    s = " ".join(value.split())
    if not s:
        raise ValueError("parse_portal_date: empty string")
    try:
        info = _PARSER_INFOS[locale]
    except KeyError:
        raise ValueError(f"parse_portal_date: unsupported locale {locale!r}") from None

    first, second = (date_parser.parse(s, parserinfo=info, dayfirst=info.dayfirst, default=d) for d in _FILL_DEFAULTS)
    if first != second:
        raise ValueError(f"parse_portal_date: incomplete date {value!r}")
    return first.date()


def parse_day_month_year(day: str, month: str, year: str, *, locale: str = "fr") -> date:
    """Combine the separate day / month-name / year tokens of a list row into one date."""
    tokens = [(t or "").strip() for t in (day, month, year)]
    if not all(tokens):
        raise ValueError(f"parse_day_month_year: missing token in {tokens!r}")
    return parse_portal_date(" ".join(tokens), locale=locale)
