from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


_CENT = Decimal("0.01")
_SPACES_RE = re.compile(r"\s+")


def parse_amount(value: str) -> Decimal:
    """
    Parse amounts as rendered by the portal:
    - "12,50 €"
    - "1 234,56 €"
    - "0,00"
    """
    if value is None:
        raise ValueError("parse_amount: value is None")

    s = value.strip()
    if not s:
        raise ValueError("parse_amount: empty string")

    # Currency marker and any (non-breaking) spaces, then decimal comma -> point.
    s = s.replace("€", "").replace("EUR", "")
    s = _SPACES_RE.sub("", s)
    s = s.replace(",", ".")

    try:
        dec = Decimal(s)
    except InvalidOperation as e:
        raise ValueError(f"parse_amount: not an amount: {value!r}") from e
    return dec.quantize(_CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal) -> str:
    return f"{amount.quantize(_CENT):.2f} €".replace(".", ",")
