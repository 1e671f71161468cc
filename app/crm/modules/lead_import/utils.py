from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from app.crm.utils import normalize_text

PHONE_MAX_LEN = 20

_NON_PHONE_RE = re.compile(r"[^\d+]")


def _from_scientific(s: str) -> str | None:
    try:
        d = Decimal(s)
        if not d.is_finite():
            return None
        with localcontext() as ctx:
            ctx.prec = max(ctx.prec, d.adjusted() + 2)
            return str(d.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


def normalize_phone(raw: str | None) -> str:
    """
    Spreadsheet exports often turn long numbers into scientific notation
    ("9.18E+11"); those are rounded back to the integer they stand for.
    Everything else keeps its digits and one leading "+".
    """
    s = normalize_text(raw)
    if not s:
        return ""
    if "E" in s:
        rounded = _from_scientific(s)
        if rounded is not None:
            return rounded
    cleaned = _NON_PHONE_RE.sub("", s)
    plus = cleaned.startswith("+")
    digits = cleaned.replace("+", "")
    return (("+" if plus else "") + digits)[:PHONE_MAX_LEN]


def split_full_name(raw: str | None) -> tuple[str, str]:
    parts = normalize_text(raw).split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])
