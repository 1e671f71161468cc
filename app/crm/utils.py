from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Mapping

from app.crm.errors import ValidationFailed


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_text(s: str | None) -> str:
    return (s or "").strip()


def normalize_email(s: str | None) -> str:
    return normalize_text(s).lower()


def json_object(raw: Any) -> dict[str, Any]:
    """A parsed JSON body, or {} when it is missing or not an object."""
    return raw if isinstance(raw, dict) else {}


def text_field(payload: Mapping[str, Any], key: str) -> str:
    """
    Stripped text of a JSON field. Numbers are taken as their text form;
    arrays, objects and booleans are rejected.
    """
    v = payload.get(key)
    if v is None:
        return ""
    if isinstance(v, bool) or not isinstance(v, (str, int, float)):
        raise ValidationFailed(f"Invalid value for {key}")
    return normalize_text(str(v))


def json_dumps_sorted(d: dict[str, Any]) -> str:
    return json.dumps(d, sort_keys=True, separators=(",", ":"), default=str)


def json_loads_or_none(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def sha256_text(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def parse_int(s: str | None) -> int | None:
    s = normalize_text(s)
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


def parse_limit(args: Mapping[str, str | None], *, default: int = 100, maximum: int = 1000) -> int:
    n = parse_int(args.get("limit"))
    if not n or n < 1:
        return default
    return min(n, maximum)


def sha256_bytes(b: bytes) -> str:
    h = hashlib.sha256()
    h.update(b)
    return h.hexdigest()
