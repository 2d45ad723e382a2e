"""
Text helpers for rows scraped out of the rendered page.

The in-page JavaScript in ``handlers/dom_extract.py`` only collects raw
strings (titles, hrefs, price labels, input values, body text).  Everything
that interprets those strings lives here so it can be unit-tested without a
browser.

All functions are pure (no I/O).
"""

from __future__ import annotations

import re
from typing import Any

# =====================================================================
# 1. Money
# =====================================================================

# "£1.20", "£ 3", "Now £12.50 (£2.08/kg)" -> first amount wins.
_RE_MONEY = re.compile(r"£\s*([0-9]+(?:\.[0-9]{1,2})?)")

# "Minimum order value is £40.00" / "minimum order of £40"
_RE_BELOW_MINIMUM = re.compile(
    r"minimum\s+order[^£]{0,50}£\s*([0-9]+(?:\.[0-9]{1,2})?)",
    re.IGNORECASE,
)


def parse_money(text: str | None) -> float | None:
    """First ``£`` amount in *text*.

    >>> parse_money("Now £2.50 each")
    2.5
    >>> parse_money("Free") is None
    True
    """
    if not text:
        return None
    m = _RE_MONEY.search(str(text))
    return float(m.group(1)) if m else None


def parse_below_minimum(text: str | None) -> dict[str, Any] | None:
    """Detect a minimum-order warning in page text.

    >>> parse_below_minimum("Minimum order value is £40.00")
    {'minimum': 40.0, 'message': 'Minimum order value is £40.00'}
    """
    if not text:
        return None
    m = _RE_BELOW_MINIMUM.search(text)
    if not m:
        return None
    return {"minimum": float(m.group(1)), "message": normalize_text(m.group(0))}


def find_total_in_lines(body_text: str | None) -> float | None:
    """Read an order total from visible page text.

    Totals render as a label line followed by the amount on the next line
    ("Total" / "£42.50").  Subtotal lines are skipped.
    """
    lines = [ln.strip() for ln in (body_text or "").split("\n") if ln.strip()]
    for i, line in enumerate(lines):
        low = line.lower()
        if "total" not in low or "subtotal" in low:
            continue
        if i + 1 < len(lines):
            value = parse_money(lines[i + 1])
            if value is not None:
                return value
    return None


# =====================================================================
# 2. Product links
# =====================================================================


def product_id_from_href(href: str | None) -> str | None:
    """Trailing digit run (4+) of the last path segment that has one.

    >>> product_id_from_href("/products/ocado-whole-milk-2l-100234?x=1")
    '100234'
    >>> product_id_from_href("/products/") is None
    True
    """
    if not href:
        return None
    path = str(href).split("?", 1)[0].split("#", 1)[0]
    for segment in reversed(path.split("/")):
        m = re.search(r"(\d+)$", segment)
        if m and len(m.group(1)) >= 4:
            return m.group(1)
    return None


def normalize_text(text: Any) -> str:
    return re.sub(r"\s+", " ", str(text or "")).strip()


def parse_input_quantity(value: Any, default: int = 1) -> int:
    """Quantity from an ``<input type=number>`` value; *default* when unreadable."""
    try:
        q = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    return int(q) if q > 0 else default


# =====================================================================
# 3. Delivery slots
# =====================================================================

# "9am - 10am", "10:00 - 11:00", "7:30pm-8:30pm"
RE_SLOT_TIME = re.compile(
    r"\d{1,2}(?::\d{2})?\s*(?:am|pm)?\s*-\s*\d{1,2}(?::\d{2})?\s*(?:am|pm)?",
    re.IGNORECASE,
)

# "Mon 12", "Tuesday, 3"
_RE_SLOT_DATE = re.compile(
    r"\b(mon|tue|wed|thu|fri|sat|sun)[a-z]*\b[^0-9]{0,10}(\d{1,2})\b",
    re.IGNORECASE,
)

_RE_NO_SLOTS = re.compile(
    r"no\s+(?:delivery\s+)?slots|sold\s+out|nothing\s+available",
    re.IGNORECASE,
)

SLOT_TEXT_MAX_LEN = 160
UNPARSED = "See page"
NO_PRICE = "N/A"


def is_no_slots_text(text: str | None) -> bool:
    """Explicit "no slots" wording, as opposed to silence."""
    return bool(text and _RE_NO_SLOTS.search(text))


def parse_slot_text(text: str, index: int) -> dict[str, Any]:
    """Structure one slot tile's text; ``full_text`` is always kept.

    >>> parse_slot_text("Mon 12  9am - 10am  £3.50", 0)["time"]
    '9am-10am'
    """
    full = normalize_text(text)
    price = parse_money(full)
    tm = RE_SLOT_TIME.search(full)
    dm = _RE_SLOT_DATE.search(full)
    return {
        "index": index,
        "date": f"{dm.group(1).title()} {dm.group(2)}" if dm else UNPARSED,
        "time": re.sub(r"\s+", "", tm.group(0)) if tm else UNPARSED,
        "price": f"£{price:.2f}" if price is not None else NO_PRICE,
        "full_text": full[:SLOT_TEXT_MAX_LEN],
    }


def dedupe_slot_texts(texts: list[str], limit: int) -> list[str]:
    """Unique, non-empty slot texts in page order, at most *limit*."""
    out: list[str] = []
    seen: set[str] = set()
    for raw in texts:
        text = normalize_text(raw)
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        out.append(text)
        if len(out) >= limit:
            break
    return out
