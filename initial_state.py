"""
Structured data recovery from a storefront's embedded page state.

Single-page storefronts ship a JSON blob (``window.__INITIAL_STATE__``) with
everything the page renders: search results, product entities, trolley
contents.  Its shape is undocumented and changes without notice, so nothing
here knows the layout.  Instead we walk the tree and recognise records by the
fields they expose, using an explicit alias list per logical attribute.

All functions are pure (no I/O) and operate on plain ``dict``/``list`` trees
(``json.loads`` output or ``page.evaluate`` results), so they are easy to
unit-test independently of Playwright.

Walk guards: depth 12, a per-array visit cap, and identity tracking so shared
or cyclic references are processed once.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator

# =====================================================================
# 1. Alias lists (one per logical attribute)
# =====================================================================

ID_ALIASES = ("productId", "productID", "product_id", "id", "sku")
CART_ID_ALIASES = ("productId", "productID", "product_id", "id")
NAME_ALIASES = ("name", "title", "productName", "description", "shortDescription")
PRICE_ALIASES = (
    "price", "currentPrice", "offerPrice", "unitPrice", "priceValue", "amount", "value",
)
PRICE_CONTAINER_ALIASES = ("price", "pricing", "prices", "unitPrice", "now", "current", "amount")
CURRENCY_ALIASES = ("currency", "currencyCode")
IMAGE_ALIASES = (
    "imageUrl", "imageURL", "image", "thumbnail", "thumb",
    "mainImage", "primaryImage", "src", "url",
)
IMAGE_CONTAINER_ALIASES = (
    "images", "image", "media", "assets", "thumbnails",
    "primary", "main", "default", "large", "small",
)
URL_ALIASES = ("productUrl", "url", "href", "canonicalUrl", "canonicalURL")
QUANTITY_ALIASES = ("quantity", "qty")
TOTAL_ALIASES = ("total", "orderTotal", "basketTotal", "totalPrice")
# Nested record that some line items wrap their product in.
LINE_PRODUCT_ALIASES = ("product",)

CART_PATH_MARKERS = ("trolley", "basket", "cart")

STATE_MARKER = "__INITIAL_STATE__"

# =====================================================================
# 2. Walk limits and scoring weights
# =====================================================================

MAX_DEPTH = 12
CANDIDATE_ARRAY_LIMIT = 2_000
CART_ARRAY_LIMIT = 1_500
ID_ARRAY_SCAN_LIMIT = 3_000
ID_ARRAY_RECURSE_LIMIT = 300
NESTED_FIELD_DEPTH = 4
NAME_MAX_LEN = 200
MAX_RESULTS_CAP = 50
DEFAULT_CURRENCY = "GBP"

SCORE_WEIGHTS = {"id": 4, "name": 3, "price": 3, "image": 2, "url": 1}

_ID_PATH_HINTS = (("search", 6), ("result", 4), ("product", 2))

# Pence heuristic bounds: integers in this range are read as pence.
PENCE_RANGE = (50, 500_000)

QUANTITY_RANGE = (1, 200)

_RE_POUNDS = re.compile(r"£\s*([0-9]+(?:\.[0-9]{1,2})?)")
_RE_ID = re.compile(r"^\d{4,}$")
_RE_HTTP = re.compile(r"^https?://", re.IGNORECASE)
_RE_WS = re.compile(r"\s+")
_RE_CURRENCY = re.compile(r"^[A-Za-z]{3,4}$")


# =====================================================================
# 3. Tagged tree walk
# =====================================================================

OBJECT = "object"
ARRAY = "array"
SCALAR = "scalar"


def node_kind(node: Any) -> str:
    """Tag a JSON-ish node as ``object``, ``array`` or ``scalar``."""
    if isinstance(node, dict):
        return OBJECT
    if isinstance(node, (list, tuple)):
        return ARRAY
    return SCALAR


def walk(
    state: Any,
    *,
    max_depth: int = MAX_DEPTH,
    array_limit: int = CANDIDATE_ARRAY_LIMIT,
) -> Iterator[tuple[str, str, Any]]:
    """Yield ``(kind, path, node)`` for every container reachable from *state*.

    Pre-order, depth-first, keys in document order.  Paths join object keys
    with ``.`` and mark array elements with ``[]`` (``trolley.items[]``).
    Scalars are not yielded; callers read them off their parent object.
    """
    seen: set[int] = set()

    def _visit(node: Any, depth: int, path: str) -> Iterator[tuple[str, str, Any]]:
        if depth > max_depth or node is None:
            return
        kind = node_kind(node)
        if kind == SCALAR:
            return
        if id(node) in seen:
            return
        seen.add(id(node))

        yield kind, path, node

        if kind == ARRAY:
            for child in node[:array_limit]:
                yield from _visit(child, depth + 1, path + "[]")
        else:
            for key, child in node.items():
                yield from _visit(child, depth + 1, f"{path}.{key}" if path else str(key))

    yield from _visit(state, 0, "")


def in_cart_context(path: str) -> bool:
    p = path.lower()
    return any(marker in p for marker in CART_PATH_MARKERS)


# =====================================================================
# 4. Field normalisers
# =====================================================================


def normalize_whitespace(text: Any) -> str:
    return _RE_WS.sub(" ", str(text or "")).strip()


def normalize_product_id(value: Any) -> str | None:
    """Return a product id as a digit string of at least 4 digits, else ``None``.

    Accepts positive integral numbers and digit strings.

    >>> normalize_product_id(99990000)
    '99990000'
    >>> normalize_product_id(" 100234 ")
    '100234'
    >>> normalize_product_id("12") is None
    True
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0 or value != int(value):
            return None
        text = str(int(value))
        return text if len(text) >= 4 else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text if _RE_ID.match(text) else None


def looks_like_pence(value: float) -> bool:
    """Pence heuristic: integers in ``PENCE_RANGE`` are minor units.

    Ambiguous for whole-pound prices (a genuine £120 reads as £1.20), which
    is why it is a separate, swappable rule rather than part of the parser.
    """
    low, high = PENCE_RANGE
    return float(value).is_integer() and low <= value <= high


PenceRule = Callable[[float], bool]


def parse_price(value: Any, *, pence_rule: PenceRule = looks_like_pence) -> float | None:
    """Parse a numeric or ``"£1.20"``-style price.

    >>> parse_price("£1.20")
    1.2
    >>> parse_price(375)
    3.75
    >>> parse_price(1.25)
    1.25
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        if pence_rule(value):
            return value / 100
        return float(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    m = _RE_POUNDS.search(text)
    if m:
        return float(m.group(1))
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def pick_first_string(obj: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def pick_first_id(obj: dict[str, Any], keys: tuple[str, ...] = ID_ALIASES) -> str | None:
    for key in keys:
        pid = normalize_product_id(obj.get(key))
        if pid:
            return pid
    return None


def extract_name(obj: dict[str, Any]) -> str | None:
    raw = pick_first_string(obj, NAME_ALIASES)
    if not raw:
        return None
    return normalize_whitespace(raw)[:NAME_MAX_LEN] or None


def extract_price(
    obj: dict[str, Any],
    *,
    pence_rule: PenceRule = looks_like_pence,
    _depth: int = 0,
) -> float | None:
    """Direct price field first, then nested pricing containers.

    Handles ``{"price": 1.2}``, ``{"price": {"value": 1.2}}`` and
    ``{"pricing": {"now": {"amount": "£2.10"}}}``.
    """
    for key in PRICE_ALIASES:
        price = parse_price(obj.get(key), pence_rule=pence_rule)
        if price is not None:
            return price

    if _depth >= NESTED_FIELD_DEPTH:
        return None
    for key in PRICE_CONTAINER_ALIASES:
        nested = obj.get(key)
        if isinstance(nested, dict):
            price = extract_price(nested, pence_rule=pence_rule, _depth=_depth + 1)
            if price is not None:
                return price
    return None


def extract_currency(obj: dict[str, Any]) -> str | None:
    code = pick_first_string(obj, CURRENCY_ALIASES)
    if code and _RE_CURRENCY.match(code):
        return code.upper()
    return None


def _is_http(value: Any) -> bool:
    return isinstance(value, str) and bool(_RE_HTTP.match(value.strip()))


def extract_image_url(obj: dict[str, Any], *, _depth: int = 0) -> str | None:
    """First absolute image URL on *obj* or inside its image-like containers."""
    for key in IMAGE_ALIASES:
        value = obj.get(key)
        if _is_http(value):
            return value.strip()

    if _depth >= NESTED_FIELD_DEPTH:
        return None
    for key in IMAGE_CONTAINER_ALIASES:
        value = obj.get(key)
        if _is_http(value):
            return value.strip()
        if isinstance(value, list):
            for item in value:
                if _is_http(item):
                    return item.strip()
                if isinstance(item, dict):
                    found = extract_image_url(item, _depth=_depth + 1)
                    if found:
                        return found
        elif isinstance(value, dict):
            found = extract_image_url(value, _depth=_depth + 1)
            if found:
                return found
    return None


def extract_product_url(
    obj: dict[str, Any],
    base_url: str,
    product_id: str,
    *,
    product_path: str = "/products/",
) -> str:
    """Explicit product link when it looks like one, else ``base/products/<id>``."""
    direct = pick_first_string(obj, URL_ALIASES)
    if direct and product_path in direct:
        if _is_http(direct):
            return direct
        return base_url.rstrip("/") + "/" + direct.lstrip("/")
    return f"{base_url.rstrip('/')}{product_path}{product_id}"


# =====================================================================
# 5. Product candidates
# =====================================================================


@dataclass(frozen=True)
class ProductCandidate:
    id: str
    name: str | None
    price: float | None
    currency: str
    image_url: str | None
    product_url: str | None
    score: int


def score_candidate(
    *,
    id: str | None,
    name: str | None,
    price: float | None,
    image_url: str | None,
    product_url: str | None,
) -> int:
    score = 0
    if id:
        score += SCORE_WEIGHTS["id"]
    if name:
        score += SCORE_WEIGHTS["name"]
    if price is not None:
        score += SCORE_WEIGHTS["price"]
    if image_url:
        score += SCORE_WEIGHTS["image"]
    if product_url:
        score += SCORE_WEIGHTS["url"]
    return score


def collect_product_candidates(
    state: Any,
    base_url: str,
    *,
    pence_rule: PenceRule = looks_like_pence,
    default_currency: str = DEFAULT_CURRENCY,
) -> list[ProductCandidate]:
    """Every object exposing a product id, one candidate per id.

    When the same id shows up more than once (entity map plus search tile,
    say) the highest-scoring record wins; first-seen order is kept.
    """
    best: dict[str, ProductCandidate] = {}

    for kind, _path, node in walk(state, array_limit=CANDIDATE_ARRAY_LIMIT):
        if kind != OBJECT:
            continue
        pid = pick_first_id(node)
        if not pid:
            continue

        name = extract_name(node)
        price = extract_price(node, pence_rule=pence_rule)
        image_url = extract_image_url(node)
        product_url = extract_product_url(node, base_url, pid)
        candidate = ProductCandidate(
            id=pid,
            name=name,
            price=price,
            currency=extract_currency(node) or default_currency,
            image_url=image_url,
            product_url=product_url,
            score=score_candidate(
                id=pid, name=name, price=price,
                image_url=image_url, product_url=product_url,
            ),
        )
        previous = best.get(pid)
        if previous is None or candidate.score > previous.score:
            best[pid] = candidate

    return list(best.values())


@dataclass(frozen=True)
class IdArray:
    path: str
    ids: list[str]
    score: int


def _score_id_path(path: str, id_count: int) -> int:
    p = path.lower()
    score = sum(weight for hint, weight in _ID_PATH_HINTS if hint in p)
    if id_count <= MAX_RESULTS_CAP:
        score += 2
    return score


def collect_product_id_arrays(state: Any) -> list[IdArray]:
    """Arrays that look like ordered product-id lists, best first.

    The entity walk above loses result order (entity maps are keyed by id),
    while search state usually carries an ordered ``productIds`` list next to
    it.  An array qualifies when at least ``min(len, 3)`` of its scanned
    elements parse as ids and ids make up most of it.  Path names containing
    ``search``/``result``/``product`` rank higher.
    """
    found: list[IdArray] = []

    for kind, path, node in walk(state, array_limit=ID_ARRAY_RECURSE_LIMIT):
        if kind != ARRAY or not node:
            continue
        scanned = node[:ID_ARRAY_SCAN_LIMIT]
        ids = [pid for pid in (normalize_product_id(v) for v in scanned) if pid]
        if not ids:
            continue
        if len(ids) < min(len(scanned), 3) or len(ids) * 2 <= len(scanned):
            continue
        found.append(IdArray(path=path, ids=ids, score=_score_id_path(path, len(ids))))

    found.sort(key=lambda a: a.score, reverse=True)
    return found


def _candidate_to_result(candidate: ProductCandidate, provider: str) -> dict[str, Any]:
    return {
        "provider": provider,
        "provider_product_id": candidate.id,
        "name": candidate.name,
        "price": candidate.price,
        "currency": candidate.currency or DEFAULT_CURRENCY,
        "image_url": candidate.image_url,
        "product_url": candidate.product_url,
    }


def clamp_max_results(max_results: int | None) -> int:
    return max(1, min(MAX_RESULTS_CAP, max_results or 5))


def extract_products_from_initial_state(
    state: Any,
    *,
    base_url: str,
    max_results: int = 5,
    provider: str = "ocado",
    pence_rule: PenceRule = looks_like_pence,
) -> list[dict[str, Any]]:
    """Search results recovered from page state.

    Ordering follows the best id array when one resolves to named
    candidates; otherwise candidates are ranked by score (desc) with the id
    as a stable tie-break.  Nameless candidates are never returned.
    """
    limit = clamp_max_results(max_results)
    if state is None:
        return []

    candidates = collect_product_candidates(state, base_url, pence_rule=pence_rule)
    if not candidates:
        return []
    by_id = {c.id: c for c in candidates}

    results: list[dict[str, Any]] = []
    arrays = collect_product_id_arrays(state)
    if arrays:
        for pid in arrays[0].ids:
            candidate = by_id.get(pid)
            if candidate and candidate.name:
                results.append(_candidate_to_result(candidate, provider))
            if len(results) >= limit:
                break
        if results:
            return results

    ranked = sorted(candidates, key=lambda c: (-c.score, c.id))
    for candidate in ranked:
        if candidate.name:
            results.append(_candidate_to_result(candidate, provider))
        if len(results) >= limit:
            break
    return results


# =====================================================================
# 6. Cart / trolley
# =====================================================================


def _parse_quantity(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    low, high = QUANTITY_RANGE
    if value <= 0 or value > high:
        return None
    # Half rounds up (2.5 -> 3), not to even.
    return max(low, math.floor(value + 0.5))


def _first_present(obj: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if obj.get(key) is not None:
            return obj[key]
    return None


def cart_item_key(provider_product_id: str | None, name: str | None) -> str:
    """Dedup key: product id when known, else the normalised name."""
    if provider_product_id:
        return provider_product_id
    return "name:" + normalize_whitespace(name).lower()


def extract_cart_from_initial_state(
    state: Any,
    *,
    provider_label: str = "Ocado",
    pence_rule: PenceRule = looks_like_pence,
) -> dict[str, Any] | None:
    """Trolley contents recovered from page state, or ``None``.

    Only nodes whose path mentions trolley/basket/cart count.  A line item
    needs a quantity in 1..200 plus a name or product id.  The total comes
    from the first cart-context node with a total-like field.

    ``None`` means "could not tell", not "empty trolley": the caller should
    fall back to DOM extraction instead of reporting an empty cart.
    """
    if state is None:
        return None

    items: dict[str, dict[str, Any]] = {}
    currency: str | None = None
    total: float | None = None

    for kind, path, node in walk(state, array_limit=CART_ARRAY_LIMIT):
        if kind != OBJECT:
            continue

        if currency is None:
            currency = extract_currency(node)

        if not in_cart_context(path):
            continue

        if total is None:
            total = parse_price(_first_present(node, TOTAL_ALIASES), pence_rule=pence_rule)

        qty = _parse_quantity(_first_present(node, QUANTITY_ALIASES))
        if qty is None:
            continue

        inner = next(
            (node[k] for k in LINE_PRODUCT_ALIASES if isinstance(node.get(k), dict)),
            {},
        )
        pid = pick_first_id(node, CART_ID_ALIASES) or pick_first_id(inner, CART_ID_ALIASES)
        name = extract_name(node) or extract_name(inner)
        if not pid and not name:
            continue
        price = extract_price(node, pence_rule=pence_rule)
        if price is None and inner:
            price = extract_price(inner, pence_rule=pence_rule)

        key = cart_item_key(pid, name)
        previous = items.get(key)
        if previous is not None and not (previous["price"] is None and price is not None):
            continue
        items[key] = {
            "name": name
            or (previous or {}).get("name")
            or (f"{provider_label} product {pid}" if pid else f"{provider_label} item"),
            "provider_product_id": pid,
            "quantity": qty,
            "price": price,
        }

    if not items and total is None:
        return None

    line_items = [
        {
            **item,
            "line_total": item["price"] * item["quantity"] if item["price"] is not None else None,
        }
        for item in items.values()
    ]
    return {
        "currency": currency or DEFAULT_CURRENCY,
        "total": total,
        "items": line_items,
        "meta": {"source": "state"},
    }


# =====================================================================
# 7. Embedded state in raw HTML
# =====================================================================


def parse_initial_state_from_html(html: str | None, *, marker: str = STATE_MARKER) -> Any:
    """Parse the JSON object assigned after *marker* in raw page HTML.

    Scans from the first ``{`` after the marker, balancing braces while
    tracking string and escape state so braces inside quoted values do not
    end the object early.  Returns ``None`` when the marker is missing, the
    object never closes, or the slice is not valid JSON.

    >>> parse_initial_state_from_html('<script>window.__INITIAL_STATE__ = {"a": "}"};</script>')
    {'a': '}'}
    """
    raw = html or ""
    idx = raw.find(marker)
    if idx == -1:
        return None
    start = raw.find("{", idx)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(raw)):
        ch = raw[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(raw[start:i + 1])
                except ValueError:
                    return None
    return None
