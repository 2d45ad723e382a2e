"""
DOM fallback extraction, used when page state yields nothing.

Flow per data type:
  1. A self-contained JS snippet walks the rendered tree and returns raw
     rows (strings only: titles, hrefs, price labels, input values).
  2. The Python side normalises those rows with ``dom_parser`` and applies
     the same output contract as state extraction.

Search strategies, in priority order:
  A. Image-anchored walk.  From each product image climb up to 10
     ancestors until one holds a title, a ``£`` price and a product link.
  B. Link fallback.  Every product link, climbing up to 8 ancestors for a
     price label.

Cart: anchored on the quantity ``<input type=number>`` of each line, up to
10 ancestors, looking for a product link, a heading/link title and a
``[class*=price]`` label.
"""

from __future__ import annotations

import logging
from typing import Any

from playwright.async_api import Page, Error as PlaywrightError

from dom_parser import (
    find_total_in_lines,
    normalize_text,
    parse_input_quantity,
    parse_money,
    product_id_from_href,
)

logger = logging.getLogger(__name__)

TITLE_MAX_LEN = 200
CART_TITLE_MIN_LEN = 5

# ---------------------------------------------------------------------------
# In-page snippets
# ---------------------------------------------------------------------------

_JS_IMAGE_TILES = """
(args) => {
    const out = [];
    const bestImage = (img) => {
        if (!img) return null;
        const src = img.getAttribute('src') || img.getAttribute('data-src');
        if (src) return src;
        const srcset = img.getAttribute('srcset');
        return srcset ? srcset.split(',')[0].trim().split(' ')[0] : null;
    };
    const linkSel = 'a[href*="' + args.linkFragment + '"]';
    for (const img of document.querySelectorAll(args.imageSelector)) {
        let node = img;
        for (let i = 0; i < 10 && node; i++) {
            node = node.parentElement;
            if (!node) break;
            const priceEl = node.querySelector('[data-test*="price"]');
            const link = node.querySelector(linkSel);
            const titleEl = node.querySelector('[class*="title"], h1, h2, h3, h4, h5, h6') || link;
            const title = ((titleEl && titleEl.textContent) || '').trim();
            const priceText = ((priceEl && priceEl.textContent) || '').trim();
            const image = bestImage(img);
            if (title && priceText.includes('£') && link && image) {
                out.push({title, priceText, href: link.getAttribute('href'), image});
                break;
            }
        }
        if (out.length >= args.limit) break;
    }
    return out;
}
"""

_JS_PRODUCT_LINKS = """
(args) => {
    const out = [];
    for (const a of document.querySelectorAll('a[href*="' + args.linkFragment + '"]')) {
        let node = a;
        let priceText = '';
        for (let i = 0; i < 8 && node; i++) {
            const priceEl = node.querySelector('[data-test*="price"], [class*="price"]');
            const t = ((priceEl && priceEl.textContent) || '').trim();
            if (t.includes('£')) { priceText = t; break; }
            node = node.parentElement;
        }
        const img = a.querySelector('img') || (node && node.querySelector('img'));
        out.push({
            title: (a.textContent || '').trim(),
            href: a.getAttribute('href'),
            priceText,
            image: img ? (img.getAttribute('src') || img.getAttribute('data-src')) : null,
        });
        if (out.length >= args.scanLimit) break;
    }
    return out;
}
"""

_JS_CART_ROWS = """
(args) => {
    const rows = [];
    const linkSel = 'a[href*="' + args.linkFragment + '"]';
    for (const input of document.querySelectorAll('input[type="number"]')) {
        let node = input;
        for (let i = 0; i < 10 && node; i++) {
            node = node.parentElement;
            if (!node) break;
            const link = node.querySelector(linkSel);
            const titleEl = node.querySelector('h1, h2, h3, h4, h5, h6') || link;
            const prices = Array.from(node.querySelectorAll('[class*="price"]'))
                .map(el => (el.textContent || '').trim());
            if (!titleEl || prices.length === 0) continue;
            rows.push({
                title: (titleEl.textContent || '').trim(),
                href: link ? link.getAttribute('href') : null,
                priceTexts: prices,
                quantity: input.value,
            });
            break;
        }
    }
    const body = document.body ? (document.body.innerText || document.body.textContent || '') : '';
    return {rows, bodyText: body};
}
"""

_JS_CART_QUANTITIES = """
(args) => {
    const rows = [];
    const linkSel = 'a[href*="' + args.linkFragment + '"]';
    for (const input of document.querySelectorAll('input[type="number"]')) {
        let node = input;
        for (let i = 0; i < 10 && node; i++) {
            node = node.parentElement;
            if (!node) break;
            const link = node.querySelector(linkSel);
            if (!link) continue;
            rows.push({href: link.getAttribute('href'), quantity: input.value});
            break;
        }
    }
    return rows;
}
"""


async def _evaluate(page: Page, script: str, args: dict[str, Any], default: Any) -> Any:
    try:
        result = await page.evaluate(script, args)
    except PlaywrightError as exc:
        logger.debug("DOM extraction script failed: %s", exc)
        return default
    return result if result is not None else default


# ---------------------------------------------------------------------------
# Row normalisation (pure)
# ---------------------------------------------------------------------------


def _product(provider: str, pid: str, name: str, price: float | None,
             image_url: str | None, base_url: str, link_fragment: str,
             currency: str) -> dict[str, Any]:
    return {
        "provider": provider,
        "provider_product_id": pid,
        "name": name,
        "price": price,
        "currency": currency,
        "image_url": image_url or None,
        "product_url": f"{base_url.rstrip('/')}{link_fragment}{pid}",
    }


def products_from_tiles(
    rows: list[dict[str, Any]],
    *,
    provider: str,
    base_url: str,
    link_fragment: str,
    max_results: int,
    currency: str = "GBP",
) -> list[dict[str, Any]]:
    """Strategy A rows: title, price, id and image are all required."""
    out: list[dict[str, Any]] = []
    seen_titles: set[str] = set()
    for row in rows:
        title = normalize_text(row.get("title"))[:TITLE_MAX_LEN]
        price = parse_money(row.get("priceText"))
        pid = product_id_from_href(row.get("href"))
        if not (title and price is not None and pid and row.get("image")):
            continue
        if title in seen_titles:
            continue
        seen_titles.add(title)
        out.append(_product(provider, pid, title, price, row["image"],
                            base_url, link_fragment, currency))
        if len(out) >= max_results:
            break
    return out


def products_from_links(
    rows: list[dict[str, Any]],
    *,
    provider: str,
    provider_label: str,
    base_url: str,
    link_fragment: str,
    max_results: int,
    currency: str = "GBP",
) -> list[dict[str, Any]]:
    """Strategy B rows: only the id is required; price may stay unknown."""
    out: list[dict[str, Any]] = []
    seen: set[str] = set()
    for row in rows:
        pid = product_id_from_href(row.get("href"))
        if not pid or pid in seen:
            continue
        seen.add(pid)
        title = normalize_text(row.get("title"))[:TITLE_MAX_LEN] or f"{provider_label} product {pid}"
        out.append(_product(provider, pid, title, parse_money(row.get("priceText")),
                            row.get("image"), base_url, link_fragment, currency))
        if len(out) >= max_results:
            break
    return out


def cart_from_rows(payload: dict[str, Any], *, currency: str = "GBP") -> dict[str, Any]:
    items: list[dict[str, Any]] = []
    seen: set[str] = set()
    for row in payload.get("rows") or []:
        title = normalize_text(row.get("title"))
        if not (CART_TITLE_MIN_LEN <= len(title) <= TITLE_MAX_LEN):
            continue
        pid = product_id_from_href(row.get("href"))
        key = pid or "name:" + title.lower()
        if key in seen:
            continue
        seen.add(key)

        price_text = next(
            (t for t in row.get("priceTexts") or [] if "£" in t and len(t) < 20),
            None,
        )
        price = parse_money(price_text)
        quantity = parse_input_quantity(row.get("quantity"), default=1)
        items.append({
            "name": title,
            "provider_product_id": pid,
            "quantity": quantity,
            "price": price,
            "line_total": price * quantity if price is not None else None,
        })

    return {
        "currency": currency,
        "total": find_total_in_lines(payload.get("bodyText")),
        "items": items,
        "meta": {"source": "dom"},
    }


def quantities_from_rows(rows: list[dict[str, Any]]) -> dict[str, int]:
    out: dict[str, int] = {}
    for row in rows:
        pid = product_id_from_href(row.get("href"))
        qty = parse_input_quantity(row.get("quantity"), default=0)
        if pid and qty > 0:
            out[pid] = qty
    return out


# ---------------------------------------------------------------------------
# Page-facing strategies
# ---------------------------------------------------------------------------


async def extract_search_tiles(page: Page, cfg: dict[str, Any], *, provider: str,
                               max_results: int) -> list[dict[str, Any]]:
    rows = await _evaluate(page, _JS_IMAGE_TILES, {
        "imageSelector": cfg["product_image_selector"],
        "linkFragment": cfg["product_link_fragment"],
        "limit": max_results * 3,
    }, [])
    return products_from_tiles(
        rows, provider=provider, base_url=cfg["base_url"],
        link_fragment=cfg["product_link_fragment"], max_results=max_results,
        currency=cfg["currency"],
    )


async def extract_search_links(page: Page, cfg: dict[str, Any], *, provider: str,
                               max_results: int) -> list[dict[str, Any]]:
    rows = await _evaluate(page, _JS_PRODUCT_LINKS, {
        "linkFragment": cfg["product_link_fragment"],
        "scanLimit": max_results * 5,
    }, [])
    return products_from_links(
        rows, provider=provider, provider_label=cfg["label"], base_url=cfg["base_url"],
        link_fragment=cfg["product_link_fragment"], max_results=max_results,
        currency=cfg["currency"],
    )


# Fixed priority order; the first strategy with results wins.
SEARCH_STRATEGIES = (extract_search_tiles, extract_search_links)


async def extract_cart_dom(page: Page, cfg: dict[str, Any]) -> dict[str, Any]:
    payload = await _evaluate(page, _JS_CART_ROWS,
                              {"linkFragment": cfg["product_link_fragment"]},
                              {"rows": [], "bodyText": ""})
    return cart_from_rows(payload, currency=cfg["currency"])


async def extract_cart_quantities_dom(page: Page, cfg: dict[str, Any]) -> dict[str, int]:
    rows = await _evaluate(page, _JS_CART_QUANTITIES,
                           {"linkFragment": cfg["product_link_fragment"]}, [])
    return quantities_from_rows(rows)
