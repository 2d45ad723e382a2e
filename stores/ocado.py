"""
Ocado store automation.

Every operation follows the same template:

  1. Reach the right page, trying candidate links/URLs in priority order.
  2. Run the session guard (captcha / logged-out raise immediately).
  3. Extract from ``__INITIAL_STATE__``.
  4. If that is empty, extract from the rendered DOM (strategies in fixed
     order).
  5. Nothing at all: capture debug artifacts, then return an empty result
     (list operations) or raise ``ControlNotFoundError`` (single-target
     operations such as add-to-cart).

Checkout is the safety boundary.  ``place_order`` only clicks the final
"Place order" control when called with ``dry_run=False`` *and*
``confirm=True``; while stepping through generic continue controls it
stops at anything that reads like an irreversible purchase.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import quote_plus

from playwright.async_api import Locator, Error as PlaywrightError

from config.stores import (
    ADD_BUTTON_PROBE_TIMEOUT_MS, CHECKOUT_IDLE_TIMEOUT_MS, CHECKOUT_PAUSE_MS,
    CLICK_JITTER_MS, CLICK_TIMEOUT_MS, CONTROL_PROBE_TIMEOUT_MS,
    LINK_PROBE_TIMEOUT_MS, MAX_CHECKOUT_STEPS, NAVIGATION_PAUSE_MS,
    SEARCH_BOX_PROBE_TIMEOUT_MS, SLOT_CLICK_TIMEOUT_MS,
)
from dom_parser import (
    RE_SLOT_TIME, SLOT_TEXT_MAX_LEN, dedupe_slot_texts, is_no_slots_text,
    normalize_text, parse_below_minimum, parse_slot_text,
)
from errors import (
    AccessDeniedError, ConfirmationRequiredError, ControlNotFoundError,
    InvalidRequestError, NoSlotsError, StoreAutomationError, classify_error,
)
from handlers.controls import (
    click_first, find_first_visible, human_pause, wait_for_idle,
)
from handlers.dom_extract import (
    SEARCH_STRATEGIES, extract_cart_dom, extract_cart_quantities_dom,
)
from initial_state import (
    MAX_RESULTS_CAP, clamp_max_results, extract_cart_from_initial_state,
    extract_products_from_initial_state, normalize_product_id,
)
from stores.base import BaseStore, StoreSession

logger = logging.getLogger(__name__)

DEFAULT_SLOT_LIMIT = 10

# Continue-style controls whose label reads like this are treated as the
# final purchase step, never as "next".
_RE_IRREVERSIBLE = re.compile(
    r"place\s+(?:my\s+)?order|\bpay\b|buy\s+now|submit\s+order|confirm\s+(?:and\s+pay|order)",
    re.IGNORECASE,
)


class OcadoStore(BaseStore):
    provider = "ocado"

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def go_to_cart(self, session: StoreSession) -> None:
        page = session.page
        clicked = await click_first(
            page, self.cfg["cart_link_selectors"],
            probe_timeout_ms=LINK_PROBE_TIMEOUT_MS, click_timeout_ms=CLICK_TIMEOUT_MS,
        )
        if clicked:
            logger.info("[%s] Opened trolley via %r", self.provider, clicked)
        elif not await self.goto_first(session, self.cfg["cart_urls"]):
            logger.warning("[%s] No trolley link or URL worked; staying on %s",
                           self.provider, page.url)
        await human_pause(NAVIGATION_PAUSE_MS)
        await wait_for_idle(page)

    async def go_to_checkout(self, session: StoreSession) -> None:
        page = session.page
        clicked = await click_first(
            page, self.cfg["checkout_selectors"],
            probe_timeout_ms=CONTROL_PROBE_TIMEOUT_MS, click_timeout_ms=CLICK_TIMEOUT_MS,
        )
        if clicked:
            logger.info("[%s] Opened checkout via %r", self.provider, clicked)
        elif not await self.goto_first(session, self.cfg["checkout_urls"]):
            logger.warning("[%s] No checkout control or URL worked; staying on %s",
                           self.provider, page.url)
        await wait_for_idle(page, CHECKOUT_IDLE_TIMEOUT_MS)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _products_from_state(self, state: Any, limit: int) -> list[dict[str, Any]]:
        return extract_products_from_initial_state(
            state, base_url=self.base_url, max_results=limit, provider=self.provider,
        )

    async def _products_from_dom(self, session: StoreSession, limit: int) -> list[dict[str, Any]]:
        for strategy in SEARCH_STRATEGIES:
            results = await strategy(session.page, self.cfg, provider=self.provider,
                                     max_results=limit)
            if results:
                logger.info("[%s] %d result(s) via %s", self.provider, len(results),
                            strategy.__name__)
                return results
        return []

    async def search_products(self, session: StoreSession, query: str,
                              max_results: int = 5) -> list[dict[str, Any]]:
        limit = clamp_max_results(max_results)
        query = (query or "").strip()
        if not query:
            return []
        page = session.page

        if not (page.url or "").startswith(self.base_url):
            await self.goto(session, self.base_url)
        await self.check_access(session)

        # 1. Dedicated search URLs (state only).
        for template in self.cfg["search_urls"]:
            url = template.format(base=self.base_url, query=quote_plus(query))
            if not await self.goto(session, url):
                continue
            await self.check_access(session)
            results = self._products_from_state(await self.get_initial_state(session), limit)
            if results:
                logger.info("[%s] %d result(s) for %r from page state", self.provider,
                            len(results), query)
                return results

        # 2. The on-page search box, then state and DOM again.
        found = await find_first_visible(
            page, self.cfg["search_box_selectors"], timeout_ms=SEARCH_BOX_PROBE_TIMEOUT_MS,
        )
        if found:
            selector, box = found
            try:
                await box.fill(query)
                await box.press("Enter")
            except PlaywrightError as exc:
                logger.info("[%s] Search box %r unusable: %s", self.provider, selector, exc)
                found = None
            else:
                await wait_for_idle(page)
                await self.check_access(session)
                results = self._products_from_state(await self.get_initial_state(session), limit)
                if results:
                    return results

        results = await self._products_from_dom(session, limit)
        if results:
            return results

        if not found:
            await self.save_debug_info(session, "search_no_box")
            raise ControlNotFoundError("Could not find the search box.", provider=self.provider)

        await self.save_debug_info(session, "search_no_results")
        logger.info("[%s] No results for %r", self.provider, query)
        return []

    # ------------------------------------------------------------------
    # Trolley
    # ------------------------------------------------------------------

    async def add_to_cart(self, session: StoreSession, product_id: str,
                          quantity: int = 1) -> dict[str, Any]:
        pid = normalize_product_id(product_id)
        if not pid:
            raise InvalidRequestError(
                f"A numeric product id is required (got {product_id!r}).",
                provider=self.provider,
            )
        qty = max(1, int(quantity))
        page = session.page

        await self.goto(session, self.cfg["product_url"].format(base=self.base_url, product_id=pid))
        await self.check_access(session)

        found = await find_first_visible(
            page, self.cfg["add_to_cart_selectors"], timeout_ms=ADD_BUTTON_PROBE_TIMEOUT_MS,
        )
        if not found:
            await self.save_debug_info(session, f"add_to_cart_failed_{pid}")
            raise ControlNotFoundError(
                f"Could not find an add-to-trolley control for product {pid}.",
                provider=self.provider,
            )

        selector, button = found
        for i in range(qty):
            try:
                await button.click(timeout=CLICK_TIMEOUT_MS)
            except PlaywrightError as exc:
                await self.save_debug_info(session, f"add_to_cart_click_failed_{pid}")
                raise ControlNotFoundError(
                    f"Add control for product {pid} stopped responding after {i} click(s).",
                    provider=self.provider,
                ) from exc
            if i < qty - 1:
                await human_pause(CLICK_JITTER_MS)

        logger.info("[%s] Added %s x%d via %r", self.provider, pid, qty, selector)
        return {"provider_product_id": pid, "quantity": qty}

    async def view_cart(self, session: StoreSession) -> dict[str, Any]:
        await self.go_to_cart(session)
        await self.check_access(session)

        summary = extract_cart_from_initial_state(
            await self.get_initial_state(session), provider_label=self.label,
        )
        if summary is None:
            logger.info("[%s] No trolley in page state; reading the DOM", self.provider)
            summary = await extract_cart_dom(session.page, self.cfg)
            if not summary["items"] and summary["total"] is None:
                # Could be an empty trolley or markup we no longer recognise.
                logger.warning("[%s] Trolley page yielded no items and no total", self.provider)
                await self.save_debug_info(session, "cart_empty")

        below = parse_below_minimum(await self.page_text(session))
        if below:
            summary["status"] = {"below_minimum": below}
        return summary

    async def get_cart_quantities(self, session: StoreSession) -> dict[str, int]:
        await self.go_to_cart(session)
        await self.check_access(session)

        summary = extract_cart_from_initial_state(
            await self.get_initial_state(session), provider_label=self.label,
        )
        quantities = {
            item["provider_product_id"]: item["quantity"]
            for item in (summary or {}).get("items", [])
            if item["provider_product_id"]
        }
        if quantities:
            return quantities
        return await extract_cart_quantities_dom(session.page, self.cfg)

    async def add_missing_to_cart(self, session: StoreSession,
                                  wanted: dict[str, int]) -> dict[str, list[dict[str, Any]]]:
        """Top the trolley up to *wanted* quantities.  Never removes anything.

        Per-item failures are recorded and the loop moves on; an access
        denial stops the whole call because every later item would fail too.
        """
        current = await self.get_cart_quantities(session)
        report: dict[str, list[dict[str, Any]]] = {"added": [], "skipped": [], "failed": []}

        for raw_id, raw_qty in wanted.items():
            pid = str(raw_id).strip()
            want = int(raw_qty)
            have = current.get(pid, 0)
            if want <= 0 or want <= have:
                report["skipped"].append({"provider_product_id": pid, "quantity": have})
                continue
            try:
                await self.add_to_cart(session, pid, want - have)
            except AccessDeniedError:
                raise
            except StoreAutomationError as exc:
                code, message = classify_error(exc)
                report["failed"].append({
                    "provider_product_id": pid,
                    "quantity": want - have,
                    "error": {"code": code, "message": message},
                })
                continue
            report["added"].append({"provider_product_id": pid, "quantity": want - have})

        return report

    # ------------------------------------------------------------------
    # Delivery slots
    # ------------------------------------------------------------------

    def _slot_candidates(self, session: StoreSession) -> Locator:
        return session.page.locator(self.cfg["slot_candidate_selector"]).filter(
            has_text=RE_SLOT_TIME,
        )

    async def _slot_texts(self, candidates: Locator, cap: int) -> list[tuple[int, str]]:
        """``(nth, text)`` for each readable candidate, in page order."""
        out: list[tuple[int, str]] = []
        try:
            count = await candidates.count()
        except PlaywrightError:
            return out
        for i in range(min(count, cap)):
            try:
                text = await candidates.nth(i).inner_text(timeout=CONTROL_PROBE_TIMEOUT_MS)
            except PlaywrightError:
                continue
            out.append((i, text))
        return out

    async def get_delivery_slots(self, session: StoreSession,
                                 limit: int = DEFAULT_SLOT_LIMIT) -> list[dict[str, Any]]:
        limit = max(1, min(MAX_RESULTS_CAP, limit or DEFAULT_SLOT_LIMIT))
        await self.go_to_cart(session)
        await self.check_access(session)
        await self.go_to_checkout(session)
        await self.check_access(session)

        rows = await self._slot_texts(self._slot_candidates(session), cap=limit * 4)
        texts = dedupe_slot_texts([text for _, text in rows], limit)
        slots = [parse_slot_text(text, i) for i, text in enumerate(texts)]
        if slots:
            logger.info("[%s] %d delivery slot(s) found", self.provider, len(slots))
            return slots

        if is_no_slots_text(await self.page_text(session)):
            await self.save_debug_info(session, "slots_sold_out")
            raise NoSlotsError("No delivery slots are available.", provider=self.provider)

        await self.save_debug_info(session, "slots_none_found")
        return []

    async def _click_slot(self, session: StoreSession, slot_index: int) -> dict[str, Any]:
        # Indexes match get_delivery_slots: page order after de-duplication.
        candidates = self._slot_candidates(session)
        rows = await self._slot_texts(candidates, cap=(slot_index + 1) * 4 + 20)
        seen: list[str] = []
        for nth, raw in rows:
            text = normalize_text(raw)
            if not text or text.lower() in seen:
                continue
            seen.append(text.lower())
            if len(seen) - 1 == slot_index:
                try:
                    await candidates.nth(nth).click(timeout=SLOT_CLICK_TIMEOUT_MS)
                except PlaywrightError as exc:
                    logger.info("[%s] Slot %d click failed: %s", self.provider, slot_index, exc)
                    break
                await human_pause(CHECKOUT_PAUSE_MS)
                return {"ok": True, "full_text": text[:SLOT_TEXT_MAX_LEN]}

        for selector in self.cfg["slot_fallback_selectors"]:
            els = session.page.locator(selector)
            try:
                if await els.count() <= slot_index:
                    continue
                text = normalize_text(
                    await els.nth(slot_index).inner_text(timeout=CONTROL_PROBE_TIMEOUT_MS)
                )
                await els.nth(slot_index).click(timeout=SLOT_CLICK_TIMEOUT_MS)
            except PlaywrightError:
                continue
            await human_pause(CHECKOUT_PAUSE_MS)
            return {"ok": True, "full_text": text[:SLOT_TEXT_MAX_LEN]}

        return {"ok": False, "full_text": None}

    async def select_delivery_slot(self, session: StoreSession, slot_index: int = 0,
                                   *, navigate: bool = True) -> dict[str, Any]:
        if navigate:
            await self.go_to_cart(session)
            await self.check_access(session)
            await self.go_to_checkout(session)
        await self.check_access(session)

        result = await self._click_slot(session, max(0, int(slot_index)))
        if result["ok"]:
            logger.info("[%s] Selected slot %d: %s", self.provider, slot_index, result["full_text"])
        else:
            await self.save_debug_info(session, f"select_slot_failed_{slot_index}")
        return result

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def _next_step_control(self, session: StoreSession) -> Locator | None:
        """Visible continue-style control, unless it reads like the purchase."""
        for selector in self.cfg["continue_selectors"]:
            locator = session.page.locator(selector).first
            try:
                await locator.wait_for(state="visible", timeout=CONTROL_PROBE_TIMEOUT_MS)
                label = await locator.inner_text(timeout=CONTROL_PROBE_TIMEOUT_MS)
            except PlaywrightError:
                continue
            if _RE_IRREVERSIBLE.search(label):
                logger.info("[%s] Stopping before %r", self.provider, normalize_text(label))
                return None
            return locator
        return None

    async def place_order(self, session: StoreSession, *, dry_run: bool = True,
                          confirm: bool = False) -> dict[str, Any]:
        if not dry_run and not confirm:
            raise ConfirmationRequiredError(
                "Live order placement requires explicit confirmation.",
                provider=self.provider,
            )

        page = session.page
        await self.go_to_cart(session)
        await self.check_access(session)
        await self.go_to_checkout(session)
        await self.check_access(session)

        slot = await self._click_slot(session, 0)
        if not slot["ok"]:
            logger.info("[%s] No slot selected before checkout steps", self.provider)

        place_selectors = self.cfg["place_order_selectors"]
        for step in range(MAX_CHECKOUT_STEPS):
            if await find_first_visible(page, place_selectors, timeout_ms=CONTROL_PROBE_TIMEOUT_MS):
                break
            control = await self._next_step_control(session)
            if control is None:
                break
            try:
                await control.click(timeout=CLICK_TIMEOUT_MS)
            except PlaywrightError as exc:
                logger.info("[%s] Checkout step %d click failed: %s", self.provider, step + 1, exc)
                break
            await human_pause(CHECKOUT_PAUSE_MS)
            await wait_for_idle(page, CHECKOUT_IDLE_TIMEOUT_MS)
            await self.check_access(session)

        final = await find_first_visible(page, place_selectors, timeout_ms=CONTROL_PROBE_TIMEOUT_MS)

        if dry_run:
            message = (
                "Reached final confirmation step (dry-run). Order not placed."
                if final else
                "Reached checkout flow (dry-run). Could not confirm final step visibility."
            )
            logger.info("[%s] %s", self.provider, message)
            return {"ok": True, "message": message, "url": page.url}

        if final:
            selector, button = final
            try:
                await button.click(timeout=CLICK_TIMEOUT_MS)
            except PlaywrightError as exc:
                logger.warning("[%s] Place order click failed: %s", self.provider, exc)
            else:
                await human_pause(CHECKOUT_PAUSE_MS)
                await wait_for_idle(page, CHECKOUT_IDLE_TIMEOUT_MS)
                logger.info("[%s] Place order clicked via %r", self.provider, selector)
                return {"ok": True, "message": "Place order clicked. Verify in Ocado.",
                        "url": page.url}

        await self.save_debug_info(session, "place_order_failed")
        return {"ok": False, "message": "Could not find Place order button.", "url": page.url}
