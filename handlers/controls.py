"""
Selector and URL probing with per-probe timeouts.

Every helper here treats a Playwright timeout or error as "control absent"
and returns a falsy result so the caller can move to its next fallback.
Probe failures are logged at DEBUG and go no further.  Access-denial checks
are not done here; callers run the session guard after navigating.
"""

from __future__ import annotations

import asyncio
import logging
import random

from playwright.async_api import Locator, Page, Error as PlaywrightError

from config.stores import (
    CLICK_TIMEOUT_MS,
    CONTROL_PROBE_TIMEOUT_MS,
    GOTO_TIMEOUT_MS,
    NETWORK_IDLE_TIMEOUT_MS,
    WAIT_UNTIL,
)

logger = logging.getLogger(__name__)


async def human_pause(range_ms: tuple[int, int]) -> None:
    """Sleep a random duration inside *range_ms* (milliseconds)."""
    low, high = range_ms
    await asyncio.sleep(random.randint(low, high) / 1000)


async def wait_for_idle(page: Page, timeout_ms: int = NETWORK_IDLE_TIMEOUT_MS) -> bool:
    """Wait for network idle.  A timeout is fine: the page is usable anyway."""
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        return True
    except PlaywrightError:
        logger.debug("networkidle not reached within %d ms (%s)", timeout_ms, page.url)
        return False


async def try_goto(page: Page, url: str, *, timeout_ms: int = GOTO_TIMEOUT_MS) -> bool:
    try:
        await page.goto(url, wait_until=WAIT_UNTIL, timeout=timeout_ms)
        return True
    except PlaywrightError as exc:
        logger.debug("Navigation to %s failed: %s", url, exc)
        return False


async def find_first_visible(
    page: Page,
    selectors: list[str],
    *,
    timeout_ms: int = CONTROL_PROBE_TIMEOUT_MS,
) -> tuple[str, Locator] | None:
    """First selector whose element becomes visible within *timeout_ms*."""
    for selector in selectors:
        locator = page.locator(selector).first
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightError:
            continue
        return selector, locator
    return None


async def click_first(
    page: Page,
    selectors: list[str],
    *,
    probe_timeout_ms: int = CONTROL_PROBE_TIMEOUT_MS,
    click_timeout_ms: int = CLICK_TIMEOUT_MS,
) -> str | None:
    """Click the first visible control; return its selector or ``None``.

    A control that is visible but refuses the click (detached, covered)
    counts as absent and the next selector is tried.
    """
    for selector in selectors:
        locator = page.locator(selector).first
        try:
            await locator.wait_for(state="visible", timeout=probe_timeout_ms)
        except PlaywrightError:
            continue
        try:
            await locator.click(timeout=click_timeout_ms)
        except PlaywrightError as exc:
            logger.debug("Click on %r failed: %s", selector, exc)
            continue
        return selector
    return None
