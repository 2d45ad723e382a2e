"""
Session guard: is the store actually serving us?

Run after every navigation and before any extracted data is trusted.  A
page can be

  * usable (``none``),
  * ``logged_out``: login URL, or a visible sign-in call-to-action,
  * ``captcha``: a challenge frame, a captcha element, or human-verification
    wording in the visible text.

Checks run in that order: URL, captcha, sign-in.  A challenge page often
also shows a "Sign in" link, and the remediation differs (a human must solve
a captcha; a stale session only needs a fresh credential), so captcha wins.

Detection deliberately leans towards false negatives.  Reporting a healthy
session as blocked throws away the user's progress, while a missed block
surfaces a moment later as an empty extraction.

``AccessDetector`` holds every list, so new markup is a config change rather
than an orchestration change.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from playwright.async_api import Page, Error as PlaywrightError

from config.stores import CONTROL_PROBE_TIMEOUT_MS
from errors import CaptchaError, LoggedOutError

logger = logging.getLogger(__name__)

NONE = "none"
LOGGED_OUT = "logged_out"
CAPTCHA = "captcha"


@dataclass(frozen=True)
class AccessIssue:
    code: str
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.code == NONE


# No bare "cloudflare" or "captcha": both show up in footers, CDN notices
# and "protected by reCAPTCHA" lines on perfectly healthy pages.
DEFAULT_CAPTCHA_PHRASES = re.compile(
    r"verify you are human|are you a robot|robot check|unusual traffic"
    r"|complete the captcha|checking your browser",
    re.IGNORECASE,
)


@dataclass
class AccessDetector:
    """Curated signals for one storefront.  Boolean presence only, no scoring."""

    login_url_markers: tuple[str, ...] = ("login", "signin", "sign-in")
    captcha_frame_selectors: tuple[str, ...] = (
        'iframe[src*="captcha" i]',
        'iframe[src*="hcaptcha" i]',
        'iframe[src*="challenges.cloudflare.com"]',
    )
    captcha_element_selectors: tuple[str, ...] = (
        '[id*="captcha" i]',
        # The reCAPTCHA v3 badge sits on healthy pages too.
        '[class*="captcha" i]:not(.grecaptcha-badge)',
        "#challenge-form",
        "#challenge-running",
    )
    captcha_phrases: re.Pattern = field(default=DEFAULT_CAPTCHA_PHRASES)
    sign_in_selectors: tuple[str, ...] = (
        'a:has-text("Sign in")',
        'button:has-text("Sign in")',
        'a:has-text("Log in")',
        'button:has-text("Log in")',
    )
    # Positive login signals, only used while a human logs in by hand.
    sign_out_selectors: tuple[str, ...] = (
        'a:has-text("Sign out")',
        'button:has-text("Sign out")',
        'a:has-text("Log out")',
        'button:has-text("Log out")',
    )
    account_link_selector: str = 'a[href*="account"], a[href*="myaccount"], a[href*="orders"]'
    min_session_cookies: int = 5

    async def looks_logged_in(self, page: Page) -> bool:
        """Positive check for the interactive login flow.

        Any negative signal (login URL, sign-in CTA) wins over the positive
        ones; a healthy cookie jar is the last resort.
        """
        url = (page.url or "").lower()
        if any(marker in url for marker in self.login_url_markers):
            return False
        for selector in self.sign_in_selectors:
            if await _is_visible(page, selector):
                return False
        for selector in self.sign_out_selectors + (self.account_link_selector,):
            if await _is_visible(page, selector):
                return True
        try:
            cookies = await page.context.cookies()
        except PlaywrightError:
            return False
        return len(cookies) >= self.min_session_cookies

    async def detect(self, page: Page) -> AccessIssue:
        url = (page.url or "").lower()
        for marker in self.login_url_markers:
            if marker in url:
                return AccessIssue(LOGGED_OUT, f"url contains {marker!r}")

        for selector in self.captcha_frame_selectors + self.captcha_element_selectors:
            if await _is_visible(page, selector):
                return AccessIssue(CAPTCHA, f"visible {selector}")

        text = await _visible_text(page)
        m = self.captcha_phrases.search(text)
        if m:
            return AccessIssue(CAPTCHA, f"text {m.group(0)!r}")

        for selector in self.sign_in_selectors:
            if await _is_visible(page, selector):
                return AccessIssue(LOGGED_OUT, f"visible {selector}")

        return AccessIssue(NONE)


DEFAULT_DETECTOR = AccessDetector()


async def _is_visible(page: Page, selector: str) -> bool:
    try:
        return await page.locator(selector).first.is_visible()
    except PlaywrightError as exc:
        logger.debug("Access probe %r failed: %s", selector, exc)
        return False


async def _visible_text(page: Page) -> str:
    try:
        return await page.locator("body").inner_text(timeout=CONTROL_PROBE_TIMEOUT_MS)
    except PlaywrightError as exc:
        logger.debug("Could not read body text: %s", exc)
        return ""


async def detect_access_issue(page: Page, detector: AccessDetector | None = None) -> AccessIssue:
    return await (detector or DEFAULT_DETECTOR).detect(page)


async def assert_likely_logged_in(
    page: Page,
    provider: str,
    detector: AccessDetector | None = None,
) -> None:
    """Raise ``CaptchaError`` / ``LoggedOutError`` when the page refuses service.

    Neither is retried: a captcha needs a human in a headed browser, and a
    logged-out session needs a refreshed credential.
    """
    issue = await detect_access_issue(page, detector)
    if issue.code == CAPTCHA:
        logger.warning("[%s] Access blocked by challenge (%s)", provider, issue.detail)
        raise CaptchaError(
            "Store blocked automation (captcha detected). "
            "Re-authenticate in a visible browser and complete the check.",
            provider=provider,
        )
    if issue.code == LOGGED_OUT:
        logger.warning("[%s] Session looks logged out (%s)", provider, issue.detail)
        raise LoggedOutError(
            "Store session appears logged out. Refresh the saved session.",
            provider=provider,
        )
