"""
Base class for store providers.

Provides the scoped browser session (provider lock, stored credential,
fresh context per acquisition, unconditional teardown), navigation helpers,
page-state access and the session guard hook.  Subclasses implement the
provider's operations on top of these.

Usage::

    store = OcadoStore(session_store=FileSessionStore("data/sessions"))
    async with store.session() as session:
        results = await store.search_products(session, "milk")

Every operation takes the session handle explicitly; nothing in this module
keeps a global browser.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import Any

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Error as PlaywrightError,
)

from config.stores import (
    BROWSER_ARGS, CONTROL_PROBE_TIMEOUT_MS, DEBUG_DIR, DEFAULT_TIMEOUT_MS,
    LOCALE, NETWORK_IDLE_TIMEOUT_MS, TIMEZONE_ID, USER_AGENT, VIEWPORT,
    get_provider_config, is_provider_enabled, provider_headless_default,
)
from errors import FeatureDisabledError, SessionNotConfiguredError, StoreAutomationError
from handlers.access import AccessDetector, assert_likely_logged_in
from handlers.controls import try_goto, wait_for_idle
from handlers.debug_capture import DebugCaptureResult, capture_debug_artifacts
from initial_state import parse_initial_state_from_html
from provider_lock import DEFAULT_PROVIDER_LOCK, ProviderLock
from session_store import SessionStore, build_session_store

logger = logging.getLogger(__name__)

# Live global first; the HTML copy is the fallback when the object is not
# serialisable or was deleted after hydration.
_JS_INITIAL_STATE = """
() => {
    const s = globalThis.__INITIAL_STATE__ || globalThis.INITIAL_STATE;
    return s === undefined ? null : s;
}
"""


class StoreSession:
    """A locked, credentialed browser session for one provider.

    Entering: feature flag, provider lock, stored credential, then browser,
    context (seeded with the credential) and page.  Exiting closes all of
    them and releases the lock, whatever happened inside the block.
    """

    def __init__(self, store: "BaseStore", *, headless: bool | None = None) -> None:
        self.store = store
        self.provider = store.provider
        self.headless = provider_headless_default(self.provider) if headless is None else headless

        # Set by __aenter__
        self._locked = False
        self._pw: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        assert self._page is not None, "StoreSession must be used as an async context manager"
        return self._page

    @property
    def context(self) -> BrowserContext:
        assert self._context is not None, "StoreSession must be used as an async context manager"
        return self._context

    async def __aenter__(self) -> "StoreSession":
        if not is_provider_enabled(self.provider):
            raise FeatureDisabledError(
                f"{self.store.label} automation is disabled "
                f"(ENABLE_STORE_{self.provider.upper()}=false).",
                provider=self.provider,
            )

        await self.store.lock.acquire(self.provider)
        self._locked = True
        try:
            state = self.store.session_store.get_storage_state(self.provider)
            if state is None:
                raise SessionNotConfiguredError(
                    f"{self.store.label} session not configured. Run the auth command first.",
                    provider=self.provider,
                )

            self._pw = await async_playwright().start()
            self._browser = await self._pw.chromium.launch(
                headless=self.headless,
                args=BROWSER_ARGS,
            )
            self._context = await self._browser.new_context(
                storage_state=state,
                viewport=VIEWPORT,
                user_agent=USER_AGENT,
                locale=LOCALE,
                timezone_id=TIMEZONE_ID,
            )
            self._context.set_default_timeout(DEFAULT_TIMEOUT_MS)
            self._page = await self._context.new_page()
        except BaseException:
            await self._teardown()
            raise

        logger.info("[%s] Browser ready (headless=%s)", self.provider, self.headless)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if isinstance(exc_val, Exception) and not isinstance(exc_val, StoreAutomationError):
            await self.store.save_debug_info(self, f"unexpected_{exc_type.__name__}")
        await self._teardown()

    async def _teardown(self) -> None:
        try:
            for obj in (self._page, self._context, self._browser):
                if obj:
                    try:
                        await obj.close()
                    except Exception as exc:
                        logger.debug("[%s] Close failed: %s", self.provider, exc)
            if self._pw:
                try:
                    await self._pw.stop()
                except Exception as exc:
                    logger.debug("[%s] Playwright stop failed: %s", self.provider, exc)
        finally:
            self._page = self._context = self._browser = self._pw = None
            if self._locked:
                self._locked = False
                self.store.lock.release(self.provider)
                logger.info("[%s] Cleanup done", self.provider)


class BaseStore(abc.ABC):
    """Skeleton shared by every store provider."""

    provider: str = ""

    def __init__(
        self,
        *,
        session_store: SessionStore | None = None,
        lock: ProviderLock | None = None,
        detector: AccessDetector | None = None,
        debug_dir: Path | None = None,
    ) -> None:
        self.cfg: dict[str, Any] = get_provider_config(self.provider)
        self._session_store = session_store
        self.lock = lock or DEFAULT_PROVIDER_LOCK
        self.detector = detector
        self.debug_dir = debug_dir or DEBUG_DIR

    @property
    def session_store(self) -> SessionStore:
        if self._session_store is None:
            self._session_store = build_session_store()
        return self._session_store

    @property
    def label(self) -> str:
        return self.cfg["label"]

    @property
    def base_url(self) -> str:
        return self.cfg["base_url"].rstrip("/")

    def session(self, *, headless: bool | None = None) -> StoreSession:
        return StoreSession(self, headless=headless)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def goto(self, session: StoreSession, url: str, *,
                   idle_timeout_ms: int = NETWORK_IDLE_TIMEOUT_MS) -> bool:
        logger.info("[%s] Navigating to %s", self.provider, url)
        if not await try_goto(session.page, url):
            return False
        await wait_for_idle(session.page, idle_timeout_ms)
        return True

    async def goto_first(self, session: StoreSession, templates: list[str], **fmt: str) -> str | None:
        """Navigate to the first URL template that loads; return the URL."""
        for template in templates:
            url = template.format(base=self.base_url, **fmt)
            if await self.goto(session, url):
                return url
        return None

    async def check_access(self, session: StoreSession) -> None:
        await assert_likely_logged_in(session.page, self.provider, self.detector)

    async def get_initial_state(self, session: StoreSession) -> Any:
        try:
            state = await session.page.evaluate(_JS_INITIAL_STATE)
        except PlaywrightError as exc:
            logger.debug("[%s] Live state unavailable: %s", self.provider, exc)
            state = None
        if state is not None:
            return state
        try:
            html = await session.page.content()
        except PlaywrightError as exc:
            logger.debug("[%s] Could not read page HTML: %s", self.provider, exc)
            return None
        return parse_initial_state_from_html(html)

    async def page_text(self, session: StoreSession) -> str:
        try:
            return await session.page.locator("body").inner_text(timeout=CONTROL_PROBE_TIMEOUT_MS)
        except PlaywrightError as exc:
            logger.debug("[%s] Could not read body text: %s", self.provider, exc)
            return ""

    async def save_debug_info(self, session: StoreSession, label: str) -> DebugCaptureResult:
        return await capture_debug_artifacts(
            session._page, label, provider=self.provider, directory=self.debug_dir,
        )

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def search_products(self, session: StoreSession, query: str,
                              max_results: int = 5) -> list[dict[str, Any]]:
        """Search the storefront.

        Returns dicts with ``provider``, ``provider_product_id``, ``name``,
        ``price``, ``currency``, ``image_url`` and ``product_url``.
        """
        ...
