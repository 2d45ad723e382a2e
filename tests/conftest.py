"""Shared fixtures for the store automation test suite."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure the top-level modules are importable from tests/
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from playwright.async_api import TimeoutError as PlaywrightTimeout

from provider_lock import ProviderLock


class FakeLocator:
    """Just enough of ``playwright.async_api.Locator`` for guard/probe code.

    A selector is "visible" when it is in the page's ``visible`` set; the
    ``body`` locator returns the page's visible text.
    """

    def __init__(self, page: "FakePage", selector: str) -> None:
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def nth(self, index: int) -> "FakeLocator":
        return self

    async def is_visible(self) -> bool:
        return self.selector in self.page.visible

    async def count(self) -> int:
        return 1 if self.selector in self.page.visible else 0

    async def wait_for(self, state: str = "visible", timeout: float | None = None) -> None:
        if self.selector not in self.page.visible:
            raise PlaywrightTimeout(f"Timeout {timeout}ms waiting for {self.selector}")

    async def inner_text(self, timeout: float | None = None) -> str:
        if self.selector == "body":
            return self.page.text
        return self.page.labels.get(self.selector, "")

    async def click(self, timeout: float | None = None) -> None:
        if self.selector not in self.page.visible:
            raise PlaywrightTimeout(f"Timeout {timeout}ms clicking {self.selector}")
        self.page.clicks.append(self.selector)


class FakePage:
    def __init__(
        self,
        *,
        url: str = "https://www.ocado.com/",
        text: str = "",
        visible: set[str] | None = None,
        labels: dict[str, str] | None = None,
        cookies: int = 0,
    ) -> None:
        self.url = url
        self.text = text
        self.visible = set(visible or ())
        self.labels = labels or {}
        self.clicks: list[str] = []
        self.context = MagicMock()
        self.context.cookies = AsyncMock(return_value=[{"name": f"c{i}"} for i in range(cookies)])

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)


@pytest.fixture
def make_page():
    """Factory for ``FakePage`` objects."""

    def _make(**kwargs) -> FakePage:
        return FakePage(**kwargs)

    return _make


@pytest.fixture
def provider_lock():
    """Fresh lock per test so nothing leaks between tests."""
    return ProviderLock()


@pytest.fixture
def fake_session():
    """Stand-in for a ``StoreSession``: only ``.page`` is used by the stores."""
    session = MagicMock()
    session.page = MagicMock()
    session.page.url = "https://www.ocado.com/"
    return session
