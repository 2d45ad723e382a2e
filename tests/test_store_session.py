"""Tests for the scoped browser session in stores/base.py."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from config.stores import DEFAULT_TIMEOUT_MS
from errors import CaptchaError, FeatureDisabledError, SessionNotConfiguredError
from stores import OcadoStore

STATE = {"cookies": [], "origins": []}


@pytest.fixture
def browser_stack(monkeypatch):
    """Patch ``async_playwright`` and hand back the fake objects."""
    page = MagicMock(name="page")
    page.close = AsyncMock()
    context = MagicMock(name="context")
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    browser = MagicMock(name="browser")
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    pw = MagicMock(name="playwright")
    pw.chromium.launch = AsyncMock(return_value=browser)
    pw.stop = AsyncMock()

    factory = MagicMock()
    factory.return_value.start = AsyncMock(return_value=pw)
    monkeypatch.setattr("stores.base.async_playwright", factory)
    monkeypatch.delenv("ENABLE_STORE_OCADO", raising=False)
    monkeypatch.delenv("OCADO_HEADLESS", raising=False)
    return {"pw": pw, "browser": browser, "context": context, "page": page, "factory": factory}


def _store(provider_lock, state=STATE):
    sessions = MagicMock()
    sessions.get_storage_state.return_value = state
    store = OcadoStore(session_store=sessions, lock=provider_lock)
    store.save_debug_info = AsyncMock()
    return store


def _assert_torn_down(stack, provider_lock):
    stack["page"].close.assert_awaited_once()
    stack["context"].close.assert_awaited_once()
    stack["browser"].close.assert_awaited_once()
    stack["pw"].stop.assert_awaited_once()
    assert not provider_lock.is_locked("ocado")
    assert provider_lock.waiting("ocado") == 0


@pytest.mark.asyncio
async def test_session_seeds_context_and_tears_down(browser_stack, provider_lock):
    store = _store(provider_lock)
    async with store.session() as session:
        assert provider_lock.is_locked("ocado")
        assert session.page is browser_stack["page"]

    browser_stack["pw"].chromium.launch.assert_awaited_once()
    assert browser_stack["pw"].chromium.launch.call_args.kwargs["headless"] is True
    kwargs = browser_stack["browser"].new_context.call_args.kwargs
    assert kwargs["storage_state"] == STATE
    browser_stack["context"].set_default_timeout.assert_called_once_with(DEFAULT_TIMEOUT_MS)
    _assert_torn_down(browser_stack, provider_lock)
    store.save_debug_info.assert_not_awaited()


@pytest.mark.asyncio
async def test_headed_override(browser_stack, provider_lock):
    store = _store(provider_lock)
    async with store.session(headless=False):
        pass
    assert browser_stack["pw"].chromium.launch.call_args.kwargs["headless"] is False


@pytest.mark.asyncio
async def test_disabled_provider_fails_fast(browser_stack, provider_lock, monkeypatch):
    monkeypatch.setenv("ENABLE_STORE_OCADO", "false")
    store = _store(provider_lock)
    with pytest.raises(FeatureDisabledError) as info:
        async with store.session():
            pass
    assert info.value.code == "OCADO_DISABLED"
    browser_stack["factory"].assert_not_called()
    assert not provider_lock.is_locked("ocado")


@pytest.mark.asyncio
async def test_missing_session_checked_before_launch(browser_stack, provider_lock):
    store = _store(provider_lock, state=None)
    with pytest.raises(SessionNotConfiguredError):
        async with store.session():
            pass
    browser_stack["factory"].assert_not_called()
    assert not provider_lock.is_locked("ocado")
    assert provider_lock.waiting("ocado") == 0


@pytest.mark.asyncio
async def test_unexpected_error_captures_debug_then_tears_down(browser_stack, provider_lock):
    store = _store(provider_lock)
    with pytest.raises(ValueError):
        async with store.session():
            raise ValueError("boom")
    store.save_debug_info.assert_awaited_once()
    assert store.save_debug_info.call_args[0][1] == "unexpected_ValueError"
    _assert_torn_down(browser_stack, provider_lock)


@pytest.mark.asyncio
async def test_engine_error_skips_debug_capture(browser_stack, provider_lock):
    store = _store(provider_lock)
    with pytest.raises(CaptchaError):
        async with store.session():
            raise CaptchaError("blocked", provider="ocado")
    store.save_debug_info.assert_not_awaited()
    _assert_torn_down(browser_stack, provider_lock)


@pytest.mark.asyncio
async def test_launch_failure_releases_lock(browser_stack, provider_lock):
    browser_stack["pw"].chromium.launch.side_effect = RuntimeError("no browser")
    store = _store(provider_lock)
    with pytest.raises(RuntimeError):
        async with store.session():
            pass
    browser_stack["pw"].stop.assert_awaited_once()
    assert not provider_lock.is_locked("ocado")


@pytest.mark.asyncio
async def test_close_errors_do_not_block_release(browser_stack, provider_lock):
    browser_stack["context"].close.side_effect = RuntimeError("already closed")
    store = _store(provider_lock)
    async with store.session():
        pass
    browser_stack["browser"].close.assert_awaited_once()
    assert not provider_lock.is_locked("ocado")
