"""Tests for the session guard in handlers/access.py."""

from __future__ import annotations

import re

import pytest

from errors import CaptchaError, LoggedOutError
from handlers.access import (
    CAPTCHA,
    LOGGED_OUT,
    NONE,
    AccessDetector,
    assert_likely_logged_in,
    detect_access_issue,
)

SIGN_IN = 'a:has-text("Sign in")'
SIGN_OUT = 'button:has-text("Sign out")'
CAPTCHA_FRAME = 'iframe[src*="hcaptcha" i]'


class TestDetectAccessIssue:

    @pytest.mark.asyncio
    async def test_verify_you_are_human_is_captcha(self, make_page):
        page = make_page(text="Please verify you are human before continuing")
        issue = await detect_access_issue(page)
        assert issue.code == CAPTCHA
        assert issue.code != LOGGED_OUT

    @pytest.mark.asyncio
    async def test_login_url_is_logged_out(self, make_page):
        page = make_page(url="https://www.ocado.com/webshop/login?redirect=/trolley")
        assert (await detect_access_issue(page)).code == LOGGED_OUT

    @pytest.mark.asyncio
    async def test_visible_sign_in_is_logged_out(self, make_page):
        page = make_page(text="Welcome to Ocado", visible={SIGN_IN})
        assert (await detect_access_issue(page)).code == LOGGED_OUT

    @pytest.mark.asyncio
    async def test_captcha_wins_over_sign_in(self, make_page):
        page = make_page(visible={CAPTCHA_FRAME, SIGN_IN})
        assert (await detect_access_issue(page)).code == CAPTCHA

    @pytest.mark.asyncio
    async def test_healthy_page(self, make_page):
        page = make_page(text="Your trolley\nTotal\n£12.00", visible={SIGN_OUT})
        issue = await detect_access_issue(page)
        assert issue.code == NONE
        assert issue.ok

    @pytest.mark.asyncio
    async def test_recaptcha_footer_is_not_a_block(self, make_page):
        page = make_page(text="This site is protected by reCAPTCHA. Cloudflare CDN.")
        assert (await detect_access_issue(page)).code == NONE

    @pytest.mark.asyncio
    async def test_custom_detector_phrases(self, make_page):
        detector = AccessDetector(captcha_phrases=re.compile(r"press and hold", re.IGNORECASE))
        page = make_page(text="Press and hold the button")
        assert (await detect_access_issue(page, detector)).code == CAPTCHA
        # The default list does not know this wording.
        assert (await detect_access_issue(page)).code == NONE


class TestAssertLikelyLoggedIn:

    @pytest.mark.asyncio
    async def test_captcha_raises_captcha_error(self, make_page):
        page = make_page(text="Unusual traffic from your network")
        with pytest.raises(CaptchaError) as info:
            await assert_likely_logged_in(page, "ocado")
        assert str(info.value).startswith("[OCADO_CAPTCHA] ")
        assert info.value.retryable is False

    @pytest.mark.asyncio
    async def test_logged_out_raises_logged_out_error(self, make_page):
        page = make_page(url="https://www.ocado.com/signin")
        with pytest.raises(LoggedOutError) as info:
            await assert_likely_logged_in(page, "ocado")
        assert info.value.code == "OCADO_LOGGED_OUT"

    @pytest.mark.asyncio
    async def test_healthy_page_passes(self, make_page):
        await assert_likely_logged_in(make_page(text="Fresh groceries"), "ocado")


class TestLooksLoggedIn:

    @pytest.mark.asyncio
    async def test_sign_out_control(self, make_page):
        assert await AccessDetector().looks_logged_in(make_page(visible={SIGN_OUT}))

    @pytest.mark.asyncio
    async def test_sign_in_beats_cookies(self, make_page):
        page = make_page(visible={SIGN_IN}, cookies=12)
        assert not await AccessDetector().looks_logged_in(page)

    @pytest.mark.asyncio
    async def test_cookie_jar_fallback(self, make_page):
        detector = AccessDetector()
        assert await detector.looks_logged_in(make_page(cookies=5))
        assert not await detector.looks_logged_in(make_page(cookies=4))

    @pytest.mark.asyncio
    async def test_login_url(self, make_page):
        page = make_page(url="https://www.ocado.com/login", visible={SIGN_OUT})
        assert not await AccessDetector().looks_logged_in(page)
