"""Tests for errors.py: bracketed codes and classification."""

from __future__ import annotations

import pytest

from errors import (
    GENERIC_CODE,
    AccessDeniedError,
    CaptchaError,
    ConfirmationRequiredError,
    ControlNotFoundError,
    FeatureDisabledError,
    InvalidRequestError,
    LoggedOutError,
    NoSlotsError,
    SessionNotConfiguredError,
    StoreAutomationError,
    classify_error,
    user_message,
)


class TestTaxonomy:

    @pytest.mark.parametrize("cls,code", [
        (FeatureDisabledError, "OCADO_DISABLED"),
        (SessionNotConfiguredError, "OCADO_SESSION_MISSING"),
        (CaptchaError, "OCADO_CAPTCHA"),
        (LoggedOutError, "OCADO_LOGGED_OUT"),
        (ControlNotFoundError, "OCADO_CONTROL_NOT_FOUND"),
        (NoSlotsError, "OCADO_NO_SLOTS"),
        (ConfirmationRequiredError, "OCADO_CONFIRMATION_REQUIRED"),
        (InvalidRequestError, "OCADO_INVALID_REQUEST"),
    ])
    def test_codes(self, cls, code):
        exc = cls("something happened", provider="ocado")
        assert exc.code == code
        assert str(exc) == f"[{code}] something happened"
        assert exc.message == "something happened"
        assert exc.retryable is False
        assert isinstance(exc, StoreAutomationError)
        assert isinstance(exc, RuntimeError)

    def test_access_denial_family(self):
        assert issubclass(CaptchaError, AccessDeniedError)
        assert issubclass(LoggedOutError, AccessDeniedError)
        assert not issubclass(ControlNotFoundError, AccessDeniedError)

    def test_default_provider(self):
        assert NoSlotsError("x").code == "STORE_NO_SLOTS"


class TestClassifyError:

    def test_engine_error(self):
        assert classify_error(CaptchaError("blocked", provider="ocado")) == ("OCADO_CAPTCHA", "blocked")

    def test_bracketed_string(self):
        assert classify_error("[OCADO_NO_SLOTS] No slots.") == ("OCADO_NO_SLOTS", "No slots.")

    def test_unrecognised_passes_through(self):
        assert classify_error(ValueError("bad input")) == (GENERIC_CODE, "bad input")

    def test_lowercase_brackets_are_not_codes(self):
        assert classify_error("[note] hi") == (GENERIC_CODE, "[note] hi")

    def test_empty(self):
        assert classify_error(Exception()) == (GENERIC_CODE, "unknown error")


class TestUserMessage:

    def test_captcha_logged_out_and_generic_differ(self):
        messages = {
            user_message("OCADO_CAPTCHA"),
            user_message("OCADO_LOGGED_OUT"),
            user_message(GENERIC_CODE),
        }
        assert len(messages) == 3

    def test_every_code_has_specific_text(self):
        generic = user_message(GENERIC_CODE)
        for suffix in ("DISABLED", "SESSION_MISSING", "NO_SLOTS",
                       "CONFIRMATION_REQUIRED", "CONTROL_NOT_FOUND", "INVALID_REQUEST"):
            assert user_message(f"OCADO_{suffix}") != generic
