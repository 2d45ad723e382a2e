"""
Error taxonomy for store automation.

Every error raised by the engine renders as ``[<PROVIDER>_<SUFFIX>] message``
so callers (CLI, bots, web handlers) can pattern-match on the bracketed code
without importing these classes.  ``classify_error`` does that parsing;
anything without a bracketed prefix is reported under the generic ``ERROR``
code.

None of these errors are retryable.  A captcha needs a human in a headed
browser, a logged-out session needs a fresh credential, and a disabled
provider needs a config change.
"""

from __future__ import annotations

import re

GENERIC_CODE = "ERROR"

_RE_BRACKETED = re.compile(r"^\[([A-Z0-9_]+)\]\s*(.*)$", re.DOTALL)


class StoreAutomationError(RuntimeError):
    """Base class for all engine failures."""

    suffix = "ERROR"
    retryable = False

    def __init__(self, message: str, *, provider: str = "store") -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"[{self.code}] {message}")

    @property
    def code(self) -> str:
        return f"{self.provider.upper()}_{self.suffix}"


# -- Preconditions ---------------------------------------------------------

class FeatureDisabledError(StoreAutomationError):
    suffix = "DISABLED"


class SessionNotConfiguredError(StoreAutomationError):
    suffix = "SESSION_MISSING"


# -- Access denial ---------------------------------------------------------

class AccessDeniedError(StoreAutomationError):
    """The site refused service; extracted data must not be trusted."""


class CaptchaError(AccessDeniedError):
    suffix = "CAPTCHA"


class LoggedOutError(AccessDeniedError):
    suffix = "LOGGED_OUT"


# -- Exhausted fallbacks ---------------------------------------------------

class ControlNotFoundError(StoreAutomationError):
    suffix = "CONTROL_NOT_FOUND"


class NoSlotsError(StoreAutomationError):
    suffix = "NO_SLOTS"


# -- Safety rails ----------------------------------------------------------

class ConfirmationRequiredError(StoreAutomationError):
    suffix = "CONFIRMATION_REQUIRED"


class InvalidRequestError(StoreAutomationError):
    """Caller input rejected before any navigation."""

    suffix = "INVALID_REQUEST"


def classify_error(exc: BaseException | str) -> tuple[str, str]:
    """Split an error into ``(code, message)``.

    >>> classify_error("[OCADO_CAPTCHA] blocked")
    ('OCADO_CAPTCHA', 'blocked')
    >>> classify_error("boom")
    ('ERROR', 'boom')
    """
    text = str(exc) if exc is not None else ""
    text = text.strip() or "unknown error"
    m = _RE_BRACKETED.match(text)
    if m:
        return m.group(1), m.group(2) or text
    return GENERIC_CODE, text


def user_message(code: str) -> str:
    """Human-facing remediation text for an error code.

    Captcha and logged-out need different fixes, so they must never share a
    message.
    """
    if code.endswith("_CAPTCHA"):
        return (
            "The store is showing a human-verification challenge. "
            "Run the auth command in a visible browser, complete the check, then retry."
        )
    if code.endswith("_LOGGED_OUT"):
        return "The saved store session has expired. Log in again to refresh it."
    if code.endswith("_SESSION_MISSING"):
        return "No store session is configured. Run the auth command to connect an account."
    if code.endswith("_DISABLED"):
        return "This store integration is turned off in configuration."
    if code.endswith("_NO_SLOTS"):
        return "The store reports no delivery slots are available right now."
    if code.endswith("_CONFIRMATION_REQUIRED"):
        return "Placing a real order needs explicit confirmation."
    if code.endswith("_INVALID_REQUEST"):
        return "The request was missing a valid product id or other required input."
    if code.endswith("_CONTROL_NOT_FOUND"):
        return "The store page did not show the expected controls; the site layout may have changed."
    return "Something went wrong talking to the store. Try again later."
