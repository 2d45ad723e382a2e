"""
Store provider configuration.

Providers are retail storefronts with no public API that we drive through a
real browser session.  Only Ocado is integrated today; everything the
orchestrator needs to know about a provider (URLs, selector priority lists,
pacing) lives in ``PROVIDER_DEFAULTS`` so that a second provider is a config
entry plus a thin ``stores/`` subclass.

Selector lists are ordered: the first one that matches wins.  Storefront
markup drifts constantly, so each list carries several generations of
selectors side by side.
"""

from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Browser / Playwright defaults
# ---------------------------------------------------------------------------

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
]

VIEWPORT = {"width": 1280, "height": 900}

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

LOCALE = "en-GB"
TIMEZONE_ID = "Europe/London"

# 'domcontentloaded' for the goto itself; network idle is awaited separately
# with its own (swallowed) timeout.
WAIT_UNTIL = "domcontentloaded"

GOTO_TIMEOUT_MS = 45_000

# Default for every context/page action that does not pass its own timeout.
DEFAULT_TIMEOUT_MS = 20_000

# Network-idle waits.  A timeout here is not an error, the page is usable.
NETWORK_IDLE_TIMEOUT_MS = 15_000
CHECKOUT_IDLE_TIMEOUT_MS = 20_000

# Per-control probe timeouts.  A probe that times out means "control absent".
LINK_PROBE_TIMEOUT_MS = 1_000
CONTROL_PROBE_TIMEOUT_MS = 1_500
SEARCH_BOX_PROBE_TIMEOUT_MS = 2_500
ADD_BUTTON_PROBE_TIMEOUT_MS = 4_000
CLICK_TIMEOUT_MS = 5_000
SLOT_CLICK_TIMEOUT_MS = 8_000

# Pacing between repeated clicks (ms).  Small randomised gaps keep the
# session looking like one person using the site.
CLICK_JITTER_MS = (300, 800)
NAVIGATION_PAUSE_MS = (1_200, 2_200)
CHECKOUT_PAUSE_MS = (1_400, 2_400)

# Upper bound on generic continue/next clicks while stepping through checkout.
MAX_CHECKOUT_STEPS = 5

# Where debug HTML + screenshots are written on failure.
DEBUG_DIR = Path(os.getenv("DEBUG_DIR", "debug_artifacts"))

# File-backed session store location (used when Supabase is not configured).
SESSION_DIR = Path(os.getenv("SESSION_DIR", "data/sessions"))

# ---------------------------------------------------------------------------
# Provider-level configuration
# ---------------------------------------------------------------------------

PROVIDER_DEFAULTS: dict[str, dict] = {
    "ocado": {
        "label": "Ocado",
        "base_url": "https://www.ocado.com",
        "currency": "GBP",
        # Dedicated search URLs expose __INITIAL_STATE__ with the result list.
        "search_urls": [
            "{base}/search?entry={query}",
            "{base}/search?query={query}",
            "{base}/search?search={query}",
        ],
        "search_box_selectors": [
            'input[type="search"]:visible',
            'input[placeholder*="Search"]:visible',
            'input[name="search"]:visible',
            "#findText",
            'header input[type="text"]',
            ".search-input",
        ],
        "product_url": "{base}/products/{product_id}",
        "add_to_cart_selectors": [
            '[data-test*="add-to-trolley"] button',
            'button:has-text("Add")',
            'button:has-text("Add to trolley")',
            'button:has-text("Add to basket")',
            'button:has-text("Add to cart")',
        ],
        "cart_link_selectors": [
            'a[href*="trolley"]',
            'a[href*="basket"]',
            '[data-test="trolley"]',
            '[aria-label*="trolley"]',
            '[aria-label*="basket"]',
        ],
        "cart_urls": [
            "{base}/webshop/trolley",
            "{base}/trolley",
            "{base}/basket",
            "{base}/webshop/get/basket",
        ],
        "checkout_selectors": [
            'button:has-text("Book a slot")',
            'button:has-text("book slot")',
            'a:has-text("Book a slot")',
            'a:has-text("book slot")',
            'button:has-text("Checkout")',
            'a:has-text("Checkout")',
            'a[href*="slot"]',
            'button[class*="slot"]',
        ],
        "checkout_urls": [
            "{base}/checkout",
            "{base}/webshop/checkout",
            "{base}/webshop/get/checkout",
            "{base}/slots",
        ],
        "slot_candidate_selector": (
            'button, div[role="button"], [data-test*="slot"], [class*="slot"]'
        ),
        "slot_fallback_selectors": [
            '[data-test="delivery-slot"]',
            ".delivery-slot",
            ".slot-option",
            'button:has-text("Select")',
        ],
        "continue_selectors": [
            'button:has-text("Continue")',
            'button:has-text("Next")',
            'button:has-text("Proceed")',
            'button:has-text("Review")',
            'button:has-text("Confirm")',
        ],
        "place_order_selectors": [
            'button:has-text("Place order")',
            'button:has-text("Place Order")',
            'button:has-text("Pay")',
        ],
        # DOM fallback anchors.
        "product_image_selector": 'img[data-test="lazy-load-image"]',
        "product_link_fragment": "/products/",
    },
}


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean environment flag (``1/true/yes/on``)."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def is_provider_enabled(provider: str) -> bool:
    """Feature flag gating every automated call for *provider*."""
    return env_flag(f"ENABLE_STORE_{provider.upper()}", True)


def provider_headless_default(provider: str) -> bool:
    """Headless unless ``<PROVIDER>_HEADLESS`` says otherwise."""
    return env_flag(f"{provider.upper()}_HEADLESS", True)


def get_provider_config(provider: str) -> dict:
    try:
        return PROVIDER_DEFAULTS[provider]
    except KeyError:
        raise ValueError(f"Unknown store provider: {provider!r}") from None
