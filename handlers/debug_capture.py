"""
Best-effort failure snapshots.

``capture_debug_artifacts`` writes the full page HTML and a full-page
screenshot under ``DEBUG_DIR`` and returns a ``DebugCaptureResult``.  It
never raises: diagnostics must not mask the error that triggered them.
Callers log or ignore the result; nothing else in the call tree needs a
try/except around debug capture.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from playwright.async_api import Page

from config.stores import DEBUG_DIR

logger = logging.getLogger(__name__)

_RE_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]+")
LABEL_MAX_LEN = 80


@dataclass
class DebugCaptureResult:
    ok: bool
    html_path: Path | None = None
    screenshot_path: Path | None = None
    error: str | None = None


def sanitize_label(label: str) -> str:
    """File-safe label.

    >>> sanitize_label("ocado add/to cart: 123")
    'ocado_add_to_cart_123'
    """
    return _RE_UNSAFE.sub("_", label or "debug").strip("_")[:LABEL_MAX_LEN] or "debug"


async def capture_debug_artifacts(
    page: Page | None,
    label: str,
    *,
    provider: str,
    directory: Path | None = None,
) -> DebugCaptureResult:
    if page is None:
        return DebugCaptureResult(ok=False, error="no page")

    directory = directory or DEBUG_DIR
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    prefix = f"{provider}_{sanitize_label(label)}_{stamp}"
    html_path = directory / f"{prefix}.html"
    png_path = directory / f"{prefix}.png"

    try:
        directory.mkdir(parents=True, exist_ok=True)
        logger.info("[%s] DEBUG url=%s", provider, page.url)

        html = await page.content()
        html_path.write_text(html, encoding="utf-8")
        await page.screenshot(path=str(png_path), full_page=True)

        logger.info("[%s] Debug artifacts saved: %s", provider, directory / prefix)
        return DebugCaptureResult(ok=True, html_path=html_path, screenshot_path=png_path)
    except Exception as exc:
        logger.warning("[%s] Failed to save debug info: %s", provider, exc)
        return DebugCaptureResult(
            ok=False,
            html_path=html_path if html_path.exists() else None,
            error=str(exc),
        )
