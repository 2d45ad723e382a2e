"""
Store automation CLI.

Drives a provider storefront through a stored, human-created browser
session and prints structured JSON results.

Usage:
    python main.py auth                          # log in by hand, save the session
    python main.py session status
    python main.py session set state.json
    python main.py session delete
    python main.py search "whole milk" --limit 5
    python main.py add 100234 --qty 2
    python main.py cart
    python main.py slots --limit 10
    python main.py select-slot --index 0
    python main.py checkout                      # dry run
    python main.py checkout --live --confirm     # really places the order
    python main.py smoke                         # search, cart, slots, dry-run checkout

Environment variables:
    ENABLE_STORE_OCADO=false     # turn the integration off (every call fails fast)
    OCADO_HEADLESS=false         # show the browser
    DEBUG_DIR=debug_artifacts    # where failure snapshots go
    SESSION_DIR=data/sessions    # file session store (when Supabase is not set)
    SUPABASE_URL / SUPABASE_SERVICE_KEY   # use the store_sessions table instead
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Awaitable, Callable

from dotenv import load_dotenv

# config/ reads the environment at import time.
load_dotenv()

from playwright.async_api import async_playwright

from config.stores import (
    BROWSER_ARGS, GOTO_TIMEOUT_MS, LOCALE, TIMEZONE_ID, USER_AGENT, VIEWPORT, WAIT_UNTIL,
)
from errors import AccessDeniedError, LoggedOutError, classify_error, user_message
from handlers.access import CAPTCHA, DEFAULT_DETECTOR
from handlers.debug_capture import capture_debug_artifacts
from stores import STORE_MAP, BaseStore

logger = logging.getLogger("orchestrator")

AUTH_POLL_SEC = 1.5
AUTH_CAPTCHA_NOTE_SEC = 15
DEFAULT_AUTH_TIMEOUT_SEC = 600
DEFAULT_PROFILE_DIR = Path("/tmp") / "store_playwright_profile"

SMOKE_QUERY = "milk"


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def error_payload(exc: BaseException) -> dict[str, Any]:
    code, message = classify_error(exc)
    return {"ok": False, "error": {"code": code, "message": message, "hint": user_message(code)}}


def _headless(args: argparse.Namespace) -> bool | None:
    return False if args.headed else None


# ---------------------------------------------------------------------------
# Session credential commands
# ---------------------------------------------------------------------------


def cmd_session(store: BaseStore, args: argparse.Namespace) -> dict[str, Any]:
    provider = store.provider
    if args.action == "set":
        if not args.file:
            raise ValueError("session set needs a storage-state JSON file")
        state = json.loads(Path(args.file).read_text(encoding="utf-8"))
        if not isinstance(state, dict):
            raise ValueError("storage state must be a JSON object")
        store.session_store.set_storage_state(provider, state)
    elif args.action == "delete":
        store.session_store.delete_storage_state(provider)
    return store.session_store.status(provider)


async def cmd_auth(store: BaseStore, args: argparse.Namespace) -> dict[str, Any]:
    """Headed login: a human logs in, we poll until it sticks, then save."""
    provider = store.provider
    detector = store.detector or DEFAULT_DETECTOR
    profile_dir = Path(args.profile_dir or DEFAULT_PROFILE_DIR)

    async with store.lock.hold(provider):
        pw = await async_playwright().start()
        context = None
        try:
            context = await pw.chromium.launch_persistent_context(
                str(profile_dir),
                headless=False,
                args=BROWSER_ARGS,
                viewport=VIEWPORT,
                user_agent=USER_AGENT,
                locale=LOCALE,
                timezone_id=TIMEZONE_ID,
            )
            page = context.pages[0] if context.pages else await context.new_page()
            await page.goto(store.base_url, wait_until=WAIT_UNTIL, timeout=GOTO_TIMEOUT_MS)

            logger.info("[%s] A browser window opened on %s.", provider, store.base_url)
            logger.info("[%s] Log in normally (including any 2FA or captcha).", provider)
            logger.info("[%s] Waiting up to %ds for the login to complete...",
                        provider, args.timeout_seconds)

            deadline = time.monotonic() + args.timeout_seconds
            last_note = 0.0
            while time.monotonic() < deadline:
                if await detector.looks_logged_in(page):
                    break
                issue = await detector.detect(page)
                if issue.code == CAPTCHA and time.monotonic() - last_note > AUTH_CAPTCHA_NOTE_SEC:
                    last_note = time.monotonic()
                    logger.info("[%s] Captcha showing in the browser. Solve it there; still waiting.",
                                provider)
                await asyncio.sleep(AUTH_POLL_SEC)
            else:
                await capture_debug_artifacts(page, "auth_timeout", provider=provider,
                                              directory=store.debug_dir)
                raise LoggedOutError(
                    f"Timed out after {args.timeout_seconds}s waiting for login.",
                    provider=provider,
                )

            state = await context.storage_state()
            store.session_store.set_storage_state(provider, state)
            if args.out:
                Path(args.out).write_text(json.dumps(state, indent=2), encoding="utf-8")
            return {"ok": True, "provider": provider, "out": args.out}
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as exc:
                    logger.debug("[%s] Context close failed: %s", provider, exc)
            await pw.stop()


# ---------------------------------------------------------------------------
# Store operations
# ---------------------------------------------------------------------------


async def cmd_search(store, args):
    async with store.session(headless=_headless(args)) as session:
        return await store.search_products(session, args.query, args.limit)


async def cmd_add(store, args):
    async with store.session(headless=_headless(args)) as session:
        return await store.add_to_cart(session, args.product_id, args.qty)


async def cmd_cart(store, args):
    async with store.session(headless=_headless(args)) as session:
        return await store.view_cart(session)


async def cmd_slots(store, args):
    async with store.session(headless=_headless(args)) as session:
        return await store.get_delivery_slots(session, args.limit)


async def cmd_select_slot(store, args):
    async with store.session(headless=_headless(args)) as session:
        return await store.select_delivery_slot(session, args.index)


async def cmd_checkout(store, args):
    async with store.session(headless=_headless(args)) as session:
        return await store.place_order(session, dry_run=not args.live, confirm=args.confirm)


async def run_smoke(store: BaseStore, session) -> dict[str, Any]:
    """Exercise every read path plus a dry-run checkout in one session.

    Each check is recorded independently; an access denial stops the run
    because every later check would hit the same wall.
    """
    checks: list[dict[str, Any]] = []

    async def check(name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        try:
            detail = await fn()
        except Exception as exc:
            code, message = classify_error(exc)
            checks.append({"name": name, "ok": False, "error": {"code": code, "message": message}})
            if isinstance(exc, AccessDeniedError):
                raise
            return None
        checks.append({"name": name, "ok": True, "detail": detail})
        return detail

    try:
        await check("search", lambda: store.search_products(session, SMOKE_QUERY, 3))
        await check("cart", lambda: store.view_cart(session))
        slots = await check("slots", lambda: store.get_delivery_slots(session, 5))
        if slots:
            await check("select_slot",
                        lambda: store.select_delivery_slot(session, 0, navigate=False))
        await check("place_order_dry_run", lambda: store.place_order(session, dry_run=True))
    except AccessDeniedError:
        logger.warning("[%s] Smoke run stopped: access denied", store.provider)

    return {"ok": all(c["ok"] for c in checks), "provider": store.provider, "checks": checks}


async def cmd_smoke(store, args):
    async with store.session(headless=_headless(args)) as session:
        return await run_smoke(store, session)


COMMANDS = {
    "auth": cmd_auth,
    "search": cmd_search,
    "add": cmd_add,
    "cart": cmd_cart,
    "slots": cmd_slots,
    "select-slot": cmd_select_slot,
    "checkout": cmd_checkout,
    "smoke": cmd_smoke,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Automate a grocery storefront session.")
    parser.add_argument("--provider", default="ocado", choices=sorted(STORE_MAP))
    parser.add_argument("--headed", action="store_true", help="show the browser window")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("session", help="manage the stored session credential")
    p.add_argument("action", choices=["status", "set", "delete"])
    p.add_argument("file", nargs="?", help="storage-state JSON (for 'set')")

    p = sub.add_parser("auth", help="log in by hand and save the session")
    p.add_argument("--out", help="also write the storage state to this file")
    p.add_argument("--timeout-seconds", type=int, default=DEFAULT_AUTH_TIMEOUT_SEC)
    p.add_argument("--profile-dir", help="persistent browser profile directory")

    p = sub.add_parser("search", help="search products")
    p.add_argument("query")
    p.add_argument("--limit", type=int, default=5)

    p = sub.add_parser("add", help="add a product to the trolley")
    p.add_argument("product_id")
    p.add_argument("--qty", type=int, default=1)

    sub.add_parser("cart", help="show the trolley")

    p = sub.add_parser("slots", help="list delivery slots")
    p.add_argument("--limit", type=int, default=10)

    p = sub.add_parser("select-slot", help="select a delivery slot")
    p.add_argument("--index", type=int, default=0)

    p = sub.add_parser("checkout", help="step through checkout (dry run by default)")
    p.add_argument("--live", action="store_true", help="actually place the order")
    p.add_argument("--confirm", action="store_true", help="required together with --live")

    sub.add_parser("smoke", help="search, cart, slots and a dry-run checkout")
    return parser


async def run(args: argparse.Namespace) -> int:
    store = STORE_MAP[args.provider]()
    try:
        if args.command == "session":
            result = cmd_session(store, args)
        else:
            result = await COMMANDS[args.command](store, args)
    except Exception as exc:
        logger.error("[%s] %s failed: %s", args.provider, args.command, exc)
        _emit(error_payload(exc))
        return 1
    _emit(result)
    if isinstance(result, dict) and result.get("ok") is False:
        return 1
    return 0


def cli(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(cli())
