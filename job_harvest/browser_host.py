"""
Browser Automation Host interface and its Playwright adapter.

The extraction engine only talks to BrowserHost; PlaywrightBrowserHost wires
a Playwright async Page into that interface and feeds network responses to
the ResponseInterceptor.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import async_playwright
from playwright_stealth.stealth import Stealth

from .cancel import CancelToken
from .errors import SessionUnavailable

logger = logging.getLogger(__name__)

HOST_EVENTS = ("url_changed", "loading_state_changed", "title_changed", "crashed")

# Browser launch arguments for stealth
STEALTH_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
]

STEALTH_INIT_SCRIPT: str = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['zh-CN', 'zh', 'en'] });
"""


@dataclass
class ScriptResult:
    """Outcome of evaluating a script in the page."""

    success: bool
    value: Any = None
    message: str = ""

    def json(self) -> Any:
        """Decode a script that returned JSON.stringify(...); None on failure."""
        if not self.success or self.value is None:
            return None
        if not isinstance(self.value, str):
            return self.value
        try:
            return json.loads(self.value)
        except json.JSONDecodeError:
            logger.debug("Script returned non-JSON value: %.80s", self.value)
            return None


class BrowserHost:
    """
    Interface the engine consumes.

    Implementations provide navigate/evaluate_script/capture_screenshot and
    emit url_changed, loading_state_changed, title_changed and crashed.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., Any]]] = {name: [] for name in HOST_EVENTS}
        self.crashed = False

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown host event: {event}")
        self._handlers[event].append(handler)

    def _emit(self, event: str, *args: Any) -> None:
        if event == "crashed":
            self.crashed = True
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception as exc:
                logger.warning("Host event handler for %s failed: %s", event, exc)

    @property
    def current_url(self) -> str:
        raise NotImplementedError

    async def navigate(self, url: str) -> None:
        raise NotImplementedError

    async def evaluate_script(self, script: str) -> ScriptResult:
        raise NotImplementedError

    async def capture_screenshot(self) -> bytes:
        raise NotImplementedError

    def ensure_alive(self) -> None:
        if self.crashed:
            raise SessionUnavailable("browser host has crashed")


async def evaluate_within(host: BrowserHost, script: str, timeout: float,
                          cancel: CancelToken) -> ScriptResult:
    """
    Evaluate `script` on the host, giving up after `timeout` seconds.

    A script that never returns becomes a failed ScriptResult; cancellation
    raises ExtractionCancelled without waiting for the host.
    """
    cancel.raise_if_cancelled()
    try:
        return await cancel.guard(asyncio.wait_for(host.evaluate_script(script), timeout=max(timeout, 0.001)))
    except asyncio.TimeoutError:
        logger.debug("Script timed out after %.2fs: %.60s", timeout, script.strip())
        return ScriptResult(success=False, message=f"script timed out after {timeout:.2f}s")


class PlaywrightBrowserHost(BrowserHost):
    """BrowserHost backed by a Playwright async Page."""

    def __init__(self, page: Any, session_id: str = "", interceptor: Any = None,
                 navigation_timeout: int = 45000) -> None:
        super().__init__()
        self.page = page
        self.session_id = session_id
        self.interceptor = interceptor
        self.navigation_timeout = navigation_timeout

        page.on("framenavigated", self._on_frame_navigated)
        page.on("domcontentloaded", lambda _page: self._emit("loading_state_changed", "interactive"))
        page.on("load", self._on_load)
        page.on("crash", lambda _page: self._emit("crashed"))
        page.on("close", lambda _page: self._emit("crashed"))
        if interceptor is not None:
            page.on("response", self._on_response)

    @property
    def current_url(self) -> str:
        return self.page.url or ""

    def _on_frame_navigated(self, frame: Any) -> None:
        if frame == self.page.main_frame:
            self._emit("url_changed", frame.url)

    async def _on_load(self, _page: Any) -> None:
        self._emit("loading_state_changed", "complete")
        try:
            self._emit("title_changed", await self.page.title())
        except Exception:
            logger.debug("Reading title after load failed", exc_info=True)

    async def _on_response(self, response: Any) -> None:
        if not self.interceptor.matches(response.url):
            return
        try:
            body = await response.body()
        except Exception as exc:
            logger.debug("Could not read response body for %s: %s", response.url, exc)
            return
        # Playwright hands back bodies already decoded
        self.interceptor.on_response_received(self.session_id, response.url, body, "identity")

    async def navigate(self, url: str) -> None:
        self.ensure_alive()
        logger.info("Navigating to %s", url)
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout)
        except Exception as exc:
            if self.page.is_closed():
                raise SessionUnavailable(f"page closed during navigation: {exc}") from exc
            logger.warning("Navigation to %s did not complete cleanly: %s", url, exc)

    async def evaluate_script(self, script: str) -> ScriptResult:
        self.ensure_alive()
        try:
            value = await self.page.evaluate(script)
            return ScriptResult(success=True, value=value)
        except Exception as exc:
            if self.page.is_closed():
                raise SessionUnavailable(f"page closed during script evaluation: {exc}") from exc
            return ScriptResult(success=False, message=str(exc))

    async def capture_screenshot(self) -> bytes:
        self.ensure_alive()
        return await self.page.screenshot(type="png", full_page=False)


class LaunchedHost:
    """Owns the Playwright objects behind one account's browser host."""

    def __init__(self, playwright: Any, context: Any, host: PlaywrightBrowserHost) -> None:
        self.playwright = playwright
        self.context = context
        self.host = host

    async def close(self) -> None:
        try:
            await self.context.close()
        finally:
            await self.playwright.stop()


async def launch_host(config, account_id: str, interceptor: Any = None) -> LaunchedHost:
    """Start a persistent Chromium profile for an account and wrap its page."""
    logger.info("Starting browser for account %s...", account_id)
    playwright = await async_playwright().start()
    channel = config.get_browser_channel() or None
    executable_path = config.get_browser_executable_path() or None
    if executable_path and not Path(executable_path).exists():
        logger.warning("Browser executable not found: %s", executable_path)
        executable_path = None

    user_data_dir = config.get_profile_dir(account_id)
    user_data_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Using persistent profile: {user_data_dir}")
    try:
        context = await playwright.chromium.launch_persistent_context(
            user_data_dir=str(user_data_dir),
            headless=config.is_headless(),
            viewport={"width": 1280, "height": 800},
            args=list(STEALTH_ARGS),
            channel=channel,
            executable_path=executable_path,
            timeout=config.get_launch_timeout(),
        )
    except Exception:
        await playwright.stop()
        raise

    page = context.pages[0] if context.pages else await context.new_page()
    page.set_default_navigation_timeout(config.get_navigation_timeout())

    if config.use_stealth():
        try:
            await page.add_init_script(STEALTH_INIT_SCRIPT)
            await Stealth().apply_stealth_async(page)
            logger.info("Playwright stealth enabled")
        except Exception as e:
            logger.warning("Failed to apply playwright-stealth: %s", e)

    if interceptor is not None:
        interceptor.start_listening(account_id)
    host = PlaywrightBrowserHost(
        page,
        session_id=account_id,
        interceptor=interceptor,
        navigation_timeout=config.get_navigation_timeout(),
    )
    return LaunchedHost(playwright, context, host)
