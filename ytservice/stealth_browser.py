"""
Playwright stealth navigation that harvests YouTube session cookies.

Used as the last retrieval strategy: a headless Chromium visits the homepage,
idles and scrolls like a person, opens the target video, dismisses consent
dialogs and interacts a bit more. The context cookies are then written as a
Netscape cookies.txt that yt-dlp can read with --cookies.

The Chromium instance is launched lazily and cached on the StealthBrowser
object; every call gets a fresh browser context which is always closed.

Environment variables:
  BROWSER_TIMEOUT_SECONDS  — budget for one harvest (default: 60)
  CHROME_BIN               — optional Chromium/Chrome executable path
"""

import asyncio
import logging
import os
import random
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PLAYWRIGHT_AVAILABLE = False
try:
    from playwright.async_api import async_playwright
    PLAYWRIGHT_AVAILABLE = True
except ImportError:
    logger.warning(
        "⚠️ playwright not installed — run: pip install playwright && playwright install chromium"
    )

BROWSER_TIMEOUT_SECONDS = float(os.getenv("BROWSER_TIMEOUT_SECONDS", "60"))
CHROME_BIN = os.getenv("CHROME_BIN")

YOUTUBE_HOME = "https://www.youtube.com/"

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

VIEWPORTS = [
    {"width": 1280, "height": 720},
    {"width": 1366, "height": 768},
    {"width": 1440, "height": 900},
    {"width": 1920, "height": 1080},
]

CONSENT_SELECTORS = [
    "button[aria-label*='Accept']",
    "button[aria-label*='Agree']",
    "#introAgreeButton",
    "form[action*='consent'] button",
    "tp-yt-paper-button#agree-button",
    "ytd-consent-bump-v2-renderer button",
]

HOVER_SELECTORS = [
    "ytd-rich-item-renderer",
    "#logo",
    "#movie_player",
    "ytd-watch-metadata",
]

# Hides the most common automation fingerprint
WEBDRIVER_PATCH = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"

Sleep = Callable[[float], Awaitable[Any]]


def write_netscape_cookie_file(cookies: List[Dict[str, Any]], path: Path) -> int:
    """Write Playwright cookies in the Netscape format yt-dlp reads."""
    lines = ["# Netscape HTTP Cookie File", ""]
    for c in cookies:
        domain = c.get("domain", "")
        if not domain:
            continue
        expires = c.get("expires", -1)
        expiry = int(expires) if expires and expires > 0 else 0
        lines.append("\t".join([
            domain,
            "TRUE" if domain.startswith(".") else "FALSE",
            c.get("path", "/") or "/",
            "TRUE" if c.get("secure") else "FALSE",
            str(expiry),
            c.get("name", ""),
            c.get("value", ""),
        ]))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return len(lines) - 2


class StealthBrowser:
    """Cached headless Chromium used to harvest human-looking session cookies."""

    def __init__(
        self,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
        timeout_seconds: float = BROWSER_TIMEOUT_SECONDS,
        proxy: Optional[str] = None,
    ):
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.timeout_seconds = timeout_seconds
        self.proxy = proxy
        self._playwright: Optional[Any] = None
        self._browser: Optional[Any] = None
        self._lock = asyncio.Lock()

    @property
    def available(self) -> bool:
        return PLAYWRIGHT_AVAILABLE

    async def _ensure_browser(self) -> Any:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._playwright is None:
                self._playwright = await async_playwright().start()

            launch_kwargs: Dict[str, Any] = {"headless": True, "args": LAUNCH_ARGS}
            if CHROME_BIN:
                launch_kwargs["executable_path"] = CHROME_BIN
            if self.proxy:
                launch_kwargs["proxy"] = {"server": self.proxy}

            logger.info("[stealth] Launching headless Chromium")
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
            return self._browser

    async def _pause(self, low: float, high: float) -> None:
        await self._sleep(self._rng.uniform(low, high))

    async def _simulate_human(self, page: Any) -> None:
        """Scroll, wander the mouse and hover something on the page."""
        viewport = page.viewport_size or {"width": 1280, "height": 720}

        for _ in range(self._rng.randint(2, 4)):
            await page.mouse.wheel(0, self._rng.randint(200, 700))
            await self._pause(0.4, 1.2)

        for _ in range(self._rng.randint(2, 5)):
            await page.mouse.move(
                self._rng.randint(0, viewport["width"] - 1),
                self._rng.randint(0, viewport["height"] - 1),
                steps=self._rng.randint(5, 20),
            )
            await self._pause(0.2, 0.8)

        for selector in HOVER_SELECTORS:
            el = await page.query_selector(selector)
            if el:
                try:
                    await el.hover(timeout=3_000)
                except Exception as e:
                    logger.debug(f"[stealth] hover on {selector} failed: {e}")
                await self._pause(0.5, 1.5)
                break

        if self._rng.random() < 0.5:
            await page.mouse.wheel(0, -self._rng.randint(100, 400))

    async def _dismiss_consent(self, page: Any) -> None:
        for sel in CONSENT_SELECTORS:
            el = await page.query_selector(sel)
            if el:
                try:
                    await el.click(timeout=5_000)
                    logger.info(f"[stealth] Dismissed consent via {sel}")
                    await self._pause(1.0, 2.0)
                except Exception as e:
                    logger.debug(f"[stealth] consent click on {sel} failed: {e}")
                return

    async def _navigate_and_collect(self, video_url: str, user_agent: Optional[str]) -> List[Dict[str, Any]]:
        browser = await self._ensure_browser()
        context_kwargs: Dict[str, Any] = {
            "viewport": self._rng.choice(VIEWPORTS),
            "locale": "en-US",
        }
        if user_agent:
            context_kwargs["user_agent"] = user_agent

        ctx = await browser.new_context(**context_kwargs)
        try:
            ctx.set_default_timeout(self.timeout_seconds * 1000)
            await ctx.add_init_script(WEBDRIVER_PATCH)
            page = await ctx.new_page()

            logger.info("[stealth] Opening YouTube homepage")
            await page.goto(YOUTUBE_HOME, wait_until="domcontentloaded")
            await self._pause(2.0, 5.0)
            await self._dismiss_consent(page)
            await self._simulate_human(page)

            logger.info("[stealth] Navigating to target video")
            await page.goto(video_url, wait_until="domcontentloaded")
            await self._pause(3.0, 6.0)
            await self._dismiss_consent(page)
            await self._simulate_human(page)
            await self._pause(1.0, 3.0)

            return await ctx.cookies()
        finally:
            await ctx.close()

    async def harvest_cookies(self, video_url: str, cookie_path: Path, user_agent: Optional[str] = None) -> int:
        """Run the navigation sequence and write the session cookies; returns the cookie count."""
        if not PLAYWRIGHT_AVAILABLE:
            raise RuntimeError("playwright not installed")

        cookies = await asyncio.wait_for(
            self._navigate_and_collect(video_url, user_agent),
            timeout=self.timeout_seconds,
        )
        count = write_netscape_cookie_file(cookies, cookie_path)
        logger.info(f"[stealth] 🍪 Harvested {count} cookies")
        return count

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"[stealth] Browser close failed: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("[stealth] Playwright stopped")
