"""
Metadata retrieval with ordered fallback strategies.

Strategy order (tried sequentially until one succeeds):
  1. browser cookies (chrome)   — reuse the logged-in Chrome profile via --cookies-from-browser
  2. browser cookies (firefox)  — same with the Firefox profile
  3. randomized client          — random user agent, rotated player client, request throttling
  4. saved cookie file          — scratch cookies.txt (seeded from YTDLP_COOKIES_B64);
                                  skipped at once, without backoff, when the file is missing
  5. stealth browser            — Playwright walks YouTube like a person, harvests fresh
                                  session cookies into a one-off cookie file (always deleted)

Between two attempted strategies the chain waits a random 2–5 s. If all fail,
the last error is raised, flagged as blocking when it matches bot-detection
signatures.

Environment variables:
  YTDLP_PROXY              — HTTP/SOCKS proxy passed to yt-dlp and the browser
  STEALTH_BROWSER_ENABLED  — "false" removes strategy 5 (default: true)
"""

import asyncio
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional

from .errors import (
    InvalidInput,
    RetrievalFailed,
    StrategySkipped,
    is_blocking_error,
    is_validation_error,
)
from .stealth_browser import StealthBrowser
from .storage import StorageManager
from .ytdlp import RetrievalOptions, YtDlpExecutor, build_info_command

logger = logging.getLogger(__name__)

YTDLP_PROXY = os.getenv("YTDLP_PROXY") or None
STEALTH_BROWSER_ENABLED = os.getenv("STEALTH_BROWSER_ENABLED", "true").lower() not in ("0", "false", "no")

BACKOFF_MIN_SECONDS = 2.0
BACKOFF_MAX_SECONDS = 5.0

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4 Safari/605.1.15",
]

# yt-dlp YouTube player clients, rotated by the randomized-client strategy
PLAYER_CLIENTS = ["web", "ios", "android", "mweb", "tv_embedded", "web_creator"]

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class FetchOutcome:
    """Raw `yt-dlp -j` output plus options a follow-up download may reuse."""

    stdout: str
    strategy: str
    download_options: RetrievalOptions = field(default_factory=RetrievalOptions)


class Strategy(NamedTuple):
    name: str
    kind: str
    options: Dict[str, Any]


class RetrievalSession:
    """
    Resources shared by strategies for the lifetime of the service: executor,
    scratch storage, the cached stealth browser, the injected delay and the
    rotating client index. Owned by the download orchestrator.
    """

    def __init__(
        self,
        executor: YtDlpExecutor,
        storage: StorageManager,
        browser: Optional[StealthBrowser] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
        proxy: Optional[str] = YTDLP_PROXY,
    ):
        self.executor = executor
        self.storage = storage
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.proxy = proxy
        self.browser = browser if browser is not None else StealthBrowser(sleep=sleep, rng=self.rng, proxy=proxy)
        self._client_index = 0

    def random_user_agent(self) -> str:
        return self.rng.choice(USER_AGENTS)

    def next_player_client(self) -> str:
        client = PLAYER_CLIENTS[self._client_index % len(PLAYER_CLIENTS)]
        self._client_index = (self._client_index + 1) % len(PLAYER_CLIENTS)
        return client

    async def run_info(self, url: str, options: RetrievalOptions) -> str:
        command = build_info_command(url, options)
        return await self.executor.execute(command, str(self.storage.scratch_dir))

    async def close(self) -> None:
        await self.browser.close()


def _saved_cookie_file_missing(session: RetrievalSession) -> Optional[str]:
    if not session.storage.cookie_file_path.is_file():
        return "no saved cookie file"
    return None


def _stealth_browser_unavailable(session: RetrievalSession) -> Optional[str]:
    if not session.browser.available:
        return "playwright not installed"
    return None


# =========================================================================
# STRATEGY RUNNERS — (url, session, **options) -> FetchOutcome
# =========================================================================


async def fetch_with_browser_cookies(url: str, session: RetrievalSession, browser: str) -> FetchOutcome:
    options = RetrievalOptions(cookies_from_browser=browser, proxy=session.proxy)
    stdout = await session.run_info(url, options)
    return FetchOutcome(stdout=stdout, strategy=f"browser cookies ({browser})", download_options=options)


async def fetch_with_randomized_client(url: str, session: RetrievalSession) -> FetchOutcome:
    options = RetrievalOptions(
        user_agent=session.random_user_agent(),
        player_client=session.next_player_client(),
        sleep_requests=round(session.rng.uniform(1.0, 2.5), 1),
        extractor_retries=3,
        proxy=session.proxy,
    )
    stdout = await session.run_info(url, options)
    return FetchOutcome(stdout=stdout, strategy="randomized client", download_options=options)


async def fetch_with_saved_cookie_file(url: str, session: RetrievalSession) -> FetchOutcome:
    cookie_path = session.storage.cookie_file_path
    reason = _saved_cookie_file_missing(session)
    if reason:
        raise StrategySkipped(reason)

    options = RetrievalOptions(
        cookie_file=str(cookie_path),
        user_agent=session.random_user_agent(),
        proxy=session.proxy,
    )
    stdout = await session.run_info(url, options)
    return FetchOutcome(stdout=stdout, strategy="saved cookie file", download_options=options)


async def fetch_with_stealth_browser(url: str, session: RetrievalSession) -> FetchOutcome:
    reason = _stealth_browser_unavailable(session)
    if reason:
        raise StrategySkipped(reason)

    user_agent = session.random_user_agent()
    cookie_path = session.storage.new_harvest_cookie_path()
    try:
        try:
            await session.browser.harvest_cookies(url, cookie_path, user_agent=user_agent)
        except asyncio.TimeoutError:
            raise RetrievalFailed("stealth browser timed out while harvesting cookies") from None
        except RetrievalFailed:
            raise
        except Exception as e:
            raise RetrievalFailed(f"stealth browser error: {e}") from e

        options = RetrievalOptions(cookie_file=str(cookie_path), user_agent=user_agent, proxy=session.proxy)
        stdout = await session.run_info(url, options)
    finally:
        session.storage.delete_file(cookie_path)

    # The harvested cookie file is gone; the download reuses the same user agent only
    return FetchOutcome(
        stdout=stdout,
        strategy="stealth browser",
        download_options=RetrievalOptions(user_agent=user_agent, proxy=session.proxy),
    )


STRATEGY_RUNNERS: Dict[str, Callable[..., Awaitable[FetchOutcome]]] = {
    "browser_cookies": fetch_with_browser_cookies,
    "randomized_client": fetch_with_randomized_client,
    "saved_cookie_file": fetch_with_saved_cookie_file,
    "stealth_browser": fetch_with_stealth_browser,
}


# Checked before the backoff so a strategy that cannot run costs no wait
STRATEGY_PRECHECKS: Dict[str, Callable[[RetrievalSession], Optional[str]]] = {
    "saved_cookie_file": _saved_cookie_file_missing,
    "stealth_browser": _stealth_browser_unavailable,
}


def default_strategies(include_stealth: bool = STEALTH_BROWSER_ENABLED) -> List[Strategy]:
    strategies = [
        Strategy("browser cookies (chrome)", "browser_cookies", {"browser": "chrome"}),
        Strategy("browser cookies (firefox)", "browser_cookies", {"browser": "firefox"}),
        Strategy("randomized client", "randomized_client", {}),
        Strategy("saved cookie file", "saved_cookie_file", {}),
    ]
    if include_stealth:
        strategies.append(Strategy("stealth browser", "stealth_browser", {}))
    return strategies


# =========================================================================
# DRIVER
# =========================================================================


class RetrievalChain:
    """Runs strategies in order until one returns metadata."""

    def __init__(self, session: RetrievalSession, strategies: Optional[List[Strategy]] = None):
        self.session = session
        self.strategies = strategies if strategies is not None else default_strategies()

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {"num": i + 1, "name": s.name, "kind": s.kind}
            for i, s in enumerate(self.strategies)
        ]

    async def _backoff(self) -> None:
        delay = self.session.rng.uniform(BACKOFF_MIN_SECONDS, BACKOFF_MAX_SECONDS)
        logger.info(f"⏳ Waiting {delay:.1f}s before the next strategy")
        await self.session.sleep(delay)

    async def fetch_metadata(self, url: str, only_strategy: Optional[int] = None) -> FetchOutcome:
        strategies = self.strategies
        if only_strategy is not None:
            if not 1 <= only_strategy <= len(strategies):
                raise InvalidInput(f"only_strategy must be between 1 and {len(strategies)}")
            strategies = [strategies[only_strategy - 1]]

        total = len(strategies)
        last_error: Optional[BaseException] = None
        pending_backoff = False

        for idx, strategy in enumerate(strategies, 1):
            runner = STRATEGY_RUNNERS[strategy.kind]
            precheck = STRATEGY_PRECHECKS.get(strategy.kind)
            skip_reason = precheck(self.session) if precheck else None
            if skip_reason:
                logger.info(f"⏭️ Strategy {idx}/{total} ({strategy.name}) skipped: {skip_reason}")
                if last_error is None:
                    last_error = StrategySkipped(skip_reason)
                continue

            if pending_backoff:
                await self._backoff()
                pending_backoff = False

            logger.info(f"🎯 Strategy {idx}/{total}: {strategy.name}")
            try:
                outcome = await runner(url, self.session, **strategy.options)
            except StrategySkipped as e:
                logger.info(f"⏭️ Strategy {idx}/{total} ({strategy.name}) skipped: {e.message}")
                if last_error is None:
                    last_error = e
                continue
            except Exception as e:
                if is_validation_error(e):
                    raise
                logger.warning(f"⚠️ Strategy {idx}/{total} ({strategy.name}) failed: {str(e)[:150]}")
                last_error = e
                pending_backoff = True
                continue

            logger.info(f"✅ Strategy {idx}/{total} ({strategy.name}) succeeded")
            return outcome

        logger.error(f"❌ All {total} retrieval strategies failed")
        raise self._final_error(last_error)

    @staticmethod
    def _final_error(last_error: Optional[BaseException]) -> RetrievalFailed:
        message = str(last_error) if last_error else "no retrieval strategy available"
        if is_blocking_error(message):
            return RetrievalFailed(f"YouTube blocked the request (bot detection / rate limit): {message}", blocked=True)
        return RetrievalFailed(message)
