"""
Tests for the metadata retrieval fallback chain.

yt-dlp and the stealth browser are faked; the injected sleep records every
backoff so ordering and timing rules can be asserted without waiting.
"""

import shlex
from pathlib import Path

import pytest

from ytservice.errors import InvalidInput, RetrievalFailed
from ytservice.strategies import (
    BACKOFF_MAX_SECONDS,
    BACKOFF_MIN_SECONDS,
    PLAYER_CLIENTS,
    RetrievalChain,
    RetrievalSession,
    Strategy,
    default_strategies,
)

from .conftest import TEST_VIDEO_URL, FakeBrowser, FakeExecutor, make_info_json

GENERIC_FAILURE = "yt-dlp exited with code 1: ERROR: [youtube] dQw4w9WgXcQ: Video unavailable"


def failing(message=GENERIC_FAILURE):
    def handler(command, cwd):
        raise RetrievalFailed(message)
    return handler


def option_value(command, flag):
    args = shlex.split(command)
    return args[args.index(flag) + 1] if flag in args else None


def make_chain(storage, handler, sleep, rng, browser=None, strategies=None):
    executor = FakeExecutor(handler)
    browser = browser or FakeBrowser()
    session = RetrievalSession(executor, storage, browser=browser, sleep=sleep, rng=rng, proxy=None)
    chain = RetrievalChain(session, strategies if strategies is not None else default_strategies(include_stealth=True))
    return chain, executor, browser


def assert_backoffs(delays, count):
    assert len(delays) == count
    assert all(BACKOFF_MIN_SECONDS <= d <= BACKOFF_MAX_SECONDS for d in delays)


# ─── Ordering and backoff ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_first_success_wins(scratch_storage, sleep, rng):
    def handler(command, cwd):
        if option_value(command, "--cookies-from-browser") == "firefox":
            return make_info_json()
        raise RetrievalFailed(GENERIC_FAILURE)

    chain, executor, _ = make_chain(scratch_storage, handler, sleep, rng)
    outcome = await chain.fetch_metadata(TEST_VIDEO_URL)

    assert outcome.strategy == "browser cookies (firefox)"
    assert outcome.download_options.cookies_from_browser == "firefox"
    assert len(executor.info_commands) == 2
    assert_backoffs(sleep.delays, 1)


@pytest.mark.asyncio
async def test_all_strategies_tried_in_order(scratch_storage, sleep, rng):
    chain, executor, browser = make_chain(scratch_storage, failing(), sleep, rng)

    with pytest.raises(RetrievalFailed) as exc_info:
        await chain.fetch_metadata(TEST_VIDEO_URL)

    # saved cookie file absent: strategy 4 never reaches yt-dlp
    commands = executor.info_commands
    assert len(commands) == 4
    assert option_value(commands[0], "--cookies-from-browser") == "chrome"
    assert option_value(commands[1], "--cookies-from-browser") == "firefox"
    assert option_value(commands[2], "--extractor-args").startswith("youtube:player_client=")
    assert option_value(commands[2], "--sleep-requests") is not None
    assert "harvested_cookies_" in option_value(commands[3], "--cookies")

    assert exc_info.value.blocked is False
    assert "Video unavailable" in exc_info.value.message


@pytest.mark.asyncio
async def test_skipped_strategy_spends_no_backoff(scratch_storage, sleep, rng):
    chain, _, _ = make_chain(scratch_storage, failing(), sleep, rng)

    with pytest.raises(RetrievalFailed):
        await chain.fetch_metadata(TEST_VIDEO_URL)

    # four attempted strategies, three waits between them, none after the last
    assert_backoffs(sleep.delays, 3)


@pytest.mark.asyncio
async def test_no_backoff_after_last_strategy(scratch_storage, sleep, rng):
    strategies = [Strategy("randomized client", "randomized_client", {})]
    chain, _, _ = make_chain(scratch_storage, failing(), sleep, rng, strategies=strategies)

    with pytest.raises(RetrievalFailed):
        await chain.fetch_metadata(TEST_VIDEO_URL)
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_saved_cookie_file_used_when_present(scratch_storage, sleep, rng):
    scratch_storage.cookie_file_path.write_text("# Netscape HTTP Cookie File\n")

    def handler(command, cwd):
        if option_value(command, "--cookies") == str(scratch_storage.cookie_file_path):
            return make_info_json()
        raise RetrievalFailed(GENERIC_FAILURE)

    chain, executor, browser = make_chain(scratch_storage, handler, sleep, rng)
    outcome = await chain.fetch_metadata(TEST_VIDEO_URL)

    assert outcome.strategy == "saved cookie file"
    assert outcome.download_options.cookie_file == str(scratch_storage.cookie_file_path)
    assert browser.harvested_paths == []
    assert_backoffs(sleep.delays, 3)


@pytest.mark.asyncio
async def test_every_strategy_skipped(scratch_storage, sleep, rng):
    strategies = [
        Strategy("saved cookie file", "saved_cookie_file", {}),
        Strategy("stealth browser", "stealth_browser", {}),
    ]
    chain, executor, _ = make_chain(
        scratch_storage, failing(), sleep, rng, browser=FakeBrowser(available=False), strategies=strategies,
    )

    with pytest.raises(RetrievalFailed, match="no saved cookie file"):
        await chain.fetch_metadata(TEST_VIDEO_URL)
    assert executor.commands == []
    assert sleep.delays == []


# ─── Error classification ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_blocking_error_is_annotated(scratch_storage, sleep, rng):
    message = "yt-dlp exited with code 1: ERROR: Sign in to confirm you're not a bot"
    chain, _, _ = make_chain(
        scratch_storage, failing(message), sleep, rng, strategies=default_strategies(include_stealth=False),
    )

    with pytest.raises(RetrievalFailed) as exc_info:
        await chain.fetch_metadata(TEST_VIDEO_URL)

    assert exc_info.value.blocked is True
    assert exc_info.value.message.startswith("YouTube blocked the request")
    assert "Sign in to confirm" in exc_info.value.message


@pytest.mark.asyncio
async def test_rate_limit_counts_as_blocking(scratch_storage, sleep, rng):
    chain, _, _ = make_chain(
        scratch_storage, failing("HTTP Error 429: Too Many Requests"), sleep, rng,
        strategies=[Strategy("randomized client", "randomized_client", {})],
    )
    with pytest.raises(RetrievalFailed) as exc_info:
        await chain.fetch_metadata(TEST_VIDEO_URL)
    assert exc_info.value.blocked is True


@pytest.mark.asyncio
async def test_validation_error_propagates_immediately(scratch_storage, sleep, rng):
    def handler(command, cwd):
        raise InvalidInput("URL contains invalid characters")

    chain, executor, _ = make_chain(scratch_storage, handler, sleep, rng)

    with pytest.raises(InvalidInput):
        await chain.fetch_metadata(TEST_VIDEO_URL)
    assert len(executor.commands) == 1
    assert sleep.delays == []


# ─── only_strategy / describe ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_only_strategy_runs_one(scratch_storage, sleep, rng):
    chain, executor, _ = make_chain(scratch_storage, lambda c, cwd: make_info_json(), sleep, rng)

    outcome = await chain.fetch_metadata(TEST_VIDEO_URL, only_strategy=3)

    assert outcome.strategy == "randomized client"
    assert len(executor.commands) == 1
    assert option_value(executor.commands[0], "--extractor-args") is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("only_strategy", [0, 6, 42])
async def test_only_strategy_out_of_range(scratch_storage, sleep, rng, only_strategy):
    chain, executor, _ = make_chain(scratch_storage, lambda c, cwd: make_info_json(), sleep, rng)
    with pytest.raises(InvalidInput):
        await chain.fetch_metadata(TEST_VIDEO_URL, only_strategy=only_strategy)
    assert executor.commands == []


def test_describe_lists_strategies_in_order(scratch_storage, sleep, rng):
    chain, _, _ = make_chain(scratch_storage, failing(), sleep, rng)
    assert chain.describe() == [
        {"num": 1, "name": "browser cookies (chrome)", "kind": "browser_cookies"},
        {"num": 2, "name": "browser cookies (firefox)", "kind": "browser_cookies"},
        {"num": 3, "name": "randomized client", "kind": "randomized_client"},
        {"num": 4, "name": "saved cookie file", "kind": "saved_cookie_file"},
        {"num": 5, "name": "stealth browser", "kind": "stealth_browser"},
    ]


def test_stealth_strategy_can_be_disabled():
    kinds = [s.kind for s in default_strategies(include_stealth=False)]
    assert "stealth_browser" not in kinds
    assert len(kinds) == 4


def test_player_client_rotation(scratch_storage, sleep, rng):
    session = RetrievalSession(FakeExecutor(), scratch_storage, browser=FakeBrowser(), sleep=sleep, rng=rng)
    seen = [session.next_player_client() for _ in range(len(PLAYER_CLIENTS) + 1)]
    assert seen[:-1] == PLAYER_CLIENTS
    assert seen[-1] == PLAYER_CLIENTS[0]


# ─── Stealth browser strategy ────────────────────────────────────────────────

STEALTH_ONLY = [Strategy("stealth browser", "stealth_browser", {})]


@pytest.mark.asyncio
async def test_stealth_cookie_file_deleted_after_success(scratch_storage, sleep, rng):
    seen_during_fetch = []

    def handler(command, cwd):
        cookie_path = option_value(command, "--cookies")
        seen_during_fetch.append(Path(cookie_path).read_text().startswith("# Netscape"))
        return make_info_json()

    chain, executor, browser = make_chain(scratch_storage, handler, sleep, rng, strategies=STEALTH_ONLY)
    outcome = await chain.fetch_metadata(TEST_VIDEO_URL)

    assert seen_during_fetch == [True]
    assert len(browser.harvested_paths) == 1
    assert not browser.harvested_paths[0].exists()
    assert outcome.strategy == "stealth browser"
    assert outcome.download_options.cookie_file is None
    assert outcome.download_options.user_agent == option_value(executor.commands[0], "--user-agent")


@pytest.mark.asyncio
async def test_stealth_cookie_file_deleted_after_fetch_failure(scratch_storage, sleep, rng):
    chain, _, browser = make_chain(scratch_storage, failing(), sleep, rng, strategies=STEALTH_ONLY)

    with pytest.raises(RetrievalFailed):
        await chain.fetch_metadata(TEST_VIDEO_URL)
    assert not browser.harvested_paths[0].exists()


@pytest.mark.asyncio
async def test_stealth_browser_crash_becomes_retrieval_failure(scratch_storage, sleep, rng):
    browser = FakeBrowser(fail_with=RuntimeError("Target page, context or browser has been closed"))
    chain, executor, _ = make_chain(scratch_storage, failing(), sleep, rng, browser=browser, strategies=STEALTH_ONLY)

    with pytest.raises(RetrievalFailed, match="stealth browser error"):
        await chain.fetch_metadata(TEST_VIDEO_URL)
    assert executor.commands == []
    assert not browser.harvested_paths[0].exists()
