"""Per-user statistics and leaderboard ranking derived from activity records."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

from loguru import logger

from app.domain.models import (
    ActivityType,
    ContractLog,
    EventName,
    Network,
    Timeframe,
    UserActivity,
    UserLeaderboardStats,
)
from ingestion.normalize import normalize_address

from .activity_service import ActivityProcessor

MarketKey = tuple[Network, str]


@dataclass(frozen=True, slots=True)
class Resolution:
    outcome: bool
    timestamp: int | None


def resolutions_from_logs(logs: Iterable[ContractLog]) -> dict[MarketKey, Resolution]:
    """Map each resolved market to its outcome; the newest resolution log wins."""

    resolutions: dict[MarketKey, Resolution] = {}
    for log in logs:
        if log.event_name != EventName.MARKET_RESOLVED.value or log.market_id is None:
            continue
        outcome = log.args.get("outcome")
        if not isinstance(outcome, bool):
            continue
        resolutions.setdefault((log.network, log.market_id), Resolution(outcome, log.timestamp))
    return resolutions


def usernames_from_logs(logs: Iterable[ContractLog]) -> dict[str, str]:
    """Latest username per address, expecting newest-first logs."""

    usernames: dict[str, str] = {}
    for log in logs:
        if log.event_name == EventName.USERNAME_SET.value:
            name = log.args.get("username")
        elif log.event_name == EventName.USERNAME_CHANGED.value:
            name = log.args.get("newUsername")
        else:
            continue
        user = log.args.get("user")
        if isinstance(user, str) and isinstance(name, str) and name:
            usernames.setdefault(normalize_address(user), name)
    return usernames


def _streaks(results: Sequence[bool]) -> tuple[int, int]:
    current = 0
    best = 0
    for won in results:
        if won:
            current = current + 1 if current > 0 else 1
            best = max(best, current)
        else:
            current = current - 1 if current < 0 else -1
    return current, best


def compute_user_stats(
    address: str,
    activities: Iterable[UserActivity],
    resolutions: dict[MarketKey, Resolution],
    *,
    username: str | None = None,
) -> UserLeaderboardStats | None:
    """Reduce one user's activities into leaderboard stats.

    Only markets with a known resolution count towards the win rate; a
    market is won when the user bought shares on the resolved outcome.
    """

    target = normalize_address(address)
    own = [activity for activity in activities if activity.address == target]
    if not target or not own:
        return None

    total_invested = 0
    total_winnings = 0
    creation_fees = 0
    sides: dict[MarketKey, set[bool]] = defaultdict(set)
    timestamps: list[int] = []

    for activity in own:
        if activity.timestamp is not None:
            timestamps.append(activity.timestamp)
        key = (activity.network, activity.market_id)
        if activity.type is ActivityType.SHARES_BOUGHT:
            total_invested += activity.details.amount or 0
            # Register the market even when the side flag is missing.
            market_sides = sides[key]
            if activity.details.side is not None:
                market_sides.add(activity.details.side)
        elif activity.type is ActivityType.WINNINGS_CLAIMED:
            total_winnings += activity.details.winnings or activity.details.amount or 0
        elif activity.type is ActivityType.MARKET_CREATED:
            creation_fees += activity.details.amount or 0

    resolved = sorted(
        (key for key in sides if key in resolutions),
        key=lambda key: (resolutions[key].timestamp or 0, key[0].value, key[1]),
    )
    results = [resolutions[key].outcome in sides[key] for key in resolved]
    winning_markets = sum(results)
    current_streak, best_streak = _streaks(results)

    total_pnl = total_winnings - total_invested
    total_volume = total_invested + creation_fees
    return UserLeaderboardStats(
        address=target,
        username=username,
        total_invested=total_invested,
        total_winnings=total_winnings,
        total_pnl=total_pnl,
        total_volume=total_volume,
        total_markets=len(sides),
        resolved_markets=len(resolved),
        winning_markets=winning_markets,
        win_rate=(winning_markets / len(resolved) * 100) if resolved else 0.0,
        current_streak=current_streak,
        best_streak=best_streak,
        risk_adjusted_return=(total_pnl / total_volume) if total_volume > 0 else 0.0,
        last_activity=max(timestamps) if timestamps else None,
    )


def rank_users(stats: Iterable[UserLeaderboardStats]) -> list[UserLeaderboardStats]:
    """Sort by P&L descending, then address, and assign 1-based ranks."""

    ordered = sorted(stats, key=lambda item: (-item.total_pnl, item.address))
    return [replace(item, rank=index) for index, item in enumerate(ordered, start=1)]


def filter_window(
    activities: Iterable[UserActivity], timeframe: Timeframe, now: int
) -> list[UserActivity]:
    window = timeframe.window_seconds
    if window is None:
        return list(activities)
    cutoff = now - window
    # Activities without a timestamp cannot be placed in a window.
    return [a for a in activities if a.timestamp is not None and a.timestamp > cutoff]


class LeaderboardService:
    """Computes user stats and ranked leaderboards from the activity processor."""

    def __init__(self, processor: ActivityProcessor) -> None:
        self._processor = processor
        # One board per timeframe, tagged with the "now" it was computed for.
        self._cache: dict[Timeframe, tuple[int | None, list[UserLeaderboardStats]]] = {}
        self._cache_fingerprint: str | None = None

    async def _context(
        self,
    ) -> tuple[tuple[UserActivity, ...], dict[MarketKey, Resolution], dict[str, str]]:
        activities = await self._processor.process_user_activities()
        logs = self._processor.store.logs
        return activities, resolutions_from_logs(logs), usernames_from_logs(logs)

    async def calculate_user_stats(self, address: str) -> UserLeaderboardStats | None:
        target = normalize_address(address)
        if not target:
            return None
        activities, resolutions, usernames = await self._context()
        return compute_user_stats(
            target, activities, resolutions, username=usernames.get(target)
        )

    async def generate_leaderboard(
        self,
        timeframe: Timeframe | str = Timeframe.ALL,
        *,
        now: int | None = None,
    ) -> list[UserLeaderboardStats]:
        timeframe = Timeframe(timeframe)
        fingerprint = self._processor.store.fingerprint
        if fingerprint != self._cache_fingerprint:
            self._cache.clear()
            self._cache_fingerprint = fingerprint

        captured_now = int(time.time()) if now is None else int(now)
        window_now = captured_now if timeframe.window_seconds is not None else None
        cached = self._cache.get(timeframe)
        if cached is not None and cached[0] == window_now:
            return list(cached[1])

        activities, resolutions, usernames = await self._context()
        by_address: dict[str, list[UserActivity]] = defaultdict(list)
        for activity in filter_window(activities, timeframe, captured_now):
            by_address[activity.address].append(activity)
        stats = [
            compute_user_stats(
                address, by_address[address], resolutions, username=usernames.get(address)
            )
            for address in sorted(by_address)
        ]
        leaderboard = rank_users(item for item in stats if item is not None)
        self._cache[timeframe] = (window_now, leaderboard)
        logger.info(
            "Generated {} leaderboard with {} users", timeframe.value, len(leaderboard)
        )
        return list(leaderboard)

    async def get_user_rank(self, address: str) -> int:
        target = normalize_address(address)
        if not target:
            return 0
        for entry in await self.generate_leaderboard(Timeframe.ALL):
            if entry.address == target:
                return entry.rank
        return 0

    async def get_top_users(
        self, count: int = 10, timeframe: Timeframe | str = Timeframe.ALL
    ) -> list[UserLeaderboardStats]:
        leaderboard = await self.generate_leaderboard(timeframe)
        return leaderboard[: max(count, 0)]
