from __future__ import annotations

import asyncio

import pytest

from app.domain.models import EventName, Timeframe, UserLeaderboardStats
from app.services.activity_service import ActivityProcessor
from app.services.events_store import EventStore
from app.services.leaderboard_service import (
    LeaderboardService,
    compute_user_stats,
    rank_users,
    resolutions_from_logs,
    usernames_from_logs,
)

from conftest import ALICE, BOB, CAROL

NOW = 1_700_300_200


@pytest.fixture
def service(store) -> LeaderboardService:
    return LeaderboardService(ActivityProcessor(store))


def test_user_stats_for_split_record(service):
    stats = asyncio.run(service.calculate_user_stats(ALICE))

    assert stats.total_invested == 150
    assert stats.total_winnings == 180
    assert stats.total_pnl == 30
    assert stats.total_markets == 2
    assert stats.resolved_markets == 2
    assert stats.winning_markets == 1
    assert stats.win_rate == pytest.approx(50.0)
    assert stats.current_streak == -1
    assert stats.best_streak == 1
    assert stats.risk_adjusted_return == pytest.approx(0.2)
    assert stats.last_activity == 1_700_300_000
    assert stats.username == "alice"


def test_pnl_sign_and_creator_volume(service):
    bob = asyncio.run(service.calculate_user_stats(BOB))
    carol = asyncio.run(service.calculate_user_stats(CAROL))

    assert bob.total_pnl == 50
    assert bob.win_rate == pytest.approx(100.0)
    assert carol.total_pnl == 0
    assert carol.total_volume == 20
    assert carol.win_rate == 0.0
    assert asyncio.run(service.calculate_user_stats("0x" + "00" * 19 + "01")) is None


def test_unresolved_markets_do_not_count_towards_win_rate(make_log):
    store = EventStore([])
    store.set_logs(
        [
            make_log(EventName.SHARES_BOUGHT, marketId=1, buyer=ALICE, side=True, amount=10),
            make_log(EventName.SHARES_BOUGHT, marketId=2, buyer=ALICE, side=True, amount=10),
            make_log(EventName.MARKET_RESOLVED, marketId=1, resolver=CAROL, outcome=True),
        ]
    )

    stats = asyncio.run(LeaderboardService(ActivityProcessor(store)).calculate_user_stats(ALICE))

    assert stats.total_markets == 2
    assert stats.resolved_markets == 1
    assert stats.win_rate == pytest.approx(100.0)
    assert stats.total_pnl == -20


def test_all_time_leaderboard_order_and_ranks(service):
    board = asyncio.run(service.generate_leaderboard(Timeframe.ALL))

    assert [(entry.address, entry.rank) for entry in board] == [(BOB, 1), (ALICE, 2), (CAROL, 3)]
    assert asyncio.run(service.get_user_rank("0x" + ALICE[2:].upper())) == 2
    assert asyncio.run(service.get_user_rank("0x" + "00" * 19 + "01")) == 0
    assert [entry.address for entry in asyncio.run(service.get_top_users(1))] == [BOB]


def test_leaderboard_is_deterministic(store):
    first = asyncio.run(LeaderboardService(ActivityProcessor(store)).generate_leaderboard("weekly", now=NOW))
    second = asyncio.run(LeaderboardService(ActivityProcessor(store)).generate_leaderboard("weekly", now=NOW))
    assert first == second


def test_daily_window_only_counts_recent_activity(service):
    board = asyncio.run(service.generate_leaderboard(Timeframe.DAILY, now=NOW))

    assert [(entry.address, entry.total_pnl) for entry in board] == [(ALICE, 180), (BOB, 120)]
    assert board[0].total_markets == 0


def test_windowed_board_excludes_unknown_timestamps(make_log):
    store = EventStore([])
    store.set_logs(
        [
            make_log(EventName.WINNINGS_CLAIMED, timestamp=None, marketId=1, claimant=ALICE, amount=500),
            make_log(EventName.WINNINGS_CLAIMED, timestamp=NOW - 10, marketId=2, claimant=BOB, amount=5),
        ]
    )
    service = LeaderboardService(ActivityProcessor(store))

    daily = asyncio.run(service.generate_leaderboard(Timeframe.DAILY, now=NOW))
    everything = asyncio.run(service.generate_leaderboard(Timeframe.ALL))

    assert [entry.address for entry in daily] == [BOB]
    assert [entry.address for entry in everything] == [ALICE, BOB]


def test_rank_ties_break_by_address():
    ranked = rank_users(
        [
            UserLeaderboardStats(address=CAROL, total_pnl=5),
            UserLeaderboardStats(address=ALICE, total_pnl=5),
            UserLeaderboardStats(address=BOB, total_pnl=9),
        ]
    )
    assert [(entry.address, entry.rank) for entry in ranked] == [(BOB, 1), (ALICE, 2), (CAROL, 3)]


def test_streaks_follow_resolution_order(make_log):
    logs = []
    outcomes = [True, True, False, True, True, True]
    for market_id, outcome in enumerate(outcomes, start=1):
        logs.append(make_log(EventName.SHARES_BOUGHT, timestamp=100 + market_id, marketId=market_id, buyer=ALICE, side=True, amount=1))
        logs.append(make_log(EventName.MARKET_RESOLVED, timestamp=1_000 + market_id, marketId=market_id, resolver=CAROL, outcome=outcome))
    store = EventStore([])
    store.set_logs(logs)

    stats = asyncio.run(LeaderboardService(ActivityProcessor(store)).calculate_user_stats(ALICE))

    assert stats.current_streak == 3
    assert stats.best_streak == 3
    assert stats.winning_markets == 5


def test_reducers_tolerate_missing_fields(make_log):
    logs = [
        make_log(EventName.MARKET_RESOLVED, marketId=1, resolver=CAROL),
        make_log(EventName.USERNAME_CHANGED, user=ALICE, oldUsername="a", newUsername="alice2"),
        make_log(EventName.USERNAME_SET, user=ALICE, username="a"),
    ]
    assert resolutions_from_logs(logs) == {}
    assert usernames_from_logs(logs) == {ALICE: "alice2"}
    assert compute_user_stats("", [], {}) is None


def test_create_buy_resolve_claim_flow(make_log):
    store = EventStore([])
    store.set_logs(
        [
            make_log(EventName.MARKET_CREATED, timestamp=100, marketId=1, creator=ALICE, question="Q?", creationFee=0),
            make_log(EventName.SHARES_BOUGHT, timestamp=200, marketId=1, buyer=BOB, side=True, amount=10),
            make_log(EventName.SHARES_BOUGHT, timestamp=300, marketId=1, buyer=CAROL, side=False, amount=5),
            make_log(EventName.MARKET_RESOLVED, timestamp=400, marketId=1, resolver=ALICE, outcome=True),
            make_log(EventName.WINNINGS_CLAIMED, timestamp=500, marketId=1, claimant=BOB, amount=14),
        ]
    )
    service = LeaderboardService(ActivityProcessor(store))

    bob = asyncio.run(service.calculate_user_stats(BOB))
    carol = asyncio.run(service.calculate_user_stats(CAROL))

    assert (bob.total_invested, bob.total_winnings, bob.total_pnl, bob.win_rate) == (10, 14, 4, 100.0)
    assert (carol.total_invested, carol.total_winnings, carol.total_pnl, carol.win_rate) == (5, 0, -5, 0.0)


def test_win_rate_ignores_the_unresolved_third_market(make_log):
    store = EventStore([])
    store.set_logs(
        [
            make_log(EventName.SHARES_BOUGHT, marketId=1, buyer=ALICE, side=True, amount=1),
            make_log(EventName.SHARES_BOUGHT, marketId=2, buyer=ALICE, side=True, amount=1),
            make_log(EventName.SHARES_BOUGHT, marketId=3, buyer=ALICE, side=True, amount=1),
            make_log(EventName.MARKET_RESOLVED, marketId=1, resolver=CAROL, outcome=True),
            make_log(EventName.MARKET_RESOLVED, marketId=2, resolver=CAROL, outcome=False),
        ]
    )

    stats = asyncio.run(LeaderboardService(ActivityProcessor(store)).calculate_user_stats(ALICE))

    assert stats.total_markets == 3
    assert stats.resolved_markets == 2
    assert stats.winning_markets == 1
    assert stats.win_rate == pytest.approx(50.0)


def test_windowed_cache_keeps_one_board_per_timeframe(service):
    for offset in range(50):
        asyncio.run(service.generate_leaderboard(Timeframe.DAILY, now=NOW + offset))
    asyncio.run(service.generate_leaderboard(Timeframe.ALL))

    assert len(service._cache) == 2

    first = asyncio.run(service.generate_leaderboard(Timeframe.DAILY, now=NOW))
    assert asyncio.run(service.generate_leaderboard(Timeframe.DAILY, now=NOW)) == first
    assert [entry.address for entry in first] == [ALICE, BOB]
