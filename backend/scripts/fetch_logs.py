import argparse
import asyncio
import json
from datetime import datetime, timezone

from loguru import logger

from app.core.config import get_settings
from app.domain.models import ContractLog, Timeframe
from app.services.activity_service import ActivityProcessor
from app.services.events_store import EventStore
from app.services.leaderboard_service import LeaderboardService
from ingestion.normalize import is_address


def _format_timestamp(value: int | None) -> str:
    if value is None:
        return "unknown"
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(microsecond=0).isoformat()


def _format_log(index: int, log: ContractLog) -> str:
    args = json.dumps(dict(log.args), default=str, sort_keys=True)
    return "\n".join(
        [
            f"{index}. [{log.network.value}] {log.event_name}",
            f"   Block: {log.block_number}, Time: {_format_timestamp(log.timestamp)}",
            f"   Contract: {log.contract_name} ({log.contract_address})",
            f"   Args: {args}",
            f"   TX: {log.transaction_hash}",
        ]
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch prediction-market contract logs from every configured network")
    parser.add_argument("--recent", type=int, default=10, help="Number of recent events to print")
    parser.add_argument("--user", default=None, help="Print stats and activity for this wallet address")
    parser.add_argument(
        "--leaderboard",
        choices=[timeframe.value for timeframe in Timeframe],
        default=None,
        help="Print the leaderboard for the given timeframe",
    )
    parser.add_argument("--top", type=int, default=10, help="Leaderboard rows to print")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = EventStore.from_settings(settings)
    processor = ActivityProcessor(store)
    leaderboard = LeaderboardService(processor)
    try:
        logs = await store.fetch_all_logs()

        print(f"Total logs fetched: {len(logs)}")
        for network, events in store.summary().items():
            print(f"{network}: {sum(events.values())} events")
            for event_name, count in events.items():
                print(f"  {event_name}: {count}")

        if args.recent:
            print(f"\nRecent events (last {args.recent})")
            for index, log in enumerate(store.get_recent_logs(args.recent), start=1):
                print(_format_log(index, log))

        if args.user:
            if not is_address(args.user):
                logger.warning("Ignoring invalid wallet address: {}", args.user)
            else:
                stats = await leaderboard.calculate_user_stats(args.user)
                rank = await leaderboard.get_user_rank(args.user)
                activities = await processor.get_user_activities(args.user)
                print(f"\nUser {args.user.lower()} (rank {rank or 'unranked'})")
                if stats is None:
                    print("  no activity")
                else:
                    print(
                        f"  invested={stats.total_invested} winnings={stats.total_winnings} "
                        f"pnl={stats.total_pnl} win_rate={stats.win_rate:.1f}%"
                    )
                for activity in activities:
                    print(f"  {_format_timestamp(activity.timestamp)} {activity.type.value} {activity.question}")

        if args.leaderboard:
            entries = await leaderboard.get_top_users(args.top, args.leaderboard)
            print(f"\nLeaderboard ({args.leaderboard})")
            for entry in entries:
                label = entry.username or entry.address
                print(f"  {entry.rank:>3}. {label} pnl={entry.total_pnl} win_rate={entry.win_rate:.1f}%")
    finally:
        await store.aclose()
    return len(logs)


def main() -> None:
    args = parse_args()
    fetched = asyncio.run(run(args))
    logger.info("Fetched {} logs", fetched)


if __name__ == "__main__":
    main()
