"""Reduce contract logs into per-user activity records."""

from __future__ import annotations

from dataclasses import replace
from typing import Awaitable, Callable, Iterable

from loguru import logger

from app.domain.models import (
    ActivityDetails,
    ActivityType,
    ContractLog,
    EventName,
    MarketInfo,
    Network,
    UserActivity,
)
from ingestion.normalize import normalize_address

from .events_store import EventStore

MarketLookup = Callable[[Network, str], Awaitable[MarketInfo | None]]

# Actor field and activity type for each activity-bearing event.
_ACTIVITY_EVENTS: dict[str, tuple[ActivityType, str]] = {
    EventName.MARKET_CREATED.value: (ActivityType.MARKET_CREATED, "creator"),
    EventName.SHARES_BOUGHT.value: (ActivityType.SHARES_BOUGHT, "buyer"),
    EventName.MARKET_RESOLVED.value: (ActivityType.MARKET_RESOLVED, "resolver"),
    EventName.WINNINGS_CLAIMED.value: (ActivityType.WINNINGS_CLAIMED, "claimant"),
}


def placeholder_question(market_id: str) -> str:
    return f"Market #{market_id}"


def activity_id(
    activity_type: ActivityType, market_id: str, transaction_hash: str, position: int | str
) -> str:
    return f"{activity_type.value}_{market_id}_{transaction_hash}_{position}"


def _as_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _as_bool(value: object) -> bool | None:
    return value if isinstance(value, bool) else None


def markets_from_logs(logs: Iterable[ContractLog]) -> dict[tuple[Network, str], MarketInfo]:
    """Index the question text carried by ``MarketCreated`` logs."""

    markets: dict[tuple[Network, str], MarketInfo] = {}
    for log in logs:
        if log.event_name != EventName.MARKET_CREATED.value or log.market_id is None:
            continue
        question = log.args.get("question")
        if not isinstance(question, str) or not question.strip():
            continue
        markets[(log.network, log.market_id)] = MarketInfo(
            market_id=log.market_id,
            question=question,
            category=log.args.get("category") if isinstance(log.args.get("category"), str) else None,
            description=log.args.get("description") if isinstance(log.args.get("description"), str) else None,
            source=log.args.get("source") if isinstance(log.args.get("source"), str) else None,
            end_time=_as_int(log.args.get("endTime")),
        )
    return markets


def activity_from_log(log: ContractLog) -> UserActivity | None:
    """Build the bare activity for ``log``, or ``None`` when it is not activity-bearing."""

    mapping = _ACTIVITY_EVENTS.get(log.event_name)
    if mapping is None:
        return None
    activity_type, actor_field = mapping
    actor = log.args.get(actor_field)
    if not isinstance(actor, str) or not actor:
        return None

    market_id = log.market_id or ""
    # Several logs can share a transaction; the log index tells them apart.
    position = log.log_index if log.log_index is not None else normalize_address(actor)
    if activity_type is ActivityType.MARKET_CREATED:
        details = ActivityDetails(amount=_as_int(log.args.get("creationFee")))
    elif activity_type is ActivityType.SHARES_BOUGHT:
        details = ActivityDetails(
            amount=_as_int(log.args.get("amount")),
            side=_as_bool(log.args.get("side")),
        )
    elif activity_type is ActivityType.MARKET_RESOLVED:
        details = ActivityDetails(outcome=_as_bool(log.args.get("outcome")))
    else:
        amount = _as_int(log.args.get("amount"))
        details = ActivityDetails(amount=amount, winnings=amount)

    return UserActivity(
        id=activity_id(activity_type, market_id, log.transaction_hash, position),
        type=activity_type,
        address=normalize_address(actor),
        market_id=market_id,
        timestamp=log.timestamp,
        transaction_hash=log.transaction_hash,
        network=log.network,
        question=placeholder_question(market_id),
        details=details,
    )


def _activity_sort_key(activity: UserActivity) -> tuple[int, int, str]:
    return (
        0 if activity.timestamp is None else 1,
        activity.timestamp or 0,
        activity.id,
    )


class ActivityProcessor:
    """Derives :class:`UserActivity` records from the store's current snapshot.

    Results are cached per snapshot fingerprint, so repeated calls between
    refreshes reuse the same list.
    """

    def __init__(self, store: EventStore, *, market_lookup: MarketLookup | None = None) -> None:
        self._store = store
        self._market_lookup = market_lookup
        self._cache_key: str | None = None
        self._activities: tuple[UserActivity, ...] = ()

    @property
    def store(self) -> EventStore:
        return self._store

    async def process_user_activities(self) -> tuple[UserActivity, ...]:
        fingerprint = self._store.fingerprint
        if self._cache_key == fingerprint:
            return self._activities

        logs = self._store.logs
        known_markets = markets_from_logs(logs)
        looked_up: dict[tuple[Network, str], MarketInfo | None] = {}

        activities: dict[str, UserActivity] = {}
        for log in logs:
            activity = activity_from_log(log)
            if activity is None or activity.id in activities:
                continue
            key = (activity.network, activity.market_id)
            info = known_markets.get(key)
            if info is None and activity.market_id:
                if key not in looked_up:
                    looked_up[key] = await self._lookup_market(*key)
                info = looked_up[key]
            if info is not None:
                activity = replace(activity, question=info.question, category=info.category)
            activities[activity.id] = activity

        ordered = tuple(sorted(activities.values(), key=_activity_sort_key, reverse=True))
        self._cache_key = fingerprint
        self._activities = ordered
        logger.info("Processed {} user activities", len(ordered))
        return ordered

    async def _lookup_market(self, network: Network, market_id: str) -> MarketInfo | None:
        if self._market_lookup is None:
            return None
        try:
            return await self._market_lookup(network, market_id)
        except Exception as exc:
            logger.warning("Market lookup failed for {} on {}: {}", market_id, network.value, exc)
            return None

    async def get_user_activities(self, address: str) -> list[UserActivity]:
        target = normalize_address(address)
        if not target:
            return []
        activities = await self.process_user_activities()
        return [activity for activity in activities if activity.address == target]

    async def get_activity_counts(self, address: str) -> dict[str, int]:
        activities = await self.get_user_activities(address)
        return {
            "total_markets": sum(1 for a in activities if a.type is ActivityType.MARKET_CREATED),
            "total_trades": sum(1 for a in activities if a.type is ActivityType.SHARES_BOUGHT),
            "total_resolved": sum(1 for a in activities if a.type is ActivityType.MARKET_RESOLVED),
            "total_winnings": sum(
                a.details.winnings or 0 for a in activities if a.type is ActivityType.WINNINGS_CLAIMED
            ),
        }
