"""Domain models representing contract logs and the state derived from them."""

from .models import (
    ActivityDetails,
    ActivityType,
    ContractKind,
    ContractLog,
    EventName,
    MarketInfo,
    MarketParticipant,
    Network,
    RawChainEvent,
    Timeframe,
    UserActivity,
    UserLeaderboardStats,
)

__all__ = [
    "ActivityDetails",
    "ActivityType",
    "ContractKind",
    "ContractLog",
    "EventName",
    "MarketInfo",
    "MarketParticipant",
    "Network",
    "RawChainEvent",
    "Timeframe",
    "UserActivity",
    "UserLeaderboardStats",
]
