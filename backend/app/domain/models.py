"""Typed domain representations shared by ingestion, derivation, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class Network(str, Enum):
    CELO_MAINNET = "CELO_MAINNET"
    BASE_MAINNET = "BASE_MAINNET"


class ContractKind(str, Enum):
    CORE = "core"
    CLAIMS = "claims"

    @property
    def contract_name(self) -> str:
        return {
            ContractKind.CORE: "PredictionMarketCore",
            ContractKind.CLAIMS: "PredictionMarketClaims",
        }[self]


class EventName(str, Enum):
    MARKET_CREATED = "MarketCreated"
    SHARES_BOUGHT = "SharesBought"
    MARKET_RESOLVED = "MarketResolved"
    WINNINGS_CLAIMED = "WinningsClaimed"
    USERNAME_SET = "UsernameSet"
    USERNAME_CHANGED = "UsernameChanged"
    CLAIMS_CONTRACT_SET = "ClaimsContractSet"
    REWARDS_DISBURSED = "RewardsDisbursed"
    ADMIN_CHANGED = "AdminChanged"
    CORE_CONTRACT_SET = "CoreContractSet"


class ActivityType(str, Enum):
    MARKET_CREATED = "market_created"
    SHARES_BOUGHT = "shares_bought"
    MARKET_RESOLVED = "market_resolved"
    WINNINGS_CLAIMED = "winnings_claimed"


class Timeframe(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL = "all"

    @property
    def window_seconds(self) -> int | None:
        return {
            Timeframe.DAILY: 24 * 60 * 60,
            Timeframe.WEEKLY: 7 * 24 * 60 * 60,
            Timeframe.MONTHLY: 30 * 24 * 60 * 60,
            Timeframe.ALL: None,
        }[self]


@dataclass(frozen=True, slots=True)
class RawChainEvent:
    """Decoded event payload exactly as read from a chain, before normalization."""

    address: str
    event_name: str
    args: Mapping[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int | None = None
    indexed_fields: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContractLog:
    """Canonical record of one emitted contract event.

    ``args`` is read-only and every address value in it is lower-cased.
    ``timestamp`` is ``None`` when the containing block could not be read.
    """

    network: Network
    contract_type: ContractKind
    contract_name: str
    contract_address: str
    event_name: str
    block_number: int
    transaction_hash: str
    args: Mapping[str, Any]
    timestamp: int | None = None
    log_index: int | None = None
    indexed_fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.args, MappingProxyType):
            object.__setattr__(self, "args", MappingProxyType(dict(self.args)))

    @property
    def market_id(self) -> str | None:
        value = self.args.get("marketId")
        return None if value is None else str(value)

    @property
    def dedup_key(self) -> tuple[Any, ...]:
        indexed = tuple((name, self.args.get(name)) for name in self.indexed_fields)
        return (self.transaction_hash, self.event_name, indexed)


@dataclass(frozen=True, slots=True)
class ActivityDetails:
    amount: int | None = None
    side: bool | None = None
    outcome: bool | None = None
    winnings: int | None = None


@dataclass(frozen=True, slots=True)
class UserActivity:
    """One user-facing action derived from a single contract log."""

    id: str
    type: ActivityType
    address: str
    market_id: str
    timestamp: int | None
    transaction_hash: str
    network: Network
    question: str
    category: str | None = None
    details: ActivityDetails = field(default_factory=ActivityDetails)


@dataclass(frozen=True, slots=True)
class MarketInfo:
    """Display context for a market, resolved from logs or an external lookup."""

    market_id: str
    question: str
    category: str | None = None
    description: str | None = None
    source: str | None = None
    end_time: int | None = None


@dataclass(frozen=True, slots=True)
class UserLeaderboardStats:
    address: str
    total_invested: int = 0
    total_winnings: int = 0
    total_pnl: int = 0
    total_volume: int = 0
    total_markets: int = 0
    resolved_markets: int = 0
    winning_markets: int = 0
    win_rate: float = 0.0
    current_streak: int = 0
    best_streak: int = 0
    risk_adjusted_return: float = 0.0
    last_activity: int | None = None
    username: str | None = None
    rank: int = 0


@dataclass(frozen=True, slots=True)
class MarketParticipant:
    address: str
    total_yes: int
    total_no: int
    total_investment: int
    last_side: bool
    investment_percentage: float = 0.0
