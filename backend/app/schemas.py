from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator

from app.domain.models import ActivityType, ContractKind, Network, Timeframe


def _stringify_int(value: Any) -> Any:
    # Wei amounts exceed the float precision of most JSON consumers.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_stringify_int(item) for item in value]
    return value


class ContractLog(BaseModel):
    network: Network
    contract_type: ContractKind
    contract_name: str
    contract_address: str
    event_name: str
    block_number: int
    transaction_hash: str
    log_index: int | None = None
    timestamp: int | None = None
    args: dict[str, Any] = Field(default_factory=dict)

    model_config = {"from_attributes": True}

    @field_validator("args", mode="before")
    @classmethod
    def _serialize_args(cls, value: Any) -> dict[str, Any]:
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return {str(key): _stringify_int(item) for key, item in value.items()}
        raise ValueError("args must be a mapping")


class LogList(BaseModel):
    total: int
    items: list[ContractLog]


class ActivityDetails(BaseModel):
    amount: str | None = None
    side: bool | None = None
    outcome: bool | None = None
    winnings: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("amount", "winnings", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Any:
        return _stringify_int(value)


class UserActivity(BaseModel):
    id: str
    type: ActivityType
    address: str
    market_id: str
    timestamp: int | None = None
    transaction_hash: str
    network: Network
    question: str
    category: str | None = None
    details: ActivityDetails

    model_config = {"from_attributes": True}


class UserStats(BaseModel):
    address: str
    username: str | None = None
    total_invested: str
    total_winnings: str
    total_pnl: str
    total_volume: str
    total_markets: int
    resolved_markets: int
    winning_markets: int
    win_rate: float
    current_streak: int
    best_streak: int
    risk_adjusted_return: float
    last_activity: int | None = None
    rank: int = 0

    model_config = {"from_attributes": True}

    @field_validator(
        "total_invested", "total_winnings", "total_pnl", "total_volume", mode="before"
    )
    @classmethod
    def _coerce_amount(cls, value: Any) -> Any:
        return _stringify_int(value)


class Leaderboard(BaseModel):
    timeframe: Timeframe
    total: int
    items: list[UserStats]


class UserRank(BaseModel):
    address: str
    rank: int


class MarketParticipant(BaseModel):
    address: str
    total_yes: str
    total_no: str
    total_investment: str
    last_side: bool
    investment_percentage: float

    model_config = {"from_attributes": True}

    @field_validator("total_yes", "total_no", "total_investment", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Any:
        return _stringify_int(value)


class StoreStatus(BaseModel):
    loading: bool
    error: str | None = None
    last_fetched: datetime | None = None
    total_logs: int
    fingerprint: str
    networks: list[Network]
    events_by_network: dict[str, dict[str, int]] = Field(default_factory=dict)
