from __future__ import annotations

import itertools
import sys
from pathlib import Path
from typing import Any, Callable

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import NetworkSettings, Settings
from app.domain.models import ContractKind, ContractLog, EventName, Network
from app.services.events_store import EventStore

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
CORE_ADDRESS = "0x2d6614fe45da6aa7e60077434129a51631ac702a"
CLAIMS_ADDRESS = "0xa8479e513d8643001285d9af6277602b20676b95"

LogFactory = Callable[..., ContractLog]

_CLAIMS_EVENTS = {
    EventName.WINNINGS_CLAIMED.value,
    EventName.REWARDS_DISBURSED.value,
    EventName.CORE_CONTRACT_SET.value,
}


@pytest.fixture
def make_log() -> LogFactory:
    """Build a normalized ``ContractLog`` with a unique transaction hash per call."""

    counter = itertools.count(1)

    def _make(
        event_name: str | EventName,
        *,
        network: Network = Network.CELO_MAINNET,
        block_number: int | None = None,
        timestamp: int | None = 1_700_000_000,
        transaction_hash: str | None = None,
        log_index: int = 0,
        **args: Any,
    ) -> ContractLog:
        sequence = next(counter)
        name = event_name.value if isinstance(event_name, EventName) else event_name
        kind = ContractKind.CLAIMS if name in _CLAIMS_EVENTS else ContractKind.CORE
        return ContractLog(
            network=network,
            contract_type=kind,
            contract_name=kind.contract_name,
            contract_address=CLAIMS_ADDRESS if kind is ContractKind.CLAIMS else CORE_ADDRESS,
            event_name=name,
            block_number=block_number if block_number is not None else 1_000 + sequence,
            transaction_hash=transaction_hash or f"0x{sequence:064x}",
            args=args,
            timestamp=timestamp,
            log_index=log_index,
            indexed_fields=tuple(key for key in ("marketId", "creator", "buyer", "resolver", "claimant", "user") if key in args),
        )

    return _make


@pytest.fixture
def scenario_logs(make_log: LogFactory) -> list[ContractLog]:
    """Two resolved markets: Alice wins market 1 and loses market 2, Bob wins market 2."""

    return [
        make_log(
            EventName.MARKET_CREATED,
            timestamp=1_700_000_000,
            marketId=1,
            creator=CAROL,
            question="Will CELO close above $1?",
            description="",
            source="",
            endTime=1_700_100_000,
            creationFee=10,
        ),
        make_log(
            EventName.MARKET_CREATED,
            timestamp=1_700_000_100,
            marketId=2,
            creator=CAROL,
            question="Will it rain in Lisbon?",
            description="",
            source="",
            endTime=1_700_100_000,
            creationFee=10,
        ),
        make_log(EventName.SHARES_BOUGHT, timestamp=1_700_000_200, marketId=1, buyer=ALICE, side=True, amount=100),
        make_log(EventName.SHARES_BOUGHT, timestamp=1_700_000_300, marketId=2, buyer=ALICE, side=False, amount=50),
        make_log(EventName.SHARES_BOUGHT, timestamp=1_700_000_400, marketId=2, buyer=BOB, side=True, amount=70),
        make_log(EventName.MARKET_RESOLVED, timestamp=1_700_200_000, marketId=1, resolver=CAROL, outcome=True),
        make_log(EventName.MARKET_RESOLVED, timestamp=1_700_200_100, marketId=2, resolver=CAROL, outcome=True),
        make_log(EventName.WINNINGS_CLAIMED, timestamp=1_700_300_000, marketId=1, claimant=ALICE, amount=180),
        make_log(EventName.WINNINGS_CLAIMED, timestamp=1_700_300_100, marketId=2, claimant=BOB, amount=120),
        make_log(EventName.USERNAME_SET, timestamp=1_700_000_050, user=ALICE, username="alice"),
    ]


@pytest.fixture
def store(scenario_logs: list[ContractLog]) -> EventStore:
    event_store = EventStore([])
    event_store.set_logs(scenario_logs)
    return event_store


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        networks={
            Network.CELO_MAINNET: NetworkSettings(
                rpc_url="https://rpc.celo.test",
                core_address=CORE_ADDRESS,
                claims_address=CLAIMS_ADDRESS,
            ),
            Network.BASE_MAINNET: NetworkSettings(rpc_url="https://rpc.base.test", block_time_seconds=2.0),
        },
        rpc_retry_delay_seconds=0,
        lookback_days=1,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings
