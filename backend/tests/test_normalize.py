from __future__ import annotations

from types import MappingProxyType

import pytest

from app.domain.models import ContractKind, Network, RawChainEvent
from ingestion.normalize import is_address, normalize_address, normalize_args, normalize_log

MIXED = "0x" + "AbCd" * 10


@pytest.fixture
def raw_event() -> RawChainEvent:
    return RawChainEvent(
        address="0x2D6614fe45da6Aa7e60077434129a51631AC702A",
        event_name="SharesBought",
        args={"marketId": 3, "buyer": MIXED, "side": False, "amount": 2**200},
        block_number=42,
        transaction_hash="0x" + "AA" * 32,
        log_index=1,
        indexed_fields=("marketId", "buyer"),
    )


def test_is_address():
    assert is_address(MIXED)
    assert not is_address("0x1234")
    assert not is_address(None)
    assert not is_address("alice")


def test_normalize_address_handles_empty_values():
    assert normalize_address(None) == ""
    assert normalize_address(f"  {MIXED} ") == MIXED.lower()


def test_normalize_args_lowercases_addresses_only():
    args = normalize_args({"buyer": MIXED, "question": "Is 0xABC a token?", "owners": [MIXED]})
    assert args["buyer"] == MIXED.lower()
    assert args["question"] == "Is 0xABC a token?"
    assert args["owners"] == (MIXED.lower(),)


def test_normalize_log_builds_canonical_record(raw_event):
    log = normalize_log(raw_event, network=Network.CELO_MAINNET, contract_type=ContractKind.CORE, timestamp=1_700_000_000)

    assert log.network is Network.CELO_MAINNET
    assert log.contract_name == "PredictionMarketCore"
    assert log.contract_address == "0x2d6614fe45da6aa7e60077434129a51631ac702a"
    assert log.transaction_hash == "0x" + "aa" * 32
    assert log.args["buyer"] == MIXED.lower()
    assert log.args["amount"] == 2**200
    assert log.market_id == "3"
    assert isinstance(log.args, MappingProxyType)
    with pytest.raises(TypeError):
        log.args["amount"] = 0  # type: ignore[index]


def test_normalize_log_is_idempotent(raw_event):
    first = normalize_log(raw_event, network=Network.BASE_MAINNET, contract_type=ContractKind.CLAIMS, timestamp=None)
    again = normalize_log(
        RawChainEvent(
            address=first.contract_address,
            event_name=first.event_name,
            args=first.args,
            block_number=first.block_number,
            transaction_hash=first.transaction_hash,
            log_index=first.log_index,
            indexed_fields=first.indexed_fields,
        ),
        network=Network.BASE_MAINNET,
        contract_type=ContractKind.CLAIMS,
        timestamp=None,
    )
    assert again == first
    assert first.timestamp is None
    assert first.dedup_key == ("0x" + "aa" * 32, "SharesBought", (("marketId", 3), ("buyer", MIXED.lower())))
