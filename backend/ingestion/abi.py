"""Event schema registry and log decoding for the prediction-market contracts."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, encode_hex, keccak

from app.domain.models import RawChainEvent

# Core contract events first, then the claims contract events.
MARKET_EVENT_SIGNATURES: tuple[str, ...] = (
    "event MarketCreated(uint256 indexed marketId, address indexed creator, string question, string description, string source, uint256 endTime, uint256 creationFee)",
    "event SharesBought(uint256 indexed marketId, address indexed buyer, bool side, uint256 amount)",
    "event MarketResolved(uint256 indexed marketId, address indexed resolver, bool outcome)",
    "event UsernameSet(address indexed user, string username)",
    "event UsernameChanged(address indexed user, string oldUsername, string newUsername)",
    "event ClaimsContractSet(address indexed oldContract, address indexed newContract)",
    "event RewardsDisbursed(uint256 indexed marketId, address indexed claimant, uint256 amount)",
    "event WinningsClaimed(uint256 indexed marketId, address indexed claimant, uint256 amount)",
    "event AdminChanged(address indexed oldAdmin, address indexed newAdmin)",
    "event CoreContractSet(address indexed oldContract, address indexed newContract)",
)

_SIGNATURE_RE = re.compile(r"^\s*event\s+(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*\((?P<params>.*)\)\s*$")


class LogDecodeError(ValueError):
    """Raised when a raw log does not match the schema it was requested with."""


@dataclass(frozen=True, slots=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False

    @property
    def is_dynamic(self) -> bool:
        return self.type in {"string", "bytes"} or self.type.endswith("]") or self.type.startswith("(")


@dataclass(frozen=True, slots=True)
class EventSchema:
    name: str
    inputs: tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(item.type for item in self.inputs)})"

    @property
    def topic(self) -> str:
        return encode_hex(keccak(text=self.signature))

    @property
    def indexed_inputs(self) -> tuple[EventInput, ...]:
        return tuple(item for item in self.inputs if item.indexed)

    @property
    def data_inputs(self) -> tuple[EventInput, ...]:
        return tuple(item for item in self.inputs if not item.indexed)

    @property
    def address_fields(self) -> tuple[str, ...]:
        return tuple(item.name for item in self.inputs if item.type == "address")


def parse_event_signature(signature: str) -> EventSchema:
    """Parse a human-readable ``event Name(type [indexed] name, ...)`` declaration."""

    match = _SIGNATURE_RE.match(signature)
    if not match:
        raise ValueError(f"Unparseable event signature: {signature}")

    inputs: list[EventInput] = []
    params = match.group("params").strip()
    if params:
        for position, raw_param in enumerate(params.split(",")):
            tokens = raw_param.split()
            if not tokens:
                raise ValueError(f"Empty parameter in event signature: {signature}")
            indexed = "indexed" in tokens[1:]
            names = [token for token in tokens[1:] if token != "indexed"]
            inputs.append(
                EventInput(
                    name=names[0] if names else f"arg{position}",
                    type=_canonical_type(tokens[0]),
                    indexed=indexed,
                )
            )
    return EventSchema(name=match.group("name"), inputs=tuple(inputs))


def _canonical_type(type_name: str) -> str:
    if type_name == "uint":
        return "uint256"
    if type_name == "int":
        return "int256"
    return type_name


def build_event_schemas(signatures: Iterable[str] = MARKET_EVENT_SIGNATURES) -> tuple[EventSchema, ...]:
    return tuple(parse_event_signature(signature) for signature in signatures)


MARKET_EVENTS: tuple[EventSchema, ...] = build_event_schemas()


def _json_friendly(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return encode_hex(bytes(value))
    if isinstance(value, (list, tuple)):
        return [_json_friendly(item) for item in value]
    return value


def decode_log(schema: EventSchema, raw_log: Mapping[str, Any]) -> RawChainEvent:
    """Decode one ``eth_getLogs`` entry against ``schema``."""

    topics = [str(topic).lower() for topic in raw_log.get("topics") or []]
    if not topics or topics[0] != schema.topic.lower():
        raise LogDecodeError(f"Log topic does not match {schema.name}")

    indexed_inputs = schema.indexed_inputs
    if len(topics) - 1 != len(indexed_inputs):
        raise LogDecodeError(
            f"{schema.name} expects {len(indexed_inputs)} indexed topics, got {len(topics) - 1}"
        )

    args: dict[str, Any] = {}
    try:
        for item, topic in zip(indexed_inputs, topics[1:]):
            if item.is_dynamic:
                # Dynamic indexed values are only available as their keccak hash.
                args[item.name] = topic
            else:
                (value,) = abi_decode([item.type], decode_hex(topic))
                args[item.name] = _json_friendly(value)

        data_inputs = schema.data_inputs
        if data_inputs:
            values = abi_decode([item.type for item in data_inputs], decode_hex(raw_log.get("data") or "0x"))
            for item, value in zip(data_inputs, values):
                args[item.name] = _json_friendly(value)
    except (DecodingError, ValueError, TypeError) as exc:
        raise LogDecodeError(f"Failed to decode {schema.name}: {exc}") from exc

    try:
        block_number = _quantity(raw_log["blockNumber"])
        transaction_hash = str(raw_log["transactionHash"]).lower()
    except (KeyError, TypeError, ValueError) as exc:
        raise LogDecodeError(f"{schema.name} log is missing provenance fields") from exc

    log_index = raw_log.get("logIndex")
    return RawChainEvent(
        address=str(raw_log.get("address") or ""),
        event_name=schema.name,
        args=args,
        block_number=block_number,
        transaction_hash=transaction_hash,
        log_index=_quantity(log_index) if log_index is not None else None,
        indexed_fields=tuple(item.name for item in indexed_inputs),
    )


def _quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)
