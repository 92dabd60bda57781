from __future__ import annotations

import re
from typing import Any

from app.domain.models import ContractKind, ContractLog, Network, RawChainEvent

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: str | None) -> str:
    return (value or "").strip().lower()


def _normalize_arg(value: Any) -> Any:
    if is_address(value):
        return value.lower()
    if isinstance(value, list):
        return tuple(_normalize_arg(item) for item in value)
    return value


def normalize_args(args: dict[str, Any] | Any) -> dict[str, Any]:
    """Return a copy of decoded event args with addresses in canonical lower case."""

    return {str(key): _normalize_arg(value) for key, value in dict(args or {}).items()}


def normalize_log(
    event: RawChainEvent,
    *,
    network: Network,
    contract_type: ContractKind,
    timestamp: int | None,
) -> ContractLog:
    return ContractLog(
        network=network,
        contract_type=contract_type,
        contract_name=contract_type.contract_name,
        contract_address=normalize_address(event.address),
        event_name=event.event_name,
        block_number=int(event.block_number),
        transaction_hash=event.transaction_hash.lower(),
        args=normalize_args(event.args),
        timestamp=int(timestamp) if timestamp is not None else None,
        log_index=event.log_index,
        indexed_fields=tuple(event.indexed_fields),
    )
