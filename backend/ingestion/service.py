from __future__ import annotations

from collections.abc import Sequence
from typing import Iterable

from loguru import logger

from app.domain.models import ContractLog

from .client import ChainLogReader


class IngestionError(RuntimeError):
    """Raised when no configured network produced any data."""


def _sort_key(log: ContractLog) -> tuple[int, int, int, int]:
    has_timestamp = 0 if log.timestamp is None else 1
    return (
        has_timestamp,
        log.timestamp or 0,
        log.block_number,
        log.log_index if log.log_index is not None else -1,
    )


def sort_logs(logs: Iterable[ContractLog]) -> list[ContractLog]:
    """Newest first; logs with an unknown timestamp sort last."""

    return sorted(logs, key=_sort_key, reverse=True)


def dedupe_logs(logs: Iterable[ContractLog]) -> list[ContractLog]:
    """Drop repeated logs, keeping the first occurrence of each."""

    seen: set[tuple] = set()
    unique: list[ContractLog] = []
    for log in logs:
        key = (log.network, log.dedup_key, log.log_index)
        if key in seen:
            continue
        seen.add(key)
        unique.append(log)
    return unique


async def collect_network_logs(readers: Sequence[ChainLogReader]) -> list[ContractLog]:
    """Run every reader in turn and merge their logs.

    A reader that raises contributes nothing; when all of them raise the
    whole collection fails with :class:`IngestionError`.
    """

    collected: list[ContractLog] = []
    failures: list[str] = []
    for reader in readers:
        try:
            network_logs = await reader.fetch_network_logs()
        except Exception as exc:
            logger.error("Fetching logs from {} failed: {}", reader.network.value, exc)
            failures.append(f"{reader.network.value}: {exc}")
            continue
        collected.extend(network_logs)

    if readers and len(failures) == len(readers):
        raise IngestionError("All networks failed: " + "; ".join(failures))

    logger.info("Collected {} logs from {} networks", len(collected), len(readers) - len(failures))
    return sort_logs(dedupe_logs(collected))
