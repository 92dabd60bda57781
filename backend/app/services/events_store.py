"""In-memory cache of contract logs shared by every derived view."""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Sequence

from loguru import logger

from app.core.config import Settings
from app.domain.models import ContractLog, EventName, Network
from ingestion.client import ChainLogReader, build_readers
from ingestion.normalize import normalize_address
from ingestion.service import collect_network_logs, dedupe_logs, sort_logs

# Every args key that can carry a participant address, across all event shapes.
USER_ADDRESS_FIELDS: tuple[str, ...] = (
    "creator",
    "buyer",
    "seller",
    "resolver",
    "user",
    "claimant",
    "referrer",
    "referee",
    "oldAdmin",
    "newAdmin",
    "oldContract",
    "newContract",
)

LogCollector = Callable[[Sequence[ChainLogReader]], Awaitable[list[ContractLog]]]


def _involves(log: ContractLog, address: str) -> bool:
    for field in USER_ADDRESS_FIELDS:
        value = log.args.get(field)
        if isinstance(value, str) and value.lower() == address:
            return True
    return False


def fingerprint_logs(logs: Iterable[ContractLog]) -> str:
    """Content hash of a log snapshot, used to key memoized derivations."""

    digest = hashlib.sha256()
    for log in logs:
        record = [
            log.network.value,
            log.contract_address,
            log.event_name,
            log.block_number,
            log.transaction_hash,
            log.log_index,
            log.timestamp,
            sorted((key, str(value)) for key, value in log.args.items()),
        ]
        digest.update(json.dumps(record, default=str).encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


class EventStore:
    """Single source of truth for contract logs across all networks.

    At most one fetch runs at a time; callers arriving while one is in
    flight get the current snapshot back immediately and can use
    :meth:`wait_for_fetch` when they need the fresh result.
    """

    def __init__(
        self,
        readers: Sequence[ChainLogReader],
        *,
        collector: LogCollector = collect_network_logs,
        cache_ttl_seconds: float = 300.0,
    ) -> None:
        self._readers = list(readers)
        self._collector = collector
        self.cache_ttl_seconds = cache_ttl_seconds
        self._logs: tuple[ContractLog, ...] = ()
        self._fingerprint = fingerprint_logs(())
        self._inflight: asyncio.Task[tuple[ContractLog, ...]] | None = None
        self.loading = False
        self.error: str | None = None
        self.last_fetched: datetime | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EventStore":
        return cls(build_readers(settings), cache_ttl_seconds=settings.cache_ttl_seconds)

    @property
    def logs(self) -> tuple[ContractLog, ...]:
        return self._logs

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def networks(self) -> list[Network]:
        return [reader.network for reader in self._readers]

    # ------------------------------------------------------------------
    # Fetching

    async def fetch_all_logs(self) -> tuple[ContractLog, ...]:
        if self.loading:
            logger.info("Log fetch already in flight; returning cached snapshot")
            return self._logs

        self.loading = True
        self._inflight = asyncio.ensure_future(self._fetch())
        return await self._inflight

    async def _fetch(self) -> tuple[ContractLog, ...]:
        logger.info("Fetching contract logs from {} networks", len(self._readers))
        try:
            collected = await self._collector(self._readers)
        except Exception as exc:
            self.error = str(exc) or exc.__class__.__name__
            logger.error("Fetching contract logs failed: {}", self.error)
            raise
        else:
            self._commit(collected)
            self.error = None
            self.last_fetched = datetime.now(timezone.utc)
            logger.info("Stored {} contract logs", len(self._logs))
            return self._logs
        finally:
            self.loading = False

    async def wait_for_fetch(self) -> tuple[ContractLog, ...]:
        """Await the in-flight fetch, if any, and return the resulting snapshot."""

        inflight = self._inflight
        if inflight is not None and not inflight.done():
            return await asyncio.shield(inflight)
        return self._logs

    def is_stale(self, max_age_seconds: float | None = None) -> bool:
        if self.last_fetched is None:
            return True
        max_age = self.cache_ttl_seconds if max_age_seconds is None else max_age_seconds
        age = (datetime.now(timezone.utc) - self.last_fetched).total_seconds()
        return age > max_age

    async def ensure_fresh(self, max_age_seconds: float | None = None) -> tuple[ContractLog, ...]:
        if self.is_stale(max_age_seconds):
            return await self.fetch_all_logs()
        return self._logs

    def _commit(self, logs: Iterable[ContractLog]) -> None:
        snapshot = tuple(sort_logs(dedupe_logs(logs)))
        self._fingerprint = fingerprint_logs(snapshot)
        self._logs = snapshot

    def set_logs(self, logs: Iterable[ContractLog]) -> None:
        self._commit(logs)

    def reset(self) -> None:
        self._commit(())
        self.error = None
        self.last_fetched = None

    async def aclose(self) -> None:
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            inflight.cancel()
        for reader in self._readers:
            await reader.aclose()

    # ------------------------------------------------------------------
    # Filters over the current snapshot

    def get_logs_by_event(self, event_name: str | EventName) -> list[ContractLog]:
        return self.query(event=event_name)

    def get_logs_by_network(self, network: str | Network) -> list[ContractLog]:
        return self.query(network=network)

    def get_user_logs(self, address: str) -> list[ContractLog]:
        if not normalize_address(address):
            return []
        return self.query(user=address)

    def get_market_logs(self, market_id: str | int) -> list[ContractLog]:
        return self.query(market=market_id)

    def query(
        self,
        *,
        event: str | EventName | None = None,
        network: str | Network | None = None,
        user: str | None = None,
        market: str | int | None = None,
    ) -> list[ContractLog]:
        """Logs matching every given criterion, in snapshot order."""

        event_name = event.value if isinstance(event, EventName) else event
        network_name = network.value if isinstance(network, Network) else network
        target = normalize_address(user) if user is not None else None
        market_id = str(market) if market is not None else None

        matched: list[ContractLog] = []
        for log in self._logs:
            if event_name is not None and log.event_name != event_name:
                continue
            if network_name is not None and log.network.value != network_name:
                continue
            if market_id is not None and log.market_id != market_id:
                continue
            if target is not None and not _involves(log, target):
                continue
            matched.append(log)
        return matched

    def get_recent_logs(self, count: int = 10) -> list[ContractLog]:
        return list(self._logs[: max(count, 0)])

    def summary(self) -> dict[str, dict[str, int]]:
        """Per-network event counts for the current snapshot."""

        counts: dict[str, Counter[str]] = defaultdict(Counter)
        for log in self._logs:
            counts[log.network.value][log.event_name] += 1
        return {network: dict(sorted(events.items())) for network, events in sorted(counts.items())}
