from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any, Iterable

from loguru import logger

from app.core.config import ZERO_ADDRESS, NetworkSettings, Settings, settings as default_settings
from app.domain.models import ContractKind, ContractLog, Network, RawChainEvent

from .abi import MARKET_EVENTS, EventSchema, LogDecodeError, decode_log
from .normalize import normalize_address, normalize_log
from .rpc import JsonRpcClient

SECONDS_PER_DAY = 24 * 60 * 60


def lookback_blocks(lookback_days: int, block_time_seconds: float) -> int:
    """Translate a day window into a block count using an assumed block time."""

    return int(SECONDS_PER_DAY // block_time_seconds) * int(lookback_days)


def block_ranges(from_block: int, to_block: int, chunk: int | None) -> Iterable[tuple[int, int]]:
    if not chunk or to_block - from_block + 1 <= chunk:
        yield from_block, to_block
        return
    start = from_block
    while start <= to_block:
        end = min(start + chunk - 1, to_block)
        yield start, end
        start = end + 1


class ChainLogReader:
    """Scans a recent block window of one network for the configured contract events."""

    def __init__(
        self,
        network: Network,
        rpc: JsonRpcClient,
        *,
        contracts: Mapping[ContractKind, str] | None = None,
        schemas: Sequence[EventSchema] = MARKET_EVENTS,
        lookback_days: int = 21,
        block_time_seconds: float = 5.0,
        log_chunk_blocks: int | None = None,
        timestamp_concurrency: int = 8,
    ) -> None:
        self.network = network
        self.rpc = rpc
        self.contracts = dict(contracts or {})
        self.schemas = tuple(schemas)
        self.lookback_days = lookback_days
        self.block_time_seconds = block_time_seconds
        self.log_chunk_blocks = log_chunk_blocks
        self.timestamp_concurrency = max(1, timestamp_concurrency)

    @classmethod
    def from_settings(
        cls,
        network: Network,
        network_settings: NetworkSettings,
        *,
        settings: Settings | None = None,
    ) -> "ChainLogReader":
        settings = settings or default_settings
        rpc = JsonRpcClient(
            str(network_settings.rpc_url),
            timeout=settings.rpc_timeout_seconds,
            retry_count=settings.rpc_retry_count,
            retry_delay=settings.rpc_retry_delay_seconds,
        )
        return cls(
            network,
            rpc,
            contracts=network_settings.contracts,
            lookback_days=settings.lookback_days,
            block_time_seconds=network_settings.block_time_seconds,
            log_chunk_blocks=settings.log_chunk_blocks,
            timestamp_concurrency=settings.timestamp_concurrency,
        )

    async def fetch_network_logs(
        self,
        contracts: Mapping[ContractKind, str] | None = None,
        schemas: Sequence[EventSchema] | None = None,
    ) -> list[ContractLog]:
        contracts = self.contracts if contracts is None else contracts
        schemas = self.schemas if schemas is None else tuple(schemas)

        head = await self.rpc.block_number()
        from_block = max(0, head - lookback_blocks(self.lookback_days, self.block_time_seconds))
        logger.info(
            "Scanning {} blocks {}-{} ({} days)",
            self.network.value,
            from_block,
            head,
            self.lookback_days,
        )

        matched: list[tuple[ContractKind, RawChainEvent]] = []
        for contract_type, address in contracts.items():
            address = normalize_address(address)
            if not address or address == ZERO_ADDRESS:
                logger.info(
                    "Skipping {} on {}: contract not deployed",
                    contract_type.contract_name,
                    self.network.value,
                )
                continue
            for schema in schemas:
                try:
                    events = await self._fetch_events(address, schema, from_block, head)
                except Exception as exc:
                    logger.warning(
                        "Failed to fetch {} from {} on {}: {}",
                        schema.name,
                        contract_type.contract_name,
                        self.network.value,
                        exc,
                    )
                    continue
                logger.debug(
                    "Found {} {} events on {} {}",
                    len(events),
                    schema.name,
                    self.network.value,
                    contract_type.contract_name,
                )
                matched.extend((contract_type, event) for event in events)

        timestamps = await self.resolve_timestamps({event.block_number for _, event in matched})
        logs = [
            normalize_log(
                event,
                network=self.network,
                contract_type=contract_type,
                timestamp=timestamps.get(event.block_number),
            )
            for contract_type, event in matched
        ]
        logger.info("Fetched {} logs from {}", len(logs), self.network.value)
        return logs

    async def _fetch_events(
        self,
        address: str,
        schema: EventSchema,
        from_block: int,
        to_block: int,
    ) -> list[RawChainEvent]:
        events: list[RawChainEvent] = []
        for start, end in block_ranges(from_block, to_block, self.log_chunk_blocks):
            raw_logs = await self.rpc.get_logs(
                address=address,
                topics=[schema.topic],
                from_block=start,
                to_block=end,
            )
            for raw_log in raw_logs:
                if raw_log.get("removed"):
                    continue
                try:
                    events.append(decode_log(schema, raw_log))
                except LogDecodeError as exc:
                    logger.warning(
                        "Skipping undecodable {} log in tx {} on {}: {}",
                        schema.name,
                        raw_log.get("transactionHash"),
                        self.network.value,
                        exc,
                    )
        return events

    async def resolve_timestamps(self, block_numbers: Iterable[int]) -> dict[int, int | None]:
        """Read each unique block once; unreadable blocks map to ``None``."""

        semaphore = asyncio.Semaphore(self.timestamp_concurrency)

        async def _lookup(number: int) -> tuple[int, int | None]:
            async with semaphore:
                try:
                    return number, await self.rpc.get_block_timestamp(number)
                except Exception as exc:
                    logger.warning(
                        "Timestamp unavailable for block {} on {}: {}",
                        number,
                        self.network.value,
                        exc,
                    )
                    return number, None

        results = await asyncio.gather(*(_lookup(number) for number in sorted(set(block_numbers))))
        return dict(results)

    async def aclose(self) -> None:
        await self.rpc.aclose()

    async def __aenter__(self) -> "ChainLogReader":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()


def build_readers(settings: Settings | None = None) -> list[ChainLogReader]:
    """Create one reader per network that has at least one deployed contract."""

    settings = settings or default_settings
    readers: list[ChainLogReader] = []
    deployed = settings.deployed_networks
    for network in settings.networks:
        if network not in deployed:
            logger.info("Skipping {}: contracts not deployed yet", network.value)
            continue
        readers.append(ChainLogReader.from_settings(network, deployed[network], settings=settings))
    return readers
