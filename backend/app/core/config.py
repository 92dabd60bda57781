from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.domain.models import ContractKind, Network

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _normalize_address(value: Any) -> str:
    if value in (None, ""):
        return ZERO_ADDRESS
    candidate = str(value).strip().lower()
    if not candidate.startswith("0x") or len(candidate) != 42:
        raise ValueError(f"'{value}' is not a 20-byte hex address")
    try:
        int(candidate[2:], 16)
    except ValueError as exc:
        raise ValueError(f"'{value}' is not a 20-byte hex address") from exc
    return candidate


class NetworkSettings(BaseModel):
    """RPC endpoint and deployed contract pair for one chain."""

    rpc_url: AnyUrl
    core_address: str = ZERO_ADDRESS
    claims_address: str = ZERO_ADDRESS
    block_time_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Assumed seconds per block used to translate the lookback window into blocks",
    )

    @field_validator("core_address", "claims_address", mode="before")
    @classmethod
    def _validate_address(cls, value: Any) -> str:
        return _normalize_address(value)

    @property
    def contracts(self) -> dict[ContractKind, str]:
        return {
            ContractKind.CORE: self.core_address,
            ContractKind.CLAIMS: self.claims_address,
        }

    @property
    def is_deployed(self) -> bool:
        return any(address != ZERO_ADDRESS for address in self.contracts.values())


def _default_networks() -> dict[Network, NetworkSettings]:
    return {
        Network.CELO_MAINNET: NetworkSettings(
            rpc_url="https://forno.celo.org",
            core_address="0x2D6614fe45da6Aa7e60077434129a51631AC702A",
            claims_address="0xA8479E513D8643001285D9AF6277602B20676B95",
        ),
        Network.BASE_MAINNET: NetworkSettings(
            rpc_url="https://mainnet.base.org",
            block_time_seconds=2.0,
        ),
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    networks: dict[Network, NetworkSettings] = Field(
        default_factory=_default_networks,
        description="Per-network RPC endpoint and contract addresses, scanned in declaration order",
    )
    lookback_days: int = Field(
        default=21,
        ge=1,
        description="Number of trailing days of blocks scanned for contract events",
    )
    rpc_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout applied to every JSON-RPC request",
    )
    rpc_retry_count: int = Field(
        default=3,
        ge=0,
        description="Number of retries for transient JSON-RPC failures",
    )
    rpc_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay before the first JSON-RPC retry; doubles per attempt",
    )
    log_chunk_blocks: int | None = Field(
        default=None,
        ge=1,
        description="Split eth_getLogs requests into windows of at most this many blocks (unset scans in one call)",
    )
    timestamp_concurrency: int = Field(
        default=8,
        ge=1,
        description="Maximum concurrent block lookups while resolving log timestamps",
    )
    cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Age after which cached logs are considered stale by ensure_fresh",
    )
    refresh_on_startup: bool = Field(
        default=False,
        description="Fetch contract logs once when the API boots",
    )

    @property
    def deployed_networks(self) -> dict[Network, NetworkSettings]:
        return {
            network: config
            for network, config in self.networks.items()
            if config.is_deployed
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
