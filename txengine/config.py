from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class ChainFamily(str, Enum):
    """Signing and endpoint shape of a network."""
    COSMOS = "cosmos"
    EVM = "evm"
    SOLANA = "solana"


# Fee units for families whose native token has a fixed base unit
_NATIVE_DENOMS = {
    ChainFamily.EVM: "wei",
    ChainFamily.SOLANA: "lamports",
}


class ReplayPolicy(BaseModel):
    """How a destination chain reports an already-consumed cross-domain message."""

    enabled: bool = Field(
        default=False,
        description="Treat a replayed receive-message rejection as success (off unless the chain is known to reject replays)",
    )
    markers: List[str] = Field(
        default_factory=lambda: ["nonce already used"],
        description="Lower-cased substrings identifying a replay rejection",
    )

    def matches(self, message: Optional[str]) -> bool:
        if not self.enabled or not message:
            return False
        lowered = message.lower()
        return any(marker.lower() in lowered for marker in self.markers)


class ChainConfig(BaseModel):
    """Per-network configuration consumed by the chain backends and the submitter."""

    name: str = Field(description="Chain registry name, e.g. 'osmosis' or 'noble'")
    family: ChainFamily = Field(default=ChainFamily.COSMOS)
    endpoint_url: str = Field(description="REST (Cosmos) or JSON-RPC (EVM/Solana) endpoint")
    chain_id: str = Field(default="", description="Chain id used in the signing payload")
    denom: str = Field(default="", description="Minimum fee denomination")
    bech32_prefix: str = Field(default="", description="Address prefix for Cosmos chains")

    gas_price: Optional[float] = Field(
        default=None,
        description="Price per gas unit; falls back to the registry or the node when unset",
    )
    gas_adjustment: float = Field(default=1.3, gt=0, description="Simulation safety multiplier")

    poll_interval_seconds: Optional[float] = Field(default=None, gt=0, description="Overrides the global tx poll interval")
    poll_timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Overrides the global tx poll timeout")

    signer_address: str = Field(default="", description="Address of the configured signer")
    private_key: SecretStr = Field(default=SecretStr(""), description="Hex (or base58 for Solana) private key")

    replay_policy: ReplayPolicy = Field(default_factory=ReplayPolicy)

    # CCTP
    cctp_domain: Optional[int] = Field(default=None, description="CCTP domain identifier")
    token_messenger_address: str = Field(default="", description="EVM TokenMessenger contract")
    message_transmitter_address: str = Field(default="", description="EVM MessageTransmitter contract")

    @model_validator(mode="after")
    def default_denom(self) -> "ChainConfig":
        if not self.denom and self.family in _NATIVE_DENOMS:
            self.denom = _NATIVE_DENOMS[self.family]
        return self

    @property
    def uses_sequence(self) -> bool:
        return self.family != ChainFamily.SOLANA


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_prefix="TXENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="auto", description="json, console, or auto (console at DEBUG)")

    # HTTP
    request_timeout_seconds: float = Field(default=30.0, description="Request timeout")

    # Confirmation polling defaults
    tx_poll_interval_seconds: float = Field(default=1.0, gt=0, description="Transaction lookup interval")
    tx_poll_timeout_seconds: float = Field(default=60.0, gt=0, description="Transaction lookup budget")
    balance_poll_interval_seconds: float = Field(default=5.0, gt=0)
    balance_poll_max_attempts: int = Field(default=20, ge=1)

    # Gas price registry
    gas_price_registry_url: str = Field(
        default="https://raw.githubusercontent.com/cosmos/chain-registry/master",
        description="Base URL of the community chain registry",
    )
    gas_price_cache_ttl_seconds: int = Field(default=3600, description="TTL for registry gas prices")

    # Attestation service
    attestation_api_url: str = Field(
        default="https://iris-api.circle.com",
        description="Circle attestation (Iris) API base URL",
    )
    attestation_poll_interval_seconds: float = Field(default=5.0, gt=0)
    attestation_poll_timeout_seconds: float = Field(default=1800.0, gt=0)

    chains: Dict[str, ChainConfig] = Field(
        default_factory=dict,
        description="Configured networks keyed by name",
    )

    def get_chain(self, name: str) -> ChainConfig:
        try:
            return self.chains[name]
        except KeyError:
            raise KeyError(f"No chain configured with name {name!r}") from None


# Global settings instance
settings = Settings()
