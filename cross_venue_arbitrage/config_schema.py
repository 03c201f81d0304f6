"""
Configuration schema validation using Pydantic
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"


class QuoteAssetConfig(BaseModel):
    """The asset every price is expressed in"""

    address: str = Field(pattern=ADDRESS_PATTERN, description="Quote token address")
    symbol: str = Field(default="USDC", min_length=1)
    decimals: int = Field(default=6, ge=0, le=36)


class VenueConfig(BaseModel):
    """One AMM venue and where its pools are read from"""

    name: str = Field(min_length=1, max_length=50, description="Venue name")
    source: Literal["api", "factory", "snapshot"] = Field(
        description="Pool source for this venue"
    )
    factory_address: Optional[str] = Field(default=None, pattern=ADDRESS_PATTERN)
    snapshot_path: Optional[str] = None
    max_pairs: Optional[int] = Field(default=None, ge=1, le=10000)

    @model_validator(mode="after")
    def validate_source_params(self):
        if self.source == "factory" and not self.factory_address:
            raise ValueError(f"venue '{self.name}': factory_address required for factory source")
        if self.source == "snapshot" and not self.snapshot_path:
            raise ValueError(f"venue '{self.name}': snapshot_path required for snapshot source")
        return self


class ReadApiConfig(BaseModel):
    """Balance/price read API configuration"""

    base_url: str = Field(default="http://localhost:3000/api", min_length=1)
    api_key_env: Optional[str] = None
    timeout_sec: float = Field(default=10.0, gt=0, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)
    cache_ttl_sec: float = Field(default=30.0, ge=0, le=3600)
    min_request_interval_sec: float = Field(default=1.0, ge=0, le=60)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class OracleConfig(BaseModel):
    """Advisory oracle (chat completions) configuration"""

    base_url: str = Field(default="https://api.openai.com/v1", min_length=1)
    model: str = Field(default="gpt-3.5-turbo", min_length=1)
    temperature: float = Field(default=0.3, ge=0, le=2)
    max_tokens: int = Field(default=150, ge=1, le=4096)
    timeout_sec: float = Field(default=30.0, gt=0, le=300)
    api_key_env: str = "OPENAI_API_KEY"

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class RelayConfig(BaseModel):
    """Meta-transaction relay configuration"""

    base_url: str = Field(default="https://api.gelato.digital", min_length=1)
    chain_id: int = Field(ge=1, description="Chain the agent contract lives on")
    agent_address: str = Field(pattern=ADDRESS_PATTERN, description="Agent contract")
    sponsor_key_env: str = "GELATO_SPONSOR_KEY"
    poll_interval_sec: float = Field(default=5.0, gt=0, le=300)
    max_attempts: int = Field(default=12, ge=1, le=1000)
    timeout_sec: float = Field(default=15.0, gt=0, le=300)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class LedgerConfig(BaseModel):
    """Trade ledger persistence configuration"""

    path: str = Field(default="data/trade_ledger.db", min_length=1)
    record_failures: bool = True


class StrategyConfig(BaseModel):
    """Opportunity thresholds"""

    min_profit_bps: int = Field(
        default=10, ge=0, le=10000, description="Minimum price divergence in bps"
    )
    max_slippage_bps: int = Field(
        default=50, ge=0, le=10000, description="Slippage haircut in bps"
    )
    require_positive_estimate: bool = Field(
        default=False,
        description="Skip the oracle when the best opportunity is unattractive",
    )


class EngineConfig(BaseModel):
    """Complete engine configuration schema"""

    name: str = Field(default="cross-venue-arbitrage", min_length=1, max_length=100)
    cycle_interval_sec: float = Field(default=60.0, gt=0, le=86400)
    once: bool = Field(default=False, description="Run a single cycle and exit")
    rpc_url_env: str = "RPC_URL"
    metrics_port: Optional[int] = Field(default=None, ge=1024, le=65535)

    quote_asset: QuoteAssetConfig
    venues: List[VenueConfig]
    token_decimals: Dict[str, int] = Field(default_factory=dict)

    read_api: ReadApiConfig = Field(default_factory=ReadApiConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    relay: RelayConfig
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)

    @field_validator("token_decimals")
    @classmethod
    def validate_token_decimals(cls, v):
        for address, decimals in v.items():
            if not 0 <= decimals <= 36:
                raise ValueError(f"Decimals for {address} out of range: {decimals}")
        return {address.lower(): decimals for address, decimals in v.items()}

    @model_validator(mode="after")
    def validate_venues(self):
        if len(self.venues) != 2:
            raise ValueError(
                f"exactly two venues (primary, secondary) required, got {len(self.venues)}"
            )
        names = [venue.name for venue in self.venues]
        if len(set(names)) != len(names):
            raise ValueError(f"venue names must be distinct: {names}")
        if sum(venue.source == "api" for venue in self.venues) > 1:
            raise ValueError(
                "only one venue may use the read API source; the API serves a single pool set"
            )
        return self

    @property
    def primary_venue(self) -> VenueConfig:
        return self.venues[0]

    @property
    def secondary_venue(self) -> VenueConfig:
        return self.venues[1]


def validate_engine_config(config_dict: Dict) -> EngineConfig:
    """
    Validate an engine configuration dictionary

    Args:
        config_dict: Dictionary representation of engine config

    Returns:
        Validated EngineConfig object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return EngineConfig(**config_dict)
