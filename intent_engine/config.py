"""
Intent Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Payment Intent Engine.

CRITICAL CONSTRAINTS:
- Confirmation thresholds are policy inputs (see registry)
- Bounded retries only, one backoff policy for all transient errors
- Background jobs are owned by the scheduler, never ambient timers

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv


# ============================================================
# BACKOFF CONFIGURATION
# ============================================================

@dataclass
class BackoffConfig:
    """
    Backoff for transient chain errors.

    SAFETY: Limited retries with exponential backoff.
    """

    max_retries: int = 3
    """Maximum number of retry attempts after the first call."""

    initial_delay_seconds: float = 1.0
    """Initial delay before first retry."""

    max_delay_seconds: float = 30.0
    """Maximum delay between retries."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""

    honor_retry_after: bool = True
    """Use the node's Retry-After hint when it is larger than the delay."""


# ============================================================
# INTENT POLICY
# ============================================================

@dataclass
class IntentPolicyConfig:
    """
    Policy for newly created intents.
    """

    ttl_seconds: int = 24 * 60 * 60
    """Time until a pledge without a claimed transaction expires."""

    nonce_width: int = 6
    """Lowest raw digits replaced by the per-intent nonce."""

    fiat_currency: str = "USD"
    """Currency of fiat-denominated pledges and ledger snapshots."""

    require_open_campaign: bool = True
    """Refuse pledges for campaigns whose goal is met."""

    guard_all_evm_networks: bool = True
    """Capture the replay guard for every configured EVM network."""


# ============================================================
# VERIFICATION CONFIGURATION
# ============================================================

@dataclass
class VerificationConfig:
    """
    Chain-truth verification settings.
    """

    call_timeout_seconds: float = 20.0
    """Upper bound for one verification's chain I/O."""

    retry_transient: bool = True
    """Retry transient fetch errors with the backoff policy."""


# ============================================================
# BACKGROUND JOBS
# ============================================================

@dataclass
class SweeperConfig:
    """
    Expiry sweeper settings.
    """

    enabled: bool = True
    interval_seconds: float = 60.0
    """Seconds between sweeps."""

    batch_size: int = 500
    """Maximum intents expired per sweep."""


@dataclass
class RepollConfig:
    """
    Re-polling of CONFIRMING intents.
    """

    enabled: bool = True
    interval_seconds: float = 30.0
    batch_size: int = 100


@dataclass
class WatcherConfig:
    """
    Passive watcher feed consumer.
    """

    enabled: bool = True
    queue_size: int = 1000
    worker_count: int = 4


# ============================================================
# RPC / PRICING / DATABASE
# ============================================================

# Environment variable per network holding the endpoint URL.
RPC_URL_ENV_VARS: Dict[str, str] = {
    "ethereum_mainnet": "ETHEREUM_RPC_URL",
    "bsc_mainnet": "BSC_RPC_URL",
    "polygon_mainnet": "POLYGON_RPC_URL",
    "arbitrum_mainnet": "ARBITRUM_RPC_URL",
    "optimism_mainnet": "OPTIMISM_RPC_URL",
    "avalanche_mainnet": "AVALANCHE_RPC_URL",
    "base_mainnet": "BASE_RPC_URL",
    "fantom_mainnet": "FANTOM_RPC_URL",
    "bitcoin_mainnet": "BITCOIN_API_URL",
    "litecoin_mainnet": "LITECOIN_API_URL",
    "solana_mainnet": "SOLANA_RPC_URL",
}

DEFAULT_RPC_URLS: Dict[str, str] = {
    "ethereum_mainnet": "https://eth.llamarpc.com",
    "bsc_mainnet": "https://bsc-dataseed.binance.org",
    "polygon_mainnet": "https://polygon-rpc.com",
    "arbitrum_mainnet": "https://arb1.arbitrum.io/rpc",
    "optimism_mainnet": "https://mainnet.optimism.io",
    "avalanche_mainnet": "https://api.avax.network/ext/bc/C/rpc",
    "base_mainnet": "https://mainnet.base.org",
    "fantom_mainnet": "https://rpc.ftm.tools",
    "bitcoin_mainnet": "https://blockstream.info/api",
    "litecoin_mainnet": "https://api.blockchair.com/litecoin",
    "solana_mainnet": "https://api.mainnet-beta.solana.com",
}


@dataclass
class RpcConfig:
    """
    Chain endpoint configuration.
    """

    urls: Dict[str, str] = field(default_factory=dict)
    """Endpoint per network ID; networks without one have no client."""

    request_timeout_seconds: float = 10.0
    """Per-request HTTP timeout."""

    blockchair_api_key: Optional[str] = None
    """Optional Blockchair key."""

    @classmethod
    def from_env(cls) -> "RpcConfig":
        urls = {
            network_id: os.getenv(env_var, DEFAULT_RPC_URLS[network_id])
            for network_id, env_var in RPC_URL_ENV_VARS.items()
        }
        return cls(
            urls={k: v for k, v in urls.items() if v},
            request_timeout_seconds=float(os.getenv("RPC_TIMEOUT_SECONDS", "10")),
            blockchair_api_key=os.getenv("BLOCKCHAIR_API_KEY") or None,
        )


@dataclass
class PricingConfig:
    """
    Fiat valuation source.
    """

    base_url: str = "https://api.coingecko.com/api/v3"
    api_key: Optional[str] = None
    """CoinGecko demo key, sent as x-cg-demo-api-key."""

    cache_ttl_seconds: float = 60.0
    """Rates are reused for this long."""

    request_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "PricingConfig":
        return cls(
            base_url=os.getenv("COINGECKO_BASE_URL", cls.base_url),
            api_key=os.getenv("COINGECKO_API_KEY") or None,
            cache_ttl_seconds=float(os.getenv("PRICE_CACHE_TTL_SECONDS", "60")),
        )


@dataclass
class DatabaseConfig:
    """
    Persistence configuration.
    """

    url: Optional[str] = None
    """SQLAlchemy async URL; None selects the in-memory store."""

    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        return cls(
            url=os.getenv("DATABASE_URL") or None,
            echo=os.getenv("DATABASE_ECHO", "").lower() in {"1", "true", "yes"},
        )


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """
    Master configuration for the Payment Intent Engine.
    """

    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    """Backoff configuration."""

    intent: IntentPolicyConfig = field(default_factory=IntentPolicyConfig)
    """Intent creation policy."""

    verification: VerificationConfig = field(default_factory=VerificationConfig)
    """Verification configuration."""

    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    """Expiry sweeper configuration."""

    repoll: RepollConfig = field(default_factory=RepollConfig)
    """CONFIRMING re-poll configuration."""

    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    """Passive watcher configuration."""

    rpc: RpcConfig = field(default_factory=RpcConfig)
    """Chain endpoints."""

    pricing: PricingConfig = field(default_factory=PricingConfig)
    """Fiat valuation source."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    """Persistence."""

    @classmethod
    def for_testing(cls) -> "EngineConfig":
        """Get configuration for testing."""
        return cls(
            backoff=BackoffConfig(
                max_retries=1,
                initial_delay_seconds=0.0,
                max_delay_seconds=0.0,
            ),
            verification=VerificationConfig(call_timeout_seconds=2.0),
            sweeper=SweeperConfig(interval_seconds=0.01),
            repoll=RepollConfig(interval_seconds=0.01),
            watcher=WatcherConfig(queue_size=50, worker_count=2),
        )

    @classmethod
    def for_production(cls) -> "EngineConfig":
        """Get configuration for production."""
        return cls(
            backoff=BackoffConfig(max_retries=3),
            rpc=RpcConfig.from_env(),
            pricing=PricingConfig.from_env(),
            database=DatabaseConfig.from_env(),
        )

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load .env and build a production configuration."""
        load_dotenv()
        config = cls.for_production()
        config.intent.ttl_seconds = int(
            os.getenv("INTENT_TTL_SECONDS", str(config.intent.ttl_seconds))
        )
        config.intent.nonce_width = int(
            os.getenv("INTENT_NONCE_WIDTH", str(config.intent.nonce_width))
        )
        config.sweeper.interval_seconds = float(
            os.getenv("SWEEPER_INTERVAL_SECONDS", str(config.sweeper.interval_seconds))
        )
        return config
