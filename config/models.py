"""Configuration data models."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass
class ServerConfig:
    """HTTP / WebSocket server configuration."""
    host: str
    port: int
    websocket_path: str = "/ws"


@dataclass
class EngineConfig:
    """Rule engine configuration."""
    timeframes: List[str]
    ema_periods: List[int]
    history_size: int  # Closed candles retained per (instrument, timeframe)
    equality_tolerance: float  # Used by == and != on non-integer operands
    strict_ordering: bool  # True: raise FeedGapError on out-of-order samples; False: log and drop
    market_hours_only: bool  # Gate ticks to the NSE session
    persist_timeout_sec: float


@dataclass
class DeliveryConfig:
    """Delivery channel configuration."""
    reconnect_delay_sec: float
    heartbeat_sec: Optional[float]


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    dir: str
    console: bool
    timezone: str  # Timezone for log timestamps (e.g., "Asia/Kolkata", "UTC", or "local")


@dataclass
class DatabasePoolConfig:
    """asyncpg pool sizing."""
    min_connections: int
    max_connections: int


@dataclass
class DatabaseConfig:
    """PostgreSQL configuration for the signal store."""
    host: str
    port: int
    database: str
    user: str
    password: str
    pool: DatabasePoolConfig

    @property
    def dsn(self) -> str:
        """asyncpg connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class MetricsConfig:
    """Prometheus metrics configuration."""
    enabled: bool
    port: int


@dataclass
class NotificationChannelConfig:
    """One outbound notification channel (webhook, discord, telegram)."""
    channel: str
    enabled: bool
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InstrumentConfig:
    """One tradable instrument the engine names signals after."""
    symbol: str
    name: str = ""
    asset_class: str = "future"  # equity, future or forex
    exchange: str = "NSE"
    enabled: bool = True


@dataclass
class FeedConfig:
    """Simulated market data feed configuration."""
    simulate: bool
    interval_sec: float
    instruments: List[str]
    warmup_candles: int
    seed: Optional[int] = None


@dataclass
class AppConfig:
    """Complete application configuration."""
    server: ServerConfig
    engine: EngineConfig
    delivery: DeliveryConfig
    logging: LoggingConfig
    metrics: MetricsConfig
    notifications: List[NotificationChannelConfig]
    feed: FeedConfig
    presets: List[str]
    raw: Dict[str, Any]  # Raw merged config dict
    instruments: List[InstrumentConfig] = field(default_factory=list)
    database: Optional[DatabaseConfig] = None  # None: in-memory signal store
