"""
Layered YAML configuration.

    base.yaml  <-  {env}.yaml  <-  secrets.yaml (optional, gitignored)

Each layer deep-merges over the previous one; the merged dict is then
parsed section by section into the dataclasses in ``config.models``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from src.domain.exceptions import ConfigurationError
from src.utils.logging_setup import get_logger

from .models import (
    AppConfig,
    DatabaseConfig,
    DatabasePoolConfig,
    DeliveryConfig,
    EngineConfig,
    FeedConfig,
    InstrumentConfig,
    LoggingConfig,
    MetricsConfig,
    NotificationChannelConfig,
    ServerConfig,
)

logger = get_logger(__name__)

SUPPORTED_TIMEFRAMES = ("5m", "15m")
SUPPORTED_CHANNELS = ("webhook", "discord", "telegram", "email", "sms")
SUPPORTED_ASSET_CLASSES = ("equity", "future", "forex")


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Nested dicts merge key by key; any other value in ``override`` replaces."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


class ConfigManager:
    """
    Example:
        config = ConfigManager("config", env="prod").load()
        config.engine.ema_periods  # [50, 200]
    """

    def __init__(self, config_dir: str | Path = "config", env: str = "dev"):
        self.config_dir = Path(config_dir)
        self.env = env
        self.config: Dict[str, Any] = {}

    def load(self) -> AppConfig:
        """
        Raises:
            FileNotFoundError: base.yaml is missing.
            ConfigurationError: A section holds an invalid value.
        """
        base_path = self.config_dir / "base.yaml"
        if not base_path.exists():
            raise FileNotFoundError(f"Base config not found: {base_path}")

        merged = _read_yaml(base_path)
        layers = [base_path.name]
        for name in (f"{self.env}.yaml", "secrets.yaml"):
            path = self.config_dir / name
            if path.exists():
                merged = deep_merge(merged, _read_yaml(path))
                layers.append(name)
        logger.info(f"Loaded config layers: {', '.join(layers)}", extra={"config_dir": str(self.config_dir)})
        return self.load_dict(merged)

    def load_dict(self, raw: Dict[str, Any]) -> AppConfig:
        """Parse an already merged dict (tests and embedded use)."""
        self.config = raw
        try:
            return AppConfig(
                server=self._server(raw.get("server", {})),
                engine=self._engine(raw.get("engine", {})),
                delivery=self._delivery(raw.get("delivery", {})),
                logging=self._logging(raw.get("logging", {})),
                metrics=self._metrics(raw.get("metrics", {})),
                notifications=self._notifications(raw.get("notifications") or []),
                feed=self._feed(raw.get("feed", {})),
                presets=list(raw.get("presets", [])),
                raw=raw,
                database=self._database(raw.get("database") or {}),
                instruments=self._instruments(raw.get("instruments") or []),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Failed to parse config: {e}") from e

    @staticmethod
    def _server(section: Dict[str, Any]) -> ServerConfig:
        return ServerConfig(
            host=section.get("host", "0.0.0.0"),
            port=int(section.get("port", 5000)),
            websocket_path=section.get("websocket_path", "/ws"),
        )

    @staticmethod
    def _engine(section: Dict[str, Any]) -> EngineConfig:
        timeframes = list(section.get("timeframes", SUPPORTED_TIMEFRAMES))
        unsupported = [tf for tf in timeframes if tf not in SUPPORTED_TIMEFRAMES]
        if unsupported:
            raise ConfigurationError(f"Unsupported timeframes: {unsupported}")

        ema_periods = [int(p) for p in section.get("ema_periods", [50, 200])]
        if len(ema_periods) != 2 or not 0 < ema_periods[0] < ema_periods[1]:
            raise ConfigurationError(f"ema_periods must be [fast, slow] with fast < slow, got {ema_periods}")

        return EngineConfig(
            timeframes=timeframes,
            ema_periods=ema_periods,
            history_size=int(section.get("history_size", 250)),
            equality_tolerance=float(section.get("equality_tolerance", 1e-9)),
            strict_ordering=bool(section.get("strict_ordering", True)),
            market_hours_only=bool(section.get("market_hours_only", False)),
            persist_timeout_sec=float(section.get("persist_timeout_sec", 5.0)),
        )

    @staticmethod
    def _delivery(section: Dict[str, Any]) -> DeliveryConfig:
        heartbeat = section.get("heartbeat_sec")
        return DeliveryConfig(
            reconnect_delay_sec=float(section.get("reconnect_delay_sec", 3.0)),
            heartbeat_sec=float(heartbeat) if heartbeat is not None else None,
        )

    @staticmethod
    def _logging(section: Dict[str, Any]) -> LoggingConfig:
        return LoggingConfig(
            level=str(section.get("level", "INFO")).upper(),
            dir=section.get("dir", "./logs"),
            console=bool(section.get("console", True)),
            timezone=section.get("timezone", "local"),
        )

    @staticmethod
    def _metrics(section: Dict[str, Any]) -> MetricsConfig:
        return MetricsConfig(
            enabled=bool(section.get("enabled", False)),
            port=int(section.get("port", 8000)),
        )

    @staticmethod
    def _feed(section: Dict[str, Any]) -> FeedConfig:
        return FeedConfig(
            simulate=bool(section.get("simulate", False)),
            interval_sec=float(section.get("interval_sec", 30.0)),
            instruments=list(section.get("instruments", [])),
            warmup_candles=int(section.get("warmup_candles", 200)),
            seed=section.get("seed"),
        )

    @staticmethod
    def _database(section: Dict[str, Any]) -> Optional[DatabaseConfig]:
        # No section: the in-memory signal store is used
        if not section:
            return None
        pool = section.get("pool", {})
        return DatabaseConfig(
            host=section.get("host", "localhost"),
            port=int(section.get("port", 5432)),
            database=section.get("database", "signalpro"),
            user=section.get("user", "signalpro"),
            password=section.get("password", ""),
            pool=DatabasePoolConfig(
                min_connections=int(pool.get("min_connections", 2)),
                max_connections=int(pool.get("max_connections", 10)),
            ),
        )

    @staticmethod
    def _notifications(entries: List[Dict[str, Any]]) -> List[NotificationChannelConfig]:
        channels = []
        for entry in entries:
            name = str(entry.get("channel", "")).lower()
            if name not in SUPPORTED_CHANNELS:
                raise ConfigurationError(f"Unknown notification channel: {name!r}")
            enabled = entry.get("enabled", True)
            if not isinstance(enabled, bool):
                raise ConfigurationError(f"Channel {name}: enabled must be true or false")
            channels.append(
                NotificationChannelConfig(
                    channel=name,
                    enabled=enabled,
                    settings={k: v for k, v in entry.items() if k not in ("channel", "enabled")},
                )
            )
        return channels

    @staticmethod
    def _instruments(entries: List[Dict[str, Any]]) -> List[InstrumentConfig]:
        instruments = []
        for entry in entries:
            symbol = entry.get("symbol")
            if not symbol:
                raise ConfigurationError(f"Instrument entry needs a symbol: {entry!r}")
            asset_class = str(entry.get("asset_class", "future")).lower()
            if asset_class not in SUPPORTED_ASSET_CLASSES:
                raise ConfigurationError(f"Unknown asset class for {symbol}: {asset_class!r}")
            enabled = entry.get("enabled", True)
            if not isinstance(enabled, bool):
                raise ConfigurationError(f"Instrument {symbol}: enabled must be true or false")
            instruments.append(
                InstrumentConfig(
                    symbol=str(symbol),
                    name=str(entry.get("name", "")),
                    asset_class=asset_class,
                    exchange=str(entry.get("exchange", "NSE")),
                    enabled=enabled,
                )
            )
        return instruments
