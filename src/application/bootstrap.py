"""
Application Bootstrap - Composition Root for Service Wiring.

AppContainer builds every service from an AppConfig in an explicit order
and tears them down in reverse.

Usage:
    container = AppContainer(config, env="dev")
    await container.initialize()
    app = container.web_app
    # ... run application ...
    await container.cleanup()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from aiohttp import web

from config.models import AppConfig
from migrations.runner import run_migrations

from src.domain.interfaces.signal_store import SignalStorePort
from src.domain.signals.candle_aggregator import CandleAggregator
from src.domain.signals.formula import RuleCompiler
from src.domain.signals.indicator_calculator import IndicatorCalculator
from src.domain.signals.instruments import InstrumentRegistry
from src.domain.signals.models import AssetClass, Instrument
from src.domain.signals.pipeline import SignalPipeline
from src.domain.signals.presets import get_presets
from src.infrastructure.delivery import SignalBroadcaster
from src.infrastructure.feeds import SimulatedFeed
from src.infrastructure.notifications import NotificationFanout, build_channels
from src.infrastructure.observability import MetricsManager, SignalMetrics
from src.infrastructure.persistence import Database, InMemorySignalStore, PostgresSignalStore
from src.utils.logging_setup import get_logger
from src.utils.market_hours import MarketHours
from .http_api import create_app
from .simple_event_bus import SimpleEventBus

logger = get_logger(__name__)


@dataclass
class AppContainer:
    """
    Composition root for all application services.

    Attributes:
        config: Loaded application configuration.
        env: Environment name (dev, prod).
        metrics_port: Override for the metrics port (0 disables metrics).
        simulate: Override for the simulated feed switch.
        serve_metrics_http: Start the Prometheus HTTP endpoint (off in tests).
    """

    config: AppConfig
    env: str = "dev"
    metrics_port: Optional[int] = None
    simulate: Optional[bool] = None
    serve_metrics_http: bool = True

    event_bus: Optional[SimpleEventBus] = field(default=None, init=False)
    metrics_manager: Optional[MetricsManager] = field(default=None, init=False)
    signal_metrics: Optional[SignalMetrics] = field(default=None, init=False)
    db: Optional[Database] = field(default=None, init=False)
    store: Optional[SignalStorePort] = field(default=None, init=False)
    fanout: Optional[NotificationFanout] = field(default=None, init=False)
    broadcaster: Optional[SignalBroadcaster] = field(default=None, init=False)
    pipeline: Optional[SignalPipeline] = field(default=None, init=False)
    feed: Optional[SimulatedFeed] = field(default=None, init=False)
    web_app: Optional[web.Application] = field(default=None, init=False)

    _initialized: bool = field(default=False, init=False)

    async def initialize(self) -> None:
        """
        Build services in dependency order.

        Raises:
            RuntimeError: If called twice.
            ConfigurationError: Unknown preset or notification channel.
            StoreError: Database unreachable or a migration failed.
        """
        if self._initialized:
            raise RuntimeError("AppContainer already initialized")

        # Phase 1: core infrastructure
        self.event_bus = SimpleEventBus()
        self._create_observability()
        await self._create_store()

        # Phase 2: outbound delivery
        self.fanout = NotificationFanout(
            build_channels(self.config.notifications), signal_metrics=self.signal_metrics
        )
        self.broadcaster = SignalBroadcaster(
            heartbeat_sec=self.config.delivery.heartbeat_sec, signal_metrics=self.signal_metrics
        )

        # Phase 3: engine
        self._create_pipeline()

        # Phase 4: feed and HTTP surface
        self._create_feed()
        self.web_app = create_app(
            self.pipeline, self.broadcaster, self.store, websocket_path=self.config.server.websocket_path
        )

        self._initialized = True
        logger.info(
            "AppContainer initialization complete",
            extra={
                "env": self.env,
                "strategies": len(self.pipeline.registry),
                "store": type(self.store).__name__,
                "channels": len(self.fanout.channels),
            },
        )

    def _create_observability(self) -> None:
        port = self.metrics_port if self.metrics_port is not None else self.config.metrics.port
        if not self.config.metrics.enabled or port <= 0:
            logger.info("Observability disabled")
            return

        self.metrics_manager = MetricsManager(port=port)
        self.metrics_manager.start(serve_http=self.serve_metrics_http)
        self.signal_metrics = SignalMetrics(self.metrics_manager.get_meter("signalpro.engine"))
        logger.info("Observability enabled", extra={"endpoint": f"http://localhost:{port}/metrics"})

    async def _create_store(self) -> None:
        if self.config.database is None:
            self.store = InMemorySignalStore()
            logger.info("Using in-memory signal store")
            return

        self.db = Database(self.config.database)
        await self.db.connect()
        applied = await run_migrations(self.db)
        self.store = PostgresSignalStore(self.db)
        logger.info("Using PostgreSQL signal store", extra={"migrations_applied": len(applied)})

    def _create_pipeline(self) -> None:
        engine = self.config.engine
        fast, slow = engine.ema_periods

        self.pipeline = SignalPipeline(
            compiler=RuleCompiler(equality_tolerance=engine.equality_tolerance, metrics=self.signal_metrics),
            calculator=IndicatorCalculator(
                fast_period=fast,
                slow_period=slow,
                history_size=engine.history_size,
                strict_ordering=engine.strict_ordering,
                signal_metrics=self.signal_metrics,
            ),
            store=self.store,
            broadcaster=self.broadcaster,
            notifier=self.fanout,
            event_bus=self.event_bus,
            aggregator=CandleAggregator(engine.timeframes),
            market_hours=MarketHours() if engine.market_hours_only else None,
            instruments=self._build_instruments(),
            persist_timeout_sec=engine.persist_timeout_sec,
            signal_metrics=self.signal_metrics,
        )
        self.pipeline.register_strategies(get_presets(self.config.presets))

    def _build_instruments(self) -> InstrumentRegistry:
        return InstrumentRegistry(
            Instrument(
                id=entry.symbol,
                symbol=entry.symbol,
                name=entry.name,
                asset_class=AssetClass(entry.asset_class),
                exchange=entry.exchange,
                enabled=entry.enabled,
            )
            for entry in self.config.instruments
        )

    def _create_feed(self) -> None:
        feed_cfg = self.config.feed
        enabled = feed_cfg.simulate if self.simulate is None else self.simulate
        if not enabled:
            return
        # Without an explicit list the feed simulates every enabled instrument
        instruments = feed_cfg.instruments or [
            i.id for i in self.pipeline.instruments.get_all() if i.enabled
        ]
        if not instruments:
            logger.warning("Simulated feed requested but no instruments configured")
            return
        self.feed = SimulatedFeed(
            self.pipeline,
            instruments=instruments,
            timeframes=self.config.engine.timeframes,
            interval_sec=feed_cfg.interval_sec,
            warmup_candles=feed_cfg.warmup_candles,
            seed=feed_cfg.seed,
        )

    async def start(self) -> None:
        """Start background producers."""
        if self.feed is not None:
            await self.feed.start()

    async def cleanup(self) -> None:
        """Release resources in reverse order."""
        logger.info("Starting cleanup")

        if self.feed is not None:
            await self.feed.stop()

        if self.broadcaster is not None:
            await self.broadcaster.close_all()

        if self.fanout is not None:
            await self.fanout.close()

        if self.event_bus is not None:
            await self.event_bus.drain()

        if self.store is not None:
            await self.store.close()
            logger.info("Signal store closed")

        if self.metrics_manager is not None:
            self.metrics_manager.shutdown()

        logger.info("Cleanup complete")
