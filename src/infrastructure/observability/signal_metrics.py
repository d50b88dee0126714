"""
Signal engine metrics instrumentation.

Exposes key engine and delivery metrics for Prometheus monitoring:
- Sample throughput and feed gaps
- Rule evaluation counts, errors and latency
- Signal emission by strategy and direction
- Compile cache hits/misses
- Broadcasts, open connections and notification results

All metrics are prefixed with 'signalpro_' for namespace isolation.
"""

from __future__ import annotations

from opentelemetry import metrics

from src.utils.logging_setup import get_logger

logger = get_logger(__name__)


class SignalMetrics:
    """
    Metrics for the pipeline (samples -> EMAs -> rules -> delivery).

    Every component takes ``signal_metrics=None`` and skips recording when
    it is absent.
    """

    def __init__(self, meter: metrics.Meter) -> None:
        """
        Args:
            meter: OpenTelemetry Meter for creating instruments.
        """
        self._meter = meter

        # -------------------------------------------------------------------------
        # Counters
        # -------------------------------------------------------------------------

        self._samples_ingested = meter.create_counter(
            name="signalpro_samples_ingested_total",
            description="Samples accepted into the pipeline",
        )

        self._feed_gaps = meter.create_counter(
            name="signalpro_feed_gaps_total",
            description="Samples rejected as out of order or duplicate",
        )

        self._indicators_computed = meter.create_counter(
            name="signalpro_indicators_computed_total",
            description="Indicator updates",
        )

        self._rules_evaluated = meter.create_counter(
            name="signalpro_rules_evaluated_total",
            description="Strategy predicate evaluations",
        )

        self._evaluation_errors = meter.create_counter(
            name="signalpro_evaluation_errors_total",
            description="Predicate evaluations that raised and counted as not fired",
        )

        self._signals_fired = meter.create_counter(
            name="signalpro_signals_fired_total",
            description="Signals emitted on a rising edge",
        )

        self._compiles = meter.create_counter(
            name="signalpro_compile_total",
            description="Formula compile requests by cache outcome",
        )

        self._compile_errors = meter.create_counter(
            name="signalpro_compile_errors_total",
            description="Formulas rejected at compile time",
        )

        self._store_errors = meter.create_counter(
            name="signalpro_store_errors_total",
            description="Signal persist failures",
        )

        self._broadcasts = meter.create_counter(
            name="signalpro_broadcasts_total",
            description="Envelopes sent to delivery connections",
        )

        self._notifications = meter.create_counter(
            name="signalpro_notifications_total",
            description="Notification attempts by channel and outcome",
        )

        # -------------------------------------------------------------------------
        # Gauges
        # -------------------------------------------------------------------------

        self._active_connections = meter.create_gauge(
            name="signalpro_active_connections",
            description="Open delivery channel connections",
        )

        self._indicator_pairs = meter.create_gauge(
            name="signalpro_indicator_pairs",
            description="(instrument, timeframe) pairs with indicator state",
        )

        # -------------------------------------------------------------------------
        # Histograms
        # -------------------------------------------------------------------------

        self._indicator_compute_ms = meter.create_histogram(
            name="signalpro_indicator_compute_ms",
            description="Indicator update latency in milliseconds",
            unit="ms",
        )

        self._rule_evaluation_ms = meter.create_histogram(
            name="signalpro_rule_evaluation_ms",
            description="Latency of evaluating all strategies for one sample",
            unit="ms",
        )

    # -------------------------------------------------------------------------
    # Engine
    # -------------------------------------------------------------------------

    def record_sample_ingested(self, timeframe: str) -> None:
        self._samples_ingested.add(1, {"timeframe": timeframe})

    def record_feed_gap(self, timeframe: str) -> None:
        self._feed_gaps.add(1, {"timeframe": timeframe})

    def record_indicator_computed(self, indicator: str) -> None:
        self._indicators_computed.add(1, {"indicator": indicator})

    def record_rule_evaluated(self, strategy_id: str) -> None:
        self._rules_evaluated.add(1, {"strategy_id": strategy_id})

    def record_evaluation_error(self, strategy_id: str) -> None:
        self._evaluation_errors.add(1, {"strategy_id": strategy_id})

    def record_signal_fired(self, strategy_id: str, direction: str) -> None:
        self._signals_fired.add(1, {"strategy_id": strategy_id, "direction": direction})

    def record_compile(self, cache_hit: bool) -> None:
        self._compiles.add(1, {"cache": "hit" if cache_hit else "miss"})

    def record_compile_error(self) -> None:
        self._compile_errors.add(1)

    def record_store_error(self, reason: str) -> None:
        self._store_errors.add(1, {"reason": reason})

    def set_indicator_pairs(self, count: int) -> None:
        self._indicator_pairs.set(count)

    def record_indicator_compute_latency(self, duration_ms: float, indicator: str) -> None:
        self._indicator_compute_ms.record(duration_ms, {"indicator": indicator})

    def record_rule_evaluation_latency(self, duration_ms: float) -> None:
        self._rule_evaluation_ms.record(duration_ms)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def record_broadcast(self, delivered: int, failed: int = 0) -> None:
        if delivered:
            self._broadcasts.add(delivered, {"outcome": "sent"})
        if failed:
            self._broadcasts.add(failed, {"outcome": "failed"})

    def set_active_connections(self, count: int) -> None:
        self._active_connections.set(count)

    def record_notification(self, channel: str, success: bool) -> None:
        self._notifications.add(1, {"channel": channel, "success": str(success).lower()})
