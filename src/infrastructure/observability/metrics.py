"""
OpenTelemetry MeterProvider exported through prometheus-client.

    manager = MetricsManager(port=8000)
    manager.start()
    signal_metrics = SignalMetrics(manager.get_meter("signalpro.engine"))

``/metrics`` is served on ``port`` by prometheus-client's own HTTP
server, separate from the aiohttp application.
"""

from __future__ import annotations

from typing import Optional

from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from prometheus_client import start_http_server

from src.utils.logging_setup import get_logger

logger = get_logger(__name__)


class MetricsManager:
    """
    Owns the process MeterProvider.

    Meters handed out before ``start()`` come from the global provider
    (a no-op unless something else installed one), so components can be
    built before the exporter is up.
    """

    def __init__(self, port: int = 8000, service_name: str = "signalpro"):
        self._port = port
        self._resource = Resource.create({SERVICE_NAME: service_name})
        self._provider: Optional[MeterProvider] = None

    def start(self, serve_http: bool = True) -> None:
        """
        Build the provider with a Prometheus reader. Idempotent.

        Args:
            serve_http: Also start the /metrics HTTP server (tests pass False).
        """
        if self._provider is not None:
            return
        self._provider = MeterProvider(resource=self._resource, metric_readers=[PrometheusMetricReader()])
        if serve_http:
            start_http_server(self._port)
            logger.info(f"Metrics server listening on :{self._port}/metrics")

    def get_meter(self, name: str) -> metrics.Meter:
        if self._provider is None:
            return metrics.get_meter(name)
        return self._provider.get_meter(name)

    def shutdown(self) -> None:
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None
            logger.info("Metrics provider shut down")

    @property
    def is_started(self) -> bool:
        return self._provider is not None

    @property
    def port(self) -> int:
        return self._port

    @property
    def service_name(self) -> str:
        return self._resource.attributes[SERVICE_NAME]
