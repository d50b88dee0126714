"""
Observability for the SignalPro engine.

OpenTelemetry instruments exported to Prometheus:
- Engine metrics (samples, evaluations, signals, compile cache)
- Delivery metrics (broadcasts, connections, notifications)
"""

from .metrics import MetricsManager
from .signal_metrics import SignalMetrics

__all__ = [
    "MetricsManager",
    "SignalMetrics",
]
