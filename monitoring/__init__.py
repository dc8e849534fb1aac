"""
Monitoring Module

Metrics sinks for backup and restore runs:
- LoggingMetricsSink keeps counts and timings in memory and logs them
- PrometheusMetricsSink records them as Prometheus metrics and pushes
  them to a Pushgateway at the end of a run (needs the ``monitoring`` extra)
"""

from .metrics import LoggingMetricsSink, TimingResult, TimingSummary

__all__ = [
    'LoggingMetricsSink',
    'TimingResult',
    'TimingSummary'
]
