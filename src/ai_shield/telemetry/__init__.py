"""
Telemetry module for ai-shield-python.

Provides structured logging, metrics collection and health aggregation.
"""

from ai_shield.telemetry.health import (
    HealthAggregator,
    HealthSnapshot,
    HealthStatus,
    HealthThresholds,
    default_memory_probe,
)
from ai_shield.telemetry.logger import (
    LogContext,
    LogLevel,
    SensitiveDataMasker,
    ShieldLogger,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from ai_shield.telemetry.metrics import (
    Alert,
    AlertLevel,
    MetricSnapshot,
    MetricsRecorder,
)

__all__ = [
    # Metrics
    "Alert",
    "AlertLevel",
    # Health
    "HealthAggregator",
    "HealthSnapshot",
    "HealthStatus",
    "HealthThresholds",
    # Logger
    "LogContext",
    "LogLevel",
    "MetricSnapshot",
    "MetricsRecorder",
    "SensitiveDataMasker",
    "ShieldLogger",
    "clear_log_context",
    "default_memory_probe",
    "get_log_context",
    "get_logger",
    "set_log_context",
]
