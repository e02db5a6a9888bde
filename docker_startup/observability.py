"""
Observability module: Prometheus metrics and structured JSON logging.

- Engine call and lifecycle metrics (Counters, Histogram, Gauge)
- JSON structured logging via python-json-logger
- Masking of credentials in log messages
"""

import logging
import re
import sys

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Prometheus Custom Metrics
# =============================================================================

ENGINE_CALLS = Counter(
    "docker_startup_engine_calls_total",
    "Container engine calls by operation and outcome",
    ["operation", "outcome"],
)

CONTAINERS_CREATED = Counter(
    "docker_startup_containers_created_total",
    "Containers created by the orchestrator",
)

CONTAINERS_TORN_DOWN = Counter(
    "docker_startup_containers_torn_down_total",
    "Containers stopped by the orchestrator",
)

ENSURE_RUNNING_DURATION = Histogram(
    "docker_startup_ensure_running_seconds",
    "Latency of ensure_running (create/start/resolve)",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 20, 30, 60),
)

ACTIVE_IDENTITY_LOCKS = Gauge(
    "docker_startup_identity_locks",
    "Per-identity locks currently held or waited on",
)

ERRORS_TOTAL = Counter(
    "docker_startup_errors_total",
    "Lifecycle errors by operation and error type",
    ["operation", "error"],
)


# =============================================================================
# Logging
# =============================================================================

class SensitiveDataFilter(logging.Filter):
    """Mask passwords, tokens and secrets in log messages."""

    SENSITIVE_PATTERNS = [
        (re.compile(r'password["\']?\s*[:=]\s*["\']?[^"\'}\s,]+', re.I), 'password=***'),
        (re.compile(r'token["\']?\s*[:=]\s*["\']?[^"\'}\s,]+', re.I), 'token=***'),
        (re.compile(r'secret["\']?\s*[:=]\s*["\']?[^"\'}\s,]+', re.I), 'secret=***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


def setup_json_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with JSON structured output.

    Uses python-json-logger's JsonFormatter; the handler carries a
    SensitiveDataFilter so container credentials never reach the log.
    """
    from pythonjsonlogger.json import JsonFormatter

    handler = logging.StreamHandler(sys.stderr)
    formatter = JsonFormatter(
        fmt="%(timestamp)s %(name)s %(levelname)s %(message)s",
        rename_fields={"levelname": "level"},
        timestamp=True,
    )
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure logging from the ``logging`` section of the settings."""
    if json_format:
        setup_json_logging(level)
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    handler.addFilter(SensitiveDataFilter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())
