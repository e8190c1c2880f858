"""
Prometheus Metrics for Observability

Tracks try-on pipeline performance, vision calls, and temp artifact usage.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
import asyncio
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each try-on pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Try-on outcomes: success, or the error kind
tryon_requests_total = Counter(
    "tryon_requests_total",
    "Total number of try-on requests by outcome",
    labelnames=["outcome"]
)

# Vision inference calls
vision_calls_total = Counter(
    "vision_calls_total",
    "Total number of vision inference calls",
    labelnames=["status"]
)

# Where the anchor point came from (vision or fallback)
anchor_source_total = Counter(
    "anchor_source_total",
    "Anchor points produced, by source",
    labelnames=["source"]
)

# Temp artifacts currently held across all in-flight requests
temp_artifacts_active = Gauge(
    "temp_artifacts_active",
    "Number of uploaded temp artifacts not yet released"
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "tryon_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("compositing"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except asyncio.CancelledError:
        status = "cancelled"
        raise
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_vision_call(status: str):
    """Record a vision inference call (success, error, timeout, unparseable)."""
    vision_calls_total.labels(status=status).inc()


def record_anchor_source(source: str):
    """Record which locator produced the anchor."""
    anchor_source_total.labels(source=source).inc()


def record_tryon_outcome(outcome: str):
    """Record a finished try-on request."""
    tryon_requests_total.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
