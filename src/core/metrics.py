"""
Prometheus Metrics for Observability

Tracks per-operation latency, background-removal admission, and HTTP traffic.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
import functools
from typing import Callable
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

# Operation Latency - compress / convert / duplicate / remove_background stages
operation_latency_seconds = Histogram(
    "image_operation_latency_seconds",
    "Time spent in each image operation or pipeline stage",
    labelnames=["operation", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Processed output sizes
output_size_bytes = Histogram(
    "image_output_size_bytes",
    "Size of produced images",
    labelnames=["operation"],
    buckets=[1e3, 1e4, 1e5, 5e5, 1e6, 5e6, 1e7, 5e7]
)

# Background removal admission
background_removals_active = Gauge(
    "background_removals_active",
    "Number of background removals currently holding an admission slot"
)

admission_rejections_total = Counter(
    "background_removal_admission_rejections_total",
    "Background removals rejected because the gate was full"
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
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Application Info
app_info = Info(
    "image_service",
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
def track_operation_latency(operation: str):
    """
    Context manager to track operation latency.

    Usage:
        with track_operation_latency("segmentation"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        operation_latency_seconds.labels(operation=operation, status=status).observe(duration)


def track_latency(operation: str):
    """
    Decorator to track function latency.

    Usage:
        @track_latency("compress")
        def compress_image(...):
            ...
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with track_operation_latency(operation):
                return func(*args, **kwargs)
        return wrapper

    return decorator


def record_output_size(operation: str, size: int):
    """Record the byte size of a produced image."""
    output_size_bytes.labels(operation=operation).observe(size)


def record_admission_rejection():
    """Record a background removal rejected by the admission gate."""
    admission_rejections_total.inc()


def set_active_removals(count: int):
    """Mirror the admission gate counter into the gauge."""
    background_removals_active.set(count)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
