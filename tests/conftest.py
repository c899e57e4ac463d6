"""Shared test fixtures."""

from collections.abc import Iterator

import pytest

from chatserver.metrics import MetricsCollector, get_metrics_collector, reset_metrics_collector


@pytest.fixture(autouse=True)
def fresh_metrics() -> Iterator[MetricsCollector]:
    """Give every test its own metrics collector."""
    reset_metrics_collector()
    yield get_metrics_collector()
    reset_metrics_collector()
