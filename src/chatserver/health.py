"""HTTP health and metrics endpoints.

- ``/health``: chat state counts; 503 if the state cannot be read
- ``/liveness``: process is up (container liveness probes)
- ``/metrics``: Prometheus text exposition
- ``/metrics/summary``: key metrics as JSON
"""

import logging
import time
from typing import Any

from aiohttp import web

from chatserver.metrics import get_metrics_collector

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Request handlers bound to one chat coordinator."""

    def __init__(self, coordinator: Any = None) -> None:
        """Initialize health check handler.

        Args:
            coordinator: SessionCoordinator to report on (optional)
        """
        self.coordinator = coordinator
        self.started_at = time.monotonic()

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    async def health_check(self, request: web.Request) -> web.Response:
        """Report chat state counts.

        Response body:
            {"status": "healthy" | "unhealthy", "uptime_seconds": float,
             "chat": {...} | null, "error": str | null}
        """
        chat: dict[str, Any] | None = None
        error: str | None = None

        if self.coordinator is not None:
            try:
                chat = self.coordinator.stats()
            except Exception as e:
                error = str(e)
                logger.warning("Chat state unreadable", extra={"error": error})

        return web.json_response(
            {
                "status": "unhealthy" if error else "healthy",
                "uptime_seconds": self.uptime_seconds,
                "chat": chat,
                "error": error,
            },
            status=503 if error else 200,
        )

    async def liveness_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "alive", "uptime_seconds": self.uptime_seconds})

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus scrape target."""
        try:
            body = get_metrics_collector().export_prometheus()
        except Exception as e:
            logger.error("Metrics export failed", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# metrics export failed: {e}\n", content_type="text/plain", status=500
            )
        return web.Response(text=body, content_type="text/plain")

    async def metrics_summary(self, request: web.Request) -> web.Response:
        try:
            summary = get_metrics_collector().get_summary()
        except Exception as e:
            logger.error("Metrics summary failed", extra={"error": str(e)}, exc_info=True)
            return web.json_response({"status": "error", "error": str(e)}, status=500)

        return web.json_response(
            {"status": "ok", "uptime_seconds": self.uptime_seconds, "metrics": summary}
        )


def setup_health_routes(app: web.Application, coordinator: Any = None) -> None:
    """Register the health and metrics routes on ``app``.

    Args:
        app: aiohttp Application instance
        coordinator: SessionCoordinator to report on (optional)
    """
    handler = HealthCheckHandler(coordinator)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info("Health routes registered", extra={"routes": ["/health", "/liveness", "/metrics"]})
