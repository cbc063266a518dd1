"""Standalone health monitor for a deployed relay.

Polls the relay's ``/health`` endpoint and raises an alert in the logs after
``ALERT_THRESHOLD`` consecutive failures. Run with ``python monitor.py``.
"""
import asyncio
import os
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from logging_config import get_logger, setup_logging

logger = get_logger(__name__)

HEALTH_CHECK_URL = os.getenv("HEALTH_CHECK_URL", "http://localhost:8080/health")
CHECK_INTERVAL = float(os.getenv("CHECK_INTERVAL", 30))
ALERT_THRESHOLD = int(os.getenv("ALERT_THRESHOLD", 3))
REQUEST_TIMEOUT = 10.0


class HealthMonitor:
    def __init__(self, url: str = HEALTH_CHECK_URL, alert_threshold: int = ALERT_THRESHOLD,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.alert_threshold = alert_threshold
        self.client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        self.started_at = time.monotonic()
        self.consecutive_failures = 0
        self.last_success: Optional[datetime] = None
        self.alerts: list[str] = []

    async def check(self) -> bool:
        start = time.monotonic()
        try:
            response = await self.client.get(self.url)
        except httpx.TimeoutException:
            self._record_failure(f"Health check TIMEOUT ({REQUEST_TIMEOUT:.0f}s)")
            return False
        except httpx.HTTPError as e:
            self._record_failure(f"Health check ERROR: {e}")
            return False

        elapsed_ms = round((time.monotonic() - start) * 1000)
        if response.status_code != 200:
            self._record_failure(f"Health check FAILED - Status: {response.status_code} ({elapsed_ms}ms)")
            return False

        self.consecutive_failures = 0
        self.last_success = datetime.now(timezone.utc)
        logger.info(f"Health check OK ({elapsed_ms}ms)")
        try:
            body = response.json()
            logger.info(f"Server stats: Uptime: {round(body['uptime'])}s, Rooms: {body['rooms']}")
        except (ValueError, KeyError, TypeError):
            logger.debug("Health response carried no stats")
        return True

    def _record_failure(self, message: str) -> None:
        self.consecutive_failures += 1
        logger.warning(message)
        if self.consecutive_failures >= self.alert_threshold:
            alert = f"{self.consecutive_failures} consecutive failures detected ({message})"
            self.alerts.append(alert)
            logger.error(f"ALERT: {alert}")

    def status(self) -> dict:
        return {
            "monitor_uptime": round(time.monotonic() - self.started_at),
            "consecutive_failures": self.consecutive_failures,
            "last_success_time": self.last_success.isoformat() if self.last_success else None,
            "status": "healthy" if self.consecutive_failures == 0 else "unhealthy",
        }

    async def run(self, interval: float = CHECK_INTERVAL) -> None:
        logger.info(f"Starting health check monitor for {self.url} every {interval}s "
                    f"(alert after {self.alert_threshold} failures)")
        try:
            while True:
                await self.check()
                await asyncio.sleep(interval)
        finally:
            await self.client.aclose()


if __name__ == "__main__":
    setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE", None))
    try:
        asyncio.run(HealthMonitor().run())
    except KeyboardInterrupt:
        logger.info("Monitor shutting down...")
