import httpx

from monitor import HealthMonitor


def monitor_for(handler, threshold=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HealthMonitor(url="http://relay/health", alert_threshold=threshold, client=client)


async def test_healthy_check_resets_failures():
    monitor = monitor_for(lambda request: httpx.Response(
        200, json={"status": "healthy", "uptime": 5.2, "rooms": 1, "timestamp": "now"}))
    monitor.consecutive_failures = 2

    assert await monitor.check() is True
    assert monitor.consecutive_failures == 0
    assert monitor.status()["status"] == "healthy"
    assert monitor.status()["last_success_time"] is not None


async def test_alert_after_threshold():
    monitor = monitor_for(lambda request: httpx.Response(503), threshold=2)

    assert await monitor.check() is False
    assert monitor.alerts == []
    assert await monitor.check() is False
    assert len(monitor.alerts) == 1
    assert monitor.status()["status"] == "unhealthy"


async def test_transport_errors_count_as_failures():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    monitor = monitor_for(refuse, threshold=1)
    assert await monitor.check() is False
    assert monitor.consecutive_failures == 1
    assert len(monitor.alerts) == 1
