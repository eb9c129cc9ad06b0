async def test_healthz_envelope(async_client):
    response = await async_client.get("/v1/healthz")

    assert response.status_code == 200
    assert "X-Request-ID" in response.headers
    body = response.json()
    assert body["ok"] is True
    data = body["data"]
    assert data["ok"] is True
    assert data["database"]["connected"] is True
    assert data["version"] == "1.0.0"


async def test_healthz_reports_worker_state(async_client, engine, clock):
    await engine.enqueue("echo", {})
    await engine.enqueue("echo", {})
    await engine.store.claim_next_batch(1)
    clock.advance(301)

    worker = (await async_client.get("/v1/healthz")).json()["data"]["worker"]

    assert worker == {
        "jobs_enabled": False,
        "scheduler_running": False,
        "reaper_running": False,
        "in_flight_jobs": 0,
        "processing_jobs": 1,
        "stuck_jobs_count": 1,
        "queue_depth": 2,
    }
