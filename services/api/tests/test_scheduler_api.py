"""Tests for /v1/scheduler endpoints."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from conftest import make_product
from pricewatch.stores.products import PersistenceError

PAGE = '<script type="application/ld+json">{"@type": "Product", "offers": {"price": "%s"}}</script>'


@pytest.mark.asyncio
async def test_start_stop_status_cycle(client: AsyncClient, services):
    started = await client.post("/v1/scheduler/start", json={"cronExpression": "*/30 * * * *"})
    assert started.status_code == 200
    assert started.json()["running"] is True

    again = await client.post("/v1/scheduler/start")
    assert again.json()["message"] == "Price checker is already running"

    status = (await client.get("/v1/scheduler/status")).json()
    assert status["running"] is True
    assert status["cronExpression"] == "*/30 * * * *"
    assert status["nextRunAt"] is not None

    stopped = await client.post("/v1/scheduler/stop")
    assert stopped.json() == {"success": True, "message": "Price checker stopped", "running": False}

    stopped_again = await client.post("/v1/scheduler/stop")
    assert stopped_again.json()["message"] == "No price checker job is running"
    assert services.scheduler.is_running is False


@pytest.mark.asyncio
async def test_start_with_invalid_cron_is_400(client: AsyncClient):
    response = await client.post("/v1/scheduler/start", json={"cronExpression": "every day"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_CRON"

    status = (await client.get("/v1/scheduler/status")).json()
    assert status["running"] is False


@pytest.mark.asyncio
async def test_run_now_reconciles_and_records(client: AsyncClient, store, page_server, recorded_runs):
    ok = make_product(1, url="https://www.myntra.com/p/1", price="999", target_price="800")
    broken = make_product(2, url="https://www.myntra.com/p/2", price="500")
    store.products = {ok.id: ok, broken.id: broken}
    page_server.add(ok.url, PAGE % "799")
    page_server.add(broken.url, "server error", status_code=500)

    response = await client.post("/v1/scheduler/run")

    assert response.status_code == 200
    run = response.json()["run"]
    assert run["trigger"] == "manual"
    assert run["successCount"] == 1
    assert run["failureCount"] == 1

    assert store.products[1].current_price == Decimal("799")
    assert [h.price for h in store.history[1]] == [Decimal("799")]
    assert store.bulk_last_checked_calls == [[1]]
    assert len(recorded_runs) == 1

    runs = (await client.get("/v1/scheduler/runs")).json()["runs"]
    assert len(runs) == 1
    assert runs[0]["successCount"] == 1

    status = (await client.get("/v1/scheduler/status")).json()
    assert status["running"] is False
    assert status["lastRun"]["failureCount"] == 1


@pytest.mark.asyncio
async def test_runs_fall_back_to_last_run_when_history_unavailable(client: AsyncClient, services):
    async def unavailable(limit: int):
        raise RuntimeError("Redis not initialized. Call init_redis() first.")

    services.run_history = unavailable

    empty = await client.get("/v1/scheduler/runs")
    assert empty.status_code == 200
    assert empty.json()["runs"] == []

    await client.post("/v1/scheduler/run")
    runs = (await client.get("/v1/scheduler/runs")).json()["runs"]
    assert len(runs) == 1
    assert runs[0]["trigger"] == "manual"


@pytest.mark.asyncio
async def test_run_reports_counts_when_last_checked_stamp_fails(
    client: AsyncClient, store, page_server, recorded_runs
):
    async def failing_bulk_update(product_ids: list[int]) -> int:
        raise PersistenceError("database went away")

    store.bulk_update_last_checked = failing_bulk_update
    product = make_product(1, url="https://www.myntra.com/p/1", price="999")
    store.products = {product.id: product}
    page_server.add(product.url, PAGE % "899")

    response = await client.post("/v1/scheduler/run")

    assert response.status_code == 200
    run = response.json()["run"]
    assert (run["successCount"], run["failureCount"]) == (1, 0)
    assert len(recorded_runs) == 1
    assert store.products[1].current_price == Decimal("899")
