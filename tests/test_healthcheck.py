"""Unit tests for solver/healthcheck.py, no real API calls."""

import asyncio
from unittest.mock import AsyncMock

from solver.healthcheck import failed_roles, ping, run_health_checks
from solver.invokers.base import InvokerError
from solver.models import HealthStatus
from tests.conftest import MockInvoker, make_response


async def test_all_roles_pass():
    invokers = {
        "proposer": MockInvoker("proposer", "OK"),
        "reviewer": MockInvoker("reviewer", "OK"),
    }
    statuses = await run_health_checks(invokers)

    assert set(statuses) == {"proposer", "reviewer"}
    for role, status in statuses.items():
        assert status.role == role
        assert status.ok is True
        assert status.error == ""
        assert status.model == "mock-model"
        assert status.latency_sec >= 0
    assert failed_roles(statuses) == []


async def test_invoker_error_marks_role_failed():
    invokers = {
        "proposer": MockInvoker("proposer", "OK"),
        "reviewer": MockInvoker("reviewer"),
    }
    invokers["reviewer"].invoke = AsyncMock(side_effect=InvokerError("reviewer", "Invalid API key"))

    statuses = await run_health_checks(invokers)

    assert statuses["proposer"].ok is True
    assert statuses["reviewer"].ok is False
    assert "Invalid API key" in statuses["reviewer"].error
    assert failed_roles(statuses) == ["reviewer"]


async def test_error_without_message_uses_type_name():
    invoker = MockInvoker("single")
    invoker.invoke = AsyncMock(side_effect=ConnectionError())

    status = await ping("single", invoker)

    assert status == HealthStatus("single", "mock-model", False, "ConnectionError", status.latency_sec)


async def test_empty_reply_counts_as_failure():
    invoker = MockInvoker("single", "  \n")

    status = await ping("single", invoker)

    assert status.ok is False
    assert status.error == "empty reply"


async def test_timeout_marks_role_failed():
    async def hang(*_args):
        await asyncio.sleep(10)
        return make_response("OK")

    invoker = MockInvoker("single")
    invoker.invoke = AsyncMock(side_effect=hang)

    statuses = await run_health_checks({"single": invoker}, timeout=0.01)

    assert statuses["single"].ok is False
    assert statuses["single"].error == "no reply within 0.01s"


async def test_checks_run_in_parallel():
    started = []

    def slow(role):
        async def _invoke(*_args):
            started.append(role)
            await asyncio.sleep(0.05)
            return make_response("OK")
        return _invoke

    invokers = {role: MockInvoker(role) for role in ("single", "proposer", "reviewer")}
    for role, invoker in invokers.items():
        invoker.invoke = AsyncMock(side_effect=slow(role))

    loop = asyncio.get_running_loop()
    start = loop.time()
    statuses = await run_health_checks(invokers)
    elapsed = loop.time() - start

    assert all(status.ok for status in statuses.values())
    assert sorted(started) == ["proposer", "reviewer", "single"]
    assert elapsed < 0.15


async def test_empty_invokers():
    assert await run_health_checks({}) == {}
