"""Tests for error rendering: domain errors and unexpected failures."""

import pytest
from fastapi import Request
from httpx import ASGITransport, AsyncClient

from app.core.errors import ConflictError, NotFoundError, domain_error_handler
from app.main import app
from app.services.job_queue import GTM_SYNC_QUEUE
from tests.conftest import RecordingJobQueue


def _request() -> Request:
    return Request({"type": "http", "method": "GET", "path": "/", "headers": []})


class TestDomainErrorHandler:
    async def test_renders_status_and_envelope(self) -> None:
        response = await domain_error_handler(_request(), ConflictError("Tracking is currently syncing"))
        assert response.status_code == 409
        assert response.body == b'{"error":"Tracking is currently syncing"}'

    async def test_not_found(self) -> None:
        response = await domain_error_handler(_request(), NotFoundError("Customer not found"))
        assert response.status_code == 404

    async def test_other_exceptions_are_reraised(self) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            await domain_error_handler(_request(), RuntimeError("boom"))


async def test_unhandled_error_returns_500_envelope(client: AsyncClient, job_queue: RecordingJobQueue) -> None:
    """``client`` installs the dependency overrides; this transport keeps the 500 instead of raising."""

    def _broken(job_id: str) -> str | None:
        raise RuntimeError("result backend exploded")

    job_queue.job_owner = _broken  # type: ignore[method-assign]

    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False), base_url="http://test"
    ) as raw:
        response = await raw.get(f"/api/v1/jobs/{GTM_SYNC_QUEUE}/job-1")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
