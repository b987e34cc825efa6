from __future__ import annotations

import json
import logging

import fitz
import httpx
import pytest

from apps.api.main import app


def _template_bytes() -> bytes:
    document = fitz.open()
    for _ in range(9):
        document.new_page(width=595, height=842)
    data = document.tobytes()
    document.close()
    return data


@pytest.mark.anyio
async def test_api_logs_request_id_for_success(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="contractstamp.api")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post(
            "/v1/render",
            files={
                "template": ("lease.pdf", _template_bytes(), "application/pdf"),
                "record": ("record.json", json.dumps({"abn": "1"}).encode(), "application/json"),
            },
        )

    assert response.status_code == 200
    request_id = response.headers["X-Contract-Request-Id"]
    messages = [record.message for record in caplog.records if record.name == "contractstamp.api"]
    assert any('"event":"start"' in message and request_id in message for message in messages)
    assert any('"event":"done"' in message and request_id in message for message in messages)


@pytest.mark.anyio
async def test_api_logs_request_id_and_error_code_for_failure(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="contractstamp.api")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post(
            "/v1/render",
            files={
                "template": ("lease.pdf", _template_bytes(), "application/pdf"),
                "record": ("record.json", b"not json", "application/json"),
            },
        )

    assert response.status_code == 400
    request_id = response.headers["X-Contract-Request-Id"]
    messages = [record.message for record in caplog.records if record.name == "contractstamp.api"]
    error_messages = [message for message in messages if '"event":"error"' in message]
    assert error_messages
    payload = json.loads(error_messages[-1])
    assert payload["request_id"] == request_id
    assert payload["error_code"] == "INVALID_RECORD"
    assert payload["failure_stage"] == "validate_record"
