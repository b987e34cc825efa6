from __future__ import annotations

import json
import threading

import fitz
import httpx
import pytest

import apps.api.main as api_main
from apps.api.main import app


def _template_bytes(pages: int = 9) -> bytes:
    document = fitz.open()
    for _ in range(pages):
        document.new_page(width=595, height=842)
    data = document.tobytes()
    document.close()
    return data


def _record_bytes(payload: object | None = None) -> bytes:
    record = payload if payload is not None else {"businessName": "Acme Pty Ltd"}
    return json.dumps(record).encode("utf-8")


def _png_bytes() -> bytes:
    pixmap = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 60, 20), False)
    pixmap.clear_with(0)
    return pixmap.tobytes("png")


def _files(
    *,
    template: bytes | None = None,
    record: bytes | None = None,
    signature: bytes | None = None,
    template_name: str = "lease.pdf",
) -> dict[str, tuple[str, bytes, str]]:
    files = {
        "template": (
            template_name,
            template if template is not None else _template_bytes(),
            "application/pdf",
        ),
        "record": (
            "record.json",
            record if record is not None else _record_bytes(),
            "application/json",
        ),
    }
    if signature is not None:
        files["signature"] = ("signature.png", signature, "image/png")
    return files


async def _post(files: dict[str, tuple[str, bytes, str]]) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await client.post("/v1/render", files=files)


@pytest.mark.anyio
async def test_render_returns_pdf_stream() -> None:
    response = await _post(_files(signature=_png_bytes()))

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["X-Contract-Request-Id"]
    assert response.headers["X-Contract-Failed-Fields"] == "0"

    document = fitz.open(stream=response.content, filetype="pdf")
    assert document.page_count == 9
    assert "Acme Pty Ltd" in document[0].get_text()
    assert len(document[1].get_images()) == 1


@pytest.mark.anyio
async def test_render_rejects_non_object_record() -> None:
    response = await _post(_files(record=_record_bytes([1, 2, 3])))

    assert response.status_code == 400
    payload = response.json()
    assert payload["error_code"] == "INVALID_RECORD"
    assert payload["detail"]["request_id"] == response.headers["X-Contract-Request-Id"]


@pytest.mark.anyio
async def test_render_rejects_malformed_json_record() -> None:
    response = await _post(_files(record=b"{not json"))

    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_RECORD"


@pytest.mark.anyio
async def test_render_rejects_wrong_template_suffix() -> None:
    response = await _post(_files(template_name="lease.docx"))

    assert response.status_code == 415
    assert response.json()["error_code"] == "INVALID_MEDIA_TYPE"


@pytest.mark.anyio
async def test_render_rejects_non_png_signature() -> None:
    response = await _post(_files(signature=b"GIF89a"))

    assert response.status_code == 415
    assert response.json()["detail"]["field"] == "signature"


@pytest.mark.anyio
async def test_render_unparseable_template_returns_422() -> None:
    response = await _post(_files(template=b"%PDF-1.7 but nothing else"))

    assert response.status_code == 422
    payload = response.json()
    assert payload["error_code"] == "TEMPLATE_LOAD_FAILED"
    assert payload["detail"]["retryable"] is True


@pytest.mark.anyio
async def test_render_short_template_returns_registry_mismatch() -> None:
    response = await _post(_files(template=_template_bytes(pages=4)))

    assert response.status_code == 422
    payload = response.json()
    assert payload["error_code"] == "REGISTRY_MISMATCH"
    assert "references page" in payload["detail"]["error"]


@pytest.mark.anyio
async def test_render_upload_too_large_returns_413(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTRACT_STAMP_MAX_UPLOAD_BYTES", "32")

    response = await _post(_files())

    assert response.status_code == 413
    payload = response.json()
    assert payload["error_code"] == "UPLOAD_TOO_LARGE"
    assert payload["detail"]["max_bytes"] == 32


@pytest.mark.anyio
async def test_render_returns_429_when_busy(monkeypatch: pytest.MonkeyPatch) -> None:
    limiter = api_main._ConcurrencyLimiter(
        max_concurrency=1, semaphore=threading.BoundedSemaphore(value=1)
    )
    limiter.semaphore.acquire()
    monkeypatch.setattr(api_main, "_get_concurrency_limiter", lambda: limiter)

    response = await _post(_files())

    assert response.status_code == 429
    payload = response.json()
    assert payload["error_code"] == "TOO_MANY_REQUESTS"
    assert payload["detail"]["max_concurrency"] == 1


@pytest.mark.anyio
async def test_render_releases_concurrency_slot(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONTRACT_STAMP_MAX_CONCURRENCY", "1")

    first = await _post(_files())
    second = await _post(_files())

    assert first.status_code == 200
    assert second.status_code == 200


@pytest.mark.anyio
async def test_meta_lists_variants_and_slot_counts() -> None:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/v1/meta")

    assert response.status_code == 200
    assert response.headers["X-Contract-Request-Id"]
    payload = response.json()
    assert payload["version"] == app.version
    assert payload["default_variant"] == "lessee"
    assert payload["template_page_count"] == 9
    assert set(payload["variants"]) == {"lessee", "lesseePage4", "lesseePage5", "lesseePage7"}
    lessee = payload["variants"]["lessee"]
    assert lessee["slot_counts"]["directorName"] == 2
    assert lessee["overrides"] == []
    page4 = payload["variants"]["lesseePage4"]
    assert "entityName" in page4["overrides"]
    assert page4["slot_counts"]["guarantorName"] == 2
