"""FastAPI wrapper for the contract stamping pipeline."""

from __future__ import annotations

import asyncio
import importlib.metadata
import json
import logging
import os
import threading
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from core.orchestrator.pipeline import run_contract
from core.registry.loader import default_registry
from core.registry.registry import FieldRegistry
from core.render.models import RenderOutput
from core.render.template_loader import open_template
from core.utils.errors import LoadError, ValidationError

app = FastAPI(title="contract-stamp API", version="0.1.0")
logger = logging.getLogger("contractstamp.api")

REQUEST_ID_HEADER = "X-Contract-Request-Id"
FAILED_FIELDS_HEADER = "X-Contract-Failed-Fields"

_DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024
_DEFAULT_MAX_CONCURRENCY = 2
_PDF_MAGIC = b"%PDF"
_PNG_MAGIC = b"\x89PNG"


@dataclass
class _ConcurrencyLimiter:
    max_concurrency: int
    semaphore: threading.BoundedSemaphore


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


_limiter_lock = threading.Lock()
_limiter_cache: _ConcurrencyLimiter | None = None


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.get("/v1/meta")
async def meta_v1(request: Request) -> JSONResponse:
    """Registry metadata: variants, resolvable fields and slot counts."""

    request_id = _request_id_from_request(request)
    try:
        registry = default_registry()
    except ValidationError as exc:
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="REGISTRY_INVALID",
            status_code=500,
            failure_stage="load_registry",
        )
        return _error_response(
            status_code=500,
            error_code="REGISTRY_INVALID",
            message="field registry failed validation",
            request_id=request_id,
            detail={"error": str(exc)},
        )

    payload = {
        "default_variant": registry.default_variant,
        "template_page_count": registry.template_page_count,
        "variants": {
            variant: _variant_summary(registry, variant) for variant in registry.variant_names
        },
        "version": app.version,
        "build": {"version": _package_version()},
    }
    return JSONResponse(
        status_code=200,
        headers={REQUEST_ID_HEADER: request_id},
        content=payload,
    )


@app.post("/v1/render", response_model=None)
async def render_v1(
    request: Request,
    template: Annotated[UploadFile, File(...)],
    record: Annotated[UploadFile, File(...)],
    signature: Annotated[UploadFile | None, File()] = None,
) -> StreamingResponse | JSONResponse:
    """Stamp one record onto an uploaded template and stream the PDF back."""

    request_started = time.perf_counter()
    request_id = _request_id_from_request(request)
    failure_stage = "init"

    slot_acquired = False
    limiter: _ConcurrencyLimiter | None = None

    try:
        failure_stage = "validate_inputs"
        limiter = _get_concurrency_limiter()
        slot_acquired = limiter.semaphore.acquire(blocking=False)
        if not slot_acquired:
            raise ApiRequestError(
                status_code=429,
                error_code="TOO_MANY_REQUESTS",
                message="server busy",
                detail={"max_concurrency": limiter.max_concurrency},
            )

        max_upload_bytes = _max_upload_bytes()

        failure_stage = "upload"
        _validate_upload_name(template.filename, expected_suffix=".pdf", field_name="template")
        _validate_upload_name(record.filename, expected_suffix=".json", field_name="record")
        template_bytes = _read_upload_with_limit(
            upload=template, max_bytes=max_upload_bytes, field_name="template"
        )
        if not template_bytes.startswith(_PDF_MAGIC):
            raise ApiRequestError(
                status_code=415,
                error_code="INVALID_MEDIA_TYPE",
                message="template must be a valid .pdf file",
                detail={"field": "template"},
            )
        record_bytes = _read_upload_with_limit(
            upload=record, max_bytes=max_upload_bytes, field_name="record"
        )
        signature_bytes: bytes | None = None
        if signature is not None and signature.filename:
            _validate_upload_name(
                signature.filename, expected_suffix=".png", field_name="signature"
            )
            signature_bytes = _read_upload_with_limit(
                upload=signature, max_bytes=max_upload_bytes, field_name="signature"
            )
            if not signature_bytes.startswith(_PNG_MAGIC):
                raise ApiRequestError(
                    status_code=415,
                    error_code="INVALID_MEDIA_TYPE",
                    message="signature must be a valid .png file",
                    detail={"field": "signature"},
                )

        failure_stage = "validate_record"
        record_payload = _parse_record(record_bytes)

        failure_stage = "load_registry"
        registry = default_registry()

        _log_event(
            logging.INFO,
            "start",
            request_id,
            template_bytes=len(template_bytes),
            signature_provided=signature_bytes is not None,
            max_upload_bytes=max_upload_bytes,
        )

        failure_stage = "render"
        output = await asyncio.to_thread(
            _render_uploaded,
            template_bytes,
            record_payload,
            registry,
            signature_bytes,
            template.filename or "template.pdf",
        )

        failure_stage = "respond"
        summary = output.report.summary
        _log_event(
            logging.INFO,
            "done",
            request_id,
            page_count=output.page_count,
            rendered=summary.rendered_count,
            cleared=summary.cleared_count,
            dropped=summary.dropped_count,
            failed=summary.failed_count,
            signed=summary.signed,
            total_ms=_elapsed_ms(request_started),
        )
        headers = {
            REQUEST_ID_HEADER: request_id,
            FAILED_FIELDS_HEADER: str(summary.failed_count),
            "Content-Disposition": 'attachment; filename="contract.pdf"',
        }
        return StreamingResponse(
            _iter_bytes_chunks(output.pdf_bytes),
            media_type=output.media_type,
            headers=headers,
        )
    except ApiRequestError as exc:
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code=exc.error_code,
            status_code=exc.status_code,
            failure_stage=failure_stage,
        )
        return _error_response(
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            request_id=request_id,
            detail=exc.detail,
        )
    except LoadError as exc:
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="TEMPLATE_LOAD_FAILED",
            status_code=422,
            failure_stage=failure_stage,
        )
        return _error_response(
            status_code=422,
            error_code="TEMPLATE_LOAD_FAILED",
            message="template could not be loaded",
            request_id=request_id,
            detail={"field": "template", "error": str(exc), "retryable": exc.retryable},
        )
    except ValidationError as exc:
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="REGISTRY_MISMATCH",
            status_code=422,
            failure_stage=failure_stage,
        )
        return _error_response(
            status_code=422,
            error_code="REGISTRY_MISMATCH",
            message="field registry does not fit the template",
            request_id=request_id,
            detail={"error": str(exc), "location": exc.location},
        )
    except Exception as exc:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage=failure_stage,
        )
        return _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"error": str(exc), "total_ms": _elapsed_ms(request_started)},
        )
    finally:
        if slot_acquired and limiter is not None:
            limiter.semaphore.release()


def _render_uploaded(
    template_bytes: bytes,
    record_payload: dict[str, Any],
    registry: FieldRegistry,
    signature_bytes: bytes | None,
    source: str,
) -> RenderOutput:
    document = open_template(template_bytes, source=source)
    return run_contract(
        record_payload,
        document,
        registry=registry,
        signature_png=signature_bytes,
        font_file=_font_file(),
    )


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _variant_summary(registry: FieldRegistry, variant: str) -> dict[str, Any]:
    slot_counts = {
        field_name: registry.slot_count(variant, field_name)
        for field_name in registry.field_names(variant)
        if registry.is_repeated(variant, field_name)
    }
    return {
        "fields": registry.field_names(variant),
        "overrides": [
            field_name
            for field_name in registry.own_field_names(variant)
            if registry.has_override(variant, field_name)
        ],
        "slot_counts": slot_counts,
    }


def _parse_record(raw: bytes) -> dict[str, Any]:
    try:
        record_raw = json.loads(raw.decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_RECORD",
            message="record file must be valid JSON",
            detail={"field": "record", "error": str(exc)},
        ) from exc
    except UnicodeDecodeError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_RECORD",
            message="record file must be UTF-8 JSON",
            detail={"field": "record"},
        ) from exc

    if not isinstance(record_raw, dict):
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_RECORD",
            message="record JSON must be an object",
            detail={"field": "record"},
        )
    return record_raw


def _validate_upload_name(filename: str | None, *, expected_suffix: str, field_name: str) -> None:
    if filename is None or not filename.lower().endswith(expected_suffix):
        raise ApiRequestError(
            status_code=415,
            error_code="INVALID_MEDIA_TYPE",
            message=f"{field_name} must be a {expected_suffix} file",
            detail={"field": field_name, "filename": filename},
        )


def _read_upload_with_limit(*, upload: UploadFile, max_bytes: int, field_name: str) -> bytes:
    total_size = 0
    chunks: list[bytes] = []

    source = upload.file
    source.seek(0)
    while True:
        chunk = source.read(1024 * 1024)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise ApiRequestError(
                status_code=413,
                error_code="UPLOAD_TOO_LARGE",
                message=f"{field_name} exceeds upload size limit",
                detail={
                    "field": field_name,
                    "max_bytes": max_bytes,
                    "received_bytes": total_size,
                },
            )
        chunks.append(chunk)

    source.close()
    return b"".join(chunks)


def _max_upload_bytes() -> int:
    raw = os.getenv("CONTRACT_STAMP_MAX_UPLOAD_BYTES")
    if raw is None:
        return _DEFAULT_MAX_UPLOAD_BYTES
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_MAX_UPLOAD_BYTES
    return parsed if parsed > 0 else _DEFAULT_MAX_UPLOAD_BYTES


def _max_concurrency() -> int:
    raw = os.getenv("CONTRACT_STAMP_MAX_CONCURRENCY")
    if raw is None:
        return _DEFAULT_MAX_CONCURRENCY
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_MAX_CONCURRENCY
    return parsed if parsed > 0 else _DEFAULT_MAX_CONCURRENCY


def _font_file() -> Path | None:
    raw = os.getenv("CONTRACT_STAMP_FONT_FILE", "").strip()
    return Path(raw) if raw else None


def _get_concurrency_limiter() -> _ConcurrencyLimiter:
    global _limiter_cache

    max_concurrency = _max_concurrency()
    with _limiter_lock:
        if _limiter_cache is None or _limiter_cache.max_concurrency != max_concurrency:
            _limiter_cache = _ConcurrencyLimiter(
                max_concurrency=max_concurrency,
                semaphore=threading.BoundedSemaphore(value=max_concurrency),
            )
        return _limiter_cache


def _package_version() -> str:
    try:
        return importlib.metadata.version("contract-stamp")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


async def _iter_bytes_chunks(data: bytes, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
    for start in range(0, len(data), chunk_size):
        yield data[start : start + chunk_size]
        await asyncio.sleep(0)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, _dump_json(payload))
