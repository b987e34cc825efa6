"""Fetch and parse PDF contract templates."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import fitz  # PyMuPDF
import httpx

from core.utils.errors import LoadError

logger = logging.getLogger("contractstamp.render")

DEFAULT_TIMEOUT_SECONDS = 30.0
_CHUNK_SIZE = 64 * 1024


def is_url(source: str | Path) -> bool:
    return isinstance(source, str) and source.lower().startswith(("http://", "https://"))


def fetch_template_bytes(
    source: str | Path,
    *,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    cancel_event: threading.Event | None = None,
    client: httpx.Client | None = None,
) -> bytes:
    """Read template bytes from a URL or a filesystem path."""

    if not is_url(source):
        path = Path(source)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise LoadError(f"Template not readable: {path}", source=str(path)) from exc

    url = str(source)
    owns_client = client is None
    http = client or httpx.Client(follow_redirects=True)
    try:
        chunks: list[bytes] = []
        with http.stream("GET", url, timeout=timeout) as response:
            if response.status_code != 200:
                raise LoadError(
                    f"Template not found: {url} (HTTP {response.status_code})", source=url
                )
            for chunk in response.iter_bytes(_CHUNK_SIZE):
                if cancel_event is not None and cancel_event.is_set():
                    raise LoadError(f"Template load cancelled: {url}", source=url)
                chunks.append(chunk)
        return b"".join(chunks)
    except httpx.TimeoutException as exc:
        raise LoadError(f"Template load timed out: {url}", source=url) from exc
    except httpx.HTTPError as exc:
        raise LoadError(f"Template fetch failed: {url}: {exc}", source=url) from exc
    finally:
        if owns_client:
            http.close()


def open_template(data: bytes, *, source: str = "<bytes>") -> fitz.Document:
    """Parse template bytes into an in-memory PDF document."""

    if not data:
        raise LoadError(f"Template is empty: {source}", source=source)
    try:
        document = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:  # noqa: BLE001
        raise LoadError(f"Template is not a valid PDF: {source}", source=source) from exc

    if not document.is_pdf or document.needs_pass or document.page_count == 0:
        document.close()
        raise LoadError(f"Template is encrypted or has no pages: {source}", source=source)
    return document


def load_template(
    source: str | Path,
    *,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    cancel_event: threading.Event | None = None,
    client: httpx.Client | None = None,
) -> fitz.Document:
    """Fetch template bytes and parse them; failures raise a retryable LoadError."""

    data = fetch_template_bytes(source, timeout=timeout, cancel_event=cancel_event, client=client)
    document = open_template(data, source=str(source))
    logger.info("loaded template %s (%d pages, %d bytes)", source, document.page_count, len(data))
    return document
