"""Orchestration pipeline for record-driven contract rendering."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import fitz  # PyMuPDF

from core.contracts.fill_plan import build_fill_plan, check_plan_alignment
from core.contracts.record import build_contract_data
from core.registry.loader import default_registry
from core.registry.registry import FieldRegistry
from core.render.models import RenderOutput
from core.render.pdf_renderer import DocumentRenderer
from core.render.template_loader import DEFAULT_TIMEOUT_SECONDS, load_template
from core.utils.errors import RenderError

logger = logging.getLogger("contractstamp.render")


def run_contract(
    record: Mapping[str, Any],
    template_document: fitz.Document,
    *,
    registry: FieldRegistry | None = None,
    signature_png: bytes | None = None,
    font_file: Path | None = None,
) -> RenderOutput:
    """Execute record -> fill plan -> render -> finalize for one template.

    A field that fails to render is recorded in the report and skipped; the
    rest of the document is still produced.
    """

    active_registry = registry or default_registry()
    check_plan_alignment(active_registry)

    try:
        renderer = DocumentRenderer(template_document, active_registry, font_file=font_file)
    except Exception:
        template_document.close()
        raise

    with renderer:
        data = build_contract_data(record)
        for fill in build_fill_plan(data):
            if fill.values is not None:
                renderer.render_repeated_field(
                    fill.variant, fill.field_name, fill.values, on_error="skip"
                )
                continue
            try:
                renderer.render_field(fill.variant, fill.field_name, fill.value)
            except RenderError as exc:
                logger.warning("skipping field after render failure: %s", exc)

        if signature_png is not None:
            try:
                renderer.render_signature(signature_png)
            except RenderError as exc:
                logger.warning("skipping signature after render failure: %s", exc)

        pdf_bytes = renderer.finalize()

    report = renderer.report
    logger.info(
        "rendered contract: rendered=%d cleared=%d dropped=%d failed=%d",
        report.summary.rendered_count,
        report.summary.cleared_count,
        report.summary.dropped_count,
        report.summary.failed_count,
    )
    return RenderOutput(pdf_bytes=pdf_bytes, page_count=renderer.page_count, report=report)


def render_contract(
    record: Mapping[str, Any],
    template_source: str | Path,
    *,
    registry: FieldRegistry | None = None,
    signature_png: bytes | None = None,
    font_file: Path | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    cancel_event: threading.Event | None = None,
) -> RenderOutput:
    """Load a template from a URL or path and render ``record`` onto it."""

    document = load_template(template_source, timeout=timeout, cancel_event=cancel_event)
    return run_contract(
        record,
        document,
        registry=registry,
        signature_png=signature_png,
        font_file=font_file,
    )
