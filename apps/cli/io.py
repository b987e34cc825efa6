"""CLI I/O helpers for atomic output writing."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from core.render.models import RenderOutput


def default_report_path(pdf_path: Path) -> Path:
    """Report JSON lives beside the PDF: ``contract.pdf`` -> ``contract.report.json``."""

    return pdf_path.with_suffix(".report.json")


def existing_output_files(paths: list[Path]) -> list[Path]:
    """Return output paths that already exist."""

    return [path for path in paths if path.exists()]


def write_render_output_atomic(pdf_path: Path, report_path: Path, output: RenderOutput) -> None:
    """Write the PDF and its report atomically using temporary files + replace."""

    pdf_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_bytes(pdf_path, output.pdf_bytes)
    _atomic_write_json(report_path, output.report.model_dump(mode="json"))


def write_fallback_report_atomic(
    report_path: Path,
    *,
    error_type: str,
    error_message: str,
    stage: str,
) -> None:
    """Write an error-only report when no PDF could be produced."""

    payload = {
        "entries": [],
        "summary": None,
        "error": {
            "error_type": error_type,
            "error_message": error_message,
            "stage": stage,
        },
    }
    report_path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(report_path, payload)


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    tmp_path.replace(path)


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    os.close(fd)
    tmp_path = Path(raw_tmp_path)

    try:
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise
