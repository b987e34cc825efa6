from __future__ import annotations

import json
from pathlib import Path

import pytest

import apps.cli.io as cli_io
from apps.cli.io import (
    default_report_path,
    existing_output_files,
    write_fallback_report_atomic,
    write_render_output_atomic,
)
from core.render.models import RenderLogEntry, RenderOutput, build_report


def _build_output() -> RenderOutput:
    report = build_report(
        [RenderLogEntry(status="rendered", variant="lessee", field_name="abn", page=0)],
        signed=False,
    )
    return RenderOutput(pdf_bytes=b"%PDF-1.7 stub", page_count=9, report=report)


def test_default_report_path_sits_beside_pdf(tmp_path: Path) -> None:
    assert default_report_path(tmp_path / "contract.pdf") == tmp_path / "contract.report.json"


def test_existing_output_files(tmp_path: Path) -> None:
    present = tmp_path / "contract.pdf"
    present.write_bytes(b"x")

    assert existing_output_files([present, tmp_path / "other.pdf"]) == [present]


def test_write_render_output_atomic_cleans_tmp_on_success(tmp_path: Path) -> None:
    pdf_path = tmp_path / "contract.pdf"
    report_path = tmp_path / "contract.report.json"

    write_render_output_atomic(pdf_path, report_path, _build_output())

    assert pdf_path.read_bytes() == b"%PDF-1.7 stub"
    payload = json.loads(report_path.read_text(encoding="utf-8"))
    assert payload["summary"]["rendered_count"] == 1
    assert list(tmp_path.glob("*.tmp")) == []


def test_write_render_output_atomic_cleans_pdf_tmp_on_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    pdf_path = tmp_path / "contract.pdf"
    report_path = tmp_path / "contract.report.json"

    def broken_replace(self: Path, target: Path) -> Path:
        raise OSError("replace failed")

    monkeypatch.setattr(cli_io.Path, "replace", broken_replace)

    with pytest.raises(OSError, match="replace failed"):
        write_render_output_atomic(pdf_path, report_path, _build_output())

    assert not pdf_path.exists()
    assert list(tmp_path.glob("contract.pdf.*.tmp")) == []


def test_write_fallback_report_atomic(tmp_path: Path) -> None:
    report_path = tmp_path / "nested" / "contract.report.json"

    write_fallback_report_atomic(
        report_path, error_type="LoadError", error_message="gone", stage="render"
    )

    payload = json.loads(report_path.read_text(encoding="utf-8"))
    assert payload["summary"] is None
    assert payload["error"] == {
        "error_type": "LoadError",
        "error_message": "gone",
        "stage": "render",
    }
