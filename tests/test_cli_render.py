from __future__ import annotations

import json
from pathlib import Path

import fitz
from typer.testing import CliRunner

from apps.cli.main import app

runner = CliRunner()


def _write_template(path: Path, *, pages: int = 9) -> None:
    document = fitz.open()
    for _ in range(pages):
        document.new_page(width=595, height=842)
    document.save(str(path))
    document.close()


def _write_record(path: Path, payload: dict[str, object] | None = None) -> None:
    record = payload or {
        "businessName": "Acme Pty Ltd",
        "directors": [{"name": "Jane Citizen"}],
    }
    path.write_text(json.dumps(record), encoding="utf-8")


def _render_args(template: Path | str, record: Path, out: Path, *extra: str) -> list[str]:
    return [
        "render",
        "--template",
        str(template),
        "--record",
        str(record),
        "--out",
        str(out),
        *extra,
    ]


def test_cli_render_writes_pdf_and_report(tmp_path: Path) -> None:
    template = tmp_path / "lease.pdf"
    record = tmp_path / "record.json"
    out = tmp_path / "out" / "contract.pdf"
    _write_template(template)
    _write_record(record)

    result = runner.invoke(app, _render_args(template, record, out))

    assert result.exit_code == 0, result.output
    assert "INFO: success" in result.output
    document = fitz.open(str(out))
    assert document.page_count == 9
    assert "Acme Pty Ltd" in document[0].get_text()
    document.close()

    report = json.loads((tmp_path / "out" / "contract.report.json").read_text(encoding="utf-8"))
    assert report["summary"]["failed_count"] == 0
    assert report["summary"]["signed"] is False


def test_cli_render_refuses_to_overwrite_without_force(tmp_path: Path) -> None:
    template = tmp_path / "lease.pdf"
    record = tmp_path / "record.json"
    out = tmp_path / "contract.pdf"
    _write_template(template)
    _write_record(record)
    out.write_bytes(b"existing")

    refused = runner.invoke(app, _render_args(template, record, out))
    forced = runner.invoke(app, _render_args(template, record, out, "--force"))

    assert refused.exit_code == 1
    assert "--force" in refused.output
    assert forced.exit_code == 0, forced.output
    assert out.read_bytes().startswith(b"%PDF")


def test_cli_render_bad_signature_returns_2(tmp_path: Path) -> None:
    template = tmp_path / "lease.pdf"
    record = tmp_path / "record.json"
    signature = tmp_path / "signature.png"
    out = tmp_path / "contract.pdf"
    report = tmp_path / "custom-report.json"
    _write_template(template)
    _write_record(record)
    signature.write_bytes(b"not really a png")

    result = runner.invoke(
        app,
        _render_args(
            template, record, out, "--signature", str(signature), "--report", str(report)
        ),
    )

    assert result.exit_code == 2, result.output
    assert "ERROR(field): signature.signature" in result.output
    assert out.exists()
    payload = json.loads(report.read_text(encoding="utf-8"))
    assert payload["summary"]["failed_count"] == 1


def test_cli_render_missing_template_returns_3(tmp_path: Path) -> None:
    record = tmp_path / "record.json"
    out = tmp_path / "contract.pdf"
    _write_record(record)

    result = runner.invoke(app, _render_args(tmp_path / "missing.pdf", record, out))

    assert result.exit_code == 3
    assert "retryable" in result.output
    assert not out.exists()
    fallback = json.loads((tmp_path / "contract.report.json").read_text(encoding="utf-8"))
    assert fallback["error"]["error_type"] == "LoadError"
    assert fallback["error"]["stage"] == "render"


def test_cli_render_short_template_returns_4(tmp_path: Path) -> None:
    template = tmp_path / "lease.pdf"
    record = tmp_path / "record.json"
    out = tmp_path / "contract.pdf"
    _write_template(template, pages=3)
    _write_record(record)

    result = runner.invoke(app, _render_args(template, record, out))

    assert result.exit_code == 4
    assert "registry invalid" in result.output
    assert not out.exists()


def test_cli_render_invalid_record_returns_1(tmp_path: Path) -> None:
    template = tmp_path / "lease.pdf"
    record = tmp_path / "record.json"
    out = tmp_path / "contract.pdf"
    _write_template(template)
    record.write_text("[1, 2, 3]", encoding="utf-8")

    result = runner.invoke(app, _render_args(template, record, out))

    assert result.exit_code == 1
    fallback = json.loads((tmp_path / "contract.report.json").read_text(encoding="utf-8"))
    assert fallback["error"]["stage"] == "load_record"


def test_cli_check_registry_ok(tmp_path: Path) -> None:
    template = tmp_path / "lease.pdf"
    _write_template(template)

    result = runner.invoke(app, ["check-registry", "--template", str(template)])

    assert result.exit_code == 0, result.output
    assert "INFO: template pages=9" in result.output
    assert "lessee: " in result.output
    assert "directorName[2]" in result.output
    assert "INFO: registry ok" in result.output


def test_cli_check_registry_short_template_returns_4(tmp_path: Path) -> None:
    template = tmp_path / "lease.pdf"
    _write_template(template, pages=4)

    result = runner.invoke(app, ["check-registry", "--template", str(template)])

    assert result.exit_code == 4
    assert "references page" in result.output


def test_cli_check_registry_invalid_yaml_returns_4(tmp_path: Path) -> None:
    registry = tmp_path / "fields.yaml"
    registry.write_text("variants: {}\n", encoding="utf-8")

    result = runner.invoke(app, ["check-registry", "--registry", str(registry)])

    assert result.exit_code == 4
    assert "Invalid registry schema" in result.output


def test_cli_lookup_prints_override_spec() -> None:
    result = runner.invoke(app, ["lookup", "lesseePage4", "entityName"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["page"] == 4
    assert payload["override"] is True


def test_cli_lookup_repeated_slot() -> None:
    result = runner.invoke(app, ["lookup", "lessee", "directorDate", "--index", "1"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["x"] == 355


def test_cli_lookup_unknown_field_returns_1() -> None:
    result = runner.invoke(app, ["lookup", "lessee", "favouriteColour"])

    assert result.exit_code == 1
    assert "Unknown field" in result.output
