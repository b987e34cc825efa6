"""Typer CLI entrypoint for contract-stamp."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from apps.cli.io import (
    default_report_path,
    existing_output_files,
    write_fallback_report_atomic,
    write_render_output_atomic,
)
from core.contracts.fill_plan import check_plan_alignment
from core.orchestrator.pipeline import render_contract
from core.registry.loader import load_registry
from core.registry.registry import FieldRegistry
from core.render.models import RenderOutput
from core.render.template_loader import DEFAULT_TIMEOUT_SECONDS, load_template
from core.utils.errors import LoadError, NotFoundError, ValidationError

app = typer.Typer(help="Contract template stamping CLI", rich_markup_mode=None)

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_FIELDS_FAILED = 2
EXIT_LOAD_FAILED = 3
EXIT_REGISTRY_INVALID = 4


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep subcommands explicit."""


@app.command("render")
def render_command(
    template: Annotated[str, typer.Option(..., help="Template PDF path or http(s) URL.")],
    record: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    out: Annotated[Path, typer.Option(..., dir_okay=False)],
    signature: Annotated[
        Path | None, typer.Option(exists=True, dir_okay=False, file_okay=True)
    ] = None,
    registry: Annotated[
        Path | None, typer.Option(exists=True, dir_okay=False, file_okay=True)
    ] = None,
    report: Annotated[Path | None, typer.Option(dir_okay=False)] = None,
    font_file: Annotated[
        Path | None,
        typer.Option(
            exists=True, dir_okay=False, file_okay=True, envvar="CONTRACT_STAMP_FONT_FILE"
        ),
    ] = None,
    timeout: Annotated[float, typer.Option(min=0.1)] = DEFAULT_TIMEOUT_SECONDS,
    force: Annotated[
        bool, typer.Option("--force", help="Overwrite outputs when they already exist.")
    ] = False,
) -> None:
    """Stamp one application record onto the contract template."""

    report_path = report or default_report_path(out)
    existing = existing_output_files([out, report_path])
    if existing and not force:
        names = ", ".join(path.name for path in existing)
        typer.echo(f"ERROR: outputs already exist ({names}); pass --force to overwrite.")
        raise typer.Exit(code=EXIT_INTERNAL)

    output: RenderOutput | None = None
    exit_code = EXIT_INTERNAL
    failure_stage = "unknown"

    try:
        failure_stage = "load_registry"
        field_registry = load_registry(registry)
        failure_stage = "load_record"
        record_payload = _load_record(record)
        signature_png = signature.read_bytes() if signature is not None else None
        failure_stage = "render"
        output = render_contract(
            record_payload,
            template,
            registry=field_registry,
            signature_png=signature_png,
            font_file=font_file,
            timeout=timeout,
        )
        exit_code = EXIT_FIELDS_FAILED if output.report.summary.failed_count else EXIT_OK
    except ValidationError as exc:
        exit_code = EXIT_REGISTRY_INVALID
        typer.echo(f"ERROR: registry invalid: {exc}")
        _safe_write_fallback(report_path, exc, failure_stage)
    except LoadError as exc:
        exit_code = EXIT_LOAD_FAILED
        typer.echo(f"ERROR: template load failed (retryable): {exc}")
        _safe_write_fallback(report_path, exc, failure_stage)
    except Exception as exc:  # noqa: BLE001
        exit_code = EXIT_INTERNAL
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        _safe_write_fallback(report_path, exc, failure_stage)

    if output is not None:
        try:
            write_render_output_atomic(out, report_path, output)
        except Exception as exc:  # noqa: BLE001
            typer.echo(f"ERROR: write output failed: {exc}")
            raise typer.Exit(code=EXIT_INTERNAL) from exc

        summary = output.report.summary
        typer.echo(
            f"INFO: rendered={summary.rendered_count} cleared={summary.cleared_count} "
            f"dropped={summary.dropped_count} failed={summary.failed_count} "
            f"signed={str(summary.signed).lower()}"
        )
        if summary.overflow_count:
            typer.echo(f"WARNING: {summary.overflow_count} field(s) overflow their clear region.")
        for label in output.report.failed_fields:
            typer.echo(f"ERROR(field): {label}")

    if exit_code == EXIT_OK:
        typer.echo("INFO: success")
    raise typer.Exit(code=exit_code)


@app.command("check-registry")
def check_registry_command(
    registry: Annotated[
        Path | None, typer.Option(exists=True, dir_okay=False, file_okay=True)
    ] = None,
    template: Annotated[
        str | None, typer.Option(help="Template PDF path or URL to check page indices against.")
    ] = None,
    timeout: Annotated[float, typer.Option(min=0.1)] = DEFAULT_TIMEOUT_SECONDS,
) -> None:
    """Validate the field registry, optionally against a real template."""

    try:
        field_registry = load_registry(registry)
        check_plan_alignment(field_registry)
        if template is not None:
            document = load_template(template, timeout=timeout)
            page_count = document.page_count
            document.close()
            field_registry.check_page_count(page_count)
            typer.echo(f"INFO: template pages={page_count}")
    except ValidationError as exc:
        typer.echo(f"ERROR: registry invalid: {exc}")
        raise typer.Exit(code=EXIT_REGISTRY_INVALID) from exc
    except LoadError as exc:
        typer.echo(f"ERROR: template load failed (retryable): {exc}")
        raise typer.Exit(code=EXIT_LOAD_FAILED) from exc

    for variant in field_registry.variant_names:
        typer.echo(f"{variant}: {_variant_summary(field_registry, variant)}")
    typer.echo("INFO: registry ok")


@app.command("lookup")
def lookup_command(
    variant: Annotated[str, typer.Argument()],
    field_name: Annotated[str, typer.Argument()],
    index: Annotated[int | None, typer.Option()] = None,
    registry: Annotated[
        Path | None, typer.Option(exists=True, dir_okay=False, file_okay=True)
    ] = None,
) -> None:
    """Print the FieldSpec resolved for a variant/field/slot as JSON."""

    try:
        field_registry = load_registry(registry)
        spec = field_registry.lookup(variant, field_name, index)
    except ValidationError as exc:
        typer.echo(f"ERROR: registry invalid: {exc}")
        raise typer.Exit(code=EXIT_REGISTRY_INVALID) from exc
    except NotFoundError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    payload = spec.model_dump(mode="json")
    payload["override"] = field_registry.has_override(variant, field_name)
    typer.echo(json.dumps(payload, sort_keys=True))


def _load_record(path: Path) -> dict[str, Any]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Record JSON must be an object")
    return raw


def _variant_summary(registry: FieldRegistry, variant: str) -> str:
    parts = []
    for field_name in registry.own_field_names(variant):
        if registry.is_repeated(variant, field_name):
            parts.append(f"{field_name}[{registry.slot_count(variant, field_name)}]")
        else:
            parts.append(field_name)
    return ", ".join(parts)


def _safe_write_fallback(report_path: Path, exc: Exception, stage: str) -> None:
    try:
        write_fallback_report_atomic(
            report_path,
            error_type=type(exc).__name__,
            error_message=str(exc),
            stage=stage,
        )
    except Exception:  # noqa: BLE001
        pass


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
