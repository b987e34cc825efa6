"""Render pipeline report models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MEDIA_TYPE = "application/pdf"

RenderStatus = Literal["rendered", "cleared", "dropped", "failed"]


@dataclass(frozen=True)
class TextLine:
    """One drawn line of text, in template coordinates."""

    text: str
    x: float
    y: float
    width: float


class RenderLogEntry(BaseModel):
    """Single rendered/cleared/dropped/failed field log item."""

    model_config = ConfigDict(extra="forbid")

    status: RenderStatus
    variant: str
    field_name: str
    index: int | None = None
    page: int | None = None
    text: str | None = None
    line_count: int = 0
    overflow: bool = False
    error: str | None = None


class RenderSummary(BaseModel):
    """Aggregate render summary for observability."""

    model_config = ConfigDict(extra="forbid")

    total_fields: int
    rendered_count: int
    cleared_count: int
    dropped_count: int
    failed_count: int
    overflow_count: int
    signed: bool


class RenderReport(BaseModel):
    """Full render report for one document."""

    model_config = ConfigDict(extra="forbid")

    entries: list[RenderLogEntry] = Field(default_factory=list)
    summary: RenderSummary

    @property
    def failed_fields(self) -> list[str]:
        return [
            _entry_label(entry) for entry in self.entries if entry.status == "failed"
        ]


class RenderOutput(BaseModel):
    """In-memory render output (no file paths)."""

    model_config = ConfigDict(extra="forbid")

    pdf_bytes: bytes
    media_type: str = MEDIA_TYPE
    page_count: int
    report: RenderReport


def build_report(entries: list[RenderLogEntry], *, signed: bool) -> RenderReport:
    """Summarise log entries into a report."""

    summary = RenderSummary(
        total_fields=len(entries),
        rendered_count=sum(1 for item in entries if item.status == "rendered"),
        cleared_count=sum(1 for item in entries if item.status == "cleared"),
        dropped_count=sum(1 for item in entries if item.status == "dropped"),
        failed_count=sum(1 for item in entries if item.status == "failed"),
        overflow_count=sum(1 for item in entries if item.overflow),
        signed=signed,
    )
    return RenderReport(entries=list(entries), summary=summary)


def _entry_label(entry: RenderLogEntry) -> str:
    if entry.index is None:
        return f"{entry.variant}.{entry.field_name}"
    return f"{entry.variant}.{entry.field_name}[{entry.index}]"
