"""PDF renderer that stamps field values onto a fixed-layout contract template.

Every field is written in two steps on the same page: the field's clear
region is painted over in the background colour, then the value is drawn on
top. Coordinates come from the field registry and are in PDF space (origin
bottom-left); they are converted to PyMuPDF page space before drawing.

A renderer owns exactly one in-memory document and moves through
``loaded -> rendering -> finalized``. Nothing can be drawn after
``finalize()``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Literal

import fitz  # PyMuPDF

from core.registry.models import FieldSpec, Rect
from core.registry.registry import FieldRegistry
from core.render.models import RenderLogEntry, RenderReport, TextLine, build_report
from core.render.template_loader import open_template
from core.render.text_wrap import wrap_text
from core.utils.errors import InvalidStateError, RenderError, ValidationError

logger = logging.getLogger("contractstamp.render")

RendererState = Literal["loaded", "rendering", "finalized"]

_BUILTIN_FONT = "helv"
_EMBEDDED_FONT_NAME = "F0contract"
_TEXT_COLOR = (0.0, 0.0, 0.0)
_WHITE = (1.0, 1.0, 1.0)


class DocumentRenderer:
    """Apply registry-positioned values to one loaded template document."""

    def __init__(
        self,
        document: fitz.Document,
        registry: FieldRegistry,
        *,
        font_file: Path | None = None,
        background: tuple[float, float, float] = _WHITE,
    ) -> None:
        registry.check_page_count(document.page_count)

        self._document = document
        self._registry = registry
        self._background = background
        self._font_file = str(font_file) if font_file is not None else None
        self._font = _load_font(font_file)
        self._state: RendererState = "loaded"
        self._lock = threading.Lock()
        self._entries: list[RenderLogEntry] = []
        self._signed = False
        self._output: bytes | None = None
        self._page_count = document.page_count

    @classmethod
    def from_bytes(
        cls, data: bytes, registry: FieldRegistry, **kwargs: Any
    ) -> DocumentRenderer:
        document = open_template(data)
        try:
            return cls(document, registry, **kwargs)
        except Exception:
            document.close()
            raise

    @property
    def state(self) -> RendererState:
        return self._state

    @property
    def page_count(self) -> int:
        return self._page_count

    @property
    def registry(self) -> FieldRegistry:
        return self._registry

    @property
    def report(self) -> RenderReport:
        return build_report(self._entries, signed=self._signed)

    def clear_region(self, page: int, rect: Rect) -> None:
        """Paint an opaque background-coloured rectangle over ``rect``."""

        with self._mutation():
            self._clear_region(page, rect)

    def draw_text(
        self,
        page: int,
        x: float,
        y: float,
        text: str | None,
        font_size: float,
        *,
        line_height: float | None = None,
        max_chars_per_line: int | None = None,
    ) -> list[TextLine]:
        """Draw ``text`` with its first baseline at ``(x, y)``; blank text draws nothing."""

        with self._mutation():
            return self._draw_text(
                page,
                x,
                y,
                text,
                font_size,
                line_height=line_height,
                max_chars_per_line=max_chars_per_line,
            )

    def draw_image(self, page: int, rect: Rect, image_bytes: bytes) -> None:
        """Draw a raster image stretched to fill ``rect``."""

        with self._mutation():
            self._draw_image(page, rect, image_bytes)

    def render_field(
        self, variant: str, field_name: str, value: Any, index: int | None = None
    ) -> RenderLogEntry:
        """Clear a field's region and draw its value."""

        with self._mutation():
            return self._render_field(variant, field_name, value, index)

    def render_repeated_field(
        self,
        variant: str,
        field_name: str,
        values: Sequence[Any],
        *,
        on_error: Literal["raise", "skip"] = "raise",
    ) -> list[RenderLogEntry]:
        """Render values into consecutive slots; values beyond the last slot are dropped.

        With ``on_error="skip"`` a failed slot is recorded and the remaining
        slots are still rendered.
        """

        if on_error not in {"raise", "skip"}:
            raise ValueError(f"Unsupported on_error mode: {on_error}")

        with self._mutation():
            slots = self._registry.slot_count(variant, field_name)
            entries: list[RenderLogEntry] = []
            for index, value in enumerate(values[:slots]):
                try:
                    entries.append(self._render_field(variant, field_name, value, index))
                except RenderError:
                    if on_error == "raise":
                        raise
                    entries.append(self._entries[-1])
            for index in range(slots, len(values)):
                logger.debug(
                    "dropping %s.%s[%d]: only %d slots", variant, field_name, index, slots
                )
                entries.append(
                    self._record(
                        RenderLogEntry(
                            status="dropped",
                            variant=variant,
                            field_name=field_name,
                            index=index,
                            text=_coerce_text(values[index]) or None,
                        )
                    )
                )
            return entries

    def render_signature(self, image_bytes: bytes) -> RenderLogEntry:
        """Overlay the signature image in the registry's signature block."""

        with self._mutation():
            block = self._registry.signature
            try:
                self._draw_image(block.page, block.rect, image_bytes)
            except Exception as exc:  # noqa: BLE001
                self._record(
                    RenderLogEntry(
                        status="failed",
                        variant="signature",
                        field_name="signature",
                        page=block.page,
                        error=str(exc),
                    )
                )
                logger.error("signature failed to render: %s", exc)
                raise RenderError(
                    f"image could not be drawn: {exc}", variant="signature", field_name="signature"
                ) from exc
            self._signed = True
            return self._record(
                RenderLogEntry(
                    status="rendered", variant="signature", field_name="signature", page=block.page
                )
            )

    def text_bounds(self, text: str, x: float, y: float, font_size: float) -> Rect:
        """Glyph box of a single line drawn with its baseline at ``(x, y)``."""

        width = self._font.text_length(text, fontsize=font_size)
        bottom = y + self._font.descender * font_size
        top = y + self._font.ascender * font_size
        return Rect(x=x, y=bottom, width=width, height=top - bottom)

    def finalize(self) -> bytes:
        """Serialize the document; repeated calls return the same bytes."""

        if self._output is not None:
            return self._output
        if self._document.is_closed:
            raise InvalidStateError("document was closed without being finalized")
        if not self._lock.acquire(blocking=False):
            raise InvalidStateError("renderer is in use by another caller")
        try:
            self._output = self._document.tobytes(garbage=3, deflate=True)
            self._state = "finalized"
            self._document.close()
        finally:
            self._lock.release()
        logger.info(
            "finalized document: %d pages, %d bytes", self._page_count, len(self._output)
        )
        return self._output

    def close(self) -> None:
        if self._state != "finalized" and not self._document.is_closed:
            self._document.close()

    def __enter__(self) -> DocumentRenderer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        if self._state == "finalized":
            raise InvalidStateError("document is finalized; no further rendering is allowed")
        if self._document.is_closed:
            raise InvalidStateError("document was closed without being finalized")
        if not self._lock.acquire(blocking=False):
            raise InvalidStateError("renderer is in use by another caller")
        try:
            if self._state == "finalized":
                raise InvalidStateError("document is finalized; no further rendering is allowed")
            self._state = "rendering"
            yield
        finally:
            self._lock.release()

    def _render_field(
        self, variant: str, field_name: str, value: Any, index: int | None
    ) -> RenderLogEntry:
        spec = self._registry.lookup(variant, field_name, index)
        text = _coerce_text(value, multiline=spec.wraps)

        try:
            self._clear_region(spec.page, spec.clear_rect)
            lines = self._draw_text(
                spec.page,
                spec.x,
                spec.y,
                text,
                spec.font_size,
                line_height=spec.line_height,
                max_chars_per_line=spec.max_chars_per_line,
            )
        except Exception as exc:  # noqa: BLE001
            self._record(
                RenderLogEntry(
                    status="failed",
                    variant=variant,
                    field_name=field_name,
                    index=index,
                    page=spec.page,
                    text=text or None,
                    error=str(exc),
                )
            )
            logger.error("field %s.%s[%s] failed: %s", variant, field_name, index, exc)
            raise RenderError(
                str(exc), variant=variant, field_name=field_name, index=index
            ) from exc

        overflow = self._overflows(spec, lines)
        if overflow:
            logger.warning(
                "field %s.%s[%s] overflows its clear region (%.1fx%.1fpt)",
                variant,
                field_name,
                index,
                spec.clear_width,
                spec.clear_height,
            )
        return self._record(
            RenderLogEntry(
                status="rendered" if lines else "cleared",
                variant=variant,
                field_name=field_name,
                index=index,
                page=spec.page,
                text=text or None,
                line_count=len(lines),
                overflow=overflow,
            )
        )

    def _clear_region(self, page: int, rect: Rect) -> None:
        target = self._page(page)
        target.draw_rect(
            self._to_page_rect(target, rect),
            color=None,
            fill=self._background,
            width=0,
            overlay=True,
        )

    def _draw_text(
        self,
        page: int,
        x: float,
        y: float,
        text: str | None,
        font_size: float,
        *,
        line_height: float | None,
        max_chars_per_line: int | None,
    ) -> list[TextLine]:
        if not text or not text.strip():
            return []

        if max_chars_per_line is not None and line_height is not None:
            raw_lines = wrap_text(text, max_chars_per_line)
        else:
            raw_lines = [" ".join(text.split())]

        target = self._page(page)
        drawn: list[TextLine] = []
        for offset, line in enumerate(raw_lines):
            line_y = y - offset * (line_height or 0.0)
            if line:
                target.insert_text(
                    self._to_page_point(target, x, line_y),
                    line,
                    fontsize=font_size,
                    color=_TEXT_COLOR,
                    **self._font_kwargs(),
                )
            drawn.append(
                TextLine(
                    text=line,
                    x=x,
                    y=line_y,
                    width=self._font.text_length(line, fontsize=font_size),
                )
            )
        return drawn

    def _draw_image(self, page: int, rect: Rect, image_bytes: bytes) -> None:
        if not image_bytes:
            raise ValueError("image is empty")
        target = self._page(page)
        target.insert_image(
            self._to_page_rect(target, rect),
            stream=image_bytes,
            keep_proportion=False,
            overlay=True,
        )

    def _overflows(self, spec: FieldSpec, lines: list[TextLine]) -> bool:
        if spec.clear_width == 0 or spec.clear_height == 0:
            return False
        clear = spec.clear_rect
        return any(
            not clear.contains(self.text_bounds(line.text, line.x, line.y, spec.font_size))
            for line in lines
            if line.text
        )

    def _font_kwargs(self) -> dict[str, str]:
        if self._font_file is None:
            return {"fontname": _BUILTIN_FONT}
        return {"fontname": _EMBEDDED_FONT_NAME, "fontfile": self._font_file}

    def _page(self, page: int) -> fitz.Page:
        if page < 0 or page >= self._page_count:
            raise IndexError(f"page {page} out of range, document has {self._page_count} pages")
        return self._document[page]

    def _record(self, entry: RenderLogEntry) -> RenderLogEntry:
        self._entries.append(entry)
        return entry

    @staticmethod
    def _to_page_point(page: fitz.Page, x: float, y: float) -> fitz.Point:
        return fitz.Point(x, y) * page.transformation_matrix

    @staticmethod
    def _to_page_rect(page: fitz.Page, rect: Rect) -> fitz.Rect:
        matrix = page.transformation_matrix
        corner_a = fitz.Point(rect.x, rect.y) * matrix
        corner_b = fitz.Point(rect.right, rect.top) * matrix
        return fitz.Rect(
            min(corner_a.x, corner_b.x),
            min(corner_a.y, corner_b.y),
            max(corner_a.x, corner_b.x),
            max(corner_a.y, corner_b.y),
        )


def _load_font(font_file: Path | None) -> fitz.Font:
    if font_file is None:
        return fitz.Font(fontname=_BUILTIN_FONT)
    try:
        return fitz.Font(fontfile=str(font_file))
    except Exception as exc:  # noqa: BLE001
        raise ValidationError(f"Font file is not usable: {font_file}") from exc


def _coerce_text(value: Any, *, multiline: bool = False) -> str:
    if value is None:
        return ""
    text = str(value)
    if multiline:
        return text.strip()
    return " ".join(text.split())

