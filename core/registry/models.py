"""Typed models for the contract field coordinate registry.

All coordinates are in the template's native PDF space: origin at the
bottom-left of the page, unscaled points.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Rect(BaseModel):
    """Axis-aligned rectangle anchored at its bottom-left corner."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    x: float
    y: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y + self.height

    def contains(self, other: Rect) -> bool:
        return (
            self.x <= other.x
            and self.y <= other.y
            and other.right <= self.right
            and other.top <= self.top
        )


class FieldSpec(BaseModel):
    """Position, font size and white-out region for one field slot."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    page: int = Field(ge=0)
    x: float
    y: float
    font_size: float = Field(gt=0)
    clear_width: float = Field(ge=0)
    clear_height: float = Field(ge=0)
    clear_offset_x: float = 0.0
    clear_offset_y: float = 0.0
    line_height: float | None = Field(default=None, gt=0)
    max_chars_per_line: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_wrapping_pair(self) -> FieldSpec:
        if (self.line_height is None) != (self.max_chars_per_line is None):
            raise ValueError("line_height and max_chars_per_line must be set together")
        return self

    @property
    def wraps(self) -> bool:
        return self.max_chars_per_line is not None

    @property
    def clear_rect(self) -> Rect:
        return Rect(
            x=self.x + self.clear_offset_x,
            y=self.y + self.clear_offset_y,
            width=self.clear_width,
            height=self.clear_height,
        )


class SignatureBlock(BaseModel):
    """Single fixed slot where the signer's image is overlaid."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    page: int = Field(ge=0)
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)

    @property
    def rect(self) -> Rect:
        return Rect(x=self.x, y=self.y, width=self.width, height=self.height)


class TemplateInfo(BaseModel):
    """Facts about the template the registry was tuned against."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = "contract"
    page_count: int = Field(gt=0)


FieldEntry = FieldSpec | tuple[FieldSpec, ...]


class RegistryDocument(BaseModel):
    """On-disk YAML structure for the registry."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    version: int = 1
    template: TemplateInfo
    default_variant: str
    signature: SignatureBlock
    variants: dict[str, dict[str, FieldSpec | list[FieldSpec]]] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_default_variant(self) -> RegistryDocument:
        if self.default_variant not in self.variants:
            raise ValueError(f"default_variant '{self.default_variant}' is not a defined variant")
        for variant, fields in self.variants.items():
            for field_name, entry in fields.items():
                if isinstance(entry, list) and not entry:
                    raise ValueError(f"{variant}.{field_name}: slot list must not be empty")
        return self
