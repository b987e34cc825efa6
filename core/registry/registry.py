"""Immutable lookup table from (variant, field, slot) to field coordinates."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from core.registry.models import FieldEntry, FieldSpec, SignatureBlock
from core.utils.errors import NotFoundError, ValidationError


@dataclass(frozen=True)
class SpecLocation:
    """One concrete FieldSpec together with where it lives in the registry."""

    variant: str
    field_name: str
    index: int | None
    spec: FieldSpec


class FieldRegistry:
    """Validated, read-only field coordinate registry.

    A variant lists only the fields it defines itself. An entry on a
    non-default variant replaces the default variant's entry for that field
    as a whole; fields a variant does not define resolve to the default.
    """

    def __init__(
        self,
        *,
        variants: Mapping[str, Mapping[str, FieldEntry]],
        default_variant: str,
        signature: SignatureBlock,
        template_page_count: int,
    ) -> None:
        if default_variant not in variants:
            raise ValidationError(f"Default variant is not defined: {default_variant}")

        self._variants: Mapping[str, Mapping[str, FieldEntry]] = MappingProxyType(
            {
                name: MappingProxyType(
                    {
                        field_name: tuple(entry) if isinstance(entry, list | tuple) else entry
                        for field_name, entry in fields.items()
                    }
                )
                for name, fields in variants.items()
            }
        )
        self._default_variant = default_variant
        self._signature = signature
        self._template_page_count = template_page_count
        self.check_page_count(template_page_count)

    @property
    def default_variant(self) -> str:
        return self._default_variant

    @property
    def signature(self) -> SignatureBlock:
        return self._signature

    @property
    def template_page_count(self) -> int:
        return self._template_page_count

    @property
    def variant_names(self) -> list[str]:
        return sorted(self._variants)

    @property
    def max_page(self) -> int:
        pages = [location.spec.page for location in self.iter_specs()]
        pages.append(self._signature.page)
        return max(pages)

    def lookup(self, variant: str, field_name: str, index: int | None = None) -> FieldSpec:
        """Return the FieldSpec for a field, or one slot of a repeated field."""

        entry = self._resolve(variant, field_name)
        if isinstance(entry, tuple):
            if index is None:
                raise NotFoundError(
                    f"{variant}.{field_name} is a repeated field and needs a slot index",
                    variant=variant,
                    field_name=field_name,
                )
            if index < 0 or index >= len(entry):
                raise NotFoundError(
                    f"{variant}.{field_name} has {len(entry)} slots, index {index} is out of range",
                    variant=variant,
                    field_name=field_name,
                    index=index,
                )
            return entry[index]

        if index is not None:
            raise NotFoundError(
                f"{variant}.{field_name} is not a repeated field",
                variant=variant,
                field_name=field_name,
                index=index,
            )
        return entry

    def slot_count(self, variant: str, field_name: str) -> int:
        """Return the fixed number of slots of a repeated field."""

        entry = self._resolve(variant, field_name)
        if not isinstance(entry, tuple):
            raise NotFoundError(
                f"{variant}.{field_name} is not a repeated field",
                variant=variant,
                field_name=field_name,
            )
        return len(entry)

    def is_repeated(self, variant: str, field_name: str) -> bool:
        return isinstance(self._resolve(variant, field_name), tuple)

    def has_override(self, variant: str, field_name: str) -> bool:
        """True when a non-default variant defines its own entry for the field."""

        fields = self._variant_fields(variant)
        return variant != self._default_variant and field_name in fields

    def own_field_names(self, variant: str) -> list[str]:
        return sorted(self._variant_fields(variant))

    def field_names(self, variant: str) -> list[str]:
        """Fields resolvable on a variant, including those inherited from the default."""

        own = set(self._variant_fields(variant))
        return sorted(own | set(self._variants[self._default_variant]))

    def iter_specs(self) -> Iterator[SpecLocation]:
        """Yield every concrete FieldSpec defined in the registry."""

        for variant in sorted(self._variants):
            fields = self._variants[variant]
            for field_name in sorted(fields):
                entry = fields[field_name]
                if isinstance(entry, tuple):
                    for index, spec in enumerate(entry):
                        yield SpecLocation(variant, field_name, index, spec)
                else:
                    yield SpecLocation(variant, field_name, None, entry)

    def check_page_count(self, page_count: int) -> None:
        """Fail when any spec points at a page the template does not have."""

        for location in self.iter_specs():
            if location.spec.page >= page_count:
                raise ValidationError(
                    f"{_describe(location)} references page {location.spec.page}, "
                    f"template has {page_count} pages",
                    location=_describe(location),
                )
        if self._signature.page >= page_count:
            raise ValidationError(
                f"signature references page {self._signature.page}, "
                f"template has {page_count} pages",
                location="signature",
            )

    def _variant_fields(self, variant: str) -> Mapping[str, FieldEntry]:
        try:
            return self._variants[variant]
        except KeyError as exc:
            raise NotFoundError(f"Unknown variant: {variant}", variant=variant) from exc

    def _resolve(self, variant: str, field_name: str) -> FieldEntry:
        fields = self._variant_fields(variant)
        entry = fields.get(field_name)
        if entry is None:
            entry = self._variants[self._default_variant].get(field_name)
        if entry is None:
            raise NotFoundError(
                f"Unknown field '{field_name}' on variant '{variant}'",
                variant=variant,
                field_name=field_name,
            )
        return entry


def _describe(location: SpecLocation) -> str:
    if location.index is None:
        return f"{location.variant}.{location.field_name}"
    return f"{location.variant}.{location.field_name}[{location.index}]"
