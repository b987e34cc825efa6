"""Custom exceptions for registry lookup, template loading and rendering."""

from __future__ import annotations


class NotFoundError(LookupError):
    """Raised when a variant, field or slot is not defined in the registry."""

    def __init__(
        self,
        message: str,
        *,
        variant: str | None = None,
        field_name: str | None = None,
        index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.variant = variant
        self.field_name = field_name
        self.index = index


class ValidationError(ValueError):
    """Raised when the field registry is malformed or does not fit a template."""

    def __init__(self, message: str, *, location: str | None = None) -> None:
        super().__init__(message)
        self.location = location


class LoadError(Exception):
    """Raised when template bytes cannot be fetched or parsed.

    Load failures are the only retryable error kind: the caller may try the
    same source again.
    """

    retryable = True

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source


class InvalidStateError(RuntimeError):
    """Raised when a renderer is mutated after finalize or used concurrently."""


class RenderError(Exception):
    """Raised when a single field fails to render."""

    def __init__(
        self,
        message: str,
        *,
        variant: str,
        field_name: str,
        index: int | None = None,
    ) -> None:
        super().__init__(f"{variant}.{_field_label(field_name, index)}: {message}")
        self.variant = variant
        self.field_name = field_name
        self.index = index


def _field_label(field_name: str, index: int | None) -> str:
    if index is None:
        return field_name
    return f"{field_name}[{index}]"
