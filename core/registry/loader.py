"""Registry loading utilities for contract field coordinates."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError as SchemaValidationError

from core.registry.models import RegistryDocument
from core.registry.registry import FieldRegistry
from core.utils.errors import ValidationError

logger = logging.getLogger("contractstamp.registry")

REGISTRY_ENV_VAR = "CONTRACT_STAMP_REGISTRY"


def default_registry_path() -> Path:
    """Return the registry path from the environment, or the bundled YAML."""

    override = os.getenv(REGISTRY_ENV_VAR)
    if override:
        return Path(override)
    return Path(__file__).with_name("contract_fields.yaml")


def load_registry(
    path: Path | None = None, *, template_page_count: int | None = None
) -> FieldRegistry:
    """Load and validate the field registry from YAML.

    ``template_page_count`` overrides the page count declared in the file,
    for checking the registry against a concrete template.
    """

    registry_path = path or default_registry_path()

    try:
        raw = yaml.safe_load(registry_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValidationError(f"Registry file not found: {registry_path}") from exc
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid YAML in registry file: {registry_path}") from exc

    if not isinstance(raw, dict):
        raise ValidationError(f"Registry file must contain a mapping: {registry_path}")

    try:
        document = RegistryDocument.model_validate(raw)
    except SchemaValidationError as exc:
        problems = [
            (".".join(str(part) for part in error["loc"]), error["msg"]) for error in exc.errors()
        ]
        details = "; ".join(f"{location}: {message}" for location, message in problems)
        raise ValidationError(
            f"Invalid registry schema: {registry_path} ({details})",
            location=problems[0][0],
        ) from exc

    page_count = template_page_count or document.template.page_count
    registry = FieldRegistry(
        variants=document.variants,
        default_variant=document.default_variant,
        signature=document.signature,
        template_page_count=page_count,
    )
    logger.debug(
        "loaded registry %s: %d variants, template pages=%d",
        registry_path,
        len(registry.variant_names),
        page_count,
    )
    return registry


@lru_cache(maxsize=1)
def default_registry() -> FieldRegistry:
    """Process-wide registry, loaded and validated once."""

    return load_registry()
