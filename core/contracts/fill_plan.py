"""Declarative mapping from contract data to registry fields per variant."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from core.contracts.record import ContractData
from core.registry.registry import FieldRegistry
from core.utils.errors import NotFoundError, ValidationError


@dataclass(frozen=True)
class VariantFillSpec:
    """Contract for one variant's data-to-field mapping.

    ``single`` maps a registry field to a ``ContractData`` attribute.
    ``repeated`` maps a registry field to ``(collection attribute, item attribute)``.
    """

    single: Mapping[str, str]
    repeated: Mapping[str, tuple[str, str]]


@dataclass(frozen=True)
class FieldFill:
    """One planned render call."""

    variant: str
    field_name: str
    value: str | None = None
    values: tuple[str, ...] | None = None

    @property
    def repeated(self) -> bool:
        return self.values is not None


_LESSEE_IDENTITY = {
    "entityName": "entity_name",
    "installationAddress": "installation_address",
    "phone": "phone",
    "email": "email",
    "abn": "abn",
}

LESSEE_SPEC = VariantFillSpec(
    single=MappingProxyType(
        {
            **_LESSEE_IDENTITY,
            "supplierName": "supplier_name",
            "supplierAddress": "supplier_address",
            "supplierAbn": "supplier_abn",
            "supplierPhone": "supplier_phone",
            "supplierEmail": "supplier_email",
            "monthlyPayment": "monthly_payment",
            "term": "term",
            "specialConditions": "special_conditions",
        }
    ),
    repeated=MappingProxyType(
        {
            "equipmentDescription": ("equipment", "description"),
            "equipmentQuantity": ("equipment", "quantity"),
            "directorName": ("directors", "name"),
            "directorPosition": ("directors", "position"),
            "directorDate": ("directors", "date"),
        }
    ),
)

GUARANTEE_SPEC = VariantFillSpec(
    single=MappingProxyType(dict(_LESSEE_IDENTITY)),
    repeated=MappingProxyType(
        {
            "guarantorName": ("guarantors", "name"),
            "guarantorAddress": ("guarantors", "address"),
            "guarantorPhone": ("guarantors", "phone"),
        }
    ),
)

DIRECT_DEBIT_SPEC = VariantFillSpec(
    single=MappingProxyType(
        {
            "entityName": "entity_name",
            "installationAddress": "installation_address",
            "abn": "abn",
        }
    ),
    repeated=MappingProxyType({}),
)

SCHEDULE_SPEC = VariantFillSpec(
    single=MappingProxyType(dict(_LESSEE_IDENTITY)),
    repeated=MappingProxyType(
        {
            "scheduleQuantity": ("schedule", "quantity"),
            "scheduleCategory": ("schedule", "category"),
            "scheduleManufacturer": ("schedule", "manufacturer"),
            "scheduleModel": ("schedule", "model"),
            "scheduleSerial": ("schedule", "serial"),
        }
    ),
)

FILL_SPECS: Mapping[str, VariantFillSpec] = MappingProxyType(
    {
        "lessee": LESSEE_SPEC,
        "lesseePage4": GUARANTEE_SPEC,
        "lesseePage5": DIRECT_DEBIT_SPEC,
        "lesseePage7": SCHEDULE_SPEC,
    }
)


def build_fill_plan(data: ContractData) -> list[FieldFill]:
    """Expand contract data into ordered render calls, variant by variant."""

    plan: list[FieldFill] = []
    for variant, spec in FILL_SPECS.items():
        for field_name, attribute in spec.single.items():
            plan.append(
                FieldFill(variant=variant, field_name=field_name, value=getattr(data, attribute))
            )
        for field_name, (collection, attribute) in spec.repeated.items():
            items = getattr(data, collection)
            plan.append(
                FieldFill(
                    variant=variant,
                    field_name=field_name,
                    values=tuple(getattr(item, attribute) for item in items),
                )
            )
    return plan


def check_plan_alignment(registry: FieldRegistry) -> None:
    """Fail fast when the fill plan names a field the registry cannot place."""

    for variant, spec in FILL_SPECS.items():
        for field_name in spec.single:
            try:
                repeated = registry.is_repeated(variant, field_name)
            except NotFoundError as exc:
                raise ValidationError(str(exc), location=f"{variant}.{field_name}") from exc
            if repeated:
                raise ValidationError(
                    f"{variant}.{field_name} must be a single field",
                    location=f"{variant}.{field_name}",
                )
        for field_name in spec.repeated:
            try:
                repeated = registry.is_repeated(variant, field_name)
            except NotFoundError as exc:
                raise ValidationError(str(exc), location=f"{variant}.{field_name}") from exc
            if not repeated:
                raise ValidationError(
                    f"{variant}.{field_name} must be a repeated field",
                    location=f"{variant}.{field_name}",
                )
