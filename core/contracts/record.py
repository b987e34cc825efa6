"""Normalize free-form application records into contract field values.

Application records come from several intake forms that grew independently,
so the same fact can live under different keys (``businessName`` vs
``entity_name``). The builders below pick the first non-blank alias and
produce plain display strings ready to be stamped.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SCHEDULE_SLOT_CATEGORIES = ("Solar Panels", "Inverters", "Batteries")
_SCHEDULE_SLOT_KEYWORDS = ("solar", "invert", "batter")
SERIAL_PLACEHOLDER = "As Per Invoice/PO"
DEFAULT_DIRECTOR_POSITION = "Director"

_POSTCODE_PATTERN = re.compile(r"\b\d{4}\b")
_SERIAL_KEYS = ("serialNumber", "serial", "serial_number", "serialNo", "serialno", "serialNum")


class EquipmentRow(BaseModel):
    """One equipment line on the first page."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    category: str = ""
    description: str = ""
    quantity: str = ""
    manufacturer: str = ""
    model: str = ""
    serial: str = ""


class ScheduleRow(BaseModel):
    """One row of the equipment schedule page."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    category: str
    quantity: str = ""
    manufacturer: str = ""
    model: str = ""
    serial: str = SERIAL_PLACEHOLDER


class Signatory(BaseModel):
    """Director or guarantor details printed in a signature block."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = ""
    position: str = ""
    date: str = ""
    address: str = ""
    phone: str = ""


class ContractData(BaseModel):
    """Display values for every field the contract can carry."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    entity_name: str = ""
    abn: str = ""
    installation_address: str = ""
    phone: str = ""
    email: str = ""

    supplier_name: str = ""
    supplier_address: str = ""
    supplier_abn: str = ""
    supplier_phone: str = ""
    supplier_email: str = ""

    monthly_payment: str = ""
    term: str = ""
    special_conditions: str = ""

    equipment: list[EquipmentRow] = Field(default_factory=list)
    schedule: list[ScheduleRow] = Field(default_factory=list)
    directors: list[Signatory] = Field(default_factory=list)
    guarantors: list[Signatory] = Field(default_factory=list)


def build_contract_data(record: Mapping[str, Any]) -> ContractData:
    """Build ``ContractData`` from a raw application record."""

    finance = record.get("finance")
    finance = finance if isinstance(finance, Mapping) else {}

    installation_address = first_text(record, "installationAddress") or format_address(
        [
            record.get("streetAddress"),
            record.get("streetAddress2"),
            record.get("city"),
            record.get("state"),
            record.get("postcode"),
        ]
    )
    equipment = build_equipment_rows(record.get("equipmentItems"))

    return ContractData(
        entity_name=first_text(record, "businessName", "entity_name", "entityName"),
        abn=first_text(record, "abnNumber", "abn", "abn_number"),
        installation_address=installation_address
        or first_text(record, "businessAddress"),
        phone=first_text(record, "phone", "businessPhone", "mobile", "contactPhone"),
        email=first_text(record, "email", "contactEmail"),
        supplier_name=first_text(record, "supplierBusinessName", "vendorName", "supplierName"),
        supplier_address=format_address(
            [
                record.get("supplierAddress"),
                record.get("supplierCity"),
                record.get("supplierState"),
                record.get("supplierPostcode"),
            ]
        ),
        supplier_abn=first_text(
            record,
            "supplierAbn",
            "supplier_abn",
            "supplierABN",
            "supplierABNNumber",
            "supplier_abn_number",
        ),
        supplier_phone=first_text(record, "supplierPhone", "vendorPhone"),
        supplier_email=first_text(record, "supplierEmail"),
        monthly_payment=format_currency(
            first_text(record, "monthlyRepayment") or first_text(finance, "monthlyPayment")
        ),
        term=first_text(record, "term", "financeTerm", "leaseTerm", "loanTerm"),
        special_conditions=first_text(
            record, "specialConditions", "financeSpecialConditions", multiline=True
        ),
        equipment=equipment,
        schedule=build_schedule_rows(equipment),
        directors=[
            _build_signatory(item, default_position=DEFAULT_DIRECTOR_POSITION)
            for item in _mappings(record.get("directors"))
        ],
        guarantors=[_build_signatory(item) for item in _mappings(record.get("guarantors"))],
    )


def first_text(source: Mapping[str, Any], *keys: str, multiline: bool = False) -> str:
    """Return the first non-blank value among ``keys`` as a trimmed string."""

    for key in keys:
        value = source.get(key)
        if value is None or isinstance(value, Mapping | list):
            continue
        text = str(value).strip() if multiline else " ".join(str(value).split())
        if text:
            return text
    return ""


def format_address(parts: Sequence[Any]) -> str:
    """Join address parts with commas.

    A first part that already contains a 4-digit postcode is taken to be a
    complete address and returned alone.
    """

    cleaned = [" ".join(part.split()) for part in parts if isinstance(part, str) and part.strip()]
    if cleaned and _POSTCODE_PATTERN.search(cleaned[0]):
        return cleaned[0]
    return ", ".join(cleaned)


def format_currency(value: str) -> str:
    """Render a numeric amount as ``$1,234.56``; other text passes through."""

    if not value:
        return ""
    try:
        amount = float(value.replace(",", "").lstrip("$"))
    except ValueError:
        return value
    if amount == 0:
        return ""
    return f"${amount:,.2f}"


def build_equipment_rows(items: Any) -> list[EquipmentRow]:
    """Normalize equipment items, dropping rows with nothing to print."""

    rows: list[EquipmentRow] = []
    for index, item in enumerate(_mappings(items)):
        quantity = item.get("quantity")
        if quantity is None or quantity == "":
            quantity = item.get("qty")
        description = first_text(item, "description", "asset")
        default_category = (
            SCHEDULE_SLOT_CATEGORIES[index] if index < len(SCHEDULE_SLOT_CATEGORIES) else ""
        )
        row = EquipmentRow(
            category=default_category or first_text(item, "category"),
            description=description,
            quantity="" if quantity is None else str(quantity).strip(),
            manufacturer=first_text(item, "manufacturer", "brand"),
            model=first_text(item, "model", "description", "asset", "systemSize"),
            serial=first_text(item, *_SERIAL_KEYS),
        )
        if row.category or row.description or row.quantity:
            rows.append(row)
    return rows


def build_schedule_rows(equipment: Sequence[EquipmentRow]) -> list[ScheduleRow]:
    """Assign equipment to the fixed schedule slots by category.

    Slot order is Solar Panels, Inverters, Batteries. An item is matched by
    category keyword first, then by its position in the list.
    """

    rows: list[ScheduleRow] = []
    for index, (label, keyword) in enumerate(
        zip(SCHEDULE_SLOT_CATEGORIES, _SCHEDULE_SLOT_KEYWORDS, strict=True)
    ):
        source = next(
            (item for item in equipment if keyword in item.category.lower()),
            equipment[index] if index < len(equipment) else None,
        )
        if source is None:
            rows.append(ScheduleRow(category=label))
            continue
        rows.append(
            ScheduleRow(
                category=label,
                quantity=source.quantity,
                manufacturer=source.manufacturer,
                model=source.model,
                serial=source.serial or SERIAL_PLACEHOLDER,
            )
        )
    return rows


def _build_signatory(item: Mapping[str, Any], *, default_position: str = "") -> Signatory:
    name = first_text(item, "fullName", "name")
    if not name:
        parts = [
            first_text(item, key)
            for key in ("title", "firstName", "middleName", "lastName", "surname")
        ]
        name = " ".join(part for part in parts if part)
    address = first_text(item, "address") or format_address(
        [item.get("city"), item.get("state"), item.get("postcode")]
    )
    return Signatory(
        name=name,
        position=first_text(item, "position") or default_position,
        date=first_text(item, "date", "signatureDate"),
        address=address,
        phone=first_text(item, "phone", "mobile"),
    )


def _mappings(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]
