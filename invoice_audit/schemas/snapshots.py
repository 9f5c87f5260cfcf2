"""Snapshot schemas — the structured shape of invoice backups.

Invoice headers and line items are stored as JSON. These models pin down
which fields are required and which are optional; they validate the
payload, but what gets stored is the caller's own mapping with its keys
unchanged. Field aliases match the FBR-facing keys used by the invoice
tables, and either spelling is accepted.

InvoiceSnapshot carries a schema_version so readers can tell older
snapshots apart when the shape changes.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from invoice_audit.errors import ValidationError
from invoice_audit.models.enums import BackupType

SNAPSHOT_SCHEMA_VERSION = 1

# Amounts arrive as ints, floats, Decimals (ORM) or strings (MySQL DECIMAL)
Amount = int | float | Decimal | str | None

_json_values = TypeAdapter(Any)


class _OpenSnapshot(BaseModel):
    """Base for JSON snapshots: unknown keys are allowed."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class InvoiceItemSnapshot(_OpenSnapshot):
    """One invoice line item. Every field is optional."""

    id: int | None = None
    invoice_id: int | None = None
    name: str | None = None
    hs_code: str | None = Field(default=None, alias="hsCode")
    product_description: str | None = Field(default=None, alias="productDescription")
    rate: str | None = None
    uom: str | None = Field(default=None, alias="uoM")
    quantity: Amount = None
    unit_price: Amount = Field(default=None, alias="unitPrice")
    total_values: Amount = Field(default=None, alias="totalValues")
    value_sales_excluding_st: Amount = Field(default=None, alias="valueSalesExcludingST")
    sales_tax_applicable: Amount = Field(default=None, alias="salesTaxApplicable")
    sales_tax_withheld_at_source: Amount = Field(default=None, alias="salesTaxWithheldAtSource")
    extra_tax: Amount = Field(default=None, alias="extraTax")
    further_tax: Amount = Field(default=None, alias="furtherTax")
    fed_payable: Amount = Field(default=None, alias="fedPayable")
    discount: Amount = None
    sale_type: str | None = Field(default=None, alias="saleType")
    sro_schedule_no: str | None = Field(default=None, alias="sroScheduleNo")
    sro_item_serial_no: str | None = Field(default=None, alias="sroItemSerialNo")


class InvoiceSnapshot(_OpenSnapshot):
    """Invoice header at snapshot time.

    Required: id. Everything else is optional; absent values are rendered as
    "N/A" by the audit viewer.
    """

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    id: int

    # Identifiers
    invoice_number: str | None = None
    system_invoice_id: str | None = None
    internal_invoice_no: str | None = None
    fbr_invoice_number: str | None = None
    status: str | None = None

    # FBR header fields
    invoice_type: str | None = Field(default=None, alias="invoiceType")
    invoice_date: date | str | None = Field(default=None, alias="invoiceDate")
    invoice_ref_no: str | None = Field(default=None, alias="invoiceRefNo")
    seller_ntn_cnic: str | None = Field(default=None, alias="sellerNTNCNIC")
    seller_business_name: str | None = Field(default=None, alias="sellerBusinessName")
    seller_province: str | None = Field(default=None, alias="sellerProvince")
    seller_address: str | None = Field(default=None, alias="sellerAddress")
    buyer_ntn_cnic: str | None = Field(default=None, alias="buyerNTNCNIC")
    buyer_business_name: str | None = Field(default=None, alias="buyerBusinessName")
    buyer_province: str | None = Field(default=None, alias="buyerProvince")
    buyer_address: str | None = Field(default=None, alias="buyerAddress")
    buyer_registration_type: str | None = Field(default=None, alias="buyerRegistrationType")

    # Creator attribution stored on the invoice row
    created_by_user_id: int | None = None
    created_by_email: str | None = None
    created_by_name: str | None = None


class ActorInfo(BaseModel):
    """The user behind a lifecycle event. All fields optional."""

    user_id: int | None = None
    email: str | None = None
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str | None = None

    @property
    def display_name(self) -> str | None:
        """Human-readable actor name, None for system-initiated events."""
        if self.first_name or self.last_name:
            return f"{self.first_name or ''} {self.last_name or ''}".strip()
        if self.name:
            return self.name
        if self.email:
            return self.email
        if self.user_id is None and self.role is None:
            return None
        if self.role == "admin":
            return f"Admin ({self.user_id if self.user_id is not None else 'Unknown'})"
        return f"User ({self.user_id if self.user_id is not None else 'Unknown'})"


class TenantInfo(BaseModel):
    """Tenant (company) the event happened in."""

    id: int | None = None
    name: str | None = None


class RequestContext(BaseModel):
    """Request metadata kept for traceability."""

    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


class BackupSnapshot(BaseModel):
    """Write input for one BackupRecord.

    Only original_invoice_id and backup_type are required.
    """

    model_config = ConfigDict(extra="forbid")

    original_invoice_id: int
    backup_type: BackupType
    system_invoice_id: str | None = None
    invoice_number: str | None = None
    backup_reason: str | None = None
    status_before: str | None = None
    status_after: str | None = None

    invoice_data: dict[str, Any] | None = None
    invoice_items_data: list[dict[str, Any]] | None = None
    fbr_request_data: dict[str, Any] | None = None
    fbr_response_data: dict[str, Any] | None = None
    fbr_invoice_number: str | None = None

    user_id: int | None = None
    user_email: str | None = None
    user_name: str | None = None
    user_role: str | None = None
    tenant_id: int | None = None
    tenant_name: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None

    additional_info: dict[str, Any] | None = None


# ── Normalisation helpers ────────────────────────────────────────────


def ensure_json_lossless(value: Any, field: str) -> Any:
    """Reject payloads that change when encoded to JSON and decoded again.

    Catches tuples, non-string keys, NaN/Infinity and arbitrary objects.
    """
    try:
        encoded = json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as exc:
        msg = f"{field} is not JSON-serializable: {exc}"
        raise ValidationError(msg) from exc
    if json.loads(encoded) != value:
        msg = f"{field} does not survive a JSON round-trip"
        raise ValidationError(msg)
    return value


def _reject_non_finite(value: Any, field: str) -> None:
    # JSON-mode dumps turn NaN into null, so check before normalising
    if isinstance(value, float | Decimal):
        if not math.isfinite(value):
            msg = f"{field} contains a non-finite number"
            raise ValidationError(msg)
    elif isinstance(value, Mapping):
        for item in value.values():
            _reject_non_finite(item, field)
    elif isinstance(value, list | tuple):
        for item in value:
            _reject_non_finite(item, field)


def _as_mapping(value: Any, field: str) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_unset=True)
    if isinstance(value, Mapping):
        return dict(value)
    msg = f"{field} must be a mapping, got {type(value).__name__}"
    raise ValidationError(msg)


def _json_ready(data: dict[str, Any], field: str) -> dict[str, Any]:
    """Encode values a JSON column cannot hold natively; keys are untouched.

    Plain JSON values (str, int, float, bool, None, lists, dicts) come back
    unchanged. Dates and datetimes become ISO strings, Decimals their exact
    string form.
    """
    _reject_non_finite(data, field)
    try:
        return _json_values.dump_python(data, mode="json")
    except ValueError as exc:
        msg = f"{field} is not JSON-serializable: {exc}"
        raise ValidationError(msg) from exc


def snapshot_invoice(invoice: Any, sensitive_keys: frozenset[str] = frozenset()) -> dict[str, Any]:
    """Validate an invoice header and return its JSON-ready snapshot."""
    data = {k: v for k, v in _as_mapping(invoice, "invoice_data").items() if k not in sensitive_keys}
    _reject_non_finite(data, "invoice_data")
    try:
        InvoiceSnapshot.model_validate(data)
    except ValueError as exc:
        msg = f"invoice_data is not a valid invoice snapshot: {exc}"
        raise ValidationError(msg) from exc
    snapshot = _json_ready(data, "invoice_data")
    snapshot.setdefault("schema_version", SNAPSHOT_SCHEMA_VERSION)
    return ensure_json_lossless(snapshot, "invoice_data")


def snapshot_items(items: Any, sensitive_keys: frozenset[str] = frozenset()) -> list[dict[str, Any]]:
    """Validate line items and return their JSON-ready snapshots (order kept)."""
    if items is None:
        return []
    if isinstance(items, (str, bytes, Mapping)):
        msg = "invoice_items_data must be a list of items"
        raise ValidationError(msg)
    snapshots: list[dict[str, Any]] = []
    for index, item in enumerate(items):
        field = f"invoice_items_data[{index}]"
        data = {k: v for k, v in _as_mapping(item, field).items() if k not in sensitive_keys}
        _reject_non_finite(data, field)
        try:
            InvoiceItemSnapshot.model_validate(data)
        except ValueError as exc:
            msg = f"{field} is not a valid item snapshot: {exc}"
            raise ValidationError(msg) from exc
        snapshots.append(_json_ready(data, field))
    return ensure_json_lossless(snapshots, "invoice_items_data")
