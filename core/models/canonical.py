"""Core canonical data models for document ingestion.

These models represent extracted documents in a standardized format that
is independent of the file they came from (PDF, image, spreadsheet, email).

The four payload shapes form a closed union keyed by ``document_type`` so
that every consumer can handle each type exhaustively. Wire field names are
camelCase (``poNumber``, ``vendorName``); Python attributes are snake_case.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List, Union

from pydantic import BaseModel, Field, ConfigDict, model_validator
from pydantic.alias_generators import to_camel
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated, Literal


CENTS = Decimal("0.01")

# Absolute tolerance when comparing stated totals with computed ones
TOTAL_TOLERANCE = Decimal("0.01")


# =============================================================================
# Value Parsers (handle various input formats from LLM extraction)
# =============================================================================

def _parse_decimal(value):
    """Parse decimal from various formats (string with $ or commas, floats, etc.)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Boolean is not a number")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        for symbol in ("$", "€", "£", ","):
            s = s.replace(symbol, "")
        s = s.strip()
        if s.upper().startswith("USD"):
            s = s[3:].strip()
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        try:
            return Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Cannot parse number: {value}")
    return value


def _parse_money(value):
    """Parse a monetary amount and round it to cents."""
    parsed = _parse_decimal(value)
    if isinstance(parsed, Decimal):
        return parsed.quantize(CENTS, rounding=ROUND_HALF_UP)
    return parsed


def _parse_date(value):
    """Parse date from various string formats."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        # ISO timestamps: keep the date part
        if len(s) > 10 and s[4] == "-" and s[10] in ("T", " "):
            s = s[:10]
        for fmt in (
            "%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y", "%d/%m/%Y",
            "%Y/%m/%d", "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d-%b-%Y",
        ):
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Cannot parse date: {s}")
    return value


# Annotated types for automatic parsing
DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
MoneyValue = Annotated[Decimal, BeforeValidator(_parse_money)]
DateValue = Annotated[date, BeforeValidator(_parse_date)]


# =============================================================================
# Base Model
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical data structures."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# =============================================================================
# Enums
# =============================================================================

class DocumentType(str, Enum):
    """Kind of business document."""
    PURCHASE_ORDER = "purchase_order"
    VENDOR_INVOICE = "vendor_invoice"
    FREIGHT_INVOICE = "freight_invoice"
    CUSTOMS_DOCUMENT = "customs_document"
    UNKNOWN = "unknown"


class DocumentOrigin(str, Enum):
    """Where a raw document came from."""
    DIRECT_UPLOAD = "direct_upload"
    CLOUD_DRIVE = "cloud_drive"
    INBOUND_EMAIL = "inbound_email"


class CustomsDocumentType(str, Enum):
    """Sub-type of a customs document."""
    BILL_OF_LADING = "bill_of_lading"
    CUSTOMS_ENTRY = "customs_entry"
    COMMERCIAL_INVOICE = "commercial_invoice"
    PACKING_LIST = "packing_list"
    CERTIFICATE_OF_ORIGIN = "certificate_of_origin"
    IMPORT_PERMIT = "import_permit"
    OTHER = "other"


class MatchMethod(str, Enum):
    """How an extracted name was linked to a registry record."""
    EXACT_SKU = "exact_sku"
    EXACT_NAME = "exact_name"
    EXACT_EMAIL = "exact_email"
    PREFERRED_VENDOR = "preferred_vendor"
    FUZZY_SUBSTRING = "fuzzy_substring"
    NONE_SUGGEST_CREATE = "none_suggest_create"


# =============================================================================
# Raw Input
# =============================================================================

class RawDocument(BaseModel):
    """An uploaded file before classification. Immutable once received."""
    model_config = ConfigDict(frozen=True)

    content: bytes
    mime_type: str
    file_name: str
    origin: DocumentOrigin = DocumentOrigin.DIRECT_UPLOAD


# =============================================================================
# Line Items
# =============================================================================

class LineItem(CanonicalBase):
    """A line on a purchase order or invoice.

    ``total_price`` is stored as stated on the document. It is never
    recomputed from quantity x unit price; discrepancies are reported.
    """
    model_config = ConfigDict(frozen=True)

    description: str
    sku: Optional[str] = None
    quantity: DecimalValue = Field(gt=0)
    unit: Optional[str] = None
    unit_price: MoneyValue = Field(ge=0)
    total_price: Optional[MoneyValue] = None

    # Added by the entity resolver
    matched_entity_id: Optional[int] = None
    match_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    match_method: Optional[MatchMethod] = None

    def computed_total(self) -> Optional[Decimal]:
        """quantity x unit_price rounded to cents, or None if either is missing."""
        if self.quantity is None or self.unit_price is None:
            return None
        return (self.quantity * self.unit_price).quantize(CENTS, rounding=ROUND_HALF_UP)

    def total_mismatch(self) -> Optional[Decimal]:
        """Difference between stated and computed total when outside tolerance."""
        computed = self.computed_total()
        if computed is None or self.total_price is None:
            return None
        gap = self.total_price - computed
        return gap if abs(gap) > TOTAL_TOLERANCE else None


class CustomsLineItem(LineItem):
    """A declared line on a customs document."""
    quantity: Optional[DecimalValue] = Field(default=None, gt=0)
    unit_price: Optional[MoneyValue] = Field(default=None, ge=0)
    hs_code: Optional[str] = None
    declared_value: Optional[MoneyValue] = None
    duty_rate: Optional[DecimalValue] = None
    duty_amount: Optional[MoneyValue] = None
    country_of_origin: Optional[str] = None


# =============================================================================
# Document Payloads
# =============================================================================

class PurchaseOrderPayload(CanonicalBase):
    """Purchase order extracted from a document."""
    model_config = ConfigDict(frozen=True)

    document_type: Literal["purchase_order"] = "purchase_order"
    po_number: Optional[str] = None
    vendor_name: str
    vendor_email: Optional[str] = None
    order_date: Optional[DateValue] = None
    delivery_date: Optional[DateValue] = None
    line_items: List[LineItem]
    subtotal: Optional[MoneyValue] = None
    total_amount: MoneyValue
    notes: Optional[str] = None
    currency: str = "USD"

    @property
    def natural_key(self) -> Optional[str]:
        return self.po_number

    @property
    def party_name(self) -> str:
        return self.vendor_name


class VendorInvoicePayload(CanonicalBase):
    """Vendor (supplier) invoice extracted from a document."""
    model_config = ConfigDict(frozen=True)

    document_type: Literal["vendor_invoice"] = "vendor_invoice"
    invoice_number: Optional[str] = None
    vendor_name: str
    vendor_email: Optional[str] = None
    invoice_date: Optional[DateValue] = None
    due_date: Optional[DateValue] = None
    line_items: List[LineItem] = Field(default_factory=list)
    subtotal: Optional[MoneyValue] = None
    tax_amount: Optional[MoneyValue] = None
    shipping_amount: Optional[MoneyValue] = None
    total_amount: MoneyValue
    related_po_number: Optional[str] = None
    payment_terms: Optional[str] = None
    currency: str = "USD"

    @property
    def natural_key(self) -> Optional[str]:
        return self.invoice_number

    @property
    def party_name(self) -> str:
        return self.vendor_name


class FreightInvoicePayload(CanonicalBase):
    """Carrier freight invoice extracted from a document."""
    model_config = ConfigDict(frozen=True)

    document_type: Literal["freight_invoice"] = "freight_invoice"
    invoice_number: Optional[str] = None
    carrier_name: str
    carrier_email: Optional[str] = None
    invoice_date: Optional[DateValue] = None
    shipment_date: Optional[DateValue] = None
    delivery_date: Optional[DateValue] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    tracking_number: Optional[str] = None
    weight: Optional[str] = None
    dimensions: Optional[str] = None
    freight_charges: Optional[MoneyValue] = None
    fuel_surcharge: Optional[MoneyValue] = None
    accessorial_charges: Optional[MoneyValue] = None
    total_amount: MoneyValue
    related_po_number: Optional[str] = None
    notes: Optional[str] = None
    currency: str = "USD"

    @property
    def natural_key(self) -> Optional[str]:
        return self.invoice_number

    @property
    def party_name(self) -> str:
        return self.carrier_name


class CustomsDocumentPayload(CanonicalBase):
    """Customs / trade document extracted from a document."""
    model_config = ConfigDict(frozen=True)

    document_type: Literal["customs_document"] = "customs_document"
    document_number: Optional[str] = None
    customs_document_type: CustomsDocumentType
    shipper_name: str
    consignee_name: Optional[str] = None
    country_of_origin: Optional[str] = None
    line_items: List[CustomsLineItem] = Field(default_factory=list)
    total_value: Optional[MoneyValue] = None
    total_duty: Optional[MoneyValue] = None
    total_amount: Optional[MoneyValue] = None
    broker_name: Optional[str] = None
    broker_reference: Optional[str] = None
    related_po_number: Optional[str] = None
    currency: str = "USD"

    @property
    def natural_key(self) -> Optional[str]:
        return self.document_number

    @property
    def party_name(self) -> str:
        return self.shipper_name


DocumentPayload = Annotated[
    Union[
        PurchaseOrderPayload,
        VendorInvoicePayload,
        FreightInvoicePayload,
        CustomsDocumentPayload,
    ],
    Field(discriminator="document_type"),
]

PAYLOAD_MODELS = {
    DocumentType.PURCHASE_ORDER: PurchaseOrderPayload,
    DocumentType.VENDOR_INVOICE: VendorInvoicePayload,
    DocumentType.FREIGHT_INVOICE: FreightInvoicePayload,
    DocumentType.CUSTOMS_DOCUMENT: CustomsDocumentPayload,
}


# =============================================================================
# Extraction Result
# =============================================================================

class ExtractionResult(CanonicalBase):
    """Outcome of classifying one RawDocument.

    Never mutated. Corrections produce a new ExtractionResult. An ``unknown``
    result carries no payload and cannot be committed.
    """
    model_config = ConfigDict(frozen=True)

    document_type: DocumentType
    payload: Optional[DocumentPayload] = None
    confidence: float = Field(ge=0.0, le=1.0)
    source_file_name: str
    missing_fields: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _payload_matches_type(self) -> "ExtractionResult":
        if self.document_type == DocumentType.UNKNOWN:
            if self.payload is not None:
                raise ValueError("unknown documents carry no payload")
        elif self.payload is None:
            raise ValueError(f"{self.document_type.value} result requires a payload")
        elif self.payload.document_type != self.document_type.value:
            raise ValueError(
                f"payload type {self.payload.document_type} does not match {self.document_type.value}"
            )
        return self

    @classmethod
    def unknown(
        cls,
        source_file_name: str,
        missing_fields: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
    ) -> "ExtractionResult":
        """Build an ``unknown`` result with confidence 0."""
        return cls(
            document_type=DocumentType.UNKNOWN,
            payload=None,
            confidence=0.0,
            source_file_name=source_file_name,
            missing_fields=missing_fields or [],
            warnings=warnings or [],
        )

    @property
    def line_items(self) -> List[LineItem]:
        return list(getattr(self.payload, "line_items", None) or [])

    def with_line_items(self, line_items: List[LineItem]) -> "ExtractionResult":
        """Copy of this result with the payload's line items replaced."""
        if self.payload is None or not hasattr(self.payload, "line_items"):
            return self
        payload = self.payload.model_copy(update={"line_items": list(line_items)})
        return self.model_copy(update={"payload": payload})


# =============================================================================
# Arithmetic Checks
# =============================================================================

def _sum(values) -> Decimal:
    return sum(values, Decimal("0"))


def arithmetic_warnings(payload: DocumentPayload) -> List[str]:
    """Line and header total discrepancies, reported but never corrected."""
    warnings = []
    line_items = getattr(payload, "line_items", None) or []
    for idx, item in enumerate(line_items, 1):
        gap = item.total_mismatch()
        if gap is not None:
            warnings.append(
                f"Line {idx} total {item.total_price} differs from "
                f"{item.quantity} x {item.unit_price} = {item.computed_total()}"
            )

    subtotal = getattr(payload, "subtotal", None)
    stated = [item.total_price for item in line_items if item.total_price is not None]
    if subtotal is not None and stated and len(stated) == len(line_items):
        line_sum = _sum(stated)
        if abs(line_sum - subtotal) > TOTAL_TOLERANCE:
            warnings.append(f"Subtotal {subtotal} differs from sum of line totals {line_sum}")

    if isinstance(payload, VendorInvoicePayload) and subtotal is not None:
        expected = _sum(v for v in (subtotal, payload.tax_amount, payload.shipping_amount) if v is not None)
        if abs(expected - payload.total_amount) > TOTAL_TOLERANCE:
            warnings.append(
                f"Total {payload.total_amount} differs from subtotal + tax + shipping = {expected}"
            )
    elif isinstance(payload, FreightInvoicePayload) and payload.freight_charges is not None:
        charges = (payload.freight_charges, payload.fuel_surcharge, payload.accessorial_charges)
        expected = _sum(v for v in charges if v is not None)
        if abs(expected - payload.total_amount) > TOTAL_TOLERANCE:
            warnings.append(f"Total {payload.total_amount} differs from sum of charges {expected}")
    elif isinstance(payload, CustomsDocumentPayload) and payload.total_duty is not None:
        duties = [item.duty_amount for item in line_items if item.duty_amount is not None]
        if duties and len(duties) == len(line_items):
            duty_sum = _sum(duties)
            if abs(duty_sum - payload.total_duty) > TOTAL_TOLERANCE:
                warnings.append(f"Total duty {payload.total_duty} differs from sum of line duties {duty_sum}")
    return warnings
