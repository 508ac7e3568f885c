"""Per-type field requirements and document type normalization."""

from typing import Dict, List, Optional, Tuple

from core.models.canonical import CustomsDocumentType, DocumentType


# Missing any of these forces the result to unknown with confidence 0
REQUIRED_FIELDS: Dict[DocumentType, List[str]] = {
    DocumentType.PURCHASE_ORDER: ["vendorName", "totalAmount", "lineItems"],
    DocumentType.VENDOR_INVOICE: ["vendorName", "totalAmount"],
    DocumentType.FREIGHT_INVOICE: ["carrierName", "totalAmount"],
    DocumentType.CUSTOMS_DOCUMENT: ["customsDocumentType", "shipperName"],
}

# Optional but expected; each one absent lowers confidence by a fixed penalty
EXPECTED_FIELDS: Dict[DocumentType, List[str]] = {
    DocumentType.PURCHASE_ORDER: ["poNumber", "orderDate", "deliveryDate"],
    DocumentType.VENDOR_INVOICE: ["invoiceNumber", "invoiceDate", "dueDate"],
    DocumentType.FREIGHT_INVOICE: ["invoiceNumber", "invoiceDate", "trackingNumber"],
    DocumentType.CUSTOMS_DOCUMENT: ["documentNumber", "countryOfOrigin"],
}

MISSING_FIELD_PENALTY = 0.05

TYPE_ALIASES: Dict[str, DocumentType] = {
    "purchase_order": DocumentType.PURCHASE_ORDER,
    "purchaseorder": DocumentType.PURCHASE_ORDER,
    "po": DocumentType.PURCHASE_ORDER,
    "order": DocumentType.PURCHASE_ORDER,
    "vendor_invoice": DocumentType.VENDOR_INVOICE,
    "supplier_invoice": DocumentType.VENDOR_INVOICE,
    "invoice": DocumentType.VENDOR_INVOICE,
    "bill": DocumentType.VENDOR_INVOICE,
    "freight_invoice": DocumentType.FREIGHT_INVOICE,
    "freight": DocumentType.FREIGHT_INVOICE,
    "shipping_invoice": DocumentType.FREIGHT_INVOICE,
    "carrier_invoice": DocumentType.FREIGHT_INVOICE,
    "customs_document": DocumentType.CUSTOMS_DOCUMENT,
    "customs": DocumentType.CUSTOMS_DOCUMENT,
    "unknown": DocumentType.UNKNOWN,
    "other": DocumentType.UNKNOWN,
}

CUSTOMS_SUBTYPE_ALIASES: Dict[str, CustomsDocumentType] = {
    "bol": CustomsDocumentType.BILL_OF_LADING,
    "b/l": CustomsDocumentType.BILL_OF_LADING,
    "entry": CustomsDocumentType.CUSTOMS_ENTRY,
    "entry_summary": CustomsDocumentType.CUSTOMS_ENTRY,
    "cbp_7501": CustomsDocumentType.CUSTOMS_ENTRY,
    "origin_certificate": CustomsDocumentType.CERTIFICATE_OF_ORIGIN,
    "permit": CustomsDocumentType.IMPORT_PERMIT,
}


def _clean(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def normalize_customs_subtype(value) -> Optional[CustomsDocumentType]:
    """Fold a customs sub-type spelling; unrecognized non-empty values become ``other``."""
    if value is None:
        return None
    if isinstance(value, CustomsDocumentType):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    key = _clean(value)
    if key in CUSTOMS_SUBTYPE_ALIASES:
        return CUSTOMS_SUBTYPE_ALIASES[key]
    try:
        return CustomsDocumentType(key)
    except ValueError:
        return CustomsDocumentType.OTHER


def normalize_document_type(value) -> Tuple[DocumentType, Optional[CustomsDocumentType]]:
    """Map a model-reported type to a DocumentType.

    Customs sub-types reported as the top-level type (``bill_of_lading``,
    ``packing_list``, ...) fold into customs_document and the sub-type is
    returned alongside. Anything unrecognized is unknown.
    """
    if isinstance(value, DocumentType):
        return value, None
    if not isinstance(value, str) or not value.strip():
        return DocumentType.UNKNOWN, None

    key = _clean(value)
    if key in TYPE_ALIASES:
        return TYPE_ALIASES[key], None

    subtype = CUSTOMS_SUBTYPE_ALIASES.get(key)
    if subtype is None:
        try:
            subtype = CustomsDocumentType(key)
        except ValueError:
            return DocumentType.UNKNOWN, None
    if subtype == CustomsDocumentType.OTHER:
        return DocumentType.UNKNOWN, None
    return DocumentType.CUSTOMS_DOCUMENT, subtype


def is_missing(value) -> bool:
    """True for None, blank strings and empty lists."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, dict)) and not value:
        return True
    return False
