"""Prompt templates for the extraction model.

Every response is a single JSON object of the form:

    {"documentType": "...", "confidence": 0.0-1.0, "fields": {...}}
"""

from typing import Optional

SYSTEM_PROMPT = """You extract structured data from business documents for an \
operations team. Respond with a single JSON object and nothing else. \
Never invent values: omit a field (or use null) when it is not present. \
Monetary values are plain numbers without currency symbols. Dates are YYYY-MM-DD."""

CLASSIFY_PROMPT = """Identify what kind of document this is.

Return JSON:
{
  "documentType": one of "purchase_order", "vendor_invoice", "freight_invoice",
                  "customs_document", "unknown",
  "confidence": number between 0 and 1,
  "fields": {}
}

Guidance:
- purchase_order: an order we place with a supplier (PO number, order date, items ordered)
- vendor_invoice: a supplier bill for goods or services (invoice number, amount due)
- freight_invoice: a carrier / freight forwarder bill for shipping (tracking, origin, destination)
- customs_document: bill of lading, customs entry, commercial invoice, packing list,
  certificate of origin or import permit
- unknown: anything else
"""

LINE_ITEM_SCHEMA = """{"description": string, "sku": string|null, "quantity": number,
   "unit": string|null, "unitPrice": number, "totalPrice": number}"""

SCHEMA_PROMPTS = {
    "purchase_order": f"""Extract this purchase order.

"fields": {{
  "poNumber": string|null,
  "vendorName": string,
  "vendorEmail": string|null,
  "orderDate": string|null,
  "deliveryDate": string|null,
  "lineItems": [{LINE_ITEM_SCHEMA}],
  "subtotal": number|null,
  "totalAmount": number,
  "notes": string|null,
  "currency": string
}}""",

    "vendor_invoice": f"""Extract this vendor invoice.

"fields": {{
  "invoiceNumber": string|null,
  "vendorName": string,
  "vendorEmail": string|null,
  "invoiceDate": string|null,
  "dueDate": string|null,
  "lineItems": [{LINE_ITEM_SCHEMA}],
  "subtotal": number|null,
  "taxAmount": number|null,
  "shippingAmount": number|null,
  "totalAmount": number,
  "relatedPoNumber": string|null,
  "paymentTerms": string|null,
  "currency": string
}}""",

    "freight_invoice": """Extract this freight invoice.

"fields": {
  "invoiceNumber": string|null,
  "carrierName": string,
  "carrierEmail": string|null,
  "invoiceDate": string|null,
  "shipmentDate": string|null,
  "deliveryDate": string|null,
  "origin": string|null,
  "destination": string|null,
  "trackingNumber": string|null,
  "weight": string|null,
  "dimensions": string|null,
  "freightCharges": number|null,
  "fuelSurcharge": number|null,
  "accessorialCharges": number|null,
  "totalAmount": number,
  "relatedPoNumber": string|null,
  "notes": string|null,
  "currency": string
}""",

    "customs_document": """Extract this customs / trade document.

"fields": {
  "documentNumber": string|null,
  "customsDocumentType": one of "bill_of_lading", "customs_entry", "commercial_invoice",
                         "packing_list", "certificate_of_origin", "import_permit", "other",
  "shipperName": string,
  "consigneeName": string|null,
  "countryOfOrigin": string|null,
  "lineItems": [{"description": string, "sku": string|null, "quantity": number|null,
                 "unit": string|null, "unitPrice": number|null, "totalPrice": number|null,
                 "hsCode": string|null, "declaredValue": number|null,
                 "dutyRate": number|null, "dutyAmount": number|null}],
  "totalValue": number|null,
  "totalDuty": number|null,
  "totalAmount": number|null,
  "brokerName": string|null,
  "brokerReference": string|null,
  "relatedPoNumber": string|null,
  "currency": string
}""",
}


def build_prompt(target_schema: Optional[str]) -> str:
    """User prompt for a type-agnostic pass (None) or a targeted pass."""
    if target_schema is None:
        return CLASSIFY_PROMPT
    schema = SCHEMA_PROMPTS[target_schema]
    return (
        f"{schema}\n\nReturn JSON with \"documentType\": \"{target_schema}\", "
        "a \"confidence\" between 0 and 1, and the \"fields\" object above."
    )
