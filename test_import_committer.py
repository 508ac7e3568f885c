"""Import Committer tests: business rows, duplicates, options and failure history."""

import asyncio
import sqlite3

import pytest

from conftest import po_extraction
from core.audit.events import AuditEventType, query_audit_events
from core.errors import DuplicateImport, MissingEntity, ValidationError
from core.models.canonical import (
    CustomsDocumentPayload,
    CustomsLineItem,
    DocumentType,
    ExtractionResult,
    FreightInvoicePayload,
    LineItem,
    VendorInvoicePayload,
)
from core.models.refs import ImportOptions, ImportStatus
from core.observability.metrics import get_metrics
from importer import ImportCommitter, compute_fingerprint, count_rows


def commit(committer, extraction, options=None, **kwargs):
    return asyncio.run(committer.commit(extraction, options, **kwargs))


def refs_of(record, entity_type):
    return [ref for ref in record.created if ref.entity_type == entity_type]


def fetch_one(db_path, sql, params=()):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        return conn.execute(sql, params).fetchone()
    finally:
        conn.close()


def matched_po(registry, **kwargs):
    line = LineItem(
        description="Widget",
        sku="WID-1",
        quantity=10,
        unit_price="2.50",
        total_price="25.00",
        matched_entity_id=registry.widget.id,
    )
    return po_extraction(line_items=[line], **kwargs)


def vendor_invoice(registry, related_po_number=None, invoice_number="INV-500"):
    payload = VendorInvoicePayload(
        invoice_number=invoice_number,
        vendor_name="Acme Corp",
        line_items=[LineItem(
            description="Widget", quantity=10, unit_price="2.50", total_price="25.00",
            matched_entity_id=registry.widget.id,
        )],
        subtotal="25.00",
        tax_amount="2.00",
        total_amount="27.00",
        related_po_number=related_po_number,
    )
    return ExtractionResult(
        document_type=DocumentType.VENDOR_INVOICE,
        payload=payload,
        confidence=0.9,
        source_file_name="inv-500.pdf",
    )


class TestPurchaseOrderCommit:

    def test_commit_writes_header_and_lines(self, registry):
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, matched_po(registry), actor="alice")

        assert record.document_type == DocumentType.PURCHASE_ORDER
        assert record.natural_key == "PO-1001"
        assert record.actor == "alice"
        assert record.fingerprint == compute_fingerprint(matched_po(registry).payload)
        assert len(refs_of(record, "purchase_order")) == 1
        assert len(refs_of(record, "po_line_item")) == 1
        assert record.warnings == []

        assert count_rows("purchase_orders", registry.db_path) == 1
        assert count_rows("po_line_items", registry.db_path) == 1

        row = fetch_one(registry.db_path, "SELECT * FROM purchase_orders")
        assert row["vendor_id"] == registry.acme.id
        assert row["status"] == "draft"
        assert row["total_amount"] == "25.00"

        line = fetch_one(registry.db_path, "SELECT * FROM po_line_items")
        assert line["material_id"] == registry.widget.id
        assert line["unit_price"] == "2.50"

    def test_history_and_record_are_written(self, registry):
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, matched_po(registry))

        entries = committer.history.entries_for(record.import_id)
        assert [e.status for e in entries] == [ImportStatus.PENDING, ImportStatus.COMPLETED]
        assert entries[1].records_created == len(record.created)

        stored = committer.history.get_record(record.import_id)
        assert stored.import_id == record.import_id
        assert stored.created == record.created

        events = query_audit_events(registry.db_path, import_id=record.import_id)
        assert [e.event_type for e in events] == [AuditEventType.IMPORT_COMMITTED.value]

    def test_mark_as_received(self, registry):
        committer = ImportCommitter(registry.db_path)
        commit(committer, matched_po(registry), ImportOptions(mark_as_received=True))
        row = fetch_one(registry.db_path, "SELECT status, received_at FROM purchase_orders")
        assert row["status"] == "received"
        assert row["received_at"] is not None


class TestDuplicates:

    def test_second_commit_is_duplicate_and_writes_nothing(self, registry):
        committer = ImportCommitter(registry.db_path)
        duplicates_before = get_metrics().get_summary()["imports"]["duplicates"]

        first = commit(committer, matched_po(registry))
        history_rows = count_rows("import_history", registry.db_path)

        with pytest.raises(DuplicateImport) as exc_info:
            commit(committer, matched_po(registry, file_name="po-1001-again.pdf"))

        assert exc_info.value.existing_record.import_id == first.import_id
        assert count_rows("purchase_orders", registry.db_path) == 1
        assert count_rows("po_line_items", registry.db_path) == 1
        assert count_rows("import_history", registry.db_path) == history_rows
        assert get_metrics().get_summary()["imports"]["duplicates"] == duplicates_before + 1

    def test_business_number_is_normalized(self, registry):
        committer = ImportCommitter(registry.db_path)
        commit(committer, matched_po(registry, po_number="PO-1001"))
        with pytest.raises(DuplicateImport):
            commit(committer, matched_po(registry, po_number=" po-1001 "))

    def test_party_name_punctuation_and_suffix_do_not_change_identity(self, registry):
        committer = ImportCommitter(registry.db_path)
        options = ImportOptions(vendor_id=registry.acme.id)
        commit(committer, matched_po(registry, vendor_name="Acme Corp"), options)
        with pytest.raises(DuplicateImport):
            commit(committer, matched_po(registry, vendor_name="Acme Corp."), options)
        with pytest.raises(DuplicateImport):
            commit(committer, matched_po(registry, vendor_name="ACME, Inc."), options)
        assert count_rows("purchase_orders", registry.db_path) == 1

    def test_same_number_from_another_vendor_is_not_duplicate(self, registry):
        committer = ImportCommitter(registry.db_path)
        commit(committer, matched_po(registry))
        commit(committer, matched_po(registry, vendor_name="Globex Supply"))
        assert count_rows("purchase_orders", registry.db_path) == 2

    def test_documents_without_number_are_always_imported(self, registry):
        committer = ImportCommitter(registry.db_path)
        first = commit(committer, matched_po(registry, po_number=None))
        second = commit(committer, matched_po(registry, po_number=None))

        assert first.fingerprint is None
        assert first.import_id != second.import_id
        assert "Document has no business number; duplicate detection skipped" in second.warnings
        assert count_rows("purchase_orders", registry.db_path) == 2

    def test_concurrent_commits_of_same_document(self, registry):
        committer = ImportCommitter(registry.db_path)

        async def scenario():
            return await asyncio.gather(
                committer.commit(matched_po(registry)),
                committer.commit(matched_po(registry)),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())
        duplicates = [r for r in results if isinstance(r, DuplicateImport)]
        records = [r for r in results if not isinstance(r, Exception)]
        assert len(records) == 1
        assert len(duplicates) == 1
        assert duplicates[0].existing_record.import_id == records[0].import_id
        assert count_rows("purchase_orders", registry.db_path) == 1
        assert committer._locks == {}

    def test_lock_map_is_empty_after_sequential_commits(self, registry):
        committer = ImportCommitter(registry.db_path)
        for n in range(5):
            commit(committer, matched_po(registry, po_number=f"PO-{n}"))
        assert committer._locks == {}
        assert committer._lock_users == {}

    def test_failed_import_does_not_block_retry(self, registry):
        committer = ImportCommitter(registry.db_path)
        with pytest.raises(MissingEntity):
            commit(committer, matched_po(registry, vendor_name="Initech"))
        record = commit(committer, matched_po(registry, vendor_name="Initech"), ImportOptions(create_vendor=True))
        assert len(refs_of(record, "vendor")) == 1


class TestValidationAndMissingEntities:

    def test_unknown_document_is_rejected(self, registry):
        committer = ImportCommitter(registry.db_path)
        with pytest.raises(ValidationError) as exc_info:
            commit(committer, ExtractionResult.unknown("scan.png"))
        assert exc_info.value.field == "documentType"
        assert count_rows("import_history", registry.db_path) == 0

    def test_missing_vendor_records_failure(self, registry):
        committer = ImportCommitter(registry.db_path)
        with pytest.raises(MissingEntity) as exc_info:
            commit(committer, matched_po(registry, vendor_name="Initech"), import_id="imp-missing-vendor")

        error = exc_info.value
        assert error.entity_type == "vendor"
        assert error.entity_ref == "Initech"
        assert error.file_name == "po-1001.pdf"
        assert count_rows("purchase_orders", registry.db_path) == 0

        entries = committer.history.entries_for("imp-missing-vendor")
        assert [e.status for e in entries] == [ImportStatus.PENDING, ImportStatus.FAILED]
        assert "Initech" in entries[1].error
        assert committer.history.get_record("imp-missing-vendor") is None

        events = query_audit_events(registry.db_path, import_id="imp-missing-vendor")
        assert [e.event_type for e in events] == [AuditEventType.IMPORT_FAILED.value]

    def test_vendor_override_must_exist(self, registry):
        committer = ImportCommitter(registry.db_path)
        with pytest.raises(MissingEntity) as exc_info:
            commit(committer, matched_po(registry), ImportOptions(vendor_id=999))
        assert exc_info.value.field == "vendorId"

    def test_vendor_override_is_used(self, registry):
        committer = ImportCommitter(registry.db_path)
        commit(committer, matched_po(registry), ImportOptions(vendor_id=registry.globex.id))
        row = fetch_one(registry.db_path, "SELECT vendor_id FROM purchase_orders")
        assert row["vendor_id"] == registry.globex.id

    def test_unknown_material_rolls_back_everything(self, registry):
        committer = ImportCommitter(registry.db_path)
        line = LineItem(description="Widget", quantity=1, unit_price="2.50", matched_entity_id=999)
        with pytest.raises(MissingEntity) as exc_info:
            commit(committer, po_extraction(line_items=[line], total_amount="2.50"))
        assert exc_info.value.entity_type == "material"
        assert count_rows("purchase_orders", registry.db_path) == 0
        assert count_rows("po_line_items", registry.db_path) == 0


class TestCreationOptions:

    def test_create_vendor(self, registry):
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, matched_po(registry, vendor_name="Initech"), ImportOptions(create_vendor=True))

        vendor_refs = refs_of(record, "vendor")
        assert len(vendor_refs) == 1
        row = fetch_one(registry.db_path, "SELECT name FROM vendors WHERE id = ?", (vendor_refs[0].entity_id,))
        assert row["name"] == "Initech"

        events = query_audit_events(registry.db_path, event_type=AuditEventType.VENDOR_CREATED.value)
        assert len(events) == 1

    def test_unmatched_line_is_a_warning(self, registry):
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, po_extraction(
            line_items=[LineItem(description="Sprocket", quantity=4, unit_price="1.00", total_price="4.00")],
            total_amount="4.00",
        ))
        assert "Line 1 'Sprocket' is not linked to a material" in record.warnings
        assert fetch_one(registry.db_path, "SELECT material_id FROM po_line_items")["material_id"] is None
        assert count_rows("materials", registry.db_path) == 1

    def test_create_missing_materials(self, registry):
        committer = ImportCommitter(registry.db_path)
        record = commit(
            committer,
            po_extraction(
                line_items=[LineItem(description="Sprocket", sku="SPR-4", quantity=4, unit_price="1.00")],
                total_amount="4.00",
            ),
            ImportOptions(create_missing_materials=True),
        )
        material_refs = refs_of(record, "material")
        assert len(material_refs) == 1
        row = fetch_one(registry.db_path, "SELECT * FROM materials WHERE id = ?", (material_refs[0].entity_id,))
        assert row["name"] == "Sprocket"
        assert row["sku"] == "SPR-4"
        assert row["preferred_vendor_id"] == registry.acme.id


class TestInventory:

    def test_received_po_updates_inventory(self, registry):
        committer = ImportCommitter(registry.db_path)
        options = ImportOptions(mark_as_received=True, update_inventory=True)

        first = commit(committer, matched_po(registry, po_number="PO-1"), options)
        assert len(refs_of(first, "inventory")) == 1

        second = commit(committer, matched_po(registry, po_number="PO-2"), options)
        assert [ref.entity_type for ref in second.updated] == ["inventory"]

        row = fetch_one(registry.db_path, "SELECT quantity_on_hand FROM inventory WHERE material_id = ?", (registry.widget.id,))
        assert row["quantity_on_hand"] == "20"

    def test_inventory_requires_received(self, registry):
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, matched_po(registry), ImportOptions(update_inventory=True))
        assert count_rows("inventory", registry.db_path) == 0
        assert "Inventory not updated: document was not marked as received" in record.warnings


class TestOtherDocumentTypes:

    def test_vendor_invoice_links_to_po(self, registry):
        committer = ImportCommitter(registry.db_path)
        po_record = commit(committer, matched_po(registry))
        po_id = refs_of(po_record, "purchase_order")[0].entity_id

        record = commit(committer, vendor_invoice(registry, related_po_number="PO-1001"), ImportOptions(link_to_po=True))
        assert len(refs_of(record, "invoice_line_item")) == 1
        row = fetch_one(registry.db_path, "SELECT * FROM vendor_invoices")
        assert row["purchase_order_id"] == po_id
        assert row["tax_amount"] == "2.00"

    def test_po_link_ignores_spacing_and_case(self, registry):
        committer = ImportCommitter(registry.db_path)
        po_record = commit(committer, matched_po(registry, po_number="PO-1001"))
        po_id = refs_of(po_record, "purchase_order")[0].entity_id

        record = commit(committer, vendor_invoice(registry, related_po_number=" po - 1001 "), ImportOptions(link_to_po=True))
        assert not any("not found" in w for w in record.warnings)
        row = fetch_one(registry.db_path, "SELECT purchase_order_id FROM vendor_invoices")
        assert row["purchase_order_id"] == po_id

    def test_missing_po_link_is_a_warning(self, registry):
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, vendor_invoice(registry, related_po_number="PO-404"), ImportOptions(link_to_po=True))
        assert "Purchase order PO-404 not found; document not linked" in record.warnings
        assert fetch_one(registry.db_path, "SELECT purchase_order_id FROM vendor_invoices")["purchase_order_id"] is None

    def test_freight_invoice_with_unknown_carrier(self, registry):
        payload = FreightInvoicePayload(
            invoice_number="FR-9",
            carrier_name="FastFreight",
            freight_charges="100.00",
            fuel_surcharge="12.50",
            total_amount="112.50",
        )
        extraction = ExtractionResult(
            document_type=DocumentType.FREIGHT_INVOICE,
            payload=payload,
            confidence=0.9,
            source_file_name="fr-9.pdf",
        )
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, extraction)

        assert [ref.entity_type for ref in record.created] == ["freight_invoice"]
        row = fetch_one(registry.db_path, "SELECT * FROM freight_invoices")
        assert row["carrier_vendor_id"] is None
        assert row["total_amount"] == "112.50"

    def test_customs_document(self, registry):
        payload = CustomsDocumentPayload(
            document_number="BOL-77",
            customs_document_type="bill_of_lading",
            shipper_name="Shenzhen Parts Ltd",
            line_items=[
                CustomsLineItem(description="Widget", hs_code="8481.80", matched_entity_id=registry.widget.id),
                CustomsLineItem(description="Valve housing", hs_code="8481.90"),
            ],
        )
        extraction = ExtractionResult(
            document_type=DocumentType.CUSTOMS_DOCUMENT,
            payload=payload,
            confidence=0.8,
            source_file_name="bol-77.pdf",
        )
        committer = ImportCommitter(registry.db_path)
        record = commit(committer, extraction)

        assert len(refs_of(record, "customs_document")) == 1
        assert len(refs_of(record, "customs_line_item")) == 2
        assert record.warnings == []

        conn = sqlite3.connect(registry.db_path)
        try:
            materials = [r[0] for r in conn.execute("SELECT material_id FROM customs_line_items ORDER BY line_number")]
        finally:
            conn.close()
        assert materials == [registry.widget.id, None]
