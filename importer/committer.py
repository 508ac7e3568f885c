"""Import Committer.

Writes a confirmed ExtractionResult into the business-record store:

1. Reject unknown documents (ValidationError)
2. Fingerprint the payload; a completed import with the same fingerprint
   raises DuplicateImport carrying the existing ImportRecord and writes
   nothing
3. Append a ``pending`` history row
4. In ONE transaction: vendor/material lookups (and creation when the
   options ask for it), header and line rows, inventory, the ImportRecord,
   the ``completed`` history row and the audit event
5. On failure the transaction rolls back and a ``failed`` history row is
   appended instead

Commits of the same fingerprint within this process are serialized by a
per-fingerprint asyncio.Lock; across processes the partial unique index on
import_history rejects the second completed row.
"""

import asyncio
import sqlite3
from contextlib import asynccontextmanager
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Sequence

from typing_extensions import assert_never

from core.audit.events import AuditEventType, create_audit_event, write_audit_event
from core.config import DEFAULT_DB_PATH
from core.errors import DuplicateImport, IngestionError, MissingEntity, ValidationError
from core.models.canonical import (
    CustomsDocumentPayload,
    CustomsLineItem,
    DocumentType,
    ExtractionResult,
    FreightInvoicePayload,
    LineItem,
    PurchaseOrderPayload,
    VendorInvoicePayload,
    arithmetic_warnings,
)
from core.models.refs import (
    AuditSeverity,
    EntityRef,
    ImportHistoryEntry,
    ImportOptions,
    ImportRecord,
    ImportStatus,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from entity_resolver.db import insert_material, insert_vendor
from entity_resolver.normalize import normalize_email, normalize_name
from importer.db import connect
from importer.fingerprint import compute_fingerprint, normalize_natural_key
from importer.history import ImportHistoryStore, insert_history_entry, insert_import_record


logger = get_logger(__name__)


# =============================================================================
# Helpers
# =============================================================================

@dataclass
class _CommitContext:
    """Mutable state collected while one commit transaction runs."""
    import_id: str
    actor: str
    file_name: str
    options: ImportOptions
    now: str
    created: List[EntityRef] = field(default_factory=list)
    updated: List[EntityRef] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    audit: List[tuple] = field(default_factory=list)


def _text(value) -> Optional[str]:
    """Decimal/date to its canonical string, None stays None."""
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _find_vendor(conn: sqlite3.Connection, name: Optional[str], email: Optional[str]) -> Optional[int]:
    normalized = normalize_name(name)
    if normalized:
        row = conn.execute(
            "SELECT id FROM vendors WHERE name_normalized = ? AND is_active = 1 ORDER BY id LIMIT 1",
            (normalized,),
        ).fetchone()
        if row:
            return row["id"]
    normalized_email = normalize_email(email)
    if normalized_email:
        row = conn.execute(
            "SELECT id FROM vendors WHERE email_normalized = ? AND is_active = 1 ORDER BY id LIMIT 1",
            (normalized_email,),
        ).fetchone()
        if row:
            return row["id"]
    return None


def _exists(conn: sqlite3.Connection, table: str, entity_id: int) -> bool:
    return conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (entity_id,)).fetchone() is not None


# =============================================================================
# Committer
# =============================================================================

class ImportCommitter:
    """Commits confirmed extractions as business records.

    Example:
        committer = ImportCommitter(db_path)
        record = await committer.commit(extraction, ImportOptions(mark_as_received=True))
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, history: Optional[ImportHistoryStore] = None):
        self.db_path = db_path
        self.history = history or ImportHistoryStore(db_path)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _fingerprint_lock(self, fingerprint: str) -> AsyncIterator[None]:
        """Serialize commits of one fingerprint; the entry is dropped with its last user."""
        lock = self._locks.setdefault(fingerprint, asyncio.Lock())
        self._lock_users[fingerprint] = self._lock_users.get(fingerprint, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[fingerprint] -= 1
            if self._lock_users[fingerprint] == 0:
                del self._lock_users[fingerprint]
                del self._locks[fingerprint]

    async def commit(
        self,
        extraction: ExtractionResult,
        options: Optional[ImportOptions] = None,
        actor: str = "system",
        workflow_id: Optional[str] = None,
        import_id: Optional[str] = None,
    ) -> ImportRecord:
        """Commit one extraction.

        Args:
            extraction: Confirmed (possibly user-corrected) extraction result
            options: Caller-chosen import options
            actor: Who requested the commit
            workflow_id: Temporal workflow id, recorded on the audit event
            import_id: Explicit import id (workflows pass a deterministic one)

        Returns:
            The ImportRecord that was written

        Raises:
            ValidationError: Unknown document or missing payload
            DuplicateImport: A completed import with the same fingerprint exists
            MissingEntity: Referenced vendor/material missing and creation not requested
        """
        options = options or ImportOptions()
        self._check_committable(extraction)
        payload = extraction.payload
        fingerprint = compute_fingerprint(payload)
        import_id = import_id or self._new_import_id()

        with with_correlation(
            import_id=import_id,
            file_name=extraction.source_file_name,
            document_type=extraction.document_type.value,
            workflow_id=workflow_id,
            stage="commit",
        ):
            if fingerprint is None:
                return await self._commit_once(extraction, options, actor, import_id, None, workflow_id)
            async with self._fingerprint_lock(fingerprint):
                return await self._commit_once(extraction, options, actor, import_id, fingerprint, workflow_id)

    @staticmethod
    def _new_import_id() -> str:
        return f"imp-{uuid.uuid4().hex[:16]}"

    @staticmethod
    def _check_committable(extraction: ExtractionResult) -> None:
        if extraction.document_type == DocumentType.UNKNOWN or extraction.payload is None:
            raise ValidationError(
                "Unknown documents cannot be committed; correct the document type first",
                file_name=extraction.source_file_name,
                document_type=extraction.document_type.value,
                field="documentType",
            )

    async def _commit_once(
        self,
        extraction: ExtractionResult,
        options: ImportOptions,
        actor: str,
        import_id: str,
        fingerprint: Optional[str],
        workflow_id: Optional[str],
    ) -> ImportRecord:
        start = time.time()
        doc_type = extraction.document_type

        if fingerprint is not None:
            existing = await asyncio.to_thread(self.history.find_completed_record, fingerprint)
            if existing is not None:
                raise self._duplicate(extraction, existing)

        await asyncio.to_thread(
            self.history.append,
            import_id,
            extraction.source_file_name,
            doc_type,
            ImportStatus.PENDING,
            fingerprint=fingerprint,
            actor=actor,
        )

        try:
            record = await asyncio.to_thread(
                self._write, extraction, options, actor, import_id, fingerprint, workflow_id
            )
        except sqlite3.IntegrityError as e:
            # Another process completed the same fingerprint between our check and commit
            existing = await asyncio.to_thread(self.history.find_completed_record, fingerprint) if fingerprint else None
            await asyncio.to_thread(self._record_failure, extraction, import_id, fingerprint, actor, workflow_id, str(e))
            if existing is not None:
                raise self._duplicate(extraction, existing) from e
            get_metrics().record_import_failed(doc_type.value)
            raise
        except Exception as e:
            if isinstance(e, IngestionError):
                e.file_name = e.file_name or extraction.source_file_name
                e.document_type = e.document_type or doc_type.value
            await asyncio.to_thread(self._record_failure, extraction, import_id, fingerprint, actor, workflow_id, str(e))
            get_metrics().record_import_failed(doc_type.value)
            logger.error(f"Import failed: {e}")
            raise

        duration_ms = (time.time() - start) * 1000
        get_metrics().record_import_committed(doc_type.value, duration_ms)
        logger.info(
            f"Committed {doc_type.value} {record.natural_key or '(no number)'}",
            extra_fields={
                "records_created": len(record.created),
                "records_updated": len(record.updated),
                "warnings": len(record.warnings),
                "duration_ms": round(duration_ms, 1),
            },
        )
        return record

    def _duplicate(self, extraction: ExtractionResult, existing: ImportRecord) -> DuplicateImport:
        get_metrics().record_import_duplicate(extraction.document_type.value)
        logger.warning(
            "Duplicate import rejected",
            extra_fields={"existing_import_id": existing.import_id},
        )
        return DuplicateImport(
            f"{extraction.document_type.value} {existing.natural_key} was already imported "
            f"from {existing.source_file_name}",
            existing_record=existing,
            file_name=extraction.source_file_name,
            document_type=extraction.document_type.value,
        )

    # =========================================================================
    # Transaction
    # =========================================================================

    def _write(
        self,
        extraction: ExtractionResult,
        options: ImportOptions,
        actor: str,
        import_id: str,
        fingerprint: Optional[str],
        workflow_id: Optional[str],
    ) -> ImportRecord:
        """Run the whole commit in one IMMEDIATE transaction."""
        payload = extraction.payload
        ctx = _CommitContext(
            import_id=import_id,
            actor=actor,
            file_name=extraction.source_file_name,
            options=options,
            now=datetime.utcnow().isoformat(),
        )
        ctx.warnings.extend(arithmetic_warnings(payload))
        if fingerprint is None:
            ctx.warnings.append("Document has no business number; duplicate detection skipped")

        conn = connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")

            if isinstance(payload, PurchaseOrderPayload):
                self._write_purchase_order(conn, payload, ctx)
            elif isinstance(payload, VendorInvoicePayload):
                self._write_vendor_invoice(conn, payload, ctx)
            elif isinstance(payload, FreightInvoicePayload):
                self._write_freight_invoice(conn, payload, ctx)
            elif isinstance(payload, CustomsDocumentPayload):
                self._write_customs_document(conn, payload, ctx)
            else:
                assert_never(payload)

            record = ImportRecord(
                import_id=import_id,
                fingerprint=fingerprint,
                document_type=extraction.document_type,
                natural_key=payload.natural_key,
                source_file_name=extraction.source_file_name,
                actor=actor,
                created=ctx.created,
                updated=ctx.updated,
                options=options,
                warnings=ctx.warnings,
                committed_at=datetime.utcnow(),
            )
            insert_import_record(conn, record)
            insert_history_entry(conn, ImportHistoryEntry(
                import_id=import_id,
                file_name=extraction.source_file_name,
                document_type=extraction.document_type,
                status=ImportStatus.COMPLETED,
                records_created=len(ctx.created),
                records_updated=len(ctx.updated),
                fingerprint=fingerprint,
                actor=actor,
                timestamp=record.committed_at,
            ))

            for event_type, message, details in ctx.audit:
                write_audit_event(conn, create_audit_event(
                    event_type,
                    message,
                    import_id=import_id,
                    file_name=extraction.source_file_name,
                    document_type=extraction.document_type.value,
                    workflow_id=workflow_id,
                    details=details,
                    actor=actor,
                ))
            write_audit_event(conn, create_audit_event(
                AuditEventType.IMPORT_COMMITTED,
                f"Imported {extraction.document_type.value} {payload.natural_key or '(no number)'}",
                import_id=import_id,
                file_name=extraction.source_file_name,
                document_type=extraction.document_type.value,
                workflow_id=workflow_id,
                details={
                    "fingerprint": fingerprint,
                    "created": [ref.model_dump() for ref in ctx.created],
                    "updated": [ref.model_dump() for ref in ctx.updated],
                    "warnings": ctx.warnings,
                    "options": options.model_dump(),
                },
                actor=actor,
            ))

            conn.execute("COMMIT")
            return record
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _record_failure(
        self,
        extraction: ExtractionResult,
        import_id: str,
        fingerprint: Optional[str],
        actor: str,
        workflow_id: Optional[str],
        error: str,
    ) -> None:
        """Append the failed history row and its audit event together."""
        conn = connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            insert_history_entry(conn, ImportHistoryEntry(
                import_id=import_id,
                file_name=extraction.source_file_name,
                document_type=extraction.document_type,
                status=ImportStatus.FAILED,
                fingerprint=fingerprint,
                error=error,
                actor=actor,
                timestamp=datetime.utcnow(),
            ))
            write_audit_event(conn, create_audit_event(
                AuditEventType.IMPORT_FAILED,
                f"Import failed: {error}",
                severity=AuditSeverity.ERROR,
                import_id=import_id,
                file_name=extraction.source_file_name,
                document_type=extraction.document_type.value,
                workflow_id=workflow_id,
                actor=actor,
            ))
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    # =========================================================================
    # Entities
    # =========================================================================

    def _vendor_id(
        self,
        conn: sqlite3.Connection,
        name: str,
        email: Optional[str],
        ctx: _CommitContext,
        field_name: str = "vendorName",
    ) -> int:
        """Vendor for a PO or vendor invoice: override, lookup, or creation on request."""
        options = ctx.options
        if options.vendor_id is not None:
            if not _exists(conn, "vendors", options.vendor_id):
                raise MissingEntity(
                    f"Vendor {options.vendor_id} does not exist",
                    entity_type="vendor",
                    entity_ref=str(options.vendor_id),
                    field="vendorId",
                )
            return options.vendor_id

        vendor_id = _find_vendor(conn, name, email)
        if vendor_id is not None:
            return vendor_id

        if not options.create_vendor:
            raise MissingEntity(
                f"Vendor '{name}' does not exist; select a vendor or allow vendor creation",
                entity_type="vendor",
                entity_ref=name,
                field=field_name,
            )
        vendor_id = insert_vendor(conn, name, email)
        ctx.created.append(EntityRef(entity_type="vendor", entity_id=vendor_id))
        ctx.audit.append((AuditEventType.VENDOR_CREATED, f"Created vendor '{name}'", {"vendor_id": vendor_id}))
        return vendor_id

    def _material_id(
        self,
        conn: sqlite3.Connection,
        item: LineItem,
        line_number: int,
        ctx: _CommitContext,
        preferred_vendor_id: Optional[int] = None,
    ) -> Optional[int]:
        if item.matched_entity_id is not None:
            if not _exists(conn, "materials", item.matched_entity_id):
                raise MissingEntity(
                    f"Line {line_number}: material {item.matched_entity_id} does not exist",
                    entity_type="material",
                    entity_ref=str(item.matched_entity_id),
                    field=f"lineItems[{line_number - 1}].matchedEntityId",
                )
            return item.matched_entity_id

        if ctx.options.create_missing_materials:
            material_id = insert_material(conn, item.description, item.sku, item.unit, preferred_vendor_id)
            ctx.created.append(EntityRef(entity_type="material", entity_id=material_id))
            ctx.audit.append((
                AuditEventType.MATERIAL_CREATED,
                f"Created material '{item.description}'",
                {"material_id": material_id, "sku": item.sku},
            ))
            return material_id

        ctx.warnings.append(f"Line {line_number} '{item.description}' is not linked to a material")
        return None

    def _linked_po(
        self,
        conn: sqlite3.Connection,
        po_number: Optional[str],
        ctx: _CommitContext,
        vendor_id: Optional[int] = None,
    ) -> Optional[int]:
        """Existing PO id for ``po_number`` when linking was requested."""
        if not ctx.options.link_to_po or not po_number:
            return None
        sql = "SELECT id FROM purchase_orders WHERE po_number_normalized = ?"
        params: list = [normalize_natural_key(po_number)]
        if vendor_id is not None:
            sql += " AND vendor_id = ?"
            params.append(vendor_id)
        row = conn.execute(sql + " ORDER BY id LIMIT 1", params).fetchone()
        if row is None:
            ctx.warnings.append(f"Purchase order {po_number} not found; document not linked")
            return None
        return row["id"]

    def _receive(self, conn: sqlite3.Connection, lines: Sequence[tuple], ctx: _CommitContext) -> None:
        """Increment on-hand quantity for each (material_id, quantity) pair."""
        if not ctx.options.update_inventory:
            return
        if not ctx.options.mark_as_received:
            ctx.warnings.append("Inventory not updated: document was not marked as received")
            return

        for material_id, quantity in lines:
            if material_id is None or quantity is None:
                continue
            row = conn.execute(
                "SELECT quantity_on_hand FROM inventory WHERE material_id = ?",
                (material_id,),
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO inventory (material_id, quantity_on_hand, updated_at) VALUES (?, ?, ?)",
                    (material_id, str(quantity), ctx.now),
                )
                ctx.created.append(EntityRef(entity_type="inventory", entity_id=material_id))
            else:
                on_hand = Decimal(row["quantity_on_hand"]) + quantity
                conn.execute(
                    "UPDATE inventory SET quantity_on_hand = ?, updated_at = ? WHERE material_id = ?",
                    (str(on_hand), ctx.now, material_id),
                )
                ref = EntityRef(entity_type="inventory", entity_id=material_id)
                if ref not in ctx.updated and ref not in ctx.created:
                    ctx.updated.append(ref)

    def _status(self, ctx: _CommitContext) -> tuple:
        if ctx.options.mark_as_received:
            return "received", ctx.now
        return "draft", None

    def _write_lines(
        self,
        conn: sqlite3.Connection,
        table: str,
        line_type: str,
        parent_column: str,
        parent_id: int,
        items: Sequence[LineItem],
        ctx: _CommitContext,
        vendor_id: Optional[int],
    ) -> List[tuple]:
        received = []
        for line_number, item in enumerate(items, 1):
            material_id = self._material_id(conn, item, line_number, ctx, vendor_id)
            cursor = conn.execute(f"""
                INSERT INTO {table}
                ({parent_column}, line_number, material_id, description, sku,
                 quantity, unit, unit_price, total_price, match_method)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                parent_id,
                line_number,
                material_id,
                item.description,
                item.sku,
                _text(item.quantity),
                item.unit,
                _text(item.unit_price),
                _text(item.total_price),
                item.match_method.value if item.match_method else None,
            ))
            ctx.created.append(EntityRef(entity_type=line_type, entity_id=cursor.lastrowid))
            received.append((material_id, item.quantity))
        return received

    # =========================================================================
    # Document writers
    # =========================================================================

    def _write_purchase_order(self, conn: sqlite3.Connection, payload: PurchaseOrderPayload, ctx: _CommitContext) -> None:
        vendor_id = self._vendor_id(conn, payload.vendor_name, payload.vendor_email, ctx)
        status, received_at = self._status(ctx)
        cursor = conn.execute("""
            INSERT INTO purchase_orders
            (po_number, po_number_normalized, vendor_id, status, order_date, delivery_date,
             received_at, subtotal, total_amount, currency, notes, source_file_name, import_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            payload.po_number,
            normalize_natural_key(payload.po_number) or None,
            vendor_id,
            status,
            _text(payload.order_date),
            _text(payload.delivery_date),
            received_at,
            _text(payload.subtotal),
            _text(payload.total_amount),
            payload.currency,
            payload.notes,
            ctx.file_name,
            ctx.import_id,
            ctx.now,
        ))
        po_id = cursor.lastrowid
        ctx.created.append(EntityRef(entity_type="purchase_order", entity_id=po_id))

        received = self._write_lines(conn, "po_line_items", "po_line_item", "purchase_order_id", po_id, payload.line_items, ctx, vendor_id)
        self._receive(conn, received, ctx)

    def _write_vendor_invoice(self, conn: sqlite3.Connection, payload: VendorInvoicePayload, ctx: _CommitContext) -> None:
        vendor_id = self._vendor_id(conn, payload.vendor_name, payload.vendor_email, ctx)
        po_id = self._linked_po(conn, payload.related_po_number, ctx, vendor_id)
        status, received_at = self._status(ctx)
        cursor = conn.execute("""
            INSERT INTO vendor_invoices
            (invoice_number, vendor_id, purchase_order_id, status, invoice_date, due_date,
             received_at, subtotal, tax_amount, shipping_amount, total_amount,
             related_po_number, payment_terms, currency, source_file_name, import_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            payload.invoice_number,
            vendor_id,
            po_id,
            status,
            _text(payload.invoice_date),
            _text(payload.due_date),
            received_at,
            _text(payload.subtotal),
            _text(payload.tax_amount),
            _text(payload.shipping_amount),
            _text(payload.total_amount),
            payload.related_po_number,
            payload.payment_terms,
            payload.currency,
            ctx.file_name,
            ctx.import_id,
            ctx.now,
        ))
        invoice_id = cursor.lastrowid
        ctx.created.append(EntityRef(entity_type="vendor_invoice", entity_id=invoice_id))

        received = self._write_lines(
            conn, "invoice_line_items", "invoice_line_item", "vendor_invoice_id", invoice_id, payload.line_items, ctx, vendor_id
        )
        self._receive(conn, received, ctx)

    def _write_freight_invoice(self, conn: sqlite3.Connection, payload: FreightInvoicePayload, ctx: _CommitContext) -> None:
        # Carriers are optional vendors: link when known, create only on request
        if ctx.options.vendor_id is not None or ctx.options.create_vendor:
            carrier_id = self._vendor_id(conn, payload.carrier_name, payload.carrier_email, ctx, "carrierName")
        else:
            carrier_id = _find_vendor(conn, payload.carrier_name, payload.carrier_email)
        po_id = self._linked_po(conn, payload.related_po_number, ctx)
        cursor = conn.execute("""
            INSERT INTO freight_invoices
            (invoice_number, carrier_name, carrier_vendor_id, purchase_order_id, invoice_date,
             shipment_date, delivery_date, origin, destination, tracking_number, weight,
             dimensions, freight_charges, fuel_surcharge, accessorial_charges, total_amount,
             related_po_number, notes, currency, source_file_name, import_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            payload.invoice_number,
            payload.carrier_name,
            carrier_id,
            po_id,
            _text(payload.invoice_date),
            _text(payload.shipment_date),
            _text(payload.delivery_date),
            payload.origin,
            payload.destination,
            payload.tracking_number,
            payload.weight,
            payload.dimensions,
            _text(payload.freight_charges),
            _text(payload.fuel_surcharge),
            _text(payload.accessorial_charges),
            _text(payload.total_amount),
            payload.related_po_number,
            payload.notes,
            payload.currency,
            ctx.file_name,
            ctx.import_id,
            ctx.now,
        ))
        ctx.created.append(EntityRef(entity_type="freight_invoice", entity_id=cursor.lastrowid))

    def _write_customs_document(self, conn: sqlite3.Connection, payload: CustomsDocumentPayload, ctx: _CommitContext) -> None:
        po_id = self._linked_po(conn, payload.related_po_number, ctx)
        cursor = conn.execute("""
            INSERT INTO customs_documents
            (document_number, customs_document_type, shipper_name, consignee_name,
             country_of_origin, purchase_order_id, total_value, total_duty, total_amount,
             broker_name, broker_reference, related_po_number, currency,
             source_file_name, import_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            payload.document_number,
            payload.customs_document_type.value,
            payload.shipper_name,
            payload.consignee_name,
            payload.country_of_origin,
            po_id,
            _text(payload.total_value),
            _text(payload.total_duty),
            _text(payload.total_amount),
            payload.broker_name,
            payload.broker_reference,
            payload.related_po_number,
            payload.currency,
            ctx.file_name,
            ctx.import_id,
            ctx.now,
        ))
        document_id = cursor.lastrowid
        ctx.created.append(EntityRef(entity_type="customs_document", entity_id=document_id))

        for line_number, item in enumerate(payload.line_items, 1):
            self._write_customs_line(conn, document_id, line_number, item, ctx)

    def _write_customs_line(
        self,
        conn: sqlite3.Connection,
        document_id: int,
        line_number: int,
        item: CustomsLineItem,
        ctx: _CommitContext,
    ) -> None:
        # Customs lines link to materials only when already matched
        material_id = None
        if item.matched_entity_id is not None:
            material_id = self._material_id(conn, item, line_number, ctx)
        cursor = conn.execute("""
            INSERT INTO customs_line_items
            (customs_document_id, line_number, material_id, description, sku, hs_code,
             quantity, unit, unit_price, total_price, declared_value, duty_rate,
             duty_amount, country_of_origin)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            document_id,
            line_number,
            material_id,
            item.description,
            item.sku,
            item.hs_code,
            _text(item.quantity),
            item.unit,
            _text(item.unit_price),
            _text(item.total_price),
            _text(item.declared_value),
            _text(item.duty_rate),
            _text(item.duty_amount),
            item.country_of_origin,
        ))
        ctx.created.append(EntityRef(entity_type="customs_line_item", entity_id=cursor.lastrowid))
