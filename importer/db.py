"""Business-Record Store Database Operations.

This module owns the SQLite schema the Import Committer writes to:
- purchase_orders / po_line_items
- vendor_invoices / invoice_line_items
- freight_invoices
- customs_documents / customs_line_items
- inventory: on-hand quantity per material
- import_records: immutable ImportRecord per committed import
- import_history: append-only import log with duplicate protection
- audit_events

Monetary values and quantities are stored as decimal strings.
"""

import sqlite3
from pathlib import Path

from core.audit.events import AUDIT_EVENTS_DDL
from core.config import DEFAULT_DB_PATH
from entity_resolver.db import create_registry_tables


def connect(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a connection in autocommit mode; callers issue BEGIN/COMMIT explicitly."""
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_import_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize registry, business-record, history and audit tables.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        create_registry_tables(conn)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS inventory (
                material_id INTEGER PRIMARY KEY REFERENCES materials(id),
                quantity_on_hand TEXT NOT NULL DEFAULT '0',
                updated_at TEXT NOT NULL
            )
        """)

        # Purchase orders
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS purchase_orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                po_number TEXT,
                po_number_normalized TEXT,
                vendor_id INTEGER NOT NULL REFERENCES vendors(id),
                status TEXT NOT NULL,
                order_date TEXT,
                delivery_date TEXT,
                received_at TEXT,
                subtotal TEXT,
                total_amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                notes TEXT,
                source_file_name TEXT NOT NULL,
                import_id TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_purchase_orders_number
            ON purchase_orders(po_number_normalized)
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS po_line_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                purchase_order_id INTEGER NOT NULL REFERENCES purchase_orders(id),
                line_number INTEGER NOT NULL,
                material_id INTEGER REFERENCES materials(id),
                description TEXT NOT NULL,
                sku TEXT,
                quantity TEXT NOT NULL,
                unit TEXT,
                unit_price TEXT NOT NULL,
                total_price TEXT,
                match_method TEXT
            )
        """)

        # Vendor invoices
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS vendor_invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_number TEXT,
                vendor_id INTEGER NOT NULL REFERENCES vendors(id),
                purchase_order_id INTEGER REFERENCES purchase_orders(id),
                status TEXT NOT NULL,
                invoice_date TEXT,
                due_date TEXT,
                received_at TEXT,
                subtotal TEXT,
                tax_amount TEXT,
                shipping_amount TEXT,
                total_amount TEXT NOT NULL,
                related_po_number TEXT,
                payment_terms TEXT,
                currency TEXT NOT NULL,
                source_file_name TEXT NOT NULL,
                import_id TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS invoice_line_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                vendor_invoice_id INTEGER NOT NULL REFERENCES vendor_invoices(id),
                line_number INTEGER NOT NULL,
                material_id INTEGER REFERENCES materials(id),
                description TEXT NOT NULL,
                sku TEXT,
                quantity TEXT NOT NULL,
                unit TEXT,
                unit_price TEXT NOT NULL,
                total_price TEXT,
                match_method TEXT
            )
        """)

        # Freight invoices
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS freight_invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_number TEXT,
                carrier_name TEXT NOT NULL,
                carrier_vendor_id INTEGER REFERENCES vendors(id),
                purchase_order_id INTEGER REFERENCES purchase_orders(id),
                invoice_date TEXT,
                shipment_date TEXT,
                delivery_date TEXT,
                origin TEXT,
                destination TEXT,
                tracking_number TEXT,
                weight TEXT,
                dimensions TEXT,
                freight_charges TEXT,
                fuel_surcharge TEXT,
                accessorial_charges TEXT,
                total_amount TEXT NOT NULL,
                related_po_number TEXT,
                notes TEXT,
                currency TEXT NOT NULL,
                source_file_name TEXT NOT NULL,
                import_id TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        # Customs documents
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customs_documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_number TEXT,
                customs_document_type TEXT NOT NULL,
                shipper_name TEXT NOT NULL,
                consignee_name TEXT,
                country_of_origin TEXT,
                purchase_order_id INTEGER REFERENCES purchase_orders(id),
                total_value TEXT,
                total_duty TEXT,
                total_amount TEXT,
                broker_name TEXT,
                broker_reference TEXT,
                related_po_number TEXT,
                currency TEXT NOT NULL,
                source_file_name TEXT NOT NULL,
                import_id TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customs_line_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customs_document_id INTEGER NOT NULL REFERENCES customs_documents(id),
                line_number INTEGER NOT NULL,
                material_id INTEGER REFERENCES materials(id),
                description TEXT NOT NULL,
                sku TEXT,
                hs_code TEXT,
                quantity TEXT,
                unit TEXT,
                unit_price TEXT,
                total_price TEXT,
                declared_value TEXT,
                duty_rate TEXT,
                duty_amount TEXT,
                country_of_origin TEXT
            )
        """)

        # Import records and history
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS import_records (
                import_id TEXT PRIMARY KEY,
                fingerprint TEXT,
                document_type TEXT NOT NULL,
                natural_key TEXT,
                source_file_name TEXT NOT NULL,
                actor TEXT NOT NULL,
                record_json TEXT NOT NULL,
                committed_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS import_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                import_id TEXT NOT NULL,
                file_name TEXT NOT NULL,
                document_type TEXT NOT NULL,
                status TEXT NOT NULL,
                records_created INTEGER NOT NULL DEFAULT 0,
                records_updated INTEGER NOT NULL DEFAULT 0,
                fingerprint TEXT,
                error TEXT,
                actor TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)
        # At most one completed import per fingerprint, across processes
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS ux_import_history_completed_fingerprint
            ON import_history(fingerprint)
            WHERE status = 'completed' AND fingerprint IS NOT NULL
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_import_history_import_id
            ON import_history(import_id)
        """)

        cursor.execute(AUDIT_EVENTS_DDL)

        conn.commit()
    finally:
        conn.close()


def count_rows(table: str, db_path: Path = DEFAULT_DB_PATH) -> int:
    """Row count for a table (used by health checks and tests)."""
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()
