"""Vendor / Material Registry Database Operations.

This module handles the registry tables the resolver reads from:
- vendors: suppliers, carriers and shippers
- materials: catalog items with an optional preferred vendor

The resolver only reads. Vendors and materials are written by callers
(seeding, admin screens) or by the Import Committer when explicitly asked
to create them.
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Protocol

from core.config import DEFAULT_DB_PATH
from entity_resolver.models import Material, Vendor
from entity_resolver.normalize import normalize_email, normalize_name, normalize_sku


def init_registry_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize registry tables.

    Creates:
    - vendors: with a normalized-name index for exact lookups
    - materials: with normalized name and SKU indexes

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        create_registry_tables(conn)
        conn.commit()
    finally:
        conn.close()


def create_registry_tables(conn: sqlite3.Connection) -> None:
    """Create registry tables on an open connection."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS vendors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            name_normalized TEXT NOT NULL,
            email TEXT,
            email_normalized TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_vendors_name
        ON vendors(name_normalized)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_vendors_email
        ON vendors(email_normalized)
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS materials (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            name_normalized TEXT NOT NULL,
            sku TEXT,
            sku_normalized TEXT,
            unit TEXT,
            preferred_vendor_id INTEGER REFERENCES vendors(id),
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_materials_name
        ON materials(name_normalized)
    """)
    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_materials_sku
        ON materials(sku_normalized)
    """)


# =============================================================================
# Writes
# =============================================================================

def insert_vendor(
    conn: sqlite3.Connection,
    name: str,
    email: Optional[str] = None,
    is_active: bool = True,
) -> int:
    """Insert a vendor using the caller's connection. Returns the new id."""
    cursor = conn.execute("""
        INSERT INTO vendors (name, name_normalized, email, email_normalized, is_active, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (
        name,
        normalize_name(name),
        email,
        normalize_email(email) or None,
        1 if is_active else 0,
        datetime.utcnow().isoformat(),
    ))
    return cursor.lastrowid


def insert_material(
    conn: sqlite3.Connection,
    name: str,
    sku: Optional[str] = None,
    unit: Optional[str] = None,
    preferred_vendor_id: Optional[int] = None,
) -> int:
    """Insert a material using the caller's connection. Returns the new id."""
    cursor = conn.execute("""
        INSERT INTO materials (name, name_normalized, sku, sku_normalized, unit,
                               preferred_vendor_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, (
        name,
        normalize_name(name),
        sku,
        normalize_sku(sku) or None,
        unit,
        preferred_vendor_id,
        datetime.utcnow().isoformat(),
    ))
    return cursor.lastrowid


def add_vendor(
    name: str,
    email: Optional[str] = None,
    is_active: bool = True,
    db_path: Path = DEFAULT_DB_PATH,
) -> Vendor:
    """Add a vendor to the registry."""
    conn = sqlite3.connect(db_path)
    try:
        vendor_id = insert_vendor(conn, name, email, is_active)
        conn.commit()
    finally:
        conn.close()
    return Vendor(id=vendor_id, name=name, email=email, is_active=is_active)


def add_material(
    name: str,
    sku: Optional[str] = None,
    unit: Optional[str] = None,
    preferred_vendor_id: Optional[int] = None,
    db_path: Path = DEFAULT_DB_PATH,
) -> Material:
    """Add a material to the registry."""
    conn = sqlite3.connect(db_path)
    try:
        material_id = insert_material(conn, name, sku, unit, preferred_vendor_id)
        conn.commit()
    finally:
        conn.close()
    return Material(id=material_id, name=name, sku=sku, unit=unit, preferred_vendor_id=preferred_vendor_id)


def set_vendor_active(vendor_id: int, is_active: bool, db_path: Path = DEFAULT_DB_PATH) -> None:
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("UPDATE vendors SET is_active = ? WHERE id = ?", (1 if is_active else 0, vendor_id))
        conn.commit()
    finally:
        conn.close()


# =============================================================================
# Registry (reads)
# =============================================================================

class Registry(Protocol):
    """Read access to vendors and materials, as consumed by the resolver."""

    def find_vendor_by_name(self, name: str) -> Optional[Vendor]:
        ...

    def find_vendor_by_email(self, email: str) -> Optional[Vendor]:
        ...

    def list_active_vendors(self) -> List[Vendor]:
        ...

    def get_vendor(self, vendor_id: int) -> Optional[Vendor]:
        ...

    def find_material_by_name_or_sku(self, text: Optional[str], sku: Optional[str]) -> Optional[Material]:
        ...

    def list_materials(self) -> List[Material]:
        ...

    def get_material(self, material_id: int) -> Optional[Material]:
        ...


def _row_to_vendor(row: sqlite3.Row) -> Vendor:
    return Vendor(id=row["id"], name=row["name"], email=row["email"], is_active=bool(row["is_active"]))


def _row_to_material(row: sqlite3.Row) -> Material:
    return Material(
        id=row["id"],
        name=row["name"],
        sku=row["sku"],
        unit=row["unit"],
        preferred_vendor_id=row["preferred_vendor_id"],
    )


class SQLiteRegistry:
    """Registry backed by the vendors / materials tables.

    Lookups are exact (case-insensitive, whitespace-collapsed). Fuzzy
    matching is the resolver's job.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = db_path

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def find_vendor_by_name(self, name: str) -> Optional[Vendor]:
        """Active vendor whose normalized name equals ``name``; lowest id wins."""
        normalized = normalize_name(name)
        if not normalized:
            return None
        rows = self._query(
            "SELECT * FROM vendors WHERE name_normalized = ? AND is_active = 1 ORDER BY id LIMIT 1",
            (normalized,),
        )
        return _row_to_vendor(rows[0]) if rows else None

    def find_vendor_by_email(self, email: str) -> Optional[Vendor]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        rows = self._query(
            "SELECT * FROM vendors WHERE email_normalized = ? AND is_active = 1 ORDER BY id LIMIT 1",
            (normalized,),
        )
        return _row_to_vendor(rows[0]) if rows else None

    def list_active_vendors(self) -> List[Vendor]:
        rows = self._query("SELECT * FROM vendors WHERE is_active = 1 ORDER BY id")
        return [_row_to_vendor(r) for r in rows]

    def get_vendor(self, vendor_id: int) -> Optional[Vendor]:
        rows = self._query("SELECT * FROM vendors WHERE id = ?", (vendor_id,))
        return _row_to_vendor(rows[0]) if rows else None

    def find_material_by_name_or_sku(self, text: Optional[str], sku: Optional[str]) -> Optional[Material]:
        """SKU match first, then exact normalized name."""
        normalized_sku = normalize_sku(sku)
        if normalized_sku:
            rows = self._query(
                "SELECT * FROM materials WHERE sku_normalized = ? ORDER BY id LIMIT 1",
                (normalized_sku,),
            )
            if rows:
                return _row_to_material(rows[0])

        normalized = normalize_name(text)
        if normalized:
            rows = self._query(
                "SELECT * FROM materials WHERE name_normalized = ? ORDER BY id LIMIT 1",
                (normalized,),
            )
            if rows:
                return _row_to_material(rows[0])
        return None

    def list_materials(self) -> List[Material]:
        rows = self._query("SELECT * FROM materials ORDER BY id")
        return [_row_to_material(r) for r in rows]

    def get_material(self, material_id: int) -> Optional[Material]:
        rows = self._query("SELECT * FROM materials WHERE id = ?", (material_id,))
        return _row_to_material(rows[0]) if rows else None
