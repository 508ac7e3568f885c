"""Entity Resolver Algorithm.

Links extracted vendor names and line items to existing registry records.
It only proposes; it never writes vendors or materials.

Vendor resolution order (first hit wins):
1. Exact case-insensitive name
2. Exact contact email
3. Preferred vendor of a material one of the line items matched
4. Fuzzy match (pluggable MatchStrategy, default bidirectional substring)
5. First active vendor as a low-confidence suggestion (``suggested=True``)
6. No active vendor at all -> NoVendorAvailable

Line item resolution order:
1. Exact SKU (when both sides have one)
2. Exact case-insensitive name
3. Fuzzy match
4. No match (``none_suggest_create``)
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from core.errors import NoVendorAvailable
from core.models.canonical import (
    CustomsDocumentPayload,
    DocumentType,
    ExtractionResult,
    FreightInvoicePayload,
    LineItem,
    MatchMethod,
)
from core.models.refs import MatchCandidate
from core.observability.logging import get_logger
from entity_resolver.db import Registry
from entity_resolver.models import Material, Vendor
from entity_resolver.normalize import normalize_name, normalize_sku
from entity_resolver.strategies import MatchStrategy, SubstringMatchStrategy, best_match


logger = get_logger(__name__)

# Score given to the first-active-vendor fallback
SUGGESTION_SCORE = 0.1


@dataclass
class DocumentResolution:
    """Resolver output for one extraction.

    Attributes:
        extraction: Copy of the extraction with annotated line items
        vendor: Vendor candidate (None for unknown documents or when blocked)
        vendor_error: NoVendorAvailable message when no vendor could be proposed
    """
    extraction: ExtractionResult
    vendor: Optional[MatchCandidate] = None
    vendor_error: Optional[str] = None

    @property
    def needs_confirmation(self) -> bool:
        return self.vendor is None or self.vendor.suggested


def _vendor_candidate(vendor: Vendor, score: float, method: MatchMethod, suggested: bool = False) -> MatchCandidate:
    return MatchCandidate(
        entity_type="vendor",
        entity_id=vendor.id,
        entity_name=vendor.name,
        match_score=round(score, 4),
        match_method=method,
        suggested=suggested,
    )


class EntityResolver:
    """Resolves extracted names to registry vendors and materials.

    Example:
        resolver = EntityResolver(SQLiteRegistry(db_path))
        candidate = resolver.resolve_vendor("Acme Corp")
        items = resolver.resolve_line_items(extraction.line_items)
    """

    def __init__(self, registry: Registry, strategy: Optional[MatchStrategy] = None):
        self.registry = registry
        self.strategy = strategy or SubstringMatchStrategy()

    # =========================================================================
    # Vendors
    # =========================================================================

    def resolve_vendor(
        self,
        name: Optional[str],
        email: Optional[str] = None,
        line_items: Optional[Iterable[LineItem]] = None,
    ) -> MatchCandidate:
        """Resolve an extracted vendor name to a vendor candidate.

        Args:
            name: Extracted vendor / carrier / shipper name
            email: Extracted contact email, if any
            line_items: Resolved line items; a matched material's preferred
                vendor is tried before the fuzzy scan

        Returns:
            MatchCandidate for the vendor

        Raises:
            NoVendorAvailable: Nothing matched and no active vendor exists
        """
        # Step 1: Exact name
        if normalize_name(name):
            vendor = self.registry.find_vendor_by_name(name)
            if vendor:
                return _vendor_candidate(vendor, 1.0, MatchMethod.EXACT_NAME)

        # Step 2: Exact email
        if email:
            vendor = self.registry.find_vendor_by_email(email)
            if vendor:
                return _vendor_candidate(vendor, 1.0, MatchMethod.EXACT_EMAIL)

        # Step 3: Preferred vendor of a matched material
        preferred = self._preferred_vendor(line_items or [])
        if preferred:
            return preferred

        active = self.registry.list_active_vendors()

        # Step 4: Fuzzy
        if normalize_name(name):
            hit = best_match(self.strategy, name, active, lambda v: v.name)
            if hit:
                vendor, score = hit
                return _vendor_candidate(vendor, score, MatchMethod.FUZZY_SUBSTRING)

        # Step 5: Suggest the first active vendor
        if active:
            logger.info(
                "No vendor match, suggesting first active vendor",
                extra_fields={"extracted_name": name, "suggested_vendor_id": active[0].id},
            )
            return _vendor_candidate(active[0], SUGGESTION_SCORE, MatchMethod.NONE_SUGGEST_CREATE, suggested=True)

        raise NoVendorAvailable(f"No vendor matches '{name}' and no active vendor exists", field="vendorName")

    def _preferred_vendor(self, line_items: Iterable[LineItem]) -> Optional[MatchCandidate]:
        for item in line_items:
            if item.matched_entity_id is None:
                continue
            material = self.registry.get_material(item.matched_entity_id)
            if material is None or material.preferred_vendor_id is None:
                continue
            vendor = self.registry.get_vendor(material.preferred_vendor_id)
            if vendor is None or not vendor.is_active:
                continue
            return _vendor_candidate(vendor, item.match_confidence or 1.0, MatchMethod.PREFERRED_VENDOR)
        return None

    # =========================================================================
    # Materials
    # =========================================================================

    def resolve_line_items(
        self,
        items: Iterable[LineItem],
        known_materials: Optional[List[Material]] = None,
    ) -> List[LineItem]:
        """Annotate line items with material matches.

        Returns new LineItem copies; the inputs are not modified.

        Args:
            items: Extracted line items
            known_materials: Materials to match against; defaults to the registry
        """
        materials = known_materials
        resolved = []
        for item in items:
            if materials is None:
                exact = self.registry.find_material_by_name_or_sku(item.description, item.sku)
                if exact is not None:
                    resolved.append(self._annotate(item, exact, 1.0, self._exact_method(item, exact)))
                    continue
                materials = self.registry.list_materials()
            resolved.append(self._resolve_item(item, materials))
        return resolved

    def _resolve_item(self, item: LineItem, materials: List[Material]) -> LineItem:
        sku = normalize_sku(item.sku)
        if sku:
            for material in materials:
                if normalize_sku(material.sku) == sku:
                    return self._annotate(item, material, 1.0, MatchMethod.EXACT_SKU)

        description = normalize_name(item.description)
        if description:
            for material in materials:
                if normalize_name(material.name) == description:
                    return self._annotate(item, material, 1.0, MatchMethod.EXACT_NAME)

            hit = best_match(self.strategy, item.description, materials, lambda m: m.name)
            if hit:
                material, score = hit
                return self._annotate(item, material, score, MatchMethod.FUZZY_SUBSTRING)

        return item.model_copy(update={
            "matched_entity_id": None,
            "match_confidence": 0.0,
            "match_method": MatchMethod.NONE_SUGGEST_CREATE,
        })

    @staticmethod
    def _exact_method(item: LineItem, material: Material) -> MatchMethod:
        sku = normalize_sku(item.sku)
        if sku and sku == normalize_sku(material.sku):
            return MatchMethod.EXACT_SKU
        return MatchMethod.EXACT_NAME

    @staticmethod
    def _annotate(item: LineItem, material: Material, score: float, method: MatchMethod) -> LineItem:
        return item.model_copy(update={
            "matched_entity_id": material.id,
            "match_confidence": round(score, 4),
            "match_method": method,
        })

    # =========================================================================
    # Documents
    # =========================================================================

    def resolve_document(self, extraction: ExtractionResult) -> DocumentResolution:
        """Resolve line items and vendor for a classified document.

        Unknown documents pass through untouched. NoVendorAvailable is
        captured on the result rather than raised so callers can show it.
        """
        if extraction.document_type == DocumentType.UNKNOWN:
            return DocumentResolution(extraction=extraction)

        items = self.resolve_line_items(extraction.line_items)
        annotated = extraction.with_line_items(items)
        payload = annotated.payload

        if isinstance(payload, FreightInvoicePayload):
            email = payload.carrier_email
        elif isinstance(payload, CustomsDocumentPayload):
            email = None
        else:
            email = payload.vendor_email

        try:
            vendor = self.resolve_vendor(payload.party_name, email, items)
        except NoVendorAvailable as e:
            e.file_name = extraction.source_file_name
            e.document_type = extraction.document_type.value
            logger.warning(str(e))
            return DocumentResolution(extraction=annotated, vendor=None, vendor_error=e.message)

        matched = sum(1 for i in items if i.matched_entity_id is not None)
        logger.info(
            f"Resolved vendor via {vendor.match_method.value}",
            extra_fields={
                "vendor_id": vendor.entity_id,
                "match_score": vendor.match_score,
                "suggested": vendor.suggested,
                "lines_matched": matched,
                "lines_total": len(items),
            },
        )
        return DocumentResolution(extraction=annotated, vendor=vendor)


