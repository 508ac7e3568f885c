"""Document Classifier.

Turns a RawDocument into an ExtractionResult:
1. Reject unsupported MIME types before any extraction call
2. Prepare content (PDF text or page images, spreadsheet text, email text)
3. Type-agnostic first pass to learn the documentType (skipped when the
   caller already knows the type)
4. Targeted second pass against that type's schema
5. Validate the returned fields; missing required fields or a structurally
   invalid payload downgrade the result to unknown with confidence 0
6. Adjust confidence for absent expected fields

Malformed JSON from the model is reported as unknown, never raised, so batch
runs keep going. Transport failures raise ExtractionFailed.
"""

import asyncio
import json
import time
from typing import Any, Dict, List, Optional

import pydantic

from classifier.schemas import (
    EXPECTED_FIELDS,
    MISSING_FIELD_PENALTY,
    REQUIRED_FIELDS,
    is_missing,
    normalize_customs_subtype,
    normalize_document_type,
)
from core.errors import ExtractionFailed, UnsupportedFormat
from core.models.canonical import (
    CustomsDocumentType,
    DocumentType,
    ExtractionResult,
    PAYLOAD_MODELS,
    RawDocument,
    arithmetic_warnings,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from extraction.client import ExtractionClient, parse_json_str
from extraction.content import PreparedContent, prepare_content


logger = get_logger(__name__)

# Used when the model omits a confidence value
DEFAULT_CONFIDENCE = 0.5


def normalize_confidence(value) -> Optional[float]:
    """Coerce a model confidence into [0, 1].

    Values above 1 (up to 100) are treated as percentages.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        confidence = float(str(value).strip().rstrip("%"))
    except ValueError:
        return None
    if confidence != confidence:  # NaN
        return None
    if confidence > 1.0:
        confidence = confidence / 100.0
    return max(0.0, min(1.0, confidence))


class DocumentClassifier:
    """Classifies raw documents via an injected ExtractionClient.

    Example:
        classifier = DocumentClassifier(OpenAIExtractionClient(api_key=key))
        result = await classifier.classify(raw)
        if result.document_type == DocumentType.UNKNOWN:
            ...  # send to review
    """

    def __init__(
        self,
        client: ExtractionClient,
        max_ocr_pages: int = 3,
        missing_field_penalty: float = MISSING_FIELD_PENALTY,
    ):
        self.client = client
        self.max_ocr_pages = max_ocr_pages
        self.missing_field_penalty = missing_field_penalty

    async def classify(
        self,
        raw: RawDocument,
        document_type: Optional[DocumentType] = None,
    ) -> ExtractionResult:
        """Classify and extract one document.

        Args:
            raw: The uploaded document
            document_type: Known type, skips the type-agnostic first pass

        Returns:
            ExtractionResult (possibly ``unknown`` with confidence 0)

        Raises:
            UnsupportedFormat: MIME type unsupported or content unreadable
            ExtractionFailed: The extraction call failed (retriable)
        """
        start = time.time()

        with with_correlation(file_name=raw.file_name, stage="classify"):
            try:
                prepared = await asyncio.to_thread(prepare_content, raw, self.max_ocr_pages)
            except UnsupportedFormat:
                get_metrics().record_unsupported()
                logger.warning(f"Rejected unsupported document: {raw.mime_type}")
                raise

            customs_subtype: Optional[CustomsDocumentType] = None

            if document_type is not None:
                doc_type, customs_subtype = normalize_document_type(document_type)
            else:
                first = await self._call(prepared, None, raw.file_name)
                if first is None:
                    return self._finish(
                        ExtractionResult.unknown(raw.file_name, warnings=["Model returned malformed JSON"]),
                        start,
                    )
                doc_type, customs_subtype = normalize_document_type(first.get("documentType"))

            if doc_type == DocumentType.UNKNOWN:
                return self._finish(
                    ExtractionResult.unknown(raw.file_name, warnings=["Document type not recognized"]),
                    start,
                )

            with with_correlation(document_type=doc_type.value):
                second = await self._call(prepared, doc_type.value, raw.file_name)
                if second is None:
                    return self._finish(
                        ExtractionResult.unknown(raw.file_name, warnings=["Model returned malformed JSON"]),
                        start,
                    )

                result = self._build_result(raw.file_name, doc_type, second, customs_subtype, prepared)
                return self._finish(result, start)

    # =========================================================================
    # Extraction Call
    # =========================================================================

    async def _call(
        self,
        prepared: PreparedContent,
        target_schema: Optional[str],
        file_name: str,
    ) -> Optional[Dict[str, Any]]:
        """Run one extraction pass; None when the response is not a JSON object."""
        try:
            response = await self.client.extract(prepared.content, prepared.mime_type, target_schema)
        except ExtractionFailed as e:
            get_metrics().record_extraction_failed()
            e.file_name = e.file_name or file_name
            e.document_type = e.document_type or target_schema
            logger.warning(f"Extraction call failed: {e}")
            raise
        except (asyncio.TimeoutError, TimeoutError, ConnectionError) as e:
            get_metrics().record_extraction_failed()
            raise ExtractionFailed(
                f"Extraction call failed: {e}",
                file_name=file_name,
                document_type=target_schema,
            ) from e

        if isinstance(response, (str, bytes)):
            try:
                response = parse_json_str(response.decode("utf-8") if isinstance(response, bytes) else response)
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.warning("Model response was not valid JSON", extra_fields={"target_schema": target_schema})
                return None

        if not isinstance(response, dict):
            return None
        return response

    # =========================================================================
    # Validation
    # =========================================================================

    def _build_result(
        self,
        file_name: str,
        doc_type: DocumentType,
        response: Dict[str, Any],
        customs_subtype: Optional[CustomsDocumentType],
        prepared: PreparedContent,
    ) -> ExtractionResult:
        reported_type, _ = normalize_document_type(response.get("documentType", doc_type.value))
        if reported_type == DocumentType.UNKNOWN:
            return ExtractionResult.unknown(
                file_name, warnings=[f"Model could not extract {doc_type.value} fields"]
            )

        fields = self._fields_from(response)
        fields = self._prepare_fields(doc_type, fields, customs_subtype)

        missing_required = [f for f in REQUIRED_FIELDS[doc_type] if is_missing(fields.get(f))]
        if missing_required:
            logger.info(
                f"Missing required fields for {doc_type.value}",
                extra_fields={"missing": missing_required},
            )
            return ExtractionResult.unknown(
                file_name,
                missing_fields=missing_required,
                warnings=[f"Missing required field(s) for {doc_type.value}: {', '.join(missing_required)}"],
            )

        try:
            payload = PAYLOAD_MODELS[doc_type].model_validate(fields)
        except pydantic.ValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            logger.info(f"Invalid {doc_type.value} payload", extra_fields={"errors": problems})
            return ExtractionResult.unknown(
                file_name,
                warnings=[f"Invalid {doc_type.value} payload"] + problems,
            )

        warnings: List[str] = []
        confidence = normalize_confidence(response.get("confidence"))
        if confidence is None:
            confidence = DEFAULT_CONFIDENCE
            warnings.append("Model did not report a confidence")

        missing_expected = [f for f in EXPECTED_FIELDS[doc_type] if is_missing(fields.get(f))]
        confidence = max(0.0, confidence - self.missing_field_penalty * len(missing_expected))

        warnings.extend(arithmetic_warnings(payload))
        if prepared.truncated:
            warnings.append(f"Content was truncated before extraction ({prepared.method})")

        return ExtractionResult(
            document_type=doc_type,
            payload=payload,
            confidence=round(confidence, 4),
            source_file_name=file_name,
            missing_fields=missing_expected,
            warnings=warnings,
        )

    @staticmethod
    def _fields_from(response: Dict[str, Any]) -> Dict[str, Any]:
        fields = response.get("fields")
        if isinstance(fields, dict):
            return dict(fields)
        # Some responses put the fields at the top level
        return {k: v for k, v in response.items() if k not in ("documentType", "confidence", "fields")}

    @staticmethod
    def _prepare_fields(
        doc_type: DocumentType,
        fields: Dict[str, Any],
        customs_subtype: Optional[CustomsDocumentType],
    ) -> Dict[str, Any]:
        """Drop the type tag from fields and settle the customs sub-type."""
        tag = fields.pop("documentType", None)
        fields.pop("document_type", None)

        if doc_type == DocumentType.CUSTOMS_DOCUMENT:
            subtype = normalize_customs_subtype(fields.get("customsDocumentType"))
            if subtype is None and isinstance(tag, str) and tag != doc_type.value:
                subtype = normalize_customs_subtype(tag)
            if subtype is None:
                subtype = customs_subtype
            fields["customsDocumentType"] = subtype.value if subtype else None

        return fields

    def _finish(self, result: ExtractionResult, start: float) -> ExtractionResult:
        duration_ms = (time.time() - start) * 1000
        get_metrics().record_classified(result.document_type.value, duration_ms)
        logger.info(
            f"Classified as {result.document_type.value}",
            extra_fields={
                "confidence": result.confidence,
                "missing_fields": result.missing_fields,
                "duration_ms": round(duration_ms, 1),
            },
        )
        return result
