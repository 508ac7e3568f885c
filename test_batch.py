"""Batch Orchestrator tests: ordering, isolation, bounded concurrency, cancellation, auto-commit."""

import asyncio
import json
import threading

import pytest

from classifier import DocumentClassifier
from conftest import FakeExtractionClient, po_response, text_document
from core.errors import BatchCancelled, DuplicateImport, ExtractionFailed, UnsupportedFormat
from core.models.canonical import DocumentOrigin, DocumentType, RawDocument
from entity_resolver import EntityResolver, SQLiteRegistry
from importer import ImportCommitter, count_rows
from workflows.batch import (
    AutoCommitPolicy,
    BatchOrchestrator,
    auto_commit_allowed,
    sources_from_directory,
    summarize,
)


def po_doc(number: str) -> RawDocument:
    return text_document(f"PURCHASE ORDER {number}\nAcme Corp", file_name=f"{number}.txt")


def run(orchestrator, sources, **kwargs):
    return asyncio.run(orchestrator.run_batch(sources, **kwargs))


class TestOrderingAndIsolation:

    def test_results_keep_input_order(self):
        client = FakeExtractionClient(
            {n: po_response(po_number=n) for n in ("PO-1", "PO-2", "PO-3")},
            delays={"PO-1": 0.05, "PO-2": 0.0, "PO-3": 0.02},
        )
        sources = [po_doc("PO-1"), po_doc("PO-2"), po_doc("PO-3")]
        results = run(BatchOrchestrator(DocumentClassifier(client), concurrency=3), sources)

        assert [r.source.file_name for r in results] == ["PO-1.txt", "PO-2.txt", "PO-3.txt"]
        assert [r.extraction.payload.po_number for r in results] == ["PO-1", "PO-2", "PO-3"]
        assert all(r.success for r in results)

    def test_failures_do_not_stop_siblings(self):
        client = FakeExtractionClient({
            "PO-1": po_response(po_number="PO-1"),
            "PO-BAD": ExtractionFailed("upstream unavailable"),
        })
        sources = [
            RawDocument(content=b"PK", mime_type="application/msword", file_name="memo.doc"),
            po_doc("PO-BAD"),
            po_doc("PO-1"),
            text_document("Team lunch on Friday", file_name="lunch.txt"),
        ]
        results = run(BatchOrchestrator(DocumentClassifier(client)), sources)

        assert [r.success for r in results] == [False, False, True, True]
        assert isinstance(results[0].error, UnsupportedFormat)
        assert isinstance(results[1].error, ExtractionFailed)
        assert results[3].extraction.document_type == DocumentType.UNKNOWN

        summary = summarize(results)
        assert summary["total"] == 4
        assert summary["succeeded"] == 2
        assert summary["failed"] == 2
        assert summary["by_document_type"] == {"purchase_order": 1, "unknown": 1}

    def test_concurrency_is_bounded(self):
        numbers = [f"PO-{i}" for i in range(6)]
        client = FakeExtractionClient(
            {n: po_response(po_number=n) for n in numbers},
            delays={n: 0.02 for n in numbers},
        )
        results = run(BatchOrchestrator(DocumentClassifier(client), concurrency=2), [po_doc(n) for n in numbers])

        assert all(r.success for r in results)
        assert 1 <= client.max_in_flight <= 2

    def test_results_serialize(self):
        client = FakeExtractionClient({"PO-1": po_response(po_number="PO-1")})
        results = run(BatchOrchestrator(DocumentClassifier(client)), [po_doc("PO-1")])
        data = json.loads(json.dumps([r.to_dict() for r in results]))
        assert data[0]["extraction"]["documentType"] == "purchase_order"
        assert data[0]["error"] is None

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            BatchOrchestrator(DocumentClassifier(FakeExtractionClient()), concurrency=0)


class TestCancellation:

    def test_cancelled_before_start(self):
        client = FakeExtractionClient({"PO-1": po_response(po_number="PO-1")})
        event = asyncio.Event()
        event.set()
        results = run(BatchOrchestrator(DocumentClassifier(client)), [po_doc("PO-1"), po_doc("PO-2")], cancel_event=event)

        assert all(isinstance(r.error, BatchCancelled) for r in results)
        assert all(r.cancelled and not r.success for r in results)
        assert client.calls == []

    def test_in_flight_item_finishes_and_rest_are_cancelled(self):
        class CancellingClient(FakeExtractionClient):
            """Requests cancellation as soon as the first document is being extracted."""

            def __init__(self, event, **kwargs):
                super().__init__(**kwargs)
                self.event = event

            async def extract(self, content, mime_type, target_schema=None):
                self.event.set()
                return await super().extract(content, mime_type, target_schema)

        async def scenario():
            event = asyncio.Event()
            client = CancellingClient(event, responses={n: po_response(po_number=n) for n in ("PO-1", "PO-2", "PO-3")})
            orchestrator = BatchOrchestrator(DocumentClassifier(client), concurrency=1)
            return await orchestrator.run_batch([po_doc("PO-1"), po_doc("PO-2"), po_doc("PO-3")], cancel_event=event)

        results = asyncio.run(scenario())
        assert results[0].success
        assert results[0].extraction.document_type == DocumentType.PURCHASE_ORDER
        assert [r.cancelled for r in results] == [False, True, True]
        assert summarize(results)["cancelled"] == 2


class TestAutoCommit:

    def make_orchestrator(self, registry, client, min_confidence=0.85):
        committer = ImportCommitter(registry.db_path)
        policy = AutoCommitPolicy(committer=committer, min_confidence=min_confidence)
        return BatchOrchestrator(
            DocumentClassifier(client),
            EntityResolver(SQLiteRegistry(registry.db_path)),
            auto_commit=policy,
        )

    def test_confident_matched_documents_are_committed(self, registry):
        client = FakeExtractionClient({
            "PO-1": po_response(po_number="PO-1", deliveryDate="2024-03-20"),
            "PO-2": po_response(po_number="PO-2", vendor_name="Initech", deliveryDate="2024-03-20"),
            "PO-3": po_response(po_number="PO-3", confidence=0.7, deliveryDate="2024-03-20"),
        })
        orchestrator = self.make_orchestrator(registry, client)
        results = run(orchestrator, [po_doc("PO-1"), po_doc("PO-2"), po_doc("PO-3")])

        committed, suggested, low = results
        assert committed.record is not None
        assert committed.vendor.entity_id == registry.acme.id
        assert suggested.vendor.suggested and suggested.record is None
        assert low.record is None
        assert all(r.success for r in results)
        assert count_rows("purchase_orders", registry.db_path) == 1
        assert summarize(results)["committed"] == 1

    def test_duplicate_is_reported_with_existing_record(self, registry):
        client = FakeExtractionClient({"PO-1": po_response(po_number="PO-1", deliveryDate="2024-03-20")})
        orchestrator = self.make_orchestrator(registry, client)
        first = run(orchestrator, [po_doc("PO-1")])[0]
        again = run(orchestrator, [po_doc("PO-1")])[0]

        assert again.success
        assert isinstance(again.error, DuplicateImport)
        assert again.record.import_id == first.record.import_id
        assert count_rows("purchase_orders", registry.db_path) == 1
        assert summarize([again])["committed"] == 0

    def test_resolution_runs_off_the_event_loop(self, registry):
        threads = []

        class RecordingResolver(EntityResolver):
            def resolve_document(self, extraction):
                threads.append(threading.get_ident())
                return super().resolve_document(extraction)

        client = FakeExtractionClient({"PO-1": po_response(po_number="PO-1")})
        orchestrator = BatchOrchestrator(
            DocumentClassifier(client),
            RecordingResolver(SQLiteRegistry(registry.db_path)),
        )
        results = run(orchestrator, [po_doc("PO-1")])

        assert results[0].vendor.entity_id == registry.acme.id
        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    def test_auto_commit_rule(self):
        assert auto_commit_allowed(DocumentType.PURCHASE_ORDER, 0.9, 0.85, True)
        assert not auto_commit_allowed(DocumentType.PURCHASE_ORDER, 0.9, 0.85, False)
        assert not auto_commit_allowed(DocumentType.VENDOR_INVOICE, 0.8, 0.85, True)
        assert auto_commit_allowed(DocumentType.FREIGHT_INVOICE, 0.9, 0.85, False)
        assert not auto_commit_allowed(DocumentType.UNKNOWN, 1.0, 0.85, True)


class TestFolderSources:

    def test_sources_from_directory(self, tmp_path):
        (tmp_path / "b.txt").write_text("PURCHASE ORDER PO-9")
        (tmp_path / "a.pdf").write_bytes(b"%PDF-1.4")
        (tmp_path / ".DS_Store").write_bytes(b"")
        (tmp_path / "nested").mkdir()

        sources = sources_from_directory(tmp_path)
        assert [s.file_name for s in sources] == ["a.pdf", "b.txt"]
        assert [s.mime_type for s in sources] == ["application/pdf", "text/plain"]
        assert all(s.origin == DocumentOrigin.CLOUD_DRIVE for s in sources)
