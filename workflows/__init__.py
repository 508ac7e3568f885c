"""Workflow definitions module."""

from workflows.document_import_workflow import (
    DocumentImportWorkflow,
    DocumentImportInput,
    DocumentImportResult,
    TASK_QUEUE_DEFAULT,
    TASK_QUEUE_LLM,
)

__all__ = [
    "DocumentImportWorkflow",
    "DocumentImportInput",
    "DocumentImportResult",
    "TASK_QUEUE_DEFAULT",
    "TASK_QUEUE_LLM",
]
