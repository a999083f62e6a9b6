"""
Batch orchestration of clinic-record transforms.

Demonstrates:
- Concurrent execution of independent units of work (asyncio.gather)
- Per-item failure isolation: one bad file never affects its siblings
- Limits enforced before any work starts, per item where possible
- Pipeline observability (status and duration per item)

Results always come back in submission order, however the engine calls
complete.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from fhir_bridge.etl.gateway import InputFormat, TransformError, TransformGateway
from fhir_bridge.schemas.api import BatchResult, BatchResultItem

logger = logging.getLogger(__name__)

MAX_BATCH_FILES = 20
MAX_FILE_SIZE = 256 * 1024  # 256 KB per file


class ItemStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    REJECTED = "rejected"


class BatchSubmissionError(ValueError):
    """The submission as a whole is unusable (no files, too many files)."""


@dataclass(frozen=True)
class BatchFile:
    """One uploaded file. ``content`` is None when the field was not a file."""

    filename: str
    content: bytes | None

    @property
    def format(self) -> InputFormat:
        return InputFormat.XML if self.filename.lower().endswith(".xml") else InputFormat.JSON


def _rejection(item: BatchFile) -> str | None:
    """Reason to fail an item without calling the engine, if any."""
    if item.content is None:
        return "Expected file upload"
    if len(item.content) > MAX_FILE_SIZE:
        return f"File too large (max {MAX_FILE_SIZE // 1024} KB)"
    if item.format == InputFormat.XML and b"<" not in item.content:
        return "File does not appear to be XML"
    return None


class BatchOrchestrator:
    """
    Runs every file in a batch through the transform gateway concurrently.

    Usage:
        orchestrator = BatchOrchestrator(TransformGateway.from_settings())
        result = await orchestrator.run([BatchFile("visit.json", b"{...}")])
    """

    def __init__(self, gateway: TransformGateway, max_files: int = MAX_BATCH_FILES):
        self.gateway = gateway
        self.max_files = max_files

    async def _process(self, index: int, item: BatchFile) -> BatchResultItem:
        reason = _rejection(item)
        if reason is not None:
            logger.info("Item %d %s before transform", index, ItemStatus.REJECTED.value)
            return BatchResultItem(filename=item.filename, ok=False, error=reason)

        start = time.perf_counter()
        status = ItemStatus.FAILED
        try:
            bundle = await self.gateway.transform_bundle(item.content, item.format)
            status = ItemStatus.SUCCESS
            return BatchResultItem(filename=item.filename, ok=True, bundle=bundle)
        except TransformError as exc:
            return BatchResultItem(filename=item.filename, ok=False, error=str(exc))
        except Exception as exc:
            # Contained per item; the exception text may carry internals
            logger.error("Item %d raised %s", index, type(exc).__name__)
            return BatchResultItem(filename=item.filename, ok=False, error="Transform failed")
        finally:
            logger.info(
                "Item %d %s in %.0f ms",
                index,
                status.value,
                (time.perf_counter() - start) * 1000,
            )

    async def run(self, files: Sequence[BatchFile]) -> BatchResult:
        if not files:
            raise BatchSubmissionError("No files provided")
        if len(files) > self.max_files:
            raise BatchSubmissionError(f"Maximum {self.max_files} files per batch")

        logger.info("Starting batch with %d files", len(files))
        results = await asyncio.gather(
            *(self._process(i, item) for i, item in enumerate(files))
        )

        succeeded = sum(1 for r in results if r.ok)
        batch = BatchResult(
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=list(results),
        )
        logger.info("Batch finished: %d succeeded, %d failed", batch.succeeded, batch.failed)
        return batch
