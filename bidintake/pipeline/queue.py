"""Document processing queue.

Drains PENDING documents in bounded batches, oldest first. Each document
is dispatched independently; one failure never stops the batch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bidintake.config import AppConfig, get_config
from bidintake.db.models import DocumentModel
from bidintake.exceptions import DocumentStateError
from bidintake.intelligence.extraction import AIExtractionAdapter
from bidintake.models import ProcessingStatus
from bidintake.pipeline.dispatcher import FormatDispatcher
from bidintake.storage import ObjectStorage

logger = logging.getLogger(__name__)


class DocumentQueue:
    """Batch driver around FormatDispatcher."""

    def __init__(
        self,
        session: AsyncSession,
        storage: ObjectStorage,
        adapter: Optional[AIExtractionAdapter] = None,
        config: Optional[AppConfig] = None,
    ):
        self.session = session
        self.config = config or get_config()
        self.dispatcher = FormatDispatcher(session, storage, adapter)

    async def process_batch(self, batch_size: Optional[int] = None) -> dict:
        """Process up to batch_size PENDING documents.

        Returns:
            Summary with processed, succeeded, failed and remaining counts
        """
        queue_config = self.config.queue
        limit = min(batch_size or queue_config.batch_size, queue_config.max_batch_size)

        result = await self.session.execute(
            select(DocumentModel.id)
            .where(
                DocumentModel.processing_status == ProcessingStatus.PENDING.value,
                DocumentModel.processing_attempts < queue_config.max_attempts,
            )
            .order_by(DocumentModel.created_at, DocumentModel.id)
            .limit(limit)
        )
        document_ids = list(result.scalars().all())

        summary = {"processed": 0, "succeeded": 0, "failed": 0, "results": []}
        if not document_ids:
            logger.info("No pending documents in queue")
            summary["remaining"] = 0
            return summary

        logger.info(f"Processing {len(document_ids)} queued documents")

        for document_id in document_ids:
            await self.session.execute(
                update(DocumentModel)
                .where(DocumentModel.id == document_id)
                .values(processing_attempts=DocumentModel.processing_attempts + 1)
            )
            await self.session.commit()

            try:
                outcome = await self.dispatcher.process(document_id)
            except DocumentStateError as e:
                # Claimed by a concurrent worker since the select
                logger.warning(f"Skipping document {document_id}: {e}")
                continue

            summary["processed"] += 1
            summary["results"].append(outcome)
            if outcome.success:
                summary["succeeded"] += 1
            else:
                summary["failed"] += 1

        summary["remaining"] = await self.pending_count()
        logger.info(
            f"Queue batch complete: {summary['succeeded']}/{summary['processed']} succeeded, "
            f"{summary['remaining']} remaining"
        )
        return summary

    async def pending_count(self) -> int:
        result = await self.session.execute(
            select(func.count(DocumentModel.id)).where(
                DocumentModel.processing_status == ProcessingStatus.PENDING.value,
                DocumentModel.processing_attempts < self.config.queue.max_attempts,
            )
        )
        return result.scalar_one()

    async def retry_failed(self) -> int:
        """Return FAILED documents with attempts left to PENDING."""
        result = await self.session.execute(
            update(DocumentModel)
            .where(
                DocumentModel.processing_status == ProcessingStatus.FAILED.value,
                DocumentModel.processing_attempts < self.config.queue.max_attempts,
            )
            .values(processing_status=ProcessingStatus.PENDING.value)
        )
        await self.session.commit()
        count = result.rowcount or 0
        logger.info(f"Re-queued {count} failed documents")
        return count

    async def reset_stuck(self) -> int:
        """Return documents stuck in PROCESSING past the timeout to PENDING."""
        cutoff = datetime.now(timezone.utc) - timedelta(
            minutes=self.config.queue.stuck_after_minutes
        )
        result = await self.session.execute(
            update(DocumentModel)
            .where(
                DocumentModel.processing_status == ProcessingStatus.PROCESSING.value,
                DocumentModel.processing_started_at < cutoff,
            )
            .values(
                processing_status=ProcessingStatus.PENDING.value,
                processing_error="Reset after exceeding processing timeout",
            )
            # Loaded timestamps may be naive, so match in SQL rather than in Python
            .execution_options(synchronize_session="fetch")
        )
        await self.session.commit()
        count = result.rowcount or 0
        if count:
            logger.warning(f"Reset {count} documents stuck in PROCESSING")
        return count
