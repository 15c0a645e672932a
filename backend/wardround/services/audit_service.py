# /backend/wardround/services/audit_service.py

import asyncio
import logging
from wardround.database import get_database
from wardround.models.audit import AuditRecord

logger = logging.getLogger(__name__)


class AuditService:
    """Audit trail writes. Fire-and-forget: a failed write is logged, never raised."""

    def __init__(self):
        self._pending = set()

    @staticmethod
    async def record(entry: AuditRecord) -> None:
        try:
            db = get_database()
            await db.audit_logs.insert_one(entry.model_dump(by_alias=True))
        except Exception as e:
            logger.error(f"Audit log error: {e}")

    def record_in_background(self, entry: AuditRecord) -> None:
        task = asyncio.create_task(self.record(entry))
        # Keep a reference until done so the task is not collected mid-write
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for audit writes still in flight (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


audit_service = AuditService()
