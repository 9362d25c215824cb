"""
Mirror Outbox Service

Ledger mutations enqueue a dirty marker in the same transaction as the
write. A single scheduled job drains the queue: it waits until markers
are older than the debounce window, collapses repeats of the same row,
and pushes the batch to the remote mirror.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Protocol, Tuple

import httpx
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from windi.config import settings
from windi.models.mirror import MirrorOutbox

logger = logging.getLogger(__name__)


class MirrorPusher(Protocol):
    async def push(self, rows: List[Dict]) -> None:
        ...


class HttpMirrorPusher:
    """POSTs collapsed markers to MIRROR_PUSH_URL."""

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.MIRROR_PUSH_URL
        self.token = token if token is not None else settings.MIRROR_PUSH_TOKEN
        self.timeout = timeout or settings.MIRROR_PUSH_TIMEOUT_SECONDS
        self._transport = transport

    async def push(self, rows: List[Dict]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            response = await client.post(self.url, headers=headers, json={"rows": rows})
            response.raise_for_status()


class MirrorOutboxService:
    """Enqueue and drain mirror markers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def mark_dirty(self, table_name: str, row_id: Optional[int]) -> None:
        """Queue a marker; committed by the caller's transaction."""
        if row_id is None:
            return
        self.db.add(MirrorOutbox(table_name=table_name, row_id=row_id))

    async def discard(self, table_name: str, row_id: int) -> None:
        """Drop undrained markers of a row deleted before it was ever pushed."""
        await self.db.execute(
            delete(MirrorOutbox).where(
                MirrorOutbox.table_name == table_name,
                MirrorOutbox.row_id == row_id,
                MirrorOutbox.drained_at.is_(None),
            )
        )

    async def pending_markers(
        self,
        debounce_seconds: Optional[int] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[MirrorOutbox]:
        """Undrained markers older than the debounce window, oldest first."""
        debounce = settings.MIRROR_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=debounce)

        result = await self.db.execute(
            select(MirrorOutbox)
            .where(
                MirrorOutbox.drained_at.is_(None),
                MirrorOutbox.created_at <= cutoff,
            )
            .order_by(MirrorOutbox.id)
            .limit(limit or settings.MIRROR_BATCH_SIZE)
        )
        return list(result.scalars().all())

    async def drain(
        self,
        pusher: MirrorPusher,
        debounce_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Push one batch of markers.

        Returns:
            Number of distinct rows pushed (0 when nothing was due)
        """
        markers = await self.pending_markers(debounce_seconds=debounce_seconds, now=now)
        if not markers:
            return 0

        collapsed: Dict[Tuple[str, int], Dict] = {}
        for marker in markers:
            collapsed[(marker.table_name, marker.row_id)] = {
                "table": marker.table_name,
                "id": marker.row_id,
            }
        rows = list(collapsed.values())

        stamp = datetime.now(timezone.utc)
        try:
            await pusher.push(rows)
        except Exception as e:
            for marker in markers:
                marker.attempts = (marker.attempts or 0) + 1
                marker.last_error = str(e)[:500]
            await self.db.commit()
            logger.error(f"Mirror push failed for {len(rows)} rows: {e}", exc_info=True)
            raise

        for marker in markers:
            marker.drained_at = stamp
            marker.attempts = (marker.attempts or 0) + 1
            marker.last_error = None
        await self.db.commit()

        logger.info(f"Mirror outbox drained: {len(markers)} markers, {len(rows)} rows")
        return len(rows)
