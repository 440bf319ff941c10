"""
Background sync task queue.

``POST /sync`` returns as soon as a SyncTask row is persisted; the full sync
then runs as an asyncio task with its own session, and its outcome is
written back to the same row for polling.
"""

import asyncio
import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..integrations.base import UpstreamError
from ..integrations.halopsa import DEFAULT_CLOSED_STATUS_ID, HaloPSAClient
from ..models import SyncTask, SyncTaskStatus
from ..services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncTaskQueue:
    """Runs full syncs in the background and tracks them in ``sync_tasks``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        psa_client: HaloPSAClient | None,
        batch_size: int = 1000,
        closed_status_id: int = DEFAULT_CLOSED_STATUS_ID,
    ):
        self._session_factory = session_factory
        self._psa = psa_client
        self._batch_size = batch_size
        self._closed_status_id = closed_status_id
        self._running: dict[UUID, asyncio.Task] = {}

    async def submit(self, months_back: int, requested_by: UUID | None = None) -> UUID:
        """Persist a queued task and start it. Returns the task id."""
        if self._psa is None:
            raise UpstreamError("halopsa", "Integration is not configured")

        async with self._session_factory() as session:
            task = SyncTask(
                status=SyncTaskStatus.QUEUED,
                months_back=months_back,
                requested_by=requested_by,
            )
            session.add(task)
            await session.commit()
            task_id = task.id

        logger.info(f"Queued sync task {task_id} (last {months_back} months)")
        runner = asyncio.create_task(self._run(task_id, months_back))
        self._running[task_id] = runner
        runner.add_done_callback(lambda _: self._running.pop(task_id, None))
        return task_id

    async def get(self, task_id: UUID) -> SyncTask | None:
        async with self._session_factory() as session:
            return await session.get(SyncTask, task_id)

    async def _set_state(self, task_id: UUID, **values) -> None:
        async with self._session_factory() as session:
            task = await session.get(SyncTask, task_id)
            if task is None:
                logger.error(f"Sync task {task_id} disappeared")
                return
            for key, value in values.items():
                setattr(task, key, value)
            await session.commit()

    async def _record_failure(self, task_id: UUID, message: str) -> None:
        try:
            await self._set_state(
                task_id,
                status=SyncTaskStatus.FAILED,
                finished_at=datetime.now(timezone.utc),
                error_message=message,
            )
        except Exception:
            logger.exception(f"Could not record failure of sync task {task_id}")

    async def _run(self, task_id: UUID, months_back: int) -> None:
        try:
            await self._set_state(
                task_id,
                status=SyncTaskStatus.RUNNING,
                started_at=datetime.now(timezone.utc),
            )
            async with self._session_factory() as session:
                engine = SyncEngine(
                    session,
                    self._psa,
                    batch_size=self._batch_size,
                    closed_status_id=self._closed_status_id,
                    task_id=task_id,
                )
                result = await engine.perform_full_sync(months_back)
        except asyncio.CancelledError:
            await self._record_failure(task_id, "Cancelled during shutdown")
            raise
        except Exception as e:
            logger.exception(f"Sync task {task_id} crashed")
            await self._record_failure(task_id, str(e) or type(e).__name__)
            return

        try:
            await self._set_state(
                task_id,
                status=SyncTaskStatus.SUCCEEDED if result.succeeded else SyncTaskStatus.FAILED,
                finished_at=datetime.now(timezone.utc),
                result=result.to_dict(),
                error_message="; ".join(f"{k}: {v}" for k, v in result.errors.items()) or None,
            )
        except Exception as e:
            logger.exception(f"Could not store result of sync task {task_id}")
            await self._record_failure(task_id, str(e) or type(e).__name__)
            return
        logger.info(f"Sync task {task_id} finished: {result.to_dict()}")

    async def join(self) -> None:
        """Wait for every running task to finish."""
        if self._running:
            await asyncio.gather(*self._running.values(), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks."""
        for runner in list(self._running.values()):
            runner.cancel()
        await self.join()
