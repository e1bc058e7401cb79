"""Detached pipeline runs that outlive the request which started them.

One pipeline per trip at a time. Each run has its own error boundary:
failures are logged and handed to the run's failure callback.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable

from wayfinder.errors import BackgroundPipelineFailure, PhaseViolation

logger = logging.getLogger(__name__)

PIPELINE_IN_PROGRESS = "PIPELINE_IN_PROGRESS"


class TaskRunner:
    def __init__(self):
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}

    def is_running(self, trip_id: uuid.UUID) -> bool:
        task = self._tasks.get(trip_id)
        return task is not None and not task.done()

    def submit(
        self,
        trip_id: uuid.UUID,
        stage: str,
        work: Callable[[], Awaitable],
        on_failure: Callable[[BaseException], Awaitable] | None = None,
    ) -> asyncio.Task:
        """Start ``work`` as a background task.

        Raises:
            PhaseViolation if a pipeline for this trip is still running.
        """
        if self.is_running(trip_id):
            raise PhaseViolation(PIPELINE_IN_PROGRESS, "This trip is already being processed")

        task = asyncio.create_task(self._run(trip_id, stage, work, on_failure), name=f"{stage}:{trip_id}")
        self._tasks[trip_id] = task

        def _forget(done: asyncio.Task):
            if self._tasks.get(trip_id) is done:
                del self._tasks[trip_id]

        task.add_done_callback(_forget)
        logger.info(f"Started {stage} for trip {trip_id}")
        return task

    async def _run(
        self,
        trip_id: uuid.UUID,
        stage: str,
        work: Callable[[], Awaitable],
        on_failure: Callable[[BaseException], Awaitable] | None,
    ):
        try:
            await work()
            logger.info(f"Finished {stage} for trip {trip_id}")
        except asyncio.CancelledError:
            logger.warning(f"{stage} for trip {trip_id} cancelled")
            raise
        except BackgroundPipelineFailure as e:
            # The pipeline already recorded telemetry and rolled the trip back
            logger.error(str(e))
        except Exception as e:
            logger.exception(f"{stage} for trip {trip_id} failed")
            if on_failure is not None:
                try:
                    await on_failure(e)
                except Exception as cleanup_error:
                    logger.error(f"Failure handler for {stage} on trip {trip_id} failed: {cleanup_error}")

    async def wait(self, trip_id: uuid.UUID):
        task = self._tasks.get(trip_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self):
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
