"""Admission loop driving queued tasks through the pipeline one at a time."""

import asyncio
import logging
from typing import Optional

from . import transfer_encoder
from .audio_resampler import WAV_MIME_TYPE, compress_audio
from .config import AppConfig
from .models import Task, TaskStatus, TranscriptionResult
from .pipelines import TaskProgressSink, TranscriptionService
from .session import SessionStore
from .task_queue import TaskQueue

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Processing failed."


class TaskRemoved(Exception):
    """The task disappeared from the queue while it was being processed."""


class PipelineScheduler:
    """Admits pending tasks in submission order, at most one at a time."""

    def __init__(
        self,
        config: AppConfig,
        queue: TaskQueue,
        session: SessionStore,
        transcriber: TranscriptionService,
        stop_event: asyncio.Event,
    ):
        """Initialize the scheduler.

        Args:
            config: Application configuration.
            queue: The queue owning all tasks.
            session: Session gating whether processing may run.
            transcriber: Remote transcription collaborator.
            stop_event: Event to signal when to stop processing.
        """
        self.config = config
        self.queue = queue
        self.session = session
        self.transcriber = transcriber
        self.stop_event = stop_event

        self.selected_task_id: Optional[str] = None

        # Single-slot admission gate
        self._admission = asyncio.Lock()
        self._wake = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._loop_task: Optional[asyncio.Task] = None

        self.queue.add_observer(lambda _tasks: self.wake())
        self.session.add_observer(lambda _user: self.wake())

    @property
    def is_processing(self) -> bool:
        return self._admission.locked()

    def wake(self) -> None:
        """Re-trigger the admission loop."""
        self._idle.clear()
        self._wake.set()

    def select(self, task_id: Optional[str]) -> None:
        """Choose the task whose result is displayed."""
        self.selected_task_id = task_id

    def cancel(self, task_id: str) -> bool:
        """Remove a task, clearing the selection if it pointed at it.

        An in-flight task is not interrupted; its remaining writes become no-ops.
        """
        removed = self.queue.remove(task_id)
        if self.selected_task_id == task_id:
            self.selected_task_id = None
        return removed

    async def start(self) -> None:
        """Start the admission loop."""
        if self._loop_task and not self._loop_task.done():
            logger.warning("Scheduler already running")
            return

        logger.info("Starting scheduler")
        self.wake()
        self._loop_task = asyncio.create_task(self._admission_loop())

    async def stop(self) -> None:
        """Stop the admission loop."""
        if not self._loop_task or self._loop_task.done():
            logger.warning("Scheduler not running")
            return

        logger.info("Stopping scheduler")
        self.stop_event.set()
        self._wake.set()

        try:
            await asyncio.wait_for(self._loop_task, timeout=5.0)
            logger.info("Scheduler stopped gracefully")
        except asyncio.TimeoutError:
            logger.warning("Timeout waiting for scheduler to stop")
            self._loop_task.cancel()
            await asyncio.sleep(0.1)  # Give cancel time to process
        except Exception as e:
            logger.exception(f"Error stopping scheduler: {e}")
        finally:
            self._loop_task = None
            self._idle.set()

    async def wait_until_idle(self) -> None:
        """Wait until the loop has drained every admissible task."""
        await self._idle.wait()

    async def _admission_loop(self) -> None:
        logger.info("Admission loop started")

        while not self.stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                self._wake.clear()
                if self.stop_event.is_set():
                    break

                while not self.stop_event.is_set() and await self.process_next():
                    pass

                if not self._wake.is_set():
                    self._idle.set()

            except asyncio.CancelledError:
                logger.info("Admission loop cancelled")
                break

            except Exception as e:
                logger.exception(f"Error in admission loop: {e}")
                # Avoid tight loop on unexpected error
                await asyncio.sleep(0.5)

        logger.info("Admission loop stopped")

    async def process_next(self) -> bool:
        """Admit and run the next pending task.

        Returns:
            False without waiting if a task is already active, nobody is
            signed in, or nothing is pending; True after running one task.
        """
        # No await between the check and the acquire, so this is atomic
        if self._admission.locked():
            return False

        async with self._admission:
            if not self.session.is_authenticated:
                logger.debug("Not signed in, holding pending tasks")
                return False

            task = self.queue.next_pending()
            if task is None:
                return False

            await self._run_task(task)
            return True

    def _update(self, task_id: str, **fields) -> Task:
        task = self.queue.update(task_id, **fields)
        if task is None:
            raise TaskRemoved(task_id)
        return task

    async def _run_task(self, task: Task) -> None:
        """Run one task, converting any stage failure into its Error status."""
        logger.info(f"Processing task {task.id} ({task.file.name}, {task.file.size} bytes)")

        try:
            result = await self._run_stages(task)
            self._update(task.id, status=TaskStatus.SUCCESS, result=result, progress=100)
        except TaskRemoved:
            logger.info(f"Task {task.id} was removed during processing, abandoning it")
            return
        except Exception as e:
            logger.error(f"Task {task.id} failed: {e}")
            self.queue.update(
                task.id,
                status=TaskStatus.ERROR,
                error=str(e) or DEFAULT_FAILURE_MESSAGE,
                progress=0,
            )
            return

        logger.info(f"Task {task.id} completed with {len(result.segments)} segment(s)")
        if self.selected_task_id is None:
            self.selected_task_id = task.id

    async def _run_stages(self, task: Task) -> TranscriptionResult:
        pipeline_config = self.config.pipeline
        payload = task.file.data
        mime_type = task.file.mime_type

        if task.file.size > pipeline_config.compression_threshold:
            self._update(task.id, status=TaskStatus.COMPRESSING, progress=0)
            payload = await compress_audio(
                payload,
                mime_type,
                TaskProgressSink(self.queue, task.id, TaskStatus.COMPRESSING),
                mixdown=pipeline_config.mixdown,
            )
            mime_type = WAV_MIME_TYPE

        self._update(task.id, status=TaskStatus.UPLOADING, progress=0)
        encoded = await transfer_encoder.encode(
            payload,
            TaskProgressSink(self.queue, task.id, TaskStatus.UPLOADING),
            mime_type=mime_type,
            chunk_size=pipeline_config.transfer_chunk_size,
        )

        self._update(task.id, status=TaskStatus.TRANSCRIBING, progress=100)
        return await self.transcriber.transcribe(encoded, mime_type)
