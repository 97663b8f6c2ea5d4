"""Interfaces shared by the pipeline stages."""

import logging
from abc import ABC, abstractmethod
from typing import Callable

from .models import TaskStatus, TranscriptionResult

logger = logging.getLogger(__name__)


class ProgressSink(ABC):
    """Receives percentage progress from a pipeline stage."""

    @abstractmethod
    def report(self, percent: int) -> None:
        """Report progress in the range 0-100."""


class NullProgressSink(ProgressSink):
    """Discards progress reports."""

    def report(self, percent: int) -> None:
        pass


class CallbackProgressSink(ProgressSink):
    """Forwards progress reports to a plain callable."""

    def __init__(self, callback: Callable[[int], None]):
        self._callback = callback

    def report(self, percent: int) -> None:
        self._callback(percent)


class TaskProgressSink(ProgressSink):
    """Writes stage progress onto a task through the queue's update path."""

    def __init__(self, queue, task_id: str, status: TaskStatus):
        """Initialize the sink.

        Args:
            queue: The TaskQueue owning the task.
            task_id: Id of the task being processed.
            status: The stage the progress belongs to.
        """
        self.queue = queue
        self.task_id = task_id
        self.status = status
        self._last = 0

    def report(self, percent: int) -> None:
        percent = max(0, min(100, int(percent)))
        # Progress never moves backwards within a stage
        if percent < self._last:
            return
        self._last = percent
        logger.debug(f"Task {self.task_id} {self.status.value}: {percent}%")
        self.queue.update(self.task_id, progress=percent)


class TranscriptionService(ABC):
    """Remote collaborator that turns encoded audio into a transcript."""

    @abstractmethod
    async def transcribe(
        self, encoded_audio: str, mime_type: str
    ) -> TranscriptionResult:
        """Transcribe base64 audio of the given mime type.

        Raises:
            TranscriptionError: If the service fails or its response is malformed.
        """
