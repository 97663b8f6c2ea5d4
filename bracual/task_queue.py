"""Ordered collection of submitted tasks."""

import logging
import uuid
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Tuple

from .errors import InvalidTransitionError, SizeLimitExceeded
from .models import AudioFile, Task, TaskStatus

logger = logging.getLogger(__name__)

MAX_INPUT_FILE_SIZE = 100 * 1024 * 1024

# Allowed forward moves along the task state machine
_TRANSITIONS = {
    TaskStatus.PENDING: {
        TaskStatus.COMPRESSING,
        TaskStatus.UPLOADING,
        TaskStatus.ERROR,
    },
    TaskStatus.COMPRESSING: {TaskStatus.UPLOADING, TaskStatus.ERROR},
    TaskStatus.UPLOADING: {TaskStatus.TRANSCRIBING, TaskStatus.ERROR},
    TaskStatus.TRANSCRIBING: {TaskStatus.SUCCESS, TaskStatus.ERROR},
    TaskStatus.SUCCESS: set(),
    TaskStatus.ERROR: set(),
}

_UPDATABLE_FIELDS = {"status", "progress", "result", "error"}

TaskObserver = Callable[[Tuple[Task, ...]], object]


def generate_task_id() -> str:
    """Generate a unique task id."""
    return uuid.uuid4().hex


class TaskQueue:
    """Owns the canonical list of tasks in submission order.

    All mutations go through submit, update and remove, which are expected to
    be called from the event loop thread only.
    """

    def __init__(self, max_input_file_size: int = MAX_INPUT_FILE_SIZE):
        self.max_input_file_size = max_input_file_size
        self._tasks: List[Task] = []
        self._observers: List[TaskObserver] = []

    @property
    def tasks(self) -> Tuple[Task, ...]:
        """Snapshot of all tasks in submission order."""
        return tuple(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def add_observer(self, observer: TaskObserver) -> None:
        """Register a callback invoked with a snapshot after every change."""
        self._observers.append(observer)

    def _notify_observers(self) -> None:
        snapshot = self.tasks
        for observer in self._observers:
            try:
                observer(snapshot)
            except Exception:
                # Don't let observer errors break queue mutation
                logger.exception("Task queue observer failed")

    def _index(self, task_id: str) -> Optional[int]:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def get(self, task_id: str) -> Optional[Task]:
        index = self._index(task_id)
        return self._tasks[index] if index is not None else None

    def submit(self, files: Iterable[AudioFile]) -> List[Task]:
        """Create one task per file and append them to the queue.

        Files above the size limit become Error tasks immediately; the rest of
        the batch is unaffected.

        Returns:
            The created tasks, in the order given.
        """
        new_tasks = []
        for file in files:
            task_id = generate_task_id()
            if file.size > self.max_input_file_size:
                exc = SizeLimitExceeded(file.name, file.size, self.max_input_file_size)
                logger.warning(
                    f"Rejected {file.name} ({file.size} bytes): {exc}"
                )
                task = Task(
                    id=task_id,
                    file=file,
                    status=TaskStatus.ERROR,
                    progress=0,
                    error=str(exc),
                )
            else:
                task = Task(id=task_id, file=file)
            new_tasks.append(task)

        if new_tasks:
            self._tasks.extend(new_tasks)
            logger.info(f"Submitted {len(new_tasks)} file(s), {len(self._tasks)} task(s) queued")
            self._notify_observers()
        return new_tasks

    def update(self, task_id: str, **fields) -> Optional[Task]:
        """Merge fields into the task with the given id.

        A missing id is a no-op and returns None.

        Raises:
            InvalidTransitionError: If the status would move backwards.
            ValueError: If an unknown field is given.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")

        index = self._index(task_id)
        if index is None:
            logger.debug(f"Ignoring update for missing task {task_id}")
            return None

        current = self._tasks[index]
        new_status = fields.get("status", current.status)
        if new_status != current.status and new_status not in _TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Task {task_id} cannot move from {current.status.value} to {new_status.value}"
            )

        updated = replace(current, **fields)
        self._tasks[index] = updated
        self._notify_observers()
        return updated

    def remove(self, task_id: str) -> bool:
        """Delete the task with the given id.

        Returns:
            True if a task was removed.
        """
        index = self._index(task_id)
        if index is None:
            return False

        del self._tasks[index]
        logger.info(f"Removed task {task_id}")
        self._notify_observers()
        return True

    def next_pending(self) -> Optional[Task]:
        """First task in submission order whose status is Pending."""
        for task in self._tasks:
            if task.status == TaskStatus.PENDING:
                return task
        return None

    def active_task(self) -> Optional[Task]:
        """The task currently in a processing stage, if any."""
        for task in self._tasks:
            if task.status.is_active:
                return task
        return None
