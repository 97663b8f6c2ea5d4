"""Tests for progress sinks."""

from unittest.mock import Mock

from bracual.models import TaskStatus
from bracual.pipelines import CallbackProgressSink, NullProgressSink, TaskProgressSink


def test_task_progress_sink_writes_through_queue():
    queue = Mock()
    sink = TaskProgressSink(queue, "abc", TaskStatus.UPLOADING)

    sink.report(10)
    sink.report(55)

    assert [c.kwargs for c in queue.update.call_args_list] == [
        {"progress": 10},
        {"progress": 55},
    ]
    assert queue.update.call_args.args == ("abc",)


def test_task_progress_sink_is_monotonic_and_clamped():
    queue = Mock()
    sink = TaskProgressSink(queue, "abc", TaskStatus.COMPRESSING)

    sink.report(50)
    sink.report(20)
    sink.report(150)

    assert [c.kwargs["progress"] for c in queue.update.call_args_list] == [50, 100]


def test_callback_and_null_sinks():
    seen = []
    CallbackProgressSink(seen.append).report(42)
    NullProgressSink().report(42)

    assert seen == [42]
