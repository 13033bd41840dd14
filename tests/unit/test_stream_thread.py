"""
Tests for StreamWorker.

run() is called directly so the step executes on the test thread.
"""

from phosphor.models.wizard import Idle
from phosphor.services.errors import InvalidTransitionError
from phosphor.threads.stream_thread import StreamWorker


class TestStreamWorker:

    def test_step_finished(self):
        finished, failed = [], []
        worker = StreamWorker(lambda: Idle())
        worker.step_finished.connect(finished.append)
        worker.step_failed.connect(failed.append)

        worker.run()

        assert finished == [Idle()]
        assert failed == []

    def test_step_failed(self):
        """An AppError from the step should be reported, not raised."""
        error = InvalidTransitionError("detect_blank is not valid from Idle")

        def step():
            raise error

        failed = []
        worker = StreamWorker(step)
        worker.step_failed.connect(failed.append)

        worker.run()

        assert failed == [error]
