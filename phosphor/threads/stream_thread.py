"""
StreamWorker - Runs a blocking wizard step in a background thread.

Long steps (key recovery, writes, device discovery) block on the proxmark3
client. Running them here keeps the UI responsive; results come back as
Qt signals, queued onto the receiver's thread.
"""

import logging
from typing import Callable

from PyQt5.QtCore import QThread, pyqtSignal

from ..services.errors import AppError


logger = logging.getLogger(__name__)


class StreamWorker(QThread):
    """
    Runs one controller step off the UI thread.

    Signals:
    - step_finished: (state) - the wizard state the step ended in
    - step_failed: (error) - the step raised an AppError (e.g. invalid transition)

    Usage:
        worker = StreamWorker(controller.start_hf_autopwn)
        worker.step_finished.connect(on_state)
        worker.start()
        ...
        controller.cancel_hf_operation()  # from the UI thread
    """

    step_finished = pyqtSignal(object)  # WizardState
    step_failed = pyqtSignal(object)    # AppError

    def __init__(self, step: Callable[[], object], parent=None):
        """
        Initialize the worker.

        Args:
            step: Bound controller method taking no arguments
            parent: Optional QThread parent
        """
        super().__init__(parent)
        self._step = step

    def run(self):
        """Execute the step in the background thread."""
        try:
            result = self._step()
        except AppError as e:
            logger.warning("Background step failed: %s", e.message)
            self.step_failed.emit(e)
            return
        self.step_finished.emit(result)
