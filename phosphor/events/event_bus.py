"""
EventBus - Central event dispatcher for decoupled communication.

The controller publishes wizard progress here; views and tests subscribe
to the typed signals instead of calling the controller back.
"""

from dataclasses import dataclass
from typing import Optional, Dict, List, Any

from PyQt5.QtCore import QObject, pyqtSignal

from ..models.cards import ProcessPhase
from ..models.wizard import WizardState


# ============================================================================
# Event Data Classes
# ============================================================================


@dataclass
class WizardEvent:
    """Base class for wizard events."""
    pass


@dataclass
class LiveOutputEvent(WizardEvent):
    """Emitted for every non-empty line of proxmark3 output."""
    text: str
    is_error: bool = False


@dataclass
class WriteProgressEvent(WizardEvent):
    """Emitted while a clone is being written."""
    progress: float  # 0.0 - 1.0
    current_block: Optional[int] = None
    total_blocks: Optional[int] = None


@dataclass
class HfProgressEvent(WizardEvent):
    """Emitted while HF key recovery runs."""
    phase: ProcessPhase
    keys_found: int
    keys_total: int
    elapsed_secs: int = 0


@dataclass
class WizardStateChangedEvent(WizardEvent):
    """Emitted after every successful wizard transition."""
    state: WizardState


@dataclass
class DeviceStatusEvent(WizardEvent):
    """Emitted when the Proxmark3 connects or disconnects."""
    connected: bool
    port: Optional[str] = None
    model: Optional[str] = None
    firmware: Optional[str] = None
    firmware_mismatch: bool = False


@dataclass
class OperationResultEvent(WizardEvent):
    """Emitted when a write, verify or erase operation completes."""
    success: bool
    message: str
    operation_type: str  # 'write', 'verify', 'erase', 'hf_dump'
    details: Optional[Dict[str, Any]] = None


@dataclass
class StatusMessageEvent(WizardEvent):
    """Emitted for status bar updates."""
    message: str
    level: str = "info"  # 'info', 'warning', 'error'


@dataclass
class ErrorEvent(WizardEvent):
    """Emitted when an error occurs."""
    message: str
    exception: Optional[Exception] = None
    recoverable: bool = True


# ============================================================================
# Event Bus Implementation
# ============================================================================


class EventBus(QObject):
    """
    Central event dispatcher using Qt signals.

    Usage:
        bus = EventBus.instance()

        # Subscribe
        bus.wizard_state.connect(my_handler)

        # Emit
        bus.emit(LiveOutputEvent(text="[+] EM 410x ID 0F00112233"))
    """

    # Typed signals for each event category
    live_output = pyqtSignal(object)       # LiveOutputEvent
    write_progress = pyqtSignal(object)    # WriteProgressEvent
    hf_progress = pyqtSignal(object)       # HfProgressEvent
    wizard_state = pyqtSignal(object)      # WizardStateChangedEvent
    device_status = pyqtSignal(object)     # DeviceStatusEvent
    operation_result = pyqtSignal(object)  # OperationResultEvent
    status_message = pyqtSignal(object)    # StatusMessageEvent
    error = pyqtSignal(object)             # ErrorEvent

    # Singleton instance
    _instance: Optional["EventBus"] = None

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._event_log: List[WizardEvent] = []
        self._log_events = False

    @classmethod
    def instance(cls) -> "EventBus":
        """Get the singleton EventBus instance."""
        if cls._instance is None:
            cls._instance = EventBus()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    def enable_logging(self, enable: bool = True) -> None:
        """Enable/disable event logging for debugging."""
        self._log_events = enable

    def get_event_log(self) -> List[WizardEvent]:
        """Get logged events (for debugging/testing)."""
        return list(self._event_log)

    def clear_event_log(self) -> None:
        """Clear the event log."""
        self._event_log.clear()

    def emit(self, event: WizardEvent) -> None:
        """
        Emit an event to the appropriate signal.

        Args:
            event: Event instance to emit
        """
        if self._log_events:
            self._event_log.append(event)

        # Route to appropriate signal based on event type
        if isinstance(event, LiveOutputEvent):
            self.live_output.emit(event)
        elif isinstance(event, WriteProgressEvent):
            self.write_progress.emit(event)
        elif isinstance(event, HfProgressEvent):
            self.hf_progress.emit(event)
        elif isinstance(event, WizardStateChangedEvent):
            self.wizard_state.emit(event)
        elif isinstance(event, DeviceStatusEvent):
            self.device_status.emit(event)
        elif isinstance(event, OperationResultEvent):
            self.operation_result.emit(event)
        elif isinstance(event, StatusMessageEvent):
            self.status_message.emit(event)
        elif isinstance(event, ErrorEvent):
            self.error.emit(event)

    # Convenience methods for common events

    def emit_status(self, message: str, level: str = "info") -> None:
        """Emit a status message event."""
        self.emit(StatusMessageEvent(message=message, level=level))

    def emit_error(
        self,
        message: str,
        exception: Optional[Exception] = None,
        recoverable: bool = True,
    ) -> None:
        """Emit an error event."""
        self.emit(ErrorEvent(
            message=message,
            exception=exception,
            recoverable=recoverable,
        ))

    def emit_live_output(self, text: str, is_error: bool = False) -> None:
        """Emit one line of tool output."""
        self.emit(LiveOutputEvent(text=text, is_error=is_error))
