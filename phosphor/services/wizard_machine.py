"""
WizardMachine - the clone wizard's finite state machine.

The machine is the only place that decides which step may follow which.
It performs no I/O: every transition swaps the current state and nothing
else. Callers (the WizardController) run the hardware commands and report
their outcome as actions.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from ..models.cards import Frequency, ProcessPhase
from ..models.wizard import (
    SessionContext,
    WizardState,
    WizardAction,
    # states
    Idle,
    DetectingDevice,
    DeviceConnected,
    ScanningCard,
    CardIdentified,
    HfProcessing,
    HfDumpReady,
    WaitingForBlank,
    BlankDetected,
    Writing,
    Verifying,
    VerificationComplete,
    Complete,
    Error,
    # actions
    StartDetection,
    DeviceFound,
    StartScan,
    CardFound,
    LoadSavedCard,
    ProceedToWrite,
    StartHfProcess,
    UpdateHfProgress,
    HfProcessComplete,
    CancelHfProcess,
    BlankReady,
    ReDetectBlank,
    StartWrite,
    UpdateWriteProgress,
    WriteFinished,
    VerificationResult,
    MarkComplete,
    BackToScan,
    SoftReset,
    ReportError,
    Retry,
    Reset,
    Disconnect,
)
from .errors import InvalidTransitionError


logger = logging.getLogger(__name__)

# States from which BackToScan returns to the connected device
BACK_TO_SCAN_STATES = (
    CardIdentified,
    HfDumpReady,
    WaitingForBlank,
    BlankDetected,
    VerificationComplete,
)

SOFT_RESET_STATES = (Complete, VerificationComplete, Error)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class WizardMachine:
    """
    State machine for the clone wizard.

    Usage:
        machine = WizardMachine()
        machine.transition(StartDetection())
        machine.transition(DeviceFound(port="COM3", model="Proxmark3", firmware="v4"))
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state: WizardState = Idle()
        self._session: Optional[SessionContext] = None

    @property
    def current(self) -> WizardState:
        """Get the current state."""
        with self._lock:
            return self._state

    @property
    def session(self) -> Optional[SessionContext]:
        """Get the connected device context, if any."""
        with self._lock:
            return self._session

    def transition(self, action: WizardAction) -> WizardState:
        """
        Apply an action to the current state.

        Args:
            action: The action to apply

        Returns:
            The new state

        Raises:
            InvalidTransitionError: the action is not valid in the current state
        """
        with self._lock:
            old = self._state
            new = self._next_state(old, action)
            self._state = new

        logger.debug("%s --%s--> %s", old.name, action.name, new.name)
        return new

    # =========================================================================
    # Transition table
    # =========================================================================

    def _next_state(self, state: WizardState, action: WizardAction) -> WizardState:
        # Escape hatches, valid from any state
        if isinstance(action, (Reset, Disconnect)):
            self._session = None
            return Idle()
        if isinstance(action, ReportError):
            return Error(
                message=action.message,
                user_message=action.user_message,
                recoverable=action.recoverable,
                recovery_action=action.recovery_action,
            )

        if isinstance(state, Idle):
            if isinstance(action, StartDetection):
                return DetectingDevice()

        elif isinstance(state, DetectingDevice):
            if isinstance(action, DeviceFound):
                self._session = SessionContext(
                    port=action.port,
                    model=action.model,
                    firmware=action.firmware,
                )
                return DeviceConnected(
                    port=action.port,
                    model=action.model,
                    firmware=action.firmware,
                )

        elif isinstance(state, DeviceConnected):
            if isinstance(action, StartScan):
                return ScanningCard()
            if isinstance(action, LoadSavedCard):
                return self._identified(action)

        elif isinstance(state, ScanningCard):
            if isinstance(action, CardFound):
                return self._identified(action)

        elif isinstance(state, CardIdentified):
            if isinstance(action, ProceedToWrite) and state.cloneable:
                return WaitingForBlank(expected_blank=action.blank_type)
            if (
                isinstance(action, StartHfProcess)
                and state.cloneable
                and state.frequency == Frequency.HF
            ):
                return HfProcessing(
                    phase=ProcessPhase.KEY_CHECK,
                    keys_found=0,
                    keys_total=action.keys_total,
                    elapsed_secs=0,
                )

        elif isinstance(state, HfProcessing):
            if isinstance(action, UpdateHfProgress):
                return HfProcessing(
                    phase=action.phase,
                    keys_found=action.keys_found,
                    keys_total=action.keys_total,
                    elapsed_secs=action.elapsed_secs,
                )
            if isinstance(action, HfProcessComplete):
                return HfDumpReady(dump_info=action.dump_info)
            if isinstance(action, CancelHfProcess):
                return self._connected_from_session(state, action)

        elif isinstance(state, HfDumpReady):
            if isinstance(action, ProceedToWrite):
                return WaitingForBlank(expected_blank=action.blank_type)

        elif isinstance(state, WaitingForBlank):
            if isinstance(action, BlankReady):
                return BlankDetected(
                    blank_type=action.blank_type,
                    ready_to_write=True,
                    existing_data_type=action.existing_data_type,
                )

        elif isinstance(state, BlankDetected):
            if isinstance(action, ReDetectBlank):
                return WaitingForBlank(expected_blank=state.blank_type)
            if isinstance(action, StartWrite) and state.ready_to_write:
                return Writing(progress=0.0, current_block=0, total_blocks=0)

        elif isinstance(state, Writing):
            if isinstance(action, UpdateWriteProgress):
                return Writing(
                    progress=action.progress,
                    current_block=action.current_block,
                    total_blocks=action.total_blocks,
                )
            if isinstance(action, WriteFinished):
                return Verifying()

        elif isinstance(state, Verifying):
            if isinstance(action, VerificationResult):
                return VerificationComplete(
                    success=action.success,
                    mismatched_blocks=list(action.mismatched_blocks),
                )

        elif isinstance(state, VerificationComplete):
            if isinstance(action, MarkComplete) and state.success:
                return Complete(
                    source=action.source,
                    target=action.target,
                    timestamp=utc_timestamp(),
                )

        elif isinstance(state, Error):
            if isinstance(action, Retry) and state.recoverable:
                return Idle()

        elif isinstance(state, Complete):
            if isinstance(action, StartDetection):
                return DetectingDevice()

        if isinstance(action, BackToScan) and isinstance(state, BACK_TO_SCAN_STATES):
            return self._connected_from_session(state, action)

        if isinstance(action, SoftReset) and isinstance(state, SOFT_RESET_STATES):
            if self._session is None:
                return Idle()
            return self._connected_from_session(state, action)

        raise self._invalid(state, action)

    @staticmethod
    def _identified(action) -> CardIdentified:
        return CardIdentified(
            frequency=action.frequency,
            card_type=action.card_type,
            card_data=action.card_data,
            cloneable=action.cloneable,
            recommended_blank=action.recommended_blank,
        )

    def _connected_from_session(
        self, state: WizardState, action: WizardAction
    ) -> DeviceConnected:
        if self._session is None:
            raise self._invalid(state, action)
        return DeviceConnected(
            port=self._session.port,
            model=self._session.model,
            firmware=self._session.firmware,
        )

    @staticmethod
    def _invalid(state: WizardState, action: WizardAction) -> InvalidTransitionError:
        return InvalidTransitionError(f"{action.name} is not valid from {state.name}")
