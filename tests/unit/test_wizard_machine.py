"""
Tests for WizardMachine transitions.
"""

import pytest

from phosphor.models.cards import (
    BlankType,
    CardData,
    CardSummary,
    CardType,
    Frequency,
    ProcessPhase,
    RecoveryAction,
)
from phosphor.models.wizard import (
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
from phosphor.services.errors import InvalidTransitionError
from phosphor.services.wizard_machine import WizardMachine


PORT = "/dev/ttyACM0"


def card_found(card_type=CardType.EM4100, cloneable=True):
    return CardFound(
        frequency=card_type.frequency,
        card_type=card_type,
        card_data=CardData(uid="0F00112233"),
        cloneable=cloneable,
        recommended_blank=card_type.recommended_blank,
    )


def report_error(recoverable=True):
    return ReportError(
        message="boom",
        user_message="Something broke",
        recoverable=recoverable,
        recovery_action=RecoveryAction.RETRY,
    )


def _write_path():
    return [
        StartDetection(),
        DeviceFound(port=PORT, model="Proxmark3", firmware="v4"),
        StartScan(),
        card_found(),
        ProceedToWrite(blank_type=BlankType.T5577),
        BlankReady(blank_type=BlankType.T5577),
        StartWrite(),
        WriteFinished(),
        VerificationResult(success=True),
        MarkComplete(
            source=CardSummary(card_type=CardType.EM4100, uid="0F00112233"),
            target=BlankType.T5577,
        ),
    ]


def _hf_path():
    return [
        StartDetection(),
        DeviceFound(port=PORT, model="Proxmark3", firmware="v4"),
        StartScan(),
        card_found(CardType.MIFARE_CLASSIC_1K),
        StartHfProcess(keys_total=32),
        HfProcessComplete(dump_info="done"),
    ]


# Actions that drive a fresh machine into each state
PATHS_TO_STATE = {
    Idle: [],
    DetectingDevice: _write_path()[:1],
    DeviceConnected: _write_path()[:2],
    ScanningCard: _write_path()[:3],
    CardIdentified: _write_path()[:4],
    WaitingForBlank: _write_path()[:5],
    BlankDetected: _write_path()[:6],
    Writing: _write_path()[:7],
    Verifying: _write_path()[:8],
    VerificationComplete: _write_path()[:9],
    Complete: _write_path(),
    HfProcessing: _hf_path()[:5],
    HfDumpReady: _hf_path(),
    Error: _write_path()[:4] + [report_error()],
}


@pytest.fixture
def machine():
    return WizardMachine()


@pytest.fixture
def connected(machine):
    """Machine with a device session."""
    machine.transition(StartDetection())
    machine.transition(DeviceFound(port=PORT, model="Proxmark3", firmware="v4"))
    return machine


@pytest.fixture
def identified(connected):
    connected.transition(StartScan())
    connected.transition(card_found())
    return connected


@pytest.fixture
def verifying(identified):
    identified.transition(ProceedToWrite(blank_type=BlankType.T5577))
    identified.transition(BlankReady(blank_type=BlankType.T5577))
    identified.transition(StartWrite())
    identified.transition(WriteFinished())
    return identified


class TestWizardMachineHappyPath:
    """Test the main clone path."""

    def test_initial_state(self, machine):
        assert machine.current == Idle()
        assert machine.session is None

    def test_device_found_creates_session(self, connected):
        """Should enter DeviceConnected and remember the device."""
        assert connected.current == DeviceConnected(port=PORT, model="Proxmark3", firmware="v4")
        assert connected.session.port == PORT

    def test_scan_to_identified(self, connected):
        assert connected.transition(StartScan()) == ScanningCard()
        state = connected.transition(card_found())
        assert isinstance(state, CardIdentified)
        assert state.card_type == CardType.EM4100
        assert state.recommended_blank == BlankType.T5577

    def test_load_saved_card(self, connected):
        """Should skip scanning when a saved card is loaded."""
        state = connected.transition(LoadSavedCard(
            frequency=Frequency.LF,
            card_type=CardType.HID_PROX,
            card_data=CardData(uid="FC65:CN1337"),
            cloneable=True,
            recommended_blank=BlankType.T5577,
        ))
        assert isinstance(state, CardIdentified)
        assert state.card_type == CardType.HID_PROX

    def test_full_lf_path(self, verifying):
        """Should walk write and verify through to Complete."""
        state = verifying.transition(VerificationResult(success=True))
        assert state == VerificationComplete(success=True, mismatched_blocks=[])

        state = verifying.transition(MarkComplete(
            source=CardSummary(card_type=CardType.EM4100, uid="0F00112233"),
            target=BlankType.T5577,
        ))
        assert isinstance(state, Complete)
        assert state.target == BlankType.T5577
        assert state.timestamp

    def test_blank_detected_fields(self, identified):
        identified.transition(ProceedToWrite(blank_type=BlankType.T5577))
        state = identified.transition(
            BlankReady(blank_type=BlankType.T5577, existing_data_type="EM4100")
        )
        assert state == BlankDetected(
            blank_type=BlankType.T5577,
            ready_to_write=True,
            existing_data_type="EM4100",
        )

    def test_redetect_blank(self, identified):
        identified.transition(ProceedToWrite(blank_type=BlankType.T5577))
        identified.transition(BlankReady(blank_type=BlankType.T5577))
        state = identified.transition(ReDetectBlank())
        assert state == WaitingForBlank(expected_blank=BlankType.T5577)

    def test_write_progress(self, identified):
        identified.transition(ProceedToWrite(blank_type=BlankType.T5577))
        identified.transition(BlankReady(blank_type=BlankType.T5577))
        assert identified.transition(StartWrite()) == Writing(progress=0.0)
        state = identified.transition(
            UpdateWriteProgress(progress=0.5, current_block=3, total_blocks=6)
        )
        assert state == Writing(progress=0.5, current_block=3, total_blocks=6)
        assert identified.transition(WriteFinished()) == Verifying()


class TestWizardMachineHf:
    """Test the HF key recovery path."""

    @pytest.fixture
    def hf_identified(self, connected):
        connected.transition(StartScan())
        connected.transition(card_found(CardType.MIFARE_CLASSIC_1K))
        return connected

    def test_start_hf_process(self, hf_identified):
        state = hf_identified.transition(StartHfProcess(keys_total=32))
        assert state == HfProcessing(
            phase=ProcessPhase.KEY_CHECK, keys_found=0, keys_total=32, elapsed_secs=0
        )

    def test_hf_progress_and_complete(self, hf_identified):
        hf_identified.transition(StartHfProcess(keys_total=32))
        state = hf_identified.transition(UpdateHfProgress(
            phase=ProcessPhase.NESTED, keys_found=10, keys_total=32, elapsed_secs=5
        ))
        assert state.keys_found == 10
        assert state.phase == ProcessPhase.NESTED

        state = hf_identified.transition(HfProcessComplete(dump_info="done"))
        assert state == HfDumpReady(dump_info="done")

        state = hf_identified.transition(ProceedToWrite(blank_type=BlankType.MAGIC_MIFARE_GEN1A))
        assert state == WaitingForBlank(expected_blank=BlankType.MAGIC_MIFARE_GEN1A)

    def test_cancel_returns_to_device(self, hf_identified):
        """Cancel should return to the connected device."""
        hf_identified.transition(StartHfProcess(keys_total=32))
        state = hf_identified.transition(CancelHfProcess())
        assert state == DeviceConnected(port=PORT, model="Proxmark3", firmware="v4")

    def test_hf_process_rejected_for_lf(self, identified):
        with pytest.raises(InvalidTransitionError):
            identified.transition(StartHfProcess(keys_total=32))


class TestWizardMachineGuards:
    """Test rejected transitions."""

    def test_invalid_transition_leaves_state(self, machine):
        """Should raise and keep the current state."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(StartScan())
        assert "StartScan is not valid from Idle" in str(exc_info.value)
        assert machine.current == Idle()

    def test_non_cloneable_cannot_proceed(self, connected):
        connected.transition(StartScan())
        connected.transition(card_found(CardType.DESFIRE, cloneable=False))
        with pytest.raises(InvalidTransitionError):
            connected.transition(ProceedToWrite(blank_type=BlankType.MAGIC_MIFARE_GEN4_GTU))

    def test_mark_complete_requires_success(self, verifying):
        verifying.transition(VerificationResult(success=False, mismatched_blocks=[1]))
        with pytest.raises(InvalidTransitionError):
            verifying.transition(MarkComplete(
                source=CardSummary(card_type=CardType.EM4100, uid="0F00112233"),
                target=BlankType.T5577,
            ))

    def test_start_write_requires_blank(self, identified):
        with pytest.raises(InvalidTransitionError):
            identified.transition(StartWrite())


class TestWizardMachineEscapes:
    """Test error, reset and navigation actions."""

    def test_report_error_from_any_state(self, machine):
        state = machine.transition(report_error())
        assert isinstance(state, Error)
        assert state.user_message == "Something broke"

    def test_every_state_is_reachable(self):
        assert len(PATHS_TO_STATE) == 14

    @pytest.mark.parametrize("state_type", list(PATHS_TO_STATE), ids=lambda s: s.__name__)
    @pytest.mark.parametrize("action, expected", [
        (report_error(), Error),
        (Reset(), Idle),
        (Disconnect(), Idle),
    ], ids=["ReportError", "Reset", "Disconnect"])
    def test_escape_from_every_state(self, machine, state_type, action, expected):
        """Should accept error, reset and disconnect from every state."""
        for step in PATHS_TO_STATE[state_type]:
            machine.transition(step)
        assert isinstance(machine.current, state_type)
        had_session = machine.session is not None

        state = machine.transition(action)
        assert isinstance(state, expected)
        assert machine.current == state
        if expected is Idle:
            assert machine.session is None
        else:
            assert (machine.session is not None) == had_session

    def test_retry_recoverable_goes_idle(self, identified):
        identified.transition(report_error())
        assert identified.transition(Retry()) == Idle()

    def test_retry_non_recoverable_rejected(self, identified):
        identified.transition(report_error(recoverable=False))
        with pytest.raises(InvalidTransitionError):
            identified.transition(Retry())

    def test_reset_clears_session(self, identified):
        assert identified.transition(Reset()) == Idle()
        assert identified.session is None

    def test_disconnect_clears_session(self, identified):
        assert identified.transition(Disconnect()) == Idle()
        assert identified.session is None

    @pytest.mark.parametrize("blank_steps", [0, 1, 2])
    def test_back_to_scan(self, identified, blank_steps):
        """Should return to DeviceConnected from card and blank steps."""
        if blank_steps >= 1:
            identified.transition(ProceedToWrite(blank_type=BlankType.T5577))
        if blank_steps >= 2:
            identified.transition(BlankReady(blank_type=BlankType.T5577))
        state = identified.transition(BackToScan())
        assert isinstance(state, DeviceConnected)

    def test_back_to_scan_rejected_while_writing(self, identified):
        identified.transition(ProceedToWrite(blank_type=BlankType.T5577))
        identified.transition(BlankReady(blank_type=BlankType.T5577))
        identified.transition(StartWrite())
        with pytest.raises(InvalidTransitionError):
            identified.transition(BackToScan())

    def test_soft_reset_keeps_session(self, identified):
        identified.transition(report_error())
        state = identified.transition(SoftReset())
        assert state == DeviceConnected(port=PORT, model="Proxmark3", firmware="v4")

    def test_soft_reset_without_session(self, machine):
        machine.transition(report_error())
        assert machine.transition(SoftReset()) == Idle()

    def test_complete_can_start_detection(self, verifying):
        verifying.transition(VerificationResult(success=True))
        verifying.transition(MarkComplete(
            source=CardSummary(card_type=CardType.EM4100, uid="0F00112233"),
            target=BlankType.T5577,
        ))
        assert verifying.transition(StartDetection()) == DetectingDevice()
