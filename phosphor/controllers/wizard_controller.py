"""
WizardController - Runs the clone wizard against a Proxmark3.

This controller orchestrates:
- Device discovery and session handling
- Card scanning (LF first, then HF)
- Blank detection and safety checks (T5577 password, magic generation)
- LF clone writes, HF key recovery, dumps and magic-card restores
- Verification of the written clone

Every step runs proxmark3 commands through the injected runner and reports
the outcome to the WizardMachine as an action. Tool errors become an Error
state; calling a step that is not valid in the current state raises
InvalidTransitionError and leaves the state unchanged.

Methods block until their commands finish. Use StreamWorker to run them off
the UI thread.

Events Emitted:
- WizardStateChangedEvent - after every transition
- DeviceStatusEvent - device connected/disconnected
- LiveOutputEvent - every non-empty line of tool output
- WriteProgressEvent - clone write progress
- HfProgressEvent - key recovery progress
- OperationResultEvent - verify/erase/write results
- StatusMessageEvent, ErrorEvent
"""

import logging
import time
from typing import Optional, List, Tuple, TYPE_CHECKING

from ..models.autopwn import (
    AutopwnEvent,
    DictionaryProgress,
    KeyFound,
    DarksideStarted,
    NestedStarted,
    HardnestedStarted,
    StaticnestedStarted,
    DumpComplete,
    DumpPartial,
    Failed,
)
from ..models.cards import (
    BlankType,
    CardData,
    CardSummary,
    Frequency,
    CardType,
    MagicGeneration,
    ProcessPhase,
    RecoveryAction,
)
from ..models.wizard import (
    WizardState,
    WizardAction,
    CardIdentified,
    WaitingForBlank,
    BlankDetected,
    Verifying,
    VerificationComplete,
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
from ..events.event_bus import (
    EventBus,
    DeviceStatusEvent,
    HfProgressEvent,
    OperationResultEvent,
    WizardStateChangedEvent,
    WriteProgressEvent,
)
from ..parsers import (
    parse_lf_search,
    parse_hf_search,
    parse_autopwn_line,
    extract_dump_file_path,
    parse_t5577_detect,
    parse_t5577_chk,
    parse_em4305_info,
    parse_em4305_word0,
    parse_magic_detection,
    is_hf_card_present,
    is_magic_ultralight,
    is_iclass_present,
    has_nonzero_block_data,
    verify_match,
    verify_match_detailed,
)
from ..parsers.autopwn import FAILURE_REASON
from ..parsers.text import hex_only
from ..services import command_builder as cb
from ..services.dump_service import compare_dump_files, read_block0_from_dump
from ..services.errors import (
    AppError,
    BinaryNotFoundError,
    CommandFailedError,
    InvalidCommandError,
    InvalidTransitionError,
    NoCardFoundError,
    OperationCancelledError,
    PM3TimeoutError,
    WriteFailedError,
)
from ..services.process_runner import port_candidates
from ..services.wizard_machine import WizardMachine

if TYPE_CHECKING:
    from ..services.interfaces import IProcessRunner, IConfigService


logger = logging.getLogger(__name__)

MAX_DECODED_FIELDS = 50

# Sectors x 2 keys
CLASSIC_1K_KEYS = 32
CLASSIC_4K_KEYS = 80

HF_DUMP_TYPES = (CardType.MIFARE_ULTRALIGHT, CardType.NTAG, CardType.ICLASS)

WRITE_FAILED_MESSAGE = "Write operation failed. Do not remove the card."

# The client could not run at all; never read as "card absent"
CLIENT_ERRORS = (BinaryNotFoundError, InvalidCommandError, OperationCancelledError)


class AutopwnTracker:
    """Folds autopwn output events into key recovery progress."""

    def __init__(self, keys_total: int):
        self.phase = ProcessPhase.KEY_CHECK
        self.keys_found = 0
        # Preset from the card size so single KeyFound lines show progress
        # before the summary line arrives
        self.keys_total = keys_total
        self.dump_file: Optional[str] = None
        self.dump_complete = False
        self.dump_partial = False
        self.failed = False
        self._started = time.monotonic()

    @property
    def elapsed_secs(self) -> int:
        return int(time.monotonic() - self._started)

    def apply(self, event: AutopwnEvent) -> None:
        if isinstance(event, DictionaryProgress):
            self.phase = ProcessPhase.KEY_CHECK
            self.keys_found = event.found
            self.keys_total = event.total
        elif isinstance(event, KeyFound):
            self.keys_found += 1
        elif isinstance(event, DarksideStarted):
            self.phase = ProcessPhase.DARKSIDE
        elif isinstance(event, NestedStarted):
            self.phase = ProcessPhase.NESTED
        elif isinstance(event, HardnestedStarted):
            self.phase = ProcessPhase.HARDNESTED
        elif isinstance(event, StaticnestedStarted):
            self.phase = ProcessPhase.STATIC_NESTED
        elif isinstance(event, (DumpComplete, DumpPartial)):
            if isinstance(event, DumpComplete):
                self.dump_complete = True
            else:
                self.dump_partial = True
            if event.file_path:
                self.dump_file = event.file_path
            self.phase = ProcessPhase.DUMPING
        elif isinstance(event, Failed):
            self.failed = True

    def summary(self) -> str:
        if self.dump_complete:
            return f"All keys recovered ({self.keys_found}/{self.keys_total}). Full dump saved."
        if self.dump_partial:
            return (
                f"Partial key recovery ({self.keys_found}/{self.keys_total}). "
                "Partial dump saved."
            )
        if self.keys_found > 0:
            return f"Keys recovered: {self.keys_found}/{self.keys_total}."
        return "Key recovery completed."


class WizardController:
    """
    Controller for the clone wizard.

    Coordinates between:
    - ProcessRunner (proxmark3 client)
    - WizardMachine (step validation)
    - ConfigService (preferred and recent ports)
    - UI (via EventBus events)
    """

    def __init__(
        self,
        runner: "IProcessRunner",
        machine: Optional[WizardMachine] = None,
        event_bus: Optional[EventBus] = None,
        config_service: Optional["IConfigService"] = None,
    ):
        """
        Initialize the WizardController.

        Args:
            runner: Runs proxmark3 commands
            machine: Wizard state machine (a fresh one if not provided)
            event_bus: EventBus instance (uses singleton if not provided)
            config_service: Persists the preferred port; optional
        """
        self._runner = runner
        self._machine = machine or WizardMachine()
        self._bus = event_bus or EventBus.instance()
        self._config = config_service

        # Card being cloned
        self._card_type: Optional[CardType] = None
        self._card_data: Optional[CardData] = None

        # Blank chosen for the write (may change on magic substitution)
        self._blank: Optional[BlankType] = None

        # Dump produced by autopwn or hf_dump, consumed by the HF write
        self._dump_path: Optional[str] = None

    @property
    def state(self) -> WizardState:
        """Get the current wizard state."""
        return self._machine.current

    @property
    def machine(self) -> WizardMachine:
        return self._machine

    @property
    def card_type(self) -> Optional[CardType]:
        return self._card_type

    @property
    def card_data(self) -> Optional[CardData]:
        return self._card_data

    @property
    def blank(self) -> Optional[BlankType]:
        return self._blank

    @property
    def dump_path(self) -> Optional[str]:
        return self._dump_path

    # =========================================================================
    # Helpers
    # =========================================================================

    def _apply(self, action: WizardAction) -> WizardState:
        state = self._machine.transition(action)
        self._bus.emit(WizardStateChangedEvent(state=state))
        return state

    def _report(
        self,
        message: str,
        user_message: str,
        recoverable: bool = True,
        recovery_action: RecoveryAction = RecoveryAction.RETRY,
    ) -> WizardState:
        logger.warning("Wizard error: %s", message)
        self._bus.emit_error(message, recoverable=recoverable)
        return self._apply(ReportError(
            message=message,
            user_message=user_message,
            recoverable=recoverable,
            recovery_action=recovery_action,
        ))

    def _fail(self, err: AppError, user_message: Optional[str] = None) -> WizardState:
        """Turn a service error into an Error state."""
        logger.warning("Wizard error: %s", err.message)
        self._bus.emit_error(err.message, exception=err, recoverable=err.recoverable)
        return self._apply(ReportError(
            message=err.message,
            user_message=user_message or err.user_message,
            recoverable=err.recoverable,
            recovery_action=err.recovery_action,
        ))

    def _port(self) -> str:
        session = self._machine.session
        if session is None:
            raise InvalidTransitionError("No device connected")
        return session.port

    def _require(self, state_type: type, step: str) -> WizardState:
        state = self._machine.current
        if not isinstance(state, state_type):
            raise InvalidTransitionError(f"{step} is not valid from {state.name}")
        return state

    def _emit_output(self, line: str) -> None:
        if line.strip():
            self._bus.emit_live_output(line, is_error="[!!]" in line or "[-]" in line)

    def _run(self, cmd: Optional[str], timeout: Optional[int] = None) -> str:
        """Run one command on the session port, echoing its output."""
        if cmd is None:
            raise CommandFailedError("No command available for this operation")
        output = self._runner.run_command(self._port(), cmd, timeout)
        for line in output.splitlines():
            self._emit_output(line)
        return output

    def _progress(
        self,
        progress: float,
        current_block: Optional[int] = None,
        total_blocks: Optional[int] = None,
    ) -> None:
        self._apply(UpdateWriteProgress(
            progress=progress,
            current_block=current_block or 0,
            total_blocks=total_blocks or 0,
        ))
        self._bus.emit(WriteProgressEvent(
            progress=progress,
            current_block=current_block,
            total_blocks=total_blocks,
        ))

    def _clear_card(self) -> None:
        self._card_type = None
        self._card_data = None
        self._blank = None
        self._dump_path = None

    # =========================================================================
    # Device
    # =========================================================================

    def _candidate_ports(self) -> Optional[List[str]]:
        """Preferred port, then recently used ports, then the platform defaults."""
        if self._config is None:
            return None
        config = self._config.load()
        ordered = [config.preferred_port] if config.preferred_port else []
        ordered.extend(config.recent_ports)
        ordered.extend(port_candidates())

        ports: List[str] = []
        for port in ordered:
            if port not in ports:
                ports.append(port)
        return ports

    def connect(self) -> WizardState:
        """Find a Proxmark3 and start a session on it."""
        self._apply(StartDetection())
        self._bus.emit_status("Searching for Proxmark3...")

        try:
            info = self._runner.detect_device(self._candidate_ports())
        except AppError as e:
            return self._fail(e)

        self._bus.emit(DeviceStatusEvent(
            connected=True,
            port=info.port,
            model=info.model,
            firmware=info.firmware,
            firmware_mismatch=info.firmware_mismatch,
        ))
        if info.firmware_mismatch:
            self._bus.emit_status(
                "Client and firmware versions differ; consider reflashing the device",
                level="warning",
            )

        if self._config is not None:
            self._config.remember_port(info.port)

        return self._apply(DeviceFound(port=info.port, model=info.model, firmware=info.firmware))

    def disconnect(self) -> WizardState:
        """End the session, cancelling any running stream."""
        self._runner.cancel()
        self._clear_card()
        state = self._apply(Disconnect())
        self._bus.emit(DeviceStatusEvent(connected=False))
        return state

    # =========================================================================
    # Card
    # =========================================================================

    def scan_card(self) -> WizardState:
        """Identify the card on the reader: `lf search`, then `hf search`."""
        port = self._port()
        self._apply(StartScan())
        logger.info("Scanning for card on %s", port)

        try:
            result = parse_lf_search(self._run(cb.LF_SEARCH))
            if result is None:
                result = parse_hf_search(self._run(cb.HF_SEARCH))
        except AppError as e:
            return self._fail(e, user_message="Scan failed. Check device connection.")

        if result is None:
            return self._fail(NoCardFoundError("No LF or HF card detected"))

        card_type, card_data = result
        return self._identify(CardFound, card_type, card_data)

    def load_saved_card(self, card_type: CardType, card_data: CardData) -> WizardState:
        """Start from a previously scanned card instead of the reader."""
        return self._identify(LoadSavedCard, card_type, card_data)

    def _identify(self, action_type, card_type: CardType, card_data: CardData) -> WizardState:
        state = self._apply(action_type(
            frequency=card_type.frequency,
            card_type=card_type,
            card_data=card_data,
            cloneable=card_type.is_cloneable,
            recommended_blank=card_type.recommended_blank,
        ))
        self._card_type = card_type
        self._card_data = card_data
        self._blank = None
        self._dump_path = None

        self._bus.emit_status(f"Found {card_type.display_name} ({card_data.uid})")
        if not card_type.is_cloneable:
            self._bus.emit_status(card_type.non_cloneable_reason, level="warning")
        elif card_data.is_raw_fallback:
            self._bus.emit_status(
                "Card decoded from raw data only; the clone may not match",
                level="warning",
            )
        return state

    def proceed_to_write(self, blank: Optional[BlankType] = None) -> WizardState:
        """
        Choose the blank to write, defaulting to the recommended one.

        Non-cloneable cards and blanks that cannot carry the card become a
        non-recoverable error.
        """
        state = self._machine.current
        card_type = self._card_type
        if card_type is None:
            raise InvalidTransitionError(f"ProceedToWrite is not valid from {state.name}")

        if isinstance(state, CardIdentified) and not state.cloneable:
            return self._report(
                f"{card_type.value} is not cloneable",
                card_type.non_cloneable_reason or "This card type cannot be cloned.",
                recoverable=False,
                recovery_action=RecoveryAction.MANUAL,
            )

        blank = blank or card_type.recommended_blank
        if blank is None or blank.frequency != card_type.frequency or (
            blank == BlankType.EM4305 and not card_type.supports_em4305
        ):
            return self._report(
                f"Unsupported blank {blank.value if blank else None} for {card_type.value}",
                "This blank type cannot hold this card.",
                recoverable=False,
                recovery_action=RecoveryAction.MANUAL,
            )

        new_state = self._apply(ProceedToWrite(blank_type=blank))
        self._blank = blank
        return new_state

    # =========================================================================
    # Blank detection
    # =========================================================================

    def detect_blank(self) -> WizardState:
        """Check that the expected blank is on the reader and safe to write."""
        state = self._require(WaitingForBlank, "detect_blank")
        expected = state.expected_blank

        try:
            if expected == BlankType.T5577:
                return self._detect_t5577()
            if expected == BlankType.EM4305:
                return self._detect_em4305()
            if expected.magic_generation is not None:
                return self._detect_magic_mifare(expected)
            if expected == BlankType.MAGIC_ULTRALIGHT:
                return self._detect_magic_ultralight()
            return self._detect_iclass_blank()
        except AppError as e:
            return self._fail(e)

    def redetect_blank(self) -> WizardState:
        return self._apply(ReDetectBlank())

    def _blank_ready(self, blank: BlankType, existing: Optional[str] = None) -> WizardState:
        state = self._apply(BlankReady(blank_type=blank, existing_data_type=existing))
        self._blank = blank
        if existing:
            self._bus.emit_status(f"Blank note: {existing}", level="warning")
        return state

    def _existing_lf_data(self) -> Optional[str]:
        try:
            result = parse_lf_search(self._run(cb.LF_SEARCH))
        except CLIENT_ERRORS:
            raise
        except (CommandFailedError, PM3TimeoutError) as e:
            logger.debug("Existing data check failed: %s", e)
            return None
        return result[0].value if result else None

    def _detect_t5577(self) -> WizardState:
        status = parse_t5577_detect(self._run(cb.T5577_DETECT))
        if not status.detected:
            return self._report(
                "T5577 blank not detected",
                "No T5577 blank found. Place blank card on the reader and try again.",
            )

        if status.password_set:
            password = parse_t5577_chk(self._run(cb.T5577_CHK))
            if password is None:
                return self._report(
                    "Card is password-locked, cannot recover password",
                    "This T5577 is password-protected and the password could not be found. "
                    "Use a different blank card.",
                )
            logger.info("Recovered T5577 password, wiping")
            self._run(cb.build_wipe_command(BlankType.T5577, password))
            status = parse_t5577_detect(self._run(cb.T5577_DETECT))
            if not status.detected or status.password_set:
                return self._report(
                    "T5577 still password-protected after wipe",
                    "The blank is still password-protected. Try again or use a different blank.",
                )

        return self._blank_ready(BlankType.T5577, self._existing_lf_data())

    def _detect_em4305(self) -> WizardState:
        try:
            detected = parse_em4305_info(self._run(cb.EM4305_INFO))
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            logger.debug("EM4305 info failed: %s", e)
            detected = False

        if not detected:
            return self._report(
                "EM4305 blank not detected",
                "No EM4305 blank found. Place blank card on the reader and try again.",
            )
        return self._blank_ready(BlankType.EM4305, self._existing_lf_data())

    def _existing_mifare_data(self, generation: MagicGeneration) -> Optional[str]:
        """Read block 4 to see whether the magic card already holds data."""
        backdoor = generation in (MagicGeneration.GEN1A, MagicGeneration.GEN4_GDM)
        try:
            output = self._run(cb.build_mifare_data_check_command(generation))
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            logger.debug("Block 4 read failed: %s", e)
            # Default key refused: the card has been written with its own keys
            return None if backdoor else "MIFARE Classic (modified keys)"
        return "MIFARE Classic" if has_nonzero_block_data(output) else None

    def _detect_magic_mifare(self, expected: BlankType) -> WizardState:
        try:
            present = is_hf_card_present(self._run(cb.HF_14A_INFO))
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            logger.debug("hf 14a info failed: %s", e)
            present = False

        if not present:
            return self._report(
                "No HF card detected",
                "No card found. Place the magic blank on the reader and try again.",
            )

        try:
            generation = parse_magic_detection(self._run(cb.HF_MF_INFO))
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            logger.debug("hf mf info failed: %s", e)
            generation = None

        if generation is None:
            # Some magic cards do not announce themselves
            return self._blank_ready(expected, "No magic detected, card may be genuine")

        existing = self._existing_mifare_data(generation)
        if generation == expected.magic_generation:
            return self._blank_ready(expected, existing)

        actual = generation.blank_type
        note = f"Detected: {actual.display_name} (expected {expected.display_name})"
        if existing:
            note = f"{existing} (detected {actual.display_name}, expected {expected.display_name})"
        logger.info("Using %s instead of %s", actual.value, expected.value)
        return self._blank_ready(actual, note)

    def _detect_magic_ultralight(self) -> WizardState:
        try:
            output = self._run(cb.HF_MFU_INFO)
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            return self._fail(
                e,
                user_message="No Ultralight/NTAG card found. Place blank on the reader and try again.",
            )

        lower = output.lower()
        if not any(token in lower for token in ("uid", "ultralight", "ntag")):
            return self._report(
                "No Ultralight/NTAG card detected",
                "No Ultralight/NTAG card found. Place blank on the reader and try again.",
            )

        existing = None
        if not is_magic_ultralight(output):
            existing = "No magic markers detected, card may be genuine"
        return self._blank_ready(BlankType.MAGIC_ULTRALIGHT, existing)

    def _detect_iclass_blank(self) -> WizardState:
        try:
            detected = is_iclass_present(self._run(cb.HF_ICLASS_INFO))
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            logger.debug("hf iclass info failed: %s", e)
            detected = False

        if not detected:
            return self._report(
                "No iCLASS card detected",
                "No iCLASS card found. Place blank on the reader and try again.",
            )
        return self._blank_ready(BlankType.ICLASS_BLANK)

    # =========================================================================
    # LF write
    # =========================================================================

    def write_clone(self) -> WizardState:
        """Write the scanned card to the detected blank."""
        state = self._require(BlankDetected, "write_clone")
        blank = state.blank_type
        if blank.frequency == Frequency.HF:
            return self.write_hf_clone()

        if len(self._card_data.decoded) > MAX_DECODED_FIELDS:
            return self._fail(CommandFailedError("Too many decoded fields"))

        self._apply(StartWrite())
        try:
            if blank == BlankType.T5577:
                return self._write_t5577()
            if blank == BlankType.EM4305:
                return self._write_em4305()
            return self._report(
                f"Unsupported blank type {blank.value} for LF cloning",
                "This blank type is not supported for LF card cloning.",
                recoverable=False,
                recovery_action=RecoveryAction.MANUAL,
            )
        except AppError as e:
            return self._fail(e, user_message=WRITE_FAILED_MESSAGE)

    def _no_clone_command(self) -> WizardState:
        return self._report(
            f"No clone command for {self._card_type.value}",
            "This card type cannot be cloned with the current method.",
            recoverable=False,
            recovery_action=RecoveryAction.MANUAL,
        )

    def _write_t5577(self) -> WizardState:
        total = 6
        self._progress(0.1, 0, total)
        status = parse_t5577_detect(self._run(cb.T5577_DETECT))
        if not status.detected:
            return self._report(
                "T5577 not detected on writer",
                "No T5577 blank found. Place blank card on the reader.",
            )

        self._progress(0.2, 1, total)
        password = None
        if status.password_set:
            password = parse_t5577_chk(self._run(cb.T5577_CHK))
            if password is None:
                return self._report(
                    "Card is password-locked, cannot recover password",
                    "This T5577 is password-protected and the password could not be found. "
                    "Use a different blank card.",
                )

        self._progress(0.35, 2, total)
        self._run(cb.build_wipe_command(BlankType.T5577, password))

        # The client can exit 0 even when a password-protected wipe did nothing
        self._progress(0.5, 3, total)
        status = parse_t5577_detect(self._run(cb.T5577_DETECT))
        if not status.detected or status.password_set:
            return self._report(
                "T5577 wipe verification failed, card may still be password-protected",
                "Wipe verification failed. The card may still be password-protected. "
                "Do not remove the card; try again or use a different blank.",
            )

        self._progress(0.7, 4, total)
        cmd = cb.build_clone_command(
            self._card_type, self._card_data.uid, self._card_data.decoded
        )
        if cmd is None:
            return self._no_clone_command()
        self._run(cmd)

        self._progress(1.0, 5, total)
        return self._apply(WriteFinished())

    def _write_em4305(self) -> WizardState:
        total = 3
        self._progress(0.2, 0, total)
        self._run(cb.build_wipe_command(BlankType.EM4305))

        self._progress(0.5, 1, total)
        cmd = cb.build_em4305_clone_command(
            self._card_type, self._card_data.uid, self._card_data.decoded
        )
        if cmd is None:
            return self._no_clone_command()
        self._run(cmd)

        self._progress(1.0, 2, total)
        return self._apply(WriteFinished())

    # =========================================================================
    # Verification
    # =========================================================================

    def verify_clone(self) -> WizardState:
        """Read the written blank back and compare it with the source card."""
        self._require(Verifying, "verify_clone")

        try:
            if self._card_type.is_lf:
                success, mismatched = self._verify_lf()
            else:
                success, mismatched = self._verify_hf()
        except AppError as e:
            return self._fail(e)

        state = self._apply(VerificationResult(success=success, mismatched_blocks=mismatched))
        self._bus.emit(OperationResultEvent(
            success=success,
            message="Clone verified" if success else "Clone does not match the source card",
            operation_type="verify",
            details={"mismatched_blocks": list(mismatched)},
        ))
        return state

    def _verify_lf(self) -> Tuple[bool, List[int]]:
        output = self._run(cb.build_verify_command(self._card_type))
        if self._card_data.decoded:
            return verify_match_detailed(self._card_type, self._card_data.decoded, output)
        return verify_match(self._card_data.uid, output)

    def _verify_hf(self) -> Tuple[bool, List[int]]:
        """UID check first, then a block comparison of a fresh dump."""
        try:
            result = parse_hf_search(self._run(cb.HF_SEARCH))
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            logger.warning("hf search failed during verify: %s", e)
            result = None

        if result is None or hex_only(result[1].uid) != hex_only(self._card_data.uid):
            # block 0 doubles as the UID mismatch sentinel
            return False, [0]

        readback_cmd = cb.build_hf_readback_command(self._blank)
        if readback_cmd is None:
            return True, []

        try:
            output = self._run(readback_cmd)
        except CLIENT_ERRORS:
            raise
        except (CommandFailedError, PM3TimeoutError) as e:
            logger.warning("Readback failed, UID match only: %s", e)
            return True, []

        if "[!!]" in output:
            return False, [0]

        readback_path = extract_dump_file_path(output)
        if self._dump_path is None or readback_path is None:
            return True, []

        mismatched = compare_dump_files(
            self._dump_path, readback_path, cb.readback_block_size(self._blank)
        )
        return not mismatched, mismatched

    def mark_complete(self) -> WizardState:
        """Record a verified clone as complete."""
        self._require(VerificationComplete, "mark_complete")
        source = CardSummary(card_type=self._card_type, uid=self._card_data.uid)
        state = self._apply(MarkComplete(source=source, target=self._blank))
        self._bus.emit(OperationResultEvent(
            success=True,
            message=f"{source.display_name} cloned to {self._blank.display_name}",
            operation_type="write",
        ))
        return state

    # =========================================================================
    # Navigation
    # =========================================================================

    def retry(self) -> WizardState:
        return self._apply(Retry())

    def reset(self) -> WizardState:
        self._runner.cancel()
        self._clear_card()
        return self._apply(Reset())

    def back_to_scan(self) -> WizardState:
        state = self._apply(BackToScan())
        self._clear_card()
        return state

    def soft_reset(self) -> WizardState:
        state = self._apply(SoftReset())
        self._clear_card()
        return state

    # =========================================================================
    # Erase (outside the wizard flow)
    # =========================================================================

    def erase_blank(self) -> bool:
        """
        Wipe a T5577 or EM4305 on the reader.

        Independent of the wizard state; only a connected device is needed.

        Returns:
            True if the wipe reported no errors
        """
        try:
            chip, output = self._wipe_chip()
        except AppError as e:
            self._bus.emit_error(e.message, exception=e, recoverable=e.recoverable)
            self._bus.emit(OperationResultEvent(
                success=False, message=e.user_message, operation_type="erase",
            ))
            return False

        error_line = next(
            (l for l in output.splitlines() if "[!!]" in l or "error" in l.lower()),
            None,
        )
        if error_line is not None:
            message = f"Wipe may have failed: {error_line.strip()}"
            success = False
        else:
            message = f"{chip.display_name} erased successfully"
            success = True

        self._bus.emit(OperationResultEvent(
            success=success, message=message, operation_type="erase",
        ))
        return success

    def _wipe_chip(self) -> Tuple[BlankType, str]:
        status = parse_t5577_detect(self._run(cb.T5577_DETECT))
        if status.detected:
            password = None
            if status.password_set:
                password = parse_t5577_chk(self._run(cb.T5577_CHK))
            return BlankType.T5577, self._run(cb.build_wipe_command(BlankType.T5577, password))

        try:
            em_present = parse_em4305_info(self._run(cb.EM4305_INFO))
        except CLIENT_ERRORS:
            raise
        except CommandFailedError as e:
            logger.debug("EM4305 info failed: %s", e)
            em_present = False
        if em_present:
            output = self._run(cb.build_wipe_command(BlankType.EM4305))
            word0 = parse_em4305_word0(self._run(cb.EM4305_READ_WORD0))
            if word0 is not None and int(word0, 16) != 0:
                raise WriteFailedError(
                    f"EM4305 word 0 reads {word0} after wipe",
                    user_message="Wipe did not clear the EM4305. Try again.",
                )
            return BlankType.EM4305, output

        raise CommandFailedError(
            "No erasable chip detected",
            user_message="No erasable chip detected. Place a T5577 or EM4305 card on the reader.",
        )

    # =========================================================================
    # HF key recovery and dumps
    # =========================================================================

    def start_hf_autopwn(self) -> WizardState:
        """
        Recover all keys of a MIFARE Classic card and dump it.

        Blocks until `hf mf autopwn` exits, which can take from seconds to
        an hour. Progress arrives as HfProgressEvents.

        Raises:
            InvalidTransitionError: no MIFARE Classic card identified
        """
        state = self._require(CardIdentified, "start_hf_autopwn")
        card_type = state.card_type
        cmd = cb.build_hf_autopwn_command(card_type)
        if cmd is None:
            raise InvalidTransitionError(
                f"Autopwn only supports MIFARE Classic, got {card_type.value}"
            )
        port = self._port()

        keys_total = CLASSIC_4K_KEYS if card_type == CardType.MIFARE_CLASSIC_4K else CLASSIC_1K_KEYS
        self._apply(StartHfProcess(keys_total=keys_total))
        tracker = AutopwnTracker(keys_total)
        self._emit_hf_progress(tracker)

        def on_line(line: str) -> None:
            self._emit_output(line)
            event = parse_autopwn_line(line)
            if event is None:
                return
            tracker.apply(event)
            self._apply(UpdateHfProgress(
                phase=tracker.phase,
                keys_found=tracker.keys_found,
                keys_total=tracker.keys_total,
                elapsed_secs=tracker.elapsed_secs,
            ))
            self._emit_hf_progress(tracker)

        try:
            self._runner.run_streaming(port, cmd, on_line)
        except OperationCancelledError:
            logger.info("Key recovery cancelled")
            self._bus.emit_status("Key recovery cancelled", level="warning")
            return self._apply(CancelHfProcess())
        except AppError as e:
            return self._fail(
                e, user_message="Key recovery failed. Check device connection and try again."
            )

        if tracker.failed and tracker.dump_file is None:
            return self._report(
                FAILURE_REASON,
                "Key recovery failed. The card may use hardened keys that cannot be recovered.",
            )

        self._dump_path = tracker.dump_file
        return self._apply(HfProcessComplete(dump_info=tracker.summary()))

    def _emit_hf_progress(self, tracker: AutopwnTracker) -> None:
        self._bus.emit(HfProgressEvent(
            phase=tracker.phase,
            keys_found=tracker.keys_found,
            keys_total=tracker.keys_total,
            elapsed_secs=tracker.elapsed_secs,
        ))

    def cancel_hf_operation(self) -> bool:
        """Kill a running key recovery; safe to call from any thread."""
        return self._runner.cancel()

    def hf_dump(self) -> WizardState:
        """
        Dump an Ultralight/NTAG or iCLASS card, which needs no key recovery.

        Raises:
            InvalidTransitionError: no such card identified
        """
        state = self._require(CardIdentified, "hf_dump")
        card_type = state.card_type
        if card_type not in HF_DUMP_TYPES:
            raise InvalidTransitionError(
                f"hf_dump only supports UL/NTAG/iCLASS, got {card_type.value}"
            )

        self._apply(StartHfProcess(keys_total=0))
        try:
            output = self._run(cb.build_hf_dump_command(card_type))
        except AppError as e:
            return self._fail(e, user_message="Dump failed. Check device connection and try again.")

        self._dump_path = extract_dump_file_path(output)
        if card_type == CardType.ICLASS:
            dump_info = "iCLASS dump complete."
        elif card_type == CardType.NTAG:
            dump_info = "NTAG dump complete."
        else:
            dump_info = "Ultralight dump complete."
        return self._apply(HfProcessComplete(dump_info=dump_info))

    # =========================================================================
    # HF write
    # =========================================================================

    @staticmethod
    def _check_write_output(output: str) -> None:
        for line in output.splitlines():
            if "[!!]" in line:
                raise WriteFailedError(f"PM3 write error: {line.strip()}")

    def write_hf_clone(self) -> WizardState:
        """Restore the recovered dump onto the detected HF blank."""
        state = self._require(BlankDetected, "write_hf_clone")
        blank = state.blank_type

        if self._dump_path is None:
            return self._fail(CommandFailedError(
                "No dump file available",
                user_message="No dump file available. Run key recovery first.",
            ))

        self._apply(StartWrite())
        try:
            block0 = None
            if blank in (BlankType.MAGIC_MIFARE_GEN2, BlankType.MAGIC_MIFARE_GEN3):
                block0 = read_block0_from_dump(self._dump_path)
            steps = cb.build_hf_write_sequence(
                blank, self._dump_path, uid=hex_only(self._card_data.uid), block0=block0
            )
            if steps is None:
                raise CommandFailedError(f"No write sequence for {blank.value}")
            self._run_write_steps(steps)
        except AppError as e:
            return self._fail(e, user_message="Write failed. Do not remove the card, try again.")

        self._progress(1.0, len(steps), len(steps))
        return self._apply(WriteFinished())

    def _run_write_steps(self, steps: List[str]) -> None:
        unlocked = False
        try:
            for index, cmd in enumerate(steps):
                self._progress(round(index / len(steps), 2), index, len(steps))
                output = self._run(cmd)
                if cmd == cb.GEN2_UNLOCK:
                    unlocked = True
                elif cmd == cb.GEN2_RESTORE_CONFIG:
                    unlocked = False
                self._check_write_output(output)
        except AppError:
            if unlocked:
                self._restore_14a_config()
            raise

    def _restore_14a_config(self) -> None:
        """Put the 14a layer back to normal after a failed Gen2 write."""
        try:
            self._run(cb.GEN2_RESTORE_CONFIG)
        except AppError as e:
            logger.error("Could not restore 14a config: %s", e)
