"""
Tests for WizardController.

The controller runs against MockProcessRunner, scripted with client output
per command, so every wizard step can be exercised without hardware.
"""

import pytest

from phosphor.controllers.wizard_controller import WizardController, WRITE_FAILED_MESSAGE
from phosphor.events.event_bus import (
    DeviceStatusEvent,
    ErrorEvent,
    HfProgressEvent,
    LiveOutputEvent,
    OperationResultEvent,
    StatusMessageEvent,
    WizardStateChangedEvent,
    WriteProgressEvent,
)
from phosphor.models.config import AppConfig
from phosphor.models.cards import (
    BlankType,
    CardData,
    CardType,
    ProcessPhase,
    RecoveryAction,
)
from phosphor.models.wizard import (
    Idle,
    DeviceConnected,
    CardIdentified,
    HfDumpReady,
    WaitingForBlank,
    BlankDetected,
    Verifying,
    VerificationComplete,
    Complete,
    Error,
)
from phosphor.services import command_builder as cb
from phosphor.services.config_service import MockConfigService
from phosphor.services.errors import (
    BinaryNotFoundError,
    DeviceNotFoundError,
    InvalidCommandError,
    InvalidTransitionError,
    OperationCancelledError,
    PM3TimeoutError,
)
from phosphor.services.process_runner import port_candidates


PORT = "/dev/ttyACM0"
BLOCK0 = "01020304040804000000000000000000"

EM4100_CLONE = "lf em 410x clone --id 0F00112233"

GEN2_INFO = "[+] Magic capabilities... Gen 2 / CUID"


def events_of(bus, event_type):
    return [e for e in bus.get_event_log() if isinstance(e, event_type)]


@pytest.fixture
def controller(mock_runner, event_bus):
    return WizardController(mock_runner, event_bus=event_bus)


@pytest.fixture
def connected(controller):
    controller.connect()
    return controller


@pytest.fixture
def lf_runner(mock_runner, sample_em4100_output, sample_t5577_detect_output):
    """Runner scripted for an EM4100 card cloned to a clean T5577."""
    mock_runner.set_response(cb.LF_SEARCH, sample_em4100_output)
    mock_runner.set_response(cb.T5577_DETECT, sample_t5577_detect_output)
    mock_runner.set_response("lf t55xx wipe", "[+] Done")
    mock_runner.set_response("lf em 410x clone", "[+] Preparing to clone EM4102 to T55x7 tag\n[+] Done")
    mock_runner.set_response("lf em 410x reader", sample_em4100_output)
    return mock_runner


@pytest.fixture
def lf_identified(connected, lf_runner):
    connected.scan_card()
    return connected


@pytest.fixture
def classic_dump(tmp_path):
    path = tmp_path / "hf-mf-01020304-dump.bin"
    path.write_bytes(bytes.fromhex(BLOCK0) + bytes(48))
    return str(path)


@pytest.fixture
def hf_runner(
    mock_runner,
    sample_no_lf_output,
    sample_classic_1k_output,
    sample_hf_14a_info_output,
    sample_gen1a_info_output,
    sample_empty_block_output,
    classic_dump,
):
    """Runner scripted for a MIFARE Classic 1K cloned to a Gen1a blank."""
    autopwn_output = f"""[+] found 30/32 keys (D)
[+] Found valid key [ A0A1A2A3A4A5 ]
[+] Found valid key [ B0B1B2B3B4B5 ]
[+] Succeeded in dumping all blocks
[+] saved 64 blocks to file {classic_dump}
[=] autopwn execution time: 42 seconds
"""
    mock_runner.set_response(cb.LF_SEARCH, sample_no_lf_output)
    mock_runner.set_response(cb.HF_SEARCH, sample_classic_1k_output)
    mock_runner.set_response("hf mf autopwn", autopwn_output)
    mock_runner.set_response(cb.HF_14A_INFO, sample_hf_14a_info_output)
    mock_runner.set_response(cb.HF_MF_INFO, sample_gen1a_info_output)
    mock_runner.set_response("hf mf cgetblk", sample_empty_block_output)
    mock_runner.set_response("hf mf rdbl", sample_empty_block_output)
    mock_runner.set_response("hf mf cload", "[+] Card loaded 64 blocks from file")
    mock_runner.set_response("hf mf cview", "[=] View magic MIFARE Classic 1K\n[+] 64 blocks")
    return mock_runner


@pytest.fixture
def hf_dumped(connected, hf_runner):
    connected.scan_card()
    connected.start_hf_autopwn()
    return connected


# ============================================================================
# Device
# ============================================================================


class TestConnect:
    """Tests for device connection."""

    def test_connect(self, controller, event_bus):
        """Should enter DeviceConnected and announce the device."""
        state = controller.connect()

        assert state == DeviceConnected(
            port=PORT,
            model="Proxmark3 RFID instrument",
            firmware="os: RRG/Iceman/master/v4.18218",
        )
        status = events_of(event_bus, DeviceStatusEvent)
        assert status[0].connected is True
        assert status[0].port == PORT
        assert not status[0].firmware_mismatch

        states = [e.state.name for e in events_of(event_bus, WizardStateChangedEvent)]
        assert states == ["DetectingDevice", "DeviceConnected"]

    def test_connect_remembers_port(self, mock_runner, event_bus):
        config_service = MockConfigService()
        controller = WizardController(mock_runner, event_bus=event_bus, config_service=config_service)
        controller.connect()
        assert config_service.load().recent_ports == [PORT]

    def test_connect_tries_preferred_then_recent_ports(self, mock_runner, event_bus):
        """Preferred and recently used ports should be tried before the defaults."""
        config_service = MockConfigService(AppConfig(
            preferred_port="COM7",
            recent_ports=["/dev/ttyACM3", "COM7"],
        ))
        controller = WizardController(mock_runner, event_bus=event_bus, config_service=config_service)

        controller.connect()

        candidates = mock_runner.detect_candidates
        assert candidates[:2] == ["COM7", "/dev/ttyACM3"]
        assert len(candidates) == len(set(candidates))
        assert set(port_candidates()) <= set(candidates)

    def test_connect_without_config_uses_defaults(self, controller, mock_runner):
        controller.connect()
        assert mock_runner.detect_candidates is None

    def test_device_not_found(self, controller, mock_runner, event_bus):
        """Should land in a recoverable Error that asks for a reconnect."""
        mock_runner.set_device(DeviceNotFoundError("PM3 not found on any port"))

        state = controller.connect()

        assert isinstance(state, Error)
        assert state.recoverable
        assert state.recovery_action == RecoveryAction.RECONNECT
        assert state.user_message == DeviceNotFoundError.user_message
        assert events_of(event_bus, ErrorEvent)[0].message == "PM3 not found on any port"

    def test_firmware_mismatch_warning(self, controller, mock_runner, device_info, event_bus):
        device_info.hw_info.versions_match = False
        mock_runner.set_device(device_info)

        controller.connect()

        assert events_of(event_bus, DeviceStatusEvent)[0].firmware_mismatch
        warnings = [e for e in events_of(event_bus, StatusMessageEvent) if e.level == "warning"]
        assert warnings

    def test_disconnect(self, connected, mock_runner, event_bus):
        assert connected.disconnect() == Idle()
        assert mock_runner.cancel_requested
        assert events_of(event_bus, DeviceStatusEvent)[-1].connected is False


# ============================================================================
# Scanning
# ============================================================================


class TestScanCard:
    """Tests for card scanning."""

    def test_scan_lf(self, connected, lf_runner):
        state = connected.scan_card()

        assert isinstance(state, CardIdentified)
        assert state.card_type == CardType.EM4100
        assert state.card_data.uid == "0F00112233"
        assert state.recommended_blank == BlankType.T5577
        assert lf_runner.commands()[-1] == cb.LF_SEARCH

    def test_scan_falls_back_to_hf(self, connected, hf_runner):
        state = connected.scan_card()

        assert state.card_type == CardType.MIFARE_CLASSIC_1K
        assert hf_runner.commands()[-2:] == [cb.LF_SEARCH, cb.HF_SEARCH]

    def test_no_card(self, connected, mock_runner, sample_no_lf_output, sample_no_hf_output):
        mock_runner.set_response(cb.LF_SEARCH, sample_no_lf_output)
        mock_runner.set_response(cb.HF_SEARCH, sample_no_hf_output)

        state = connected.scan_card()

        assert isinstance(state, Error)
        assert state.recoverable
        assert "No card detected" in state.user_message

    def test_scan_timeout(self, connected, mock_runner):
        mock_runner.set_response(cb.LF_SEARCH, PM3TimeoutError("PM3 timed out running: lf search"))

        state = connected.scan_card()

        assert isinstance(state, Error)
        assert state.user_message == "Scan failed. Check device connection."

    def test_scan_requires_device(self, controller):
        with pytest.raises(InvalidTransitionError):
            controller.scan_card()
        assert controller.state == Idle()

    def test_live_output(self, connected, lf_runner, event_bus):
        """Every output line should be echoed as live output."""
        connected.scan_card()
        texts = [e.text for e in events_of(event_bus, LiveOutputEvent)]
        assert "[+] EM 410x ID 0F00112233" in texts

    def test_raw_fallback_warning(self, connected, mock_runner, event_bus):
        mock_runner.set_response(cb.LF_SEARCH, "[+] Guardall G-Prox II - Raw: 0123456789AB")
        connected.scan_card()
        warnings = [e for e in events_of(event_bus, StatusMessageEvent) if e.level == "warning"]
        assert warnings

    def test_load_saved_card(self, connected):
        state = connected.load_saved_card(
            CardType.HID_PROX,
            CardData(uid="FC65:CN1337", decoded={"facility_code": "65", "card_number": "1337"}),
        )
        assert isinstance(state, CardIdentified)
        assert connected.card_type == CardType.HID_PROX


class TestProceedToWrite:

    def test_recommended_blank(self, lf_identified):
        state = lf_identified.proceed_to_write()
        assert state == WaitingForBlank(expected_blank=BlankType.T5577)
        assert lf_identified.blank == BlankType.T5577

    def test_em4305_blank(self, lf_identified):
        state = lf_identified.proceed_to_write(BlankType.EM4305)
        assert state == WaitingForBlank(expected_blank=BlankType.EM4305)

    def test_non_cloneable(self, connected):
        """Should end in a non-recoverable error for DESFire."""
        connected.load_saved_card(CardType.DESFIRE, CardData(uid="04112233445566"))

        state = connected.proceed_to_write()

        assert isinstance(state, Error)
        assert not state.recoverable
        assert state.recovery_action == RecoveryAction.MANUAL
        with pytest.raises(InvalidTransitionError):
            connected.retry()

    def test_incompatible_blank(self, lf_identified):
        state = lf_identified.proceed_to_write(BlankType.MAGIC_MIFARE_GEN1A)
        assert isinstance(state, Error)
        assert not state.recoverable


# ============================================================================
# LF clone
# ============================================================================


class TestLfClone:
    """Tests for the full LF clone flow."""

    def test_full_t5577_flow(self, lf_identified, lf_runner, event_bus):
        """Should detect, write, verify and complete an EM4100 clone."""
        lf_identified.proceed_to_write()

        state = lf_identified.detect_blank()
        assert state == BlankDetected(
            blank_type=BlankType.T5577, ready_to_write=True, existing_data_type="EM4100"
        )

        state = lf_identified.write_clone()
        assert state == Verifying()
        assert EM4100_CLONE in lf_runner.commands()
        assert "lf t55xx wipe" in lf_runner.commands()

        progress = [e.progress for e in events_of(event_bus, WriteProgressEvent)]
        assert progress == sorted(progress)
        assert progress[-1] == 1.0

        state = lf_identified.verify_clone()
        assert state == VerificationComplete(success=True, mismatched_blocks=[])
        verify = events_of(event_bus, OperationResultEvent)[-1]
        assert verify.operation_type == "verify"
        assert verify.success

        state = lf_identified.mark_complete()
        assert isinstance(state, Complete)
        assert state.source.uid == "0F00112233"
        assert state.target == BlankType.T5577

    def test_password_protected_blank(
        self, lf_identified, lf_runner, sample_t5577_locked_output, sample_t5577_detect_output
    ):
        """Should recover the password and wipe before reporting the blank."""
        lf_runner.set_response(cb.T5577_DETECT, sample_t5577_locked_output, sample_t5577_detect_output)
        lf_runner.set_response(cb.T5577_CHK, "[+] Found valid password: 51243648")
        lf_identified.proceed_to_write()

        state = lf_identified.detect_blank()

        assert isinstance(state, BlankDetected)
        assert "lf t55xx wipe -p 51243648" in lf_runner.commands()
        assert "lf t55xx wipe -p ********" in lf_runner.get_command_log()[-3]

    def test_password_not_recovered(self, lf_identified, lf_runner, sample_t5577_locked_output):
        lf_runner.set_response(cb.T5577_DETECT, sample_t5577_locked_output)
        lf_runner.set_response(cb.T5577_CHK, "[-] No valid password found")
        lf_identified.proceed_to_write()

        state = lf_identified.detect_blank()

        assert isinstance(state, Error)
        assert "password" in state.user_message

    def test_blank_missing(self, lf_identified, lf_runner, sample_t5577_not_found_output):
        lf_runner.set_response(cb.T5577_DETECT, sample_t5577_not_found_output)
        lf_identified.proceed_to_write()

        state = lf_identified.detect_blank()

        assert isinstance(state, Error)
        assert state.recoverable

    def test_wipe_leaves_password(
        self, lf_identified, lf_runner, sample_t5577_detect_output, sample_t5577_locked_output
    ):
        """A wipe that did not clear the password should stop the write."""
        lf_identified.proceed_to_write()
        lf_identified.detect_blank()
        lf_runner.set_response(cb.T5577_DETECT, sample_t5577_detect_output, sample_t5577_locked_output)

        state = lf_identified.write_clone()

        assert isinstance(state, Error)
        assert EM4100_CLONE not in lf_runner.commands()

    def test_write_command_failure(self, lf_identified, lf_runner):
        lf_identified.proceed_to_write()
        lf_identified.detect_blank()
        lf_runner.set_response("lf em 410x clone", PM3TimeoutError("PM3 timed out running: clone"))

        state = lf_identified.write_clone()

        assert isinstance(state, Error)
        assert state.user_message == WRITE_FAILED_MESSAGE

    def test_em4305_flow(self, lf_identified, lf_runner):
        lf_runner.set_response(cb.EM4305_INFO, "[+] Chip type..... EM4305/EM4469")
        lf_runner.set_response("lf em 4x05 wipe", "[+] Done")
        lf_identified.proceed_to_write(BlankType.EM4305)
        lf_identified.detect_blank()

        state = lf_identified.write_clone()

        assert state == Verifying()
        assert f"{EM4100_CLONE} --em" in lf_runner.commands()

    def test_verify_mismatch(self, lf_identified, lf_runner):
        lf_identified.proceed_to_write()
        lf_identified.detect_blank()
        lf_identified.write_clone()
        lf_runner.set_response("lf em 410x reader", "[+] EM 410x ID 0F00112299\n[+] EM410x")

        state = lf_identified.verify_clone()

        assert state.success is False
        with pytest.raises(InvalidTransitionError):
            lf_identified.mark_complete()

    def test_write_requires_blank(self, lf_identified):
        with pytest.raises(InvalidTransitionError):
            lf_identified.write_clone()

    def test_redetect_and_back_to_scan(self, lf_identified):
        lf_identified.proceed_to_write()
        lf_identified.detect_blank()
        assert lf_identified.redetect_blank() == WaitingForBlank(expected_blank=BlankType.T5577)

        state = lf_identified.back_to_scan()
        assert isinstance(state, DeviceConnected)
        assert lf_identified.card_type is None


# ============================================================================
# HF
# ============================================================================


class TestHfAutopwn:
    """Tests for HF key recovery."""

    def test_autopwn_success(self, hf_dumped, hf_runner, classic_dump, event_bus):
        assert isinstance(hf_dumped.state, HfDumpReady)
        assert hf_dumped.state.dump_info == "All keys recovered (32/32). Full dump saved."
        assert hf_dumped.dump_path == classic_dump
        assert "hf mf autopwn --1k" in hf_runner.commands()

        progress = events_of(event_bus, HfProgressEvent)
        assert progress[0].keys_total == 32
        assert progress[-1].phase == ProcessPhase.DUMPING

    def test_autopwn_cancelled(self, connected, hf_runner, event_bus):
        """Cancelling should return to the connected device."""
        hf_runner.set_response(
            "hf mf autopwn", OperationCancelledError("Operation cancelled: hf mf autopwn --1k")
        )
        connected.scan_card()

        state = connected.start_hf_autopwn()

        assert isinstance(state, DeviceConnected)
        assert not events_of(event_bus, ErrorEvent)

    def test_autopwn_failed(self, connected, hf_runner):
        hf_runner.set_response("hf mf autopwn", "[-] all key recovery attempts failed")
        connected.scan_card()

        state = connected.start_hf_autopwn()

        assert isinstance(state, Error)
        assert state.message == "All key recovery attempts failed"

    def test_autopwn_rejects_lf(self, lf_identified):
        with pytest.raises(InvalidTransitionError):
            lf_identified.start_hf_autopwn()

    def test_cancel_hf_operation(self, connected, mock_runner):
        assert connected.cancel_hf_operation() is True
        assert mock_runner.cancel_requested


class TestHfDump:

    def test_ntag_dump(self, connected, mock_runner, sample_no_lf_output):
        mock_runner.set_response(cb.LF_SEARCH, sample_no_lf_output)
        mock_runner.set_response(cb.HF_SEARCH, """[+]  UID: 04 68 95 71 FA 5C 64
[+] ATQA: 00 44
[+]  SAK: 00 [2]
[+] TYPE: NTAG 215 504bytes
""")
        mock_runner.set_response("hf mfu dump", "[+] saved 135 blocks to file hf-mfu-04689571FA5C64-dump.bin")
        connected.scan_card()

        state = connected.hf_dump()

        assert state == HfDumpReady(dump_info="NTAG dump complete.")
        assert connected.dump_path == "hf-mfu-04689571FA5C64-dump.bin"

    def test_dump_rejects_classic(self, connected, hf_runner):
        connected.scan_card()
        with pytest.raises(InvalidTransitionError):
            connected.hf_dump()


class TestHfClone:
    """Tests for magic MIFARE writes."""

    def test_full_gen1a_flow(self, hf_dumped, hf_runner, classic_dump, event_bus):
        state = hf_dumped.proceed_to_write()
        assert state == WaitingForBlank(expected_blank=BlankType.MAGIC_MIFARE_GEN1A)

        state = hf_dumped.detect_blank()
        assert state == BlankDetected(blank_type=BlankType.MAGIC_MIFARE_GEN1A, ready_to_write=True)

        state = hf_dumped.write_clone()
        assert state == Verifying()
        assert f"hf mf cload -f {classic_dump}" in hf_runner.commands()

        state = hf_dumped.verify_clone()
        assert state.success

        state = hf_dumped.mark_complete()
        assert isinstance(state, Complete)
        assert state.target == BlankType.MAGIC_MIFARE_GEN1A

    def test_generation_substitution(self, hf_dumped, hf_runner):
        """A different magic generation should be used with a note."""
        hf_runner.set_response(cb.HF_MF_INFO, GEN2_INFO)
        hf_dumped.proceed_to_write()

        state = hf_dumped.detect_blank()

        assert state.blank_type == BlankType.MAGIC_MIFARE_GEN2
        assert "expected" in state.existing_data_type
        assert hf_dumped.blank == BlankType.MAGIC_MIFARE_GEN2

    def test_client_failure_is_not_a_missing_blank(self, hf_dumped, hf_runner):
        """A client that cannot start should end in Error, not a genuine-card note."""
        hf_runner.set_response(cb.HF_MF_INFO, BinaryNotFoundError("proxmark3 client not found"))
        hf_dumped.proceed_to_write()

        state = hf_dumped.detect_blank()

        assert isinstance(state, Error)
        assert state.recovery_action == RecoveryAction.RECONNECT
        assert hf_dumped.blank == BlankType.MAGIC_MIFARE_GEN1A

    def test_gen2_write(self, hf_dumped, hf_runner, classic_dump):
        """Gen2 should write block 0 from the dump and restore the 14a config."""
        hf_runner.set_response(cb.HF_MF_INFO, GEN2_INFO)
        hf_runner.set_response("hf 14a config", "")
        hf_runner.set_response("hf mf wrbl", "[+] Write ( ok )")
        hf_runner.set_response("hf mf restore", "[+] Done")
        hf_dumped.proceed_to_write()
        hf_dumped.detect_blank()

        state = hf_dumped.write_clone()

        assert state == Verifying()
        commands = hf_runner.commands()
        assert f"hf mf wrbl --blk 0 -k FFFFFFFFFFFF -d {BLOCK0} --force" in commands
        assert commands[-1] == cb.GEN2_RESTORE_CONFIG

    def test_gen2_write_failure_restores_config(self, hf_dumped, hf_runner):
        hf_runner.set_response(cb.HF_MF_INFO, GEN2_INFO)
        hf_runner.set_response("hf 14a config", "")
        hf_runner.set_response("hf mf wrbl", "[!!] Write block 0 failed")
        hf_dumped.proceed_to_write()
        hf_dumped.detect_blank()

        state = hf_dumped.write_clone()

        assert isinstance(state, Error)
        commands = hf_runner.commands()
        assert commands[-1] == cb.GEN2_RESTORE_CONFIG
        assert not any(cmd.startswith("hf mf restore") for cmd in commands)

    def test_verify_uid_mismatch(self, hf_dumped, hf_runner, sample_classic_1k_output):
        hf_dumped.proceed_to_write()
        hf_dumped.detect_blank()
        hf_dumped.write_clone()
        hf_runner.set_response(
            cb.HF_SEARCH, sample_classic_1k_output.replace("01 02 03 04", "0A 0B 0C 0D")
        )

        state = hf_dumped.verify_clone()

        assert state == VerificationComplete(success=False, mismatched_blocks=[0])

    def test_verify_block_compare(self, hf_dumped, hf_runner, classic_dump, tmp_path):
        """Blocks that differ in the readback dump should be reported."""
        readback = tmp_path / "readback.bin"
        data = bytearray(bytes.fromhex(BLOCK0) + bytes(48))
        data[40] = 0xFF
        readback.write_bytes(bytes(data))
        hf_runner.set_response("hf mf cview", f"[+] saved 64 blocks to file {readback}")
        hf_dumped.proceed_to_write()
        hf_dumped.detect_blank()
        hf_dumped.write_clone()

        state = hf_dumped.verify_clone()

        assert state == VerificationComplete(success=False, mismatched_blocks=[2])

    def test_write_without_dump(self, connected, hf_runner):
        """A Classic card loaded without key recovery has no dump to write."""
        connected.scan_card()
        connected.proceed_to_write()
        connected.detect_blank()

        state = connected.write_clone()

        assert isinstance(state, Error)
        assert "Run key recovery first" in state.user_message


# ============================================================================
# Navigation and erase
# ============================================================================


class TestNavigation:

    def test_retry_after_error(self, connected, mock_runner, sample_no_lf_output, sample_no_hf_output):
        mock_runner.set_response(cb.LF_SEARCH, sample_no_lf_output)
        mock_runner.set_response(cb.HF_SEARCH, sample_no_hf_output)
        connected.scan_card()

        assert connected.retry() == Idle()

    def test_soft_reset_keeps_device(self, connected, mock_runner, sample_no_lf_output, sample_no_hf_output):
        mock_runner.set_response(cb.LF_SEARCH, sample_no_lf_output)
        mock_runner.set_response(cb.HF_SEARCH, sample_no_hf_output)
        connected.scan_card()

        state = connected.soft_reset()

        assert isinstance(state, DeviceConnected)
        assert state.port == PORT

    def test_reset(self, lf_identified, lf_runner):
        assert lf_identified.reset() == Idle()
        assert lf_runner.cancel_requested
        assert lf_identified.card_data is None

    def test_detect_blank_wrong_state(self, connected):
        with pytest.raises(InvalidTransitionError):
            connected.detect_blank()
        assert isinstance(connected.state, DeviceConnected)


class TestEraseBlank:
    """Tests for the standalone erase operation."""

    def test_erase_t5577(self, connected, lf_runner, event_bus):
        assert connected.erase_blank() is True
        result = events_of(event_bus, OperationResultEvent)[-1]
        assert result.operation_type == "erase"
        assert result.success
        assert "T5577" in result.message

    def test_erase_no_chip(self, connected, mock_runner, sample_t5577_not_found_output):
        mock_runner.set_response(cb.T5577_DETECT, sample_t5577_not_found_output)
        mock_runner.set_response(cb.EM4305_INFO, "[-] No tag found")

        assert connected.erase_blank() is False

    def test_erase_em4305(self, connected, mock_runner, sample_t5577_not_found_output, event_bus):
        mock_runner.set_response(cb.T5577_DETECT, sample_t5577_not_found_output)
        mock_runner.set_response(cb.EM4305_INFO, "[+] Chip type..... EM4305/EM4469")
        mock_runner.set_response("lf em 4x05 wipe", "[+] Done")
        mock_runner.set_response(cb.EM4305_READ_WORD0, "[+] Address 00 | 00000000 | ....")

        assert connected.erase_blank() is True
        assert "EM4305" in events_of(event_bus, OperationResultEvent)[-1].message

    def test_erase_em4305_not_cleared(self, connected, mock_runner, sample_t5577_not_found_output):
        """Word 0 left non-zero after the wipe should fail the erase."""
        mock_runner.set_response(cb.T5577_DETECT, sample_t5577_not_found_output)
        mock_runner.set_response(cb.EM4305_INFO, "[+] Chip type..... EM4305/EM4469")
        mock_runner.set_response("lf em 4x05 wipe", "[+] Done")
        mock_runner.set_response(cb.EM4305_READ_WORD0, "[+] Address 00 | 0000A5F0 | ....")

        assert connected.erase_blank() is False

    def test_erase_client_failure_propagates(
        self, connected, mock_runner, sample_t5577_not_found_output, event_bus
    ):
        mock_runner.set_response(cb.T5577_DETECT, sample_t5577_not_found_output)
        mock_runner.set_response(cb.EM4305_INFO, InvalidCommandError("Invalid characters in command"))

        assert connected.erase_blank() is False
        assert events_of(event_bus, ErrorEvent)[-1].message == "Invalid characters in command"
        assert not any("wipe" in cmd for cmd in mock_runner.commands())

    def test_erase_reports_errors(self, connected, lf_runner):
        lf_runner.set_response("lf t55xx wipe", "[!!] Error writing block 0")
        assert connected.erase_blank() is False

    def test_erase_does_not_change_state(self, connected, lf_runner):
        connected.erase_blank()
        assert isinstance(connected.state, DeviceConnected)
