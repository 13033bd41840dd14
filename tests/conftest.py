"""
Pytest configuration and shared fixtures.
"""

import pytest
import sys
import os
import json
import logging

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from phosphor.events.event_bus import EventBus
from phosphor.models.device import DeviceInfo, HwVersionInfo


PORT = "/dev/ttyACM0"


# ============================================================================
# Config files
# ============================================================================


@pytest.fixture
def temp_config_file(tmp_path):
    """Create a current-version config file for testing."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "_version": 2,
        "pm3_path": None,
        "preferred_port": "/dev/ttyACM1",
        "command_timeout": 20,
        "stream_timeout": 1800,
        "verbose": True,
        "log_level": "INFO",
        "recent_ports": ["/dev/ttyACM1"],
    }))
    return str(path)


@pytest.fixture
def temp_config_v0(tmp_path):
    """Create a v0 (unversioned) config file for migration testing."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "timeout": 10,
        "window": {"width": 1024, "height": 768},
    }))
    return str(path)


@pytest.fixture
def temp_config_v1(tmp_path):
    """Create a v1 config file with the single timeout key."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "_version": 1,
        "pm3_path": "/opt/pm3/proxmark3",
        "preferred_port": None,
        "timeout": 15,
        "verbose": True,
    }))
    return str(path)


@pytest.fixture
def corrupted_config_file(tmp_path):
    """Create a corrupted config file for error handling testing."""
    path = tmp_path / "config.json"
    path.write_text("{ invalid json content")
    return str(path)


@pytest.fixture
def mock_config_service():
    """Create a mock config service for testing."""
    from phosphor.services.config_service import MockConfigService
    return MockConfigService()


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def event_bus():
    """Create a fresh EventBus for testing."""
    EventBus.reset_instance()
    bus = EventBus.instance()
    bus.enable_logging(True)
    yield bus
    EventBus.reset_instance()


@pytest.fixture
def device_info():
    return DeviceInfo(
        port=PORT,
        model="Proxmark3 RFID instrument",
        firmware="os: RRG/Iceman/master/v4.18218",
        hw_info=HwVersionInfo(
            client_version="RRG/Iceman/master/v4.18218",
            os_version="RRG/Iceman/master/v4.18218",
        ),
    )


@pytest.fixture
def mock_runner(device_info):
    """MockProcessRunner with a device attached on /dev/ttyACM0."""
    from phosphor.services.process_runner import MockProcessRunner

    runner = MockProcessRunner()
    runner.set_device(device_info)
    return runner


@pytest.fixture
def restore_logging():
    """Undo configure_logging() changes to the package logger."""
    logger = logging.getLogger("phosphor")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


# ============================================================================
# Sample proxmark3 output
# ============================================================================


@pytest.fixture
def sample_hw_version_output():
    """Sample output from `hw version` with matching client and firmware."""
    return """[ Proxmark3 RFID instrument ]

 [ CLIENT ]
  client: RRG/Iceman/master/v4.18218 2024-01-01 00:00:00

 [ ARM ]
  bootrom: RRG/Iceman/master/v4.18218 2024-01-01 00:00:00
       os: RRG/Iceman/master/v4.18218 2024-01-01 00:00:00

 [ Hardware ]
  --= uC: AT91SAM7S512 Rev B
"""


@pytest.fixture
def sample_em4100_output():
    """Sample output from `lf search` with an EM4100 card."""
    return """[=] NOTE: some demods output possible binary
[+] EM 410x ID 0F00112233
[+] EM410x ( RF/64 )
[=] -------- Possible de-scramble patterns ---------
[+] Unique TAG ID      : F000448844

[+] Valid EM410x ID found!
"""


@pytest.fixture
def sample_hid_output():
    """Sample output from `lf search` with an HID Prox card."""
    return """[+] [H10301  ] HID H10301 26-bit                FC: 65  CN: 1337 parity ( ok )
[=] found 1 matching format
[+] DemodBuffer:
[+] raw: 200078BE5E1E

[+] Valid HID Prox ID found!
"""


@pytest.fixture
def sample_no_lf_output():
    return """[=] Checking for known tags...
[-] No known 125/134 kHz tags found!
"""


@pytest.fixture
def sample_classic_1k_output():
    """Sample output from `hf search` with a MIFARE Classic 1K."""
    return """[+]  UID: 01 02 03 04
[+] ATQA: 00 04
[+]  SAK: 08 [2]
[+] Possible types:
[+]    MIFARE Classic 1K
[=] proprietary non iso14443-4 card found, RATS not supported
[+] Prng detection....... weak
[?] Hint: try `hf mf` commands

[+] Valid ISO 14443-A tag found
"""


@pytest.fixture
def sample_no_hf_output():
    return """[-] No known/supported 13.56 MHz tags found
"""


@pytest.fixture
def sample_t5577_detect_output():
    """Sample output from `lf t55xx detect` on a clean blank."""
    return """[=]  Chip type......... T55x7
[=]  Modulation........ ASK
[=]  Bit rate.......... 2 - RF/32
[=]  Inverted.......... No
[=]  Offset............ 33
[=]  Seq. terminator... Yes
[=]  Block0............ 00148040 (auto detect)
[=]  Downlink mode..... default/fixed bit length
[=]  Password set...... No
"""


@pytest.fixture
def sample_t5577_locked_output():
    """Sample output from `lf t55xx detect` on a password-protected blank."""
    return """[=]  Chip type......... T55x7
[=]  Modulation........ ASK
[=]  Block0............ 00148050 (auto detect)
[=]  Password set...... Yes
[=]  Password.......... 51243648
"""


@pytest.fixture
def sample_t5577_not_found_output():
    return """[!] Could not detect modulation automatically. Try setting it manually with 'lf t55xx config'
"""


@pytest.fixture
def sample_autopwn_output():
    """Sample streamed `hf mf autopwn --1k` output."""
    return """[=] MIFARE Classic 1K detected
[+] found 24/32 keys (D)
[+] Found valid key [ A0A1A2A3A4A5 ]
[=] Nested attack
[+] Succeeded in dumping all blocks
[+] saved 64 blocks to file hf-mf-01020304-dump.bin
[=] autopwn execution time: 42 seconds
"""


@pytest.fixture
def sample_hf_14a_info_output():
    return """[+]  UID: 01 02 03 04
[+] ATQA: 00 04
[+]  SAK: 08 [2]
"""


@pytest.fixture
def sample_gen1a_info_output():
    return """[=] --- ISO14443-a Information ---------------------
[+]  UID: 01 02 03 04
[+] Magic capabilities... Gen 1a
"""


@pytest.fixture
def sample_empty_block_output():
    """`hf mf cgetblk --blk 4` on an empty card."""
    return """[=]   # | data                                            | ascii
[=] ----+-------------------------------------------------+-----------------
[=]   4 | 00 00 00 00 00 00 00 00 00 00 00 00 00 00 00 00 | ................
"""
