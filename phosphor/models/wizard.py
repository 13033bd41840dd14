"""
Wizard states and actions.

States and actions are closed sets of frozen dataclasses. The state machine
in services/wizard_machine.py owns the only valid mapping between them.
"""

from dataclasses import dataclass, field
from typing import Optional, List

from .cards import (
    BlankType,
    CardData,
    CardSummary,
    CardType,
    Frequency,
    ProcessPhase,
    RecoveryAction,
)


@dataclass
class SessionContext:
    """Connected device details, kept across scans until disconnect."""
    port: str
    model: str
    firmware: str


# ============================================================================
# States
# ============================================================================


@dataclass(frozen=True)
class WizardState:
    """Base class for wizard states."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class Idle(WizardState):
    pass


@dataclass(frozen=True)
class DetectingDevice(WizardState):
    pass


@dataclass(frozen=True)
class DeviceConnected(WizardState):
    port: str
    model: str
    firmware: str


@dataclass(frozen=True)
class ScanningCard(WizardState):
    pass


@dataclass(frozen=True)
class CardIdentified(WizardState):
    frequency: Frequency
    card_type: CardType
    card_data: CardData
    cloneable: bool
    recommended_blank: Optional[BlankType] = None


@dataclass(frozen=True)
class HfProcessing(WizardState):
    phase: ProcessPhase
    keys_found: int
    keys_total: int
    elapsed_secs: int = 0


@dataclass(frozen=True)
class HfDumpReady(WizardState):
    dump_info: str


@dataclass(frozen=True)
class WaitingForBlank(WizardState):
    expected_blank: BlankType


@dataclass(frozen=True)
class BlankDetected(WizardState):
    blank_type: BlankType
    ready_to_write: bool
    existing_data_type: Optional[str] = None


@dataclass(frozen=True)
class Writing(WizardState):
    progress: float
    current_block: int = 0
    total_blocks: int = 0


@dataclass(frozen=True)
class Verifying(WizardState):
    pass


@dataclass(frozen=True)
class VerificationComplete(WizardState):
    success: bool
    mismatched_blocks: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class Complete(WizardState):
    source: CardSummary
    target: BlankType
    timestamp: str


@dataclass(frozen=True)
class Error(WizardState):
    message: str
    user_message: str
    recoverable: bool
    recovery_action: RecoveryAction


# ============================================================================
# Actions
# ============================================================================


@dataclass(frozen=True)
class WizardAction:
    """Base class for wizard actions."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class StartDetection(WizardAction):
    pass


@dataclass(frozen=True)
class DeviceFound(WizardAction):
    port: str
    model: str
    firmware: str


@dataclass(frozen=True)
class StartScan(WizardAction):
    pass


@dataclass(frozen=True)
class CardFound(WizardAction):
    frequency: Frequency
    card_type: CardType
    card_data: CardData
    cloneable: bool
    recommended_blank: Optional[BlankType] = None


@dataclass(frozen=True)
class LoadSavedCard(WizardAction):
    frequency: Frequency
    card_type: CardType
    card_data: CardData
    cloneable: bool
    recommended_blank: Optional[BlankType] = None


@dataclass(frozen=True)
class ProceedToWrite(WizardAction):
    blank_type: BlankType


@dataclass(frozen=True)
class StartHfProcess(WizardAction):
    keys_total: int


@dataclass(frozen=True)
class UpdateHfProgress(WizardAction):
    phase: ProcessPhase
    keys_found: int
    keys_total: int
    elapsed_secs: int = 0


@dataclass(frozen=True)
class HfProcessComplete(WizardAction):
    dump_info: str


@dataclass(frozen=True)
class CancelHfProcess(WizardAction):
    pass


@dataclass(frozen=True)
class BlankReady(WizardAction):
    blank_type: BlankType
    existing_data_type: Optional[str] = None


@dataclass(frozen=True)
class ReDetectBlank(WizardAction):
    pass


@dataclass(frozen=True)
class StartWrite(WizardAction):
    pass


@dataclass(frozen=True)
class UpdateWriteProgress(WizardAction):
    progress: float
    current_block: int = 0
    total_blocks: int = 0


@dataclass(frozen=True)
class WriteFinished(WizardAction):
    pass


@dataclass(frozen=True)
class VerificationResult(WizardAction):
    success: bool
    mismatched_blocks: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class MarkComplete(WizardAction):
    source: CardSummary
    target: BlankType


@dataclass(frozen=True)
class BackToScan(WizardAction):
    pass


@dataclass(frozen=True)
class SoftReset(WizardAction):
    pass


@dataclass(frozen=True)
class ReportError(WizardAction):
    message: str
    user_message: str
    recoverable: bool
    recovery_action: RecoveryAction


@dataclass(frozen=True)
class Retry(WizardAction):
    pass


@dataclass(frozen=True)
class Reset(WizardAction):
    pass


@dataclass(frozen=True)
class Disconnect(WizardAction):
    pass
