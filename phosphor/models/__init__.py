"""
Models - Pure Python dataclasses representing cards, blanks and wizard state.

No Qt dependencies in this package.
"""

from .cards import (
    Frequency,
    CardType,
    BlankType,
    MagicGeneration,
    RecoveryAction,
    ProcessPhase,
    CardData,
    CardSummary,
    T5577Status,
)
from .device import DeviceInfo, HwVersionInfo
from .config import AppConfig, CONFIG_VERSION

__all__ = [
    "Frequency",
    "CardType",
    "BlankType",
    "MagicGeneration",
    "RecoveryAction",
    "ProcessPhase",
    "CardData",
    "CardSummary",
    "T5577Status",
    "DeviceInfo",
    "HwVersionInfo",
    "AppConfig",
    "CONFIG_VERSION",
]
