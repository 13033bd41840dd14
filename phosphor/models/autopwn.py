"""
Events decoded from streamed `hf mf autopwn` output, one per line.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class AutopwnEvent:
    """Base class for autopwn line events."""
    pass


@dataclass(frozen=True)
class DictionaryProgress(AutopwnEvent):
    found: int
    total: int


@dataclass(frozen=True)
class KeyFound(AutopwnEvent):
    key: str


@dataclass(frozen=True)
class DarksideStarted(AutopwnEvent):
    pass


@dataclass(frozen=True)
class NestedStarted(AutopwnEvent):
    pass


@dataclass(frozen=True)
class HardnestedStarted(AutopwnEvent):
    pass


@dataclass(frozen=True)
class StaticnestedStarted(AutopwnEvent):
    pass


@dataclass(frozen=True)
class DumpComplete(AutopwnEvent):
    file_path: str = ""


@dataclass(frozen=True)
class DumpPartial(AutopwnEvent):
    file_path: str = ""


@dataclass(frozen=True)
class Failed(AutopwnEvent):
    reason: str


@dataclass(frozen=True)
class Finished(AutopwnEvent):
    time_secs: int
