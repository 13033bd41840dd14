"""
Services - Business logic layer with no Qt dependencies.

Services handle all proxmark3 interaction and can be easily unit tested.
"""

from .interfaces import IProcessRunner, IConfigService
from .errors import (
    AppError,
    DeviceNotFoundError,
    CommandFailedError,
    InvalidCommandError,
    BinaryNotFoundError,
    OperationCancelledError,
    PM3TimeoutError,
    NoCardFoundError,
    WriteFailedError,
    InvalidTransitionError,
    ConfigError,
)
from .process_runner import ProcessRunner, MockProcessRunner
from .wizard_machine import WizardMachine
from .config_service import ConfigService, MockConfigService

__all__ = [
    # Interfaces
    "IProcessRunner",
    "IConfigService",
    # Errors
    "AppError",
    "DeviceNotFoundError",
    "CommandFailedError",
    "InvalidCommandError",
    "BinaryNotFoundError",
    "OperationCancelledError",
    "PM3TimeoutError",
    "NoCardFoundError",
    "WriteFailedError",
    "InvalidTransitionError",
    "ConfigError",
    # Services
    "ProcessRunner",
    "WizardMachine",
    "ConfigService",
    # Mocks for testing
    "MockProcessRunner",
    "MockConfigService",
]
