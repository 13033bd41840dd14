"""
Application errors.

Every error carries the text and recovery action the wizard shows when the
controller turns it into an Error state.
"""

from ..models.cards import RecoveryAction


class AppError(Exception):
    """Base class for Phosphor errors."""

    user_message = "Something went wrong"
    recovery_action = RecoveryAction.RETRY
    recoverable = True

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.message = message
        if user_message is not None:
            self.user_message = user_message


class DeviceNotFoundError(AppError):
    """No Proxmark3 answered on any candidate port."""
    user_message = "No Proxmark3 found. Check the USB cable and try again."
    recovery_action = RecoveryAction.RECONNECT


class CommandFailedError(AppError):
    """The client ran but reported failure, or refused the arguments."""
    user_message = "The Proxmark3 command failed."


class InvalidCommandError(CommandFailedError):
    """Port or command text failed validation before spawning."""
    user_message = "Refused to run an unsafe command."
    recovery_action = RecoveryAction.MANUAL
    recoverable = False


class BinaryNotFoundError(CommandFailedError):
    """The proxmark3 client could not be started from any location."""
    user_message = "The proxmark3 client could not be started. Check its installation path."
    recovery_action = RecoveryAction.RECONNECT


class OperationCancelledError(CommandFailedError):
    """A streaming operation was cancelled; the card state is unknown."""
    user_message = "Operation cancelled."
    recovery_action = RecoveryAction.GO_BACK


class PM3TimeoutError(AppError):
    """The client did not finish within the allotted time."""
    user_message = "The Proxmark3 did not respond in time."


class NoCardFoundError(AppError):
    user_message = "No card detected. Place the card on the reader and try again."


class WriteFailedError(AppError):
    user_message = "Writing to the blank failed."


class InvalidTransitionError(AppError):
    """The wizard refused an action in its current state."""
    user_message = "That step is not available right now."
    recovery_action = RecoveryAction.GO_BACK


class ConfigError(AppError):
    user_message = "The configuration could not be applied."
    recovery_action = RecoveryAction.MANUAL
