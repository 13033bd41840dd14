"""
Controllers - Coordinate between services and views.

Controllers handle user actions and orchestrate service calls.
"""

from .wizard_controller import WizardController, AutopwnTracker
from .config_controller import ConfigController

__all__ = [
    "WizardController",
    "AutopwnTracker",
    "ConfigController",
]
