"""
Event system for decoupled communication between components.
"""

from .event_bus import EventBus, WizardEvent

__all__ = ["EventBus", "WizardEvent"]
