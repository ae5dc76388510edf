"""
Stage Automation Engine
Task materialization, dependent-task resolution and stage advancement for orders.
"""
from .service import AutomationService
from .exceptions import AutomationError

__all__ = [
    "AutomationService",
    "AutomationError",
]
