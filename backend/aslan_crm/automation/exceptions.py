"""
Automation engine errors.

Only genuine failures are raised. "Not yet" conditions (missing or
incomplete tasks, disabled chain, terminal stage, held lock) are returned
as StageOutcome values instead.
"""
from fastapi import status


class AutomationError(Exception):
    """Base class; status_code is used by the API exception handler."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class OrderNotFound(AutomationError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, order_id: int):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class TaskNotFound(AutomationError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, task_id: int):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class SettingNotFound(AutomationError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, setting_id: int):
        super().__init__(f"Automation setting not found: {setting_id}")
        self.setting_id = setting_id


class ChainLinkNotFound(AutomationError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, link_id: int):
        super().__init__(f"Stage chain link not found: {link_id}")
        self.link_id = link_id


class SettingValidationError(AutomationError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidDependencyError(SettingValidationError):
    """Dependency points at a missing setting or one in another stage."""


class DependencyCycleError(SettingValidationError):
    def __init__(self, cycle: list[int]):
        path = " -> ".join(str(node) for node in cycle)
        super().__init__(f"Dependency cycle detected: {path}")
        self.cycle = cycle


class LastStageSettingError(AutomationError):
    status_code = status.HTTP_409_CONFLICT


class ChainConflictError(AutomationError):
    status_code = status.HTTP_409_CONFLICT


class TaskStateError(AutomationError):
    """Task is not in a state that allows the requested transition."""
    status_code = status.HTTP_409_CONFLICT
