from functools import wraps
from typing import Callable, Any

from aslan_crm.core.config import settings
from aslan_crm.core.logging import automation_logger


def run_if_automations_enabled(fn: Callable) -> Callable:
    """Decorator to skip execution unless automations are enabled.

    Logs and returns None when automations are disabled.
    """
    @wraps(fn)
    async def wrapper(*args, **kwargs) -> Any:
        if not settings.AUTOMATIONS_ENABLED:
            automation_logger.info(f"Automations disabled, skipping {fn.__name__}")
            return None
        return await fn(*args, **kwargs)
    return wrapper
