"""
# Logging Manager

Central logger factory. Every module obtains its logger through `get_logger()` so that
handler setup happens exactly once and component tags are applied consistently:

```python
from school_tenancy.managers.logging_manager import get_logger

logger = get_logger(prefix="[TenantRegistry]")
logger.info("Resolved tenant %s", "P")
# 2026-01-01 10:00:00 | INFO | school_tenancy | [TenantRegistry] Resolved tenant P
```
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

from school_tenancy.config import settings

DEFAULT_LOGGER_NAME = "school_tenancy"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


class PrefixedLoggerAdapter(logging.LoggerAdapter):
    """Prepends a component tag such as `[IdAllocator]` to every message."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            return f"{self.prefix} {msg}", kwargs
        return msg, kwargs


def _configure_root(level: str) -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger(DEFAULT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    _configured = True


def get_logger(name: str = DEFAULT_LOGGER_NAME, prefix: Optional[str] = None) -> PrefixedLoggerAdapter:
    """
    Return a logger adapter for `name`, tagged with `prefix`.

    Args:
        name: Logger name; children of `school_tenancy` share its handler.
        prefix: Component tag prepended to each message, e.g. `"[SchemaBinder]"`.
    """
    _configure_root(settings.LOG_LEVEL)
    return PrefixedLoggerAdapter(logging.getLogger(name), prefix or "")
