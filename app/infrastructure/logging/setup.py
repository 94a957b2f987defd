"""structlog setup for Courier.

``configure_logging`` runs once on import; modules then call
``get_module_logger()`` at module level and log snake_case events.
"""

import inspect
import logging
import sys
from typing import List, Optional

import structlog
from structlog.stdlib import BoundLogger
from structlog.typing import Processor

from infrastructure.configuration import settings
from infrastructure.logging.formatters import (
    add_app_info,
    mask_sensitive_data,
    truncate_large_values,
)

# Level above CRITICAL, used to mute all output under pytest
SILENT = logging.CRITICAL + 1


def _running_under_pytest() -> bool:
    return "pytest" in sys.modules


def _processors(render_json: bool) -> List[Processor]:
    callsite = structlog.processors.CallsiteParameterAdder(
        parameters=[
            structlog.processors.CallsiteParameter.FILENAME,
            structlog.processors.CallsiteParameter.LINENO,
            structlog.processors.CallsiteParameter.FUNC_NAME,
        ]
    )
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if render_json
        else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        callsite,
        add_app_info("courier", settings.GIT_SHA),
        # Raw push tokens and key secrets are redacted before rendering
        mask_sensitive_data(),
        truncate_large_values(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(
    log_level: Optional[str] = None,
    is_production: Optional[bool] = None,
) -> BoundLogger:
    """Configure structlog and the stdlib root logger.

    Production renders one JSON object per line, development uses the
    console renderer. Under pytest nothing is emitted.

    Args:
        log_level: Overrides ``LOG_LEVEL``
        is_production: Overrides ``settings.is_production``
    """
    if _running_under_pytest():
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        logging.basicConfig(format="%(message)s", level=SILENT, force=True)
        logging.root.setLevel(SILENT)
        return structlog.stdlib.get_logger()

    if is_production is None:
        is_production = settings.is_production
    level_name = (log_level or settings.LOG_LEVEL).upper()

    structlog.configure(
        processors=_processors(render_json=is_production),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name, logging.INFO),
    )
    return structlog.stdlib.get_logger()


logger: BoundLogger = configure_logging()


def get_module_logger() -> BoundLogger:
    """Logger bound to the calling module.

    ``modules.notifications.dispatcher`` logs with
    ``component="dispatcher"`` and the full dotted ``module_path``.
    """
    frame = inspect.currentframe()
    caller = frame.f_back if frame is not None else None
    module = inspect.getmodule(caller) if caller is not None else None
    if module is None:
        return logger.bind(component="unknown")

    name = module.__name__
    return logger.bind(component=name.rsplit(".", 1)[-1], module_path=name)
