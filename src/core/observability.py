"""
Observability — конфигурация структурного логирования (structlog)

Production: JSON для агрегации логов. Development: цветной console вывод.
Уровень логирования берётся из LOG_LEVEL (по умолчанию INFO).

Usage:
    from src.core.observability import configure_structlog

    configure_structlog(environment="production")

    import structlog
    log = structlog.get_logger()
    log.info("tokens_purchased", market_id=0, tokens_out=...)
"""

import logging
import os
from contextlib import contextmanager
from typing import Iterator

import structlog
from structlog.typing import Processor

from src.core.errors import QuorumMarketError

LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_structlog(environment: str = "production") -> None:
    """
    Конфигурация structlog. Вызывается один раз при старте приложения.

    Args:
        environment: 'production' (JSON) или 'development' (console)
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_component_logger(component: str) -> structlog.typing.FilteringBoundLogger:
    """Logger с предзаполненным полем component."""
    return structlog.get_logger().bind(component=component)


@contextmanager
def log_rejections(
    log: structlog.typing.FilteringBoundLogger, operation: str, **fields
) -> Iterator[None]:
    """Логирует доменный отказ (warning + code) и пробрасывает исключение дальше."""
    try:
        yield
    except QuorumMarketError as e:
        log.warning(f"{operation}_rejected", code=e.code, error=str(e), **fields)
        raise
