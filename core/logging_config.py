"""
Structlog 日志配置模块
"""
import logging
import json
import structlog
from structlog.processors import TimeStamper, add_log_level, JSONRenderer
from structlog.dev import ConsoleRenderer
from structlog.contextvars import merge_contextvars
from structlog.stdlib import ProcessorFormatter
from typing import Any, List

from core.config import settings


def get_renderer() -> Any:
    """DEBUG 时使用控制台渲染，否则输出 JSON 行，便于日志采集。"""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    # structlog 会向 serializer 传入 default 等关键字参数
    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)
    return JSONRenderer(serializer=_dumps)


def _resolve_level() -> int:
    if settings.DEBUG:
        return logging.DEBUG
    level = logging.getLevelName(settings.LOG_LEVEL)
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> None:
    """配置 structlog 并桥接标准库 logging（httpx / sqlalchemy 日志走同一渲染链）。"""
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            get_renderer(),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_resolve_level())

    # httpx 每个请求都会打 INFO，链上轮询时过于嘈杂
    logging.getLogger("httpx").setLevel(logging.WARNING)
    # SQL 回显由 DATABASE__ECHO 控制，与根日志级别无关
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)


configure_logging()
