"""structlog setup shared by the API and the worker processes.

Everything goes through the stdlib root logger so that uvicorn, SQLAlchemy
and our own ``logging.getLogger`` calls end up with the same renderer. The
``role`` passed to :func:`configure_logging` is stamped on every entry, which
is how the listener, the queue consumers and the API are told apart once
their output is shipped to one place.
"""

import logging
import sys

import structlog

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpx", "httpcore")


def _stamp_role(role: str):
    def processor(_logger, _method, event_dict):
        event_dict.setdefault("service", "npmsync")
        event_dict.setdefault("role", role)
        return event_dict

    return processor


def configure_logging(log_level: str = "info", json_output: bool = False, role: str = "api") -> None:
    """Install the structlog pipeline on the root logger.

    Args:
        log_level: debug, info, warning or error.
        json_output: JSON lines for production, a coloured console otherwise.
        role: process role, e.g. ``api``, ``listener`` or ``worker``.
    """
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _stamp_role(role),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_request_context(trace_id: str, user_id: str | None = None) -> None:
    """Attach the request's trace id, and the caller when known, to log entries."""
    if user_id:
        structlog.contextvars.bind_contextvars(trace_id=trace_id, user_id=user_id)
    else:
        structlog.contextvars.bind_contextvars(trace_id=trace_id)


def bind_job_context(job_id: str, queue: str, kind: str) -> None:
    structlog.contextvars.bind_contextvars(job_id=job_id, queue=queue, kind=kind)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
