from __future__ import annotations

import logging
import sys
import time
import uuid
from typing import Any, Dict

import structlog
from fastapi import Request

SERVICE_NAME = "hopelink-matching"

# Libraries that log every statement or connection at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncpg", "uvicorn.access")

log = structlog.get_logger("request")


def _stamp_service(env: str):  # type: ignore[no-untyped-def]
    def processor(
        logger: Any, method_name: str, event_dict: Dict[str, Any]
    ) -> Dict[str, Any]:
        event_dict["level"] = method_name
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("env", env)
        return event_dict

    return processor


def configure_logging(env: str = "development") -> None:
    """Route structlog and stdlib logging to stdout.

    Production renders JSON lines for the log shipper; other environments get
    the coloured console renderer and DEBUG level.
    """
    production = env == "production"
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.INFO if production else logging.DEBUG,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if production
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            _stamp_service(env),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Tag every log line of a request with its id and log the outcome.

    The id comes from the caller's ``x-request-id`` header when present and
    is echoed back on the response.
    """
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=request.method, path=request.url.path
    )

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        log.exception(
            "request.failed",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        raise

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    log.info("request.completed", status=response.status_code, duration_ms=elapsed_ms)
    structlog.contextvars.clear_contextvars()
    response.headers["x-request-id"] = request_id
    return response
