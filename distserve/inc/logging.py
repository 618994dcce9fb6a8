# distserve/inc/logging.py
from __future__ import annotations
import logging
import logging.handlers
import os
import shlex
import sys
import time
from typing import Any, Dict, Optional

from aiohttp import web

from distserve.inc.capture import ResponseCapture, DEFAULT_STATUS

logger = logging.getLogger("distserve")
access_logger = logging.getLogger("distserve.access")

dt_fmt = '%Y-%m-%d %H:%M:%S'
formatter = logging.Formatter('[{asctime}] [{levelname:<8}] {name}: {message}', dt_fmt, style='{')

_HANDLER_FLAG = "_distserve_handler"

def _tag(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_FLAG, True)
    handler.setFormatter(formatter)
    return handler

def configure_logging(settings=None, stream=None) -> logging.Logger:
    """Attach the stderr handler (and an optional rotating file) to the `distserve` logger.

    Calling it again replaces the handlers it installed earlier, so tests and the
    CLI can both call it freely.
    """
    level_name = "INFO"
    log_path = os.getenv("DISTSERVE_LOG_PATH", "")
    max_bytes, backup_count = 16 * 1024 * 1024, 3
    if settings is not None:
        level_name = str(settings.get("LOG.level", level_name)).upper()
        log_path = settings.get("LOG.path", log_path) or ""
        max_bytes = settings.get("LOG.max_bytes", max_bytes, int)
        backup_count = settings.get("LOG.backup_count", backup_count, int)

    for h in list(logger.handlers):
        if getattr(h, _HANDLER_FLAG, False):
            logger.removeHandler(h)
            h.close()

    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False
    logger.addHandler(_tag(logging.StreamHandler(stream or sys.stderr)))

    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        logger.addHandler(_tag(logging.handlers.RotatingFileHandler(
            filename=log_path,
            encoding='utf-8',
            maxBytes=max_bytes,
            backupCount=backup_count,
        )))
    return logger


def _escape_controls(s: str) -> str:
    # one request, one line: CR/LF and friends are written as \n, \r, \x1b ...
    return "".join(c if c.isprintable() else c.encode("unicode_escape").decode("ascii") for c in s)

def _fmt_value(v: Any) -> str:
    s = _escape_controls(str(v))
    if s == "" or any(c.isspace() for c in s) or '"' in s or "'" in s:
        return shlex.quote(s)
    return s


class AccessLogger:
    """One record per request, written after the response has gone out.

    Fields: method, path, user_agent, status_code, latency (seconds).
    A capture that never saw a status flush is logged with status_code=0.
    """

    def __init__(self, log: Optional[logging.Logger] = None, clock=time.perf_counter):
        self.log = log or access_logger
        self._clock = clock

    def fields(self, request: web.Request, capture: Optional[ResponseCapture]) -> Dict[str, Any]:
        if capture is None:
            status, latency = DEFAULT_STATUS, 0.0
        else:
            status = capture.status if capture.status is not None else DEFAULT_STATUS
            latency = max(0.0, self._clock() - capture.started)
        return {
            "method": request.method,
            "path": request.path,
            "user_agent": request.headers.get("User-Agent", ""),
            "status_code": status,
            "latency": latency,
        }

    def log_request(self, request: web.Request, capture: Optional[ResponseCapture]):
        try:
            fields = self.fields(request, capture)
            shown = dict(fields, latency=f"{fields['latency']:.6f}")
            line = " ".join(f"{k}={_fmt_value(v)}" for k, v in shown.items())
            self.log.info(line, extra={"access": fields})
        except Exception:
            # the response is already on the wire
            logger.exception("[access] failed to write access record")
