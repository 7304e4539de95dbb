"""Logging for ``statement_ingest``.

Entry points (the CLI, a web host) call :func:`configure_logging` once; it
puts one ``StreamHandler`` on the ``"statement_ingest"`` logger and stops
propagation to the root logger. Library modules never touch handlers. They
use :func:`get_logger` and, for per-upload messages, :func:`job_logger`,
which prefixes every record with the parse job id so interleaved uploads
can be told apart in the output.

Environment
-----------
``STATEMENT_INGEST_LOG_LEVEL``
    Level used when ``configure_logging`` is called without one.
``STATEMENT_INGEST_LOG_FORMAT``
    Format string used when ``configure_logging`` is called without one.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import IO, Any

ROOT_LOGGER = "statement_ingest"
LEVEL_ENV_VAR = "STATEMENT_INGEST_LOG_LEVEL"
FORMAT_ENV_VAR = "STATEMENT_INGEST_LOG_FORMAT"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler: logging.Handler | None = None


def resolve_level(value: int | str | None) -> int:
    """Map ``10``/``"10"``/``"debug"`` style values to a logging level.

    ``None`` or an unrecognized name falls back to the environment, then INFO.
    """

    if isinstance(value, int):
        return value
    for candidate in (value, os.getenv(LEVEL_ENV_VAR)):
        if not candidate or not candidate.strip():
            continue
        name = candidate.strip().upper()
        if name.isdigit():
            return int(name)
        level = logging.getLevelNamesMapping().get(name)
        if level is not None:
            return level
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach the package handler. Later calls are no-ops.

    Parameters
    ----------
    level:
        ``int`` or level name; see :func:`resolve_level`.
    fmt:
        ``logging.Formatter`` format string. Defaults to
        ``STATEMENT_INGEST_LOG_FORMAT`` or :data:`DEFAULT_FORMAT`.
    stream:
        Destination for records; the process stderr by default.
    """

    global _handler
    if _handler is not None:
        return

    pkg = logging.getLogger(ROOT_LOGGER)
    for existing in [h for h in pkg.handlers if isinstance(h, logging.NullHandler)]:
        pkg.removeHandler(existing)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or os.getenv(FORMAT_ENV_VAR) or DEFAULT_FORMAT))

    pkg.setLevel(resolved)
    pkg.addHandler(handler)
    pkg.propagate = False
    _handler = handler


def get_logger(name: str) -> logging.Logger:
    """Logger for a package module, silent until :func:`configure_logging` runs."""

    pkg = logging.getLogger(ROOT_LOGGER)
    if _handler is None and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


class JobLogAdapter(logging.LoggerAdapter):
    """Prefix messages with ``[job <id>]`` and expose the id as ``job_id``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        job_id = (self.extra or {}).get("job_id")
        kwargs.setdefault("extra", {}).update(self.extra or {})
        return f"[job {job_id}] {msg}", kwargs


def job_logger(name: str, job_id: str) -> JobLogAdapter:
    return JobLogAdapter(get_logger(name), {"job_id": job_id})


__all__ = [
    "ROOT_LOGGER",
    "LEVEL_ENV_VAR",
    "FORMAT_ENV_VAR",
    "DEFAULT_FORMAT",
    "resolve_level",
    "configure_logging",
    "get_logger",
    "JobLogAdapter",
    "job_logger",
]
