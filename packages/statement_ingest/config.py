"""Runtime settings for statement ingestion.

Values come from environment variables (the CLI loads a local ``.env`` first
via ``python-dotenv``). Library callers may also construct
:class:`IngestSettings` directly, e.g. in tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, TypeAlias

DateOrder: TypeAlias = Literal["MDY", "DMY"]

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_PREVIEW_LIMIT = 100
DEFAULT_EVENT_LOG_SIZE = 1000


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class IngestSettings:
    """Tunable limits and parsing policy.

    Attributes
    ----------
    max_upload_bytes:
        Hard ceiling on upload size. A file of exactly this size is accepted.
    preview_limit:
        Maximum number of transactions copied into a job's preview payload.
        ``0`` disables truncation.
    date_order:
        Locale assumption for ambiguous numeric dates such as ``01/02/03``.
        Applied to the whole file, never guessed per row.
    event_log_size:
        Capacity of the ingestion event ring buffer.
    debug:
        Development context; decoder messages are surfaced to users.
    """

    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    preview_limit: int = DEFAULT_PREVIEW_LIMIT
    date_order: DateOrder = "MDY"
    event_log_size: int = DEFAULT_EVENT_LOG_SIZE
    debug: bool = False

    def __post_init__(self) -> None:
        if self.max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be a positive integer")
        if self.preview_limit < 0:
            raise ValueError("preview_limit must be >= 0")
        if self.date_order not in ("MDY", "DMY"):
            raise ValueError(f"unsupported date_order: {self.date_order!r}")
        if self.event_log_size < 1:
            raise ValueError("event_log_size must be a positive integer")

    @classmethod
    def from_env(cls) -> IngestSettings:
        """Build settings from ``SI_*`` environment variables."""

        order = (os.getenv("SI_DATE_ORDER") or "MDY").strip().upper()
        return cls(
            max_upload_bytes=_env_int("SI_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES, minimum=1),
            preview_limit=_env_int("SI_PREVIEW_LIMIT", DEFAULT_PREVIEW_LIMIT),
            date_order=order,  # type: ignore[arg-type]  # validated in __post_init__
            event_log_size=_env_int("SI_EVENT_LOG_SIZE", DEFAULT_EVENT_LOG_SIZE, minimum=1),
            debug=_env_bool("SI_DEBUG"),
        )


__all__ = ["DateOrder", "IngestSettings"]
