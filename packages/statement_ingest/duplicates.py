"""Fingerprints and duplicate partitioning for imports.

A transaction's identity within an account is the tuple
``(account_id, date, amount, description)``. Descriptions are compared after
NFKC normalization, whitespace collapsing and case folding, so re-exports of
the same statement that only differ in spacing or case are still recognised.

Matching is exact; there is no fuzzy date or amount tolerance.
"""

from __future__ import annotations

import hashlib
import json
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from .logging_setup import get_logger
from .models import ParsedTransaction
from .normalizers import quantize_cents

_logger = get_logger("statement_ingest.duplicates")


def normalize_description(raw: str | None) -> str:
    """Return the case/whitespace-insensitive key used in fingerprints."""

    if raw is None:
        return ""
    s = unicodedata.normalize("NFKC", str(raw))
    # Collapse internal whitespace (including newlines/tabs) and case-fold
    return " ".join(s.split()).casefold()


def compute_fingerprint(account_id: str, date: str, amount: Decimal, description: str) -> str:
    """Compute a stable SHA-256 fingerprint over the identity fields.

    Fields used: account id (as given), ISO date, amount (2dp string) and the
    normalized description.
    """

    payload = {
        "account_id": account_id,
        "date": date,
        "amount": f"{quantize_cents(amount):.2f}",
        "description": normalize_description(description),
    }
    # Ensure deterministic JSON serialization
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def fingerprint_of(account_id: str, tx: ParsedTransaction) -> str:
    return compute_fingerprint(account_id, tx.date, tx.amount, tx.description)


@dataclass(frozen=True, slots=True)
class Candidate:
    """A transaction accepted for insertion, with its fingerprint."""

    position: int
    transaction: ParsedTransaction
    fingerprint: str


@dataclass(slots=True)
class DedupResult:
    added: list[Candidate] = field(default_factory=list)
    duplicates: list[Candidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _coerce(item: ParsedTransaction | Mapping[str, Any]) -> ParsedTransaction:
    if isinstance(item, ParsedTransaction):
        return item
    if isinstance(item, Mapping):
        return ParsedTransaction.from_dict(item)
    raise TypeError(f"unsupported transaction payload: {type(item).__name__}")


def partition_new(
    account_id: str,
    candidates: Iterable[ParsedTransaction | Mapping[str, Any]],
    existing_fingerprints: Iterable[str],
) -> DedupResult:
    """Split ``candidates`` into new rows and duplicates.

    A candidate is a duplicate when its fingerprint is already stored for the
    account or appeared earlier in the same batch (first occurrence wins).
    Mapping payloads (as sent back by the review UI) are validated; invalid
    ones are reported in ``errors`` and skipped.
    """

    seen = set(existing_fingerprints)
    result = DedupResult()
    for position, item in enumerate(candidates):
        try:
            tx = _coerce(item)
        except (ValueError, TypeError) as exc:
            result.errors.append(f"transaction {position + 1}: {exc}; skipped")
            continue
        fp = fingerprint_of(account_id, tx)
        candidate = Candidate(position=position, transaction=tx, fingerprint=fp)
        if fp in seen:
            result.duplicates.append(candidate)
            continue
        seen.add(fp)
        result.added.append(candidate)

    _logger.debug(
        "dedup for %s: %d new, %d duplicate, %d invalid",
        account_id,
        len(result.added),
        len(result.duplicates),
        len(result.errors),
    )
    return result


__all__ = [
    "normalize_description",
    "compute_fingerprint",
    "fingerprint_of",
    "Candidate",
    "DedupResult",
    "partition_new",
]
