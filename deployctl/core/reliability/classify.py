"""
Failure classification — map a failed Receipt to a known category.

Patterns are evaluated top to bottom; the first match wins. The order
matters: a database socket error also says "No such file or directory",
so database patterns are checked before the missing-binary ones.

Output the table does not recognise classifies as None, which the
retrying executor treats as terminal (``unclassified``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from deployctl.core.errors import ErrorKind
from deployctl.core.models.receipt import Receipt


class FailureCategory(StrEnum):
    LOCK_HELD = "lock_held"
    PACKAGE_MISSING = "package_missing"
    BINARY_MISSING = "binary_missing"
    DATABASE_UNREACHABLE = "database_unreachable"


CATEGORY_KINDS: dict[FailureCategory, ErrorKind] = {
    FailureCategory.LOCK_HELD: ErrorKind.TRANSIENT_INFRASTRUCTURE,
    FailureCategory.DATABASE_UNREACHABLE: ErrorKind.TRANSIENT_INFRASTRUCTURE,
    FailureCategory.PACKAGE_MISSING: ErrorKind.MISSING_DEPENDENCY,
    FailureCategory.BINARY_MISSING: ErrorKind.MISSING_DEPENDENCY,
}


@dataclass(frozen=True)
class Failure:
    """A recognised failure: what went wrong, and to what."""

    category: FailureCategory
    subject: str | None
    receipt: Receipt
    label: str = ""

    @property
    def kind(self) -> ErrorKind:
        return CATEGORY_KINDS[self.category]


# ── Pattern table ───────────────────────────────────────────────
#
# "subject" names the regex group holding the package/binary, if any.

FAILURE_PATTERNS: list[dict] = [
    # ── Package manager lock ────────────────────────────────────
    {
        "pattern": r"Could not get lock",
        "category": FailureCategory.LOCK_HELD,
        "label": "Package manager lock held",
    },
    {
        "pattern": r"Unable to acquire the dpkg frontend lock",
        "category": FailureCategory.LOCK_HELD,
        "label": "dpkg frontend lock held",
    },
    {
        "pattern": r"dpkg was interrupted",
        "category": FailureCategory.LOCK_HELD,
        "label": "Interrupted dpkg run",
    },
    {
        "pattern": r"is another process using it",
        "category": FailureCategory.LOCK_HELD,
        "label": "Package manager lock held",
    },

    # ── Package not available ───────────────────────────────────
    {
        "pattern": r"Unable to locate package (?P<subject>[\w.+:-]+)",
        "category": FailureCategory.PACKAGE_MISSING,
        "label": "Package not found in index",
        "subject": "subject",
    },
    {
        "pattern": r"Package '?(?P<subject>[\w.+:-]+)'? has no installation candidate",
        "category": FailureCategory.PACKAGE_MISSING,
        "label": "No installation candidate",
        "subject": "subject",
    },
    {
        "pattern": r"has no installation candidate",
        "category": FailureCategory.PACKAGE_MISSING,
        "label": "No installation candidate",
    },

    # ── Database server ─────────────────────────────────────────
    {
        "pattern": r"could not connect to server",
        "category": FailureCategory.DATABASE_UNREACHABLE,
        "label": "Database server unreachable",
    },
    {
        "pattern": r"connection to server (?:on socket|at)",
        "category": FailureCategory.DATABASE_UNREACHABLE,
        "label": "Database server unreachable",
    },
    {
        "pattern": r"is the server running",
        "category": FailureCategory.DATABASE_UNREACHABLE,
        "label": "Database server not running",
        "flags": re.IGNORECASE,
    },
    {
        "pattern": r"Connection refused",
        "category": FailureCategory.DATABASE_UNREACHABLE,
        "label": "Connection refused",
    },

    # ── Missing executable ──────────────────────────────────────
    {
        "pattern": r"(?:^|\s)(?P<subject>[\w./+-]+): (?:command )?not found",
        "category": FailureCategory.BINARY_MISSING,
        "label": "Command not found",
        "subject": "subject",
        "flags": re.MULTILINE,
    },
    {
        "pattern": r"No such file or directory: '(?P<subject>[^']+)'",
        "category": FailureCategory.BINARY_MISSING,
        "label": "Executable not found",
        "subject": "subject",
    },
]

_COMPILED = [
    (re.compile(entry["pattern"], entry.get("flags", 0)), entry)
    for entry in FAILURE_PATTERNS
]


def classify_failure(receipt: Receipt) -> Failure | None:
    """Classify a failed receipt, or None when nothing matches."""
    if not receipt.failed:
        return None

    text = receipt.combined_output
    for regex, entry in _COMPILED:
        match = regex.search(text)
        if match is None:
            continue
        subject = None
        group = entry.get("subject")
        if group:
            subject = match.group(group)
        if subject is None:
            subject = receipt.metadata.get("binary") or receipt.metadata.get("package")
        return Failure(
            category=entry["category"],
            subject=_basename(subject) if entry["category"] == FailureCategory.BINARY_MISSING else subject,
            receipt=receipt,
            label=entry["label"],
        )

    # The shell's exit status for "command not found"
    if receipt.exit_code == 127:
        return Failure(
            category=FailureCategory.BINARY_MISSING,
            subject=_basename(receipt.metadata.get("binary")),
            receipt=receipt,
            label="Exit status 127",
        )

    return None


def _basename(value: str | None) -> str | None:
    if not value:
        return None
    return value.rstrip("/").rsplit("/", 1)[-1]
