"""
Environment file helpers — parse, validate and render ``.env`` files.

The rendered file is consumed by systemd's ``EnvironmentFile=`` and by
the application itself, so every value is written double-quoted with
backslashes and quotes escaped.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

_KEY_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=")

# Values that look like an unfilled template slot
PLACEHOLDER_PATTERNS = (
    "your_", "your-", "changeme", "change_me", "xxx", "todo", "fixme",
    "replace", "placeholder", "<", ">",
)


def parse_env_text(content: str) -> dict[str, str]:
    """Parse .env text into a key/value dict.

    Handles ``KEY=value``, ``KEY="value"``, ``KEY='value'``,
    ``export KEY=value``, comments and blank lines.
    """
    result: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        if line.startswith("export "):
            line = line[7:].strip()

        if "=" not in line:
            continue

        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            quote = value[0]
            value = value[1:-1]
            if quote == '"':
                value = value.replace('\\"', '"').replace("\\\\", "\\")

        result[key] = value
    return result


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file (empty dict if missing or unreadable)."""
    if not path.is_file():
        return {}
    try:
        return parse_env_text(path.read_text(encoding="utf-8"))
    except OSError:
        return {}


def is_placeholder(value: str | None) -> bool:
    """Empty or obviously unfilled values."""
    if value is None or not value.strip():
        return True
    lower = value.lower()
    return any(pattern in lower for pattern in PLACEHOLDER_PATTERNS)


def redact(value: str) -> str:
    """Redact sensitive values for display."""
    if not value:
        return "(empty)"
    if len(value) <= 4:
        return "****"
    return value[:2] + "****" + value[-2:]


def quote_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_env(
    values: dict[str, str],
    *,
    template: str | None = None,
    app_name: str = "",
    now: datetime | None = None,
) -> str:
    """Render a .env file.

    With a template, its comments and key order are kept: each assignment
    whose key has a value is rewritten, others are left as they are, and
    keys the template does not mention are appended at the end. Without
    a template a plain generated layout is written.
    """
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")

    if template is None:
        lines = [
            f"# {app_name or 'Application'} environment configuration",
            f"# Generated by deployctl: {stamp}",
            "",
        ]
        lines += [f"{key}={quote_value(value)}" for key, value in values.items()]
        return "\n".join(lines) + "\n"

    lines: list[str] = []
    seen: set[str] = set()
    for line in template.splitlines():
        match = _KEY_RE.match(line)
        if match is None:
            lines.append(line)
            continue
        key = match.group(1)
        if key in values and key not in seen:
            lines.append(f"{key}={quote_value(values[key])}")
        elif key not in seen:
            lines.append(line)
        seen.add(key)

    extra = [key for key in values if key not in seen]
    if extra:
        if lines and lines[-1].strip():
            lines.append("")
        lines.append(f"# Added by deployctl: {stamp}")
        lines += [f"{key}={quote_value(values[key])}" for key in extra]

    return "\n".join(lines) + "\n"
