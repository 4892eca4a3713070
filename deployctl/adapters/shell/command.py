"""
Shell command runner — the single place real adapters call subprocess.

Every tool invocation (apt-get, psql, pnpm, systemctl, git) funnels
through ``run_command`` so privilege escalation, output capture and
timeouts are handled once. The result is always a Receipt; nothing
here raises for a failing command.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time

from deployctl.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

# Tail kept from stdout/stderr (full apt/pnpm logs are huge)
_OUTPUT_TAIL = 4000


def privileged(cmd: list[str], *, as_user: str | None = None) -> list[str]:
    """Prefix ``cmd`` for root (or ``as_user``) execution.

    Already root: run directly, or through ``runuser`` for another user.
    Otherwise non-interactive sudo; a missing sudo rule fails fast
    instead of blocking on a password prompt.
    """
    is_root = os.geteuid() == 0
    if as_user:
        if is_root:
            return ["runuser", "-u", as_user, "--", *cmd]
        return ["sudo", "-n", "-u", as_user, "--", *cmd]
    if is_root:
        return list(cmd)
    return ["sudo", "-n", *cmd]


def run_command(
    adapter: str,
    operation: str,
    cmd: list[str],
    *,
    cwd: str | None = None,
    timeout: int = 600,
    input_text: str | None = None,
    env_overrides: dict[str, str] | None = None,
) -> Receipt:
    """Run a command and capture the outcome in a Receipt.

    A missing executable is reported like a shell would report it
    (exit code 127, "command not found") so it classifies the same way.
    """
    env = None
    if env_overrides:
        env = os.environ.copy()
        env.update(env_overrides)

    logger.debug("Executing: %s (cwd=%s)", " ".join(cmd), cwd)
    start = time.monotonic()

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
            env=env,
        )
    except FileNotFoundError as e:
        binary = e.filename or cmd[0]
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"{binary}: command not found",
            exit_code=127,
            metadata={"command": cmd, "binary": binary},
        )
    except subprocess.TimeoutExpired:
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"Command timed out after {timeout}s",
            metadata={"command": cmd, "timeout": timeout},
        )
    except OSError as e:
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"Command execution error: {e}",
            metadata={"command": cmd},
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = (result.stdout or "").strip()[-_OUTPUT_TAIL:]
    stderr = (result.stderr or "").strip()[-_OUTPUT_TAIL:]

    if result.returncode == 0:
        return Receipt.success(
            adapter=adapter,
            operation=operation,
            output=stdout,
            exit_code=0,
            duration_ms=elapsed_ms,
            metadata={"command": cmd, "stderr": stderr},
        )

    return Receipt.failure(
        adapter=adapter,
        operation=operation,
        error=stderr or f"Command exited with code {result.returncode}",
        output=stdout,
        exit_code=result.returncode,
        duration_ms=elapsed_ms,
        metadata={"command": cmd, "stderr": stderr},
    )
