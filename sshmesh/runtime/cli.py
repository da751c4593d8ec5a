"""Thin async wrapper over command-line tools (container runtime, ssh-keygen)."""

from __future__ import annotations

import asyncio
import contextlib
import shlex

from sshmesh.core.exceptions import RuntimeCommandError, RuntimeCommandTimeout


async def run(
    binary: str,
    *args: str,
    input: str | bytes | None = None,
    timeout: float | None = None,
) -> str:
    """Run ``binary args...`` and return stripped stdout.

    Raises:
        RuntimeCommandError: On a non-zero exit status, or if ``binary`` cannot
            be executed (``returncode`` is None).
        RuntimeCommandTimeout: If the command outlives ``timeout``; the child
            process is killed.
    """
    cmd = shlex.join([binary, *args])
    try:
        proc = await asyncio.create_subprocess_exec(
            binary, *args,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise RuntimeCommandError(cmd, None, f"cannot execute {binary}: {e.strerror or e}") from e
    data = input.encode() if isinstance(input, str) else input
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(data), timeout=timeout)
    except TimeoutError:
        _kill(proc)
        await proc.wait()
        raise RuntimeCommandTimeout(cmd, timeout or 0.0) from None
    except asyncio.CancelledError:
        _kill(proc)
        raise
    if proc.returncode != 0:
        raise RuntimeCommandError(cmd, proc.returncode, stderr.decode().strip())
    return stdout.decode().strip()


def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
