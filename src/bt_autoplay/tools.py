"""Run host command-line tools without blocking the event loop."""

from __future__ import annotations

import asyncio
import logging
import shutil

from .exceptions import DispatchFailure, StrategyUnavailable

_LOGGER = logging.getLogger(__name__)

TOOL_TIMEOUT = 5.0


async def run_tool(*args: str, timeout: float = TOOL_TIMEOUT) -> str:
    """Run ``args`` and return its stdout.

    Raises :class:`StrategyUnavailable` if the executable is not on
    ``PATH`` and :class:`DispatchFailure` if it exits non-zero or does
    not finish within *timeout* seconds.
    """
    executable = shutil.which(args[0])
    if executable is None:
        raise StrategyUnavailable(f"{args[0]} not found")

    proc = await asyncio.create_subprocess_exec(
        executable, *args[1:],
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(), timeout=timeout,
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise DispatchFailure(f"{args[0]} timed out after {timeout:.0f}s") from None

    if proc.returncode != 0:
        raise DispatchFailure(
            f"{args[0]} failed (exit {proc.returncode}): "
            + (stderr or stdout or b"").decode(errors="replace").strip()
        )
    _LOGGER.debug("%s exited 0", " ".join(args))
    return (stdout or b"").decode(errors="replace")
