"""Subprocess runner shared by the render backends."""

import asyncio
import logging

from narration_render.exceptions import RenderBackendError

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000


async def run_render_command(cmd: list[str], timeout_seconds: float, tag: str = "RENDER") -> None:
    """
    Run a render command to completion.

    Raises:
        RenderBackendError: If the binary is missing, times out, or exits non-zero
    """
    logger.info("[%s] Command: %s", tag, " ".join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise RenderBackendError(f"Failed to start {cmd[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise RenderBackendError(f"Render timed out after {timeout_seconds:g} seconds") from e

    if proc.returncode != 0:
        stderr_text = stderr.decode("utf-8", errors="replace").strip()
        if not stderr_text:
            stderr_text = stdout.decode("utf-8", errors="replace").strip()
        logger.error("[%s] Failed with exit code %s: %s", tag, proc.returncode, stderr_text[-STDERR_TAIL_CHARS:])
        raise RenderBackendError(stderr_text[-STDERR_TAIL_CHARS:] or f"{cmd[0]} exited with code {proc.returncode}")

    logger.info("[%s] Finished", tag)
