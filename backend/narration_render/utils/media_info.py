"""Media file information utilities using FFprobe."""

import asyncio
import json
import math

from narration_render.exceptions import MediaProbeError


def _ffprobe_command(file_path: str, ffprobe_path: str, *args: str) -> list[str]:
    return [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]


def parse_format_duration(raw_output: str, file_path: str) -> float:
    """
    Extract ``format.duration`` (seconds) from ffprobe JSON output.

    Raises:
        MediaProbeError: If the output is not JSON or has no usable duration
    """
    try:
        data = json.loads(raw_output)
    except json.JSONDecodeError as e:
        raise MediaProbeError(f"Failed to parse ffprobe output: {e}") from e

    format_info = data.get("format", {}) if isinstance(data, dict) else {}
    if "duration" not in format_info:
        raise MediaProbeError(f"Duration not found in: {file_path}")

    try:
        duration = float(format_info["duration"])
    except (TypeError, ValueError) as e:
        raise MediaProbeError(f"Invalid duration in: {file_path}") from e
    if not math.isfinite(duration) or duration <= 0:
        raise MediaProbeError(f"Invalid duration in: {file_path}")
    return duration


async def get_media_duration_seconds_async(file_path: str, ffprobe_path: str = "ffprobe") -> float:
    """
    Get media file duration in seconds.

    Raises:
        MediaProbeError: If ffprobe fails or duration not found
    """
    cmd = _ffprobe_command(file_path, ffprobe_path, "-show_format")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise MediaProbeError(f"ffprobe failed: {e}") from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise MediaProbeError(f"ffprobe failed: {stderr.decode(errors='replace')}")
    return parse_format_duration(stdout.decode(errors="replace"), file_path)
