"""Audio container sniffing for transcription uploads.

Voice providers sometimes hand back audio whose extension does not match its
container (e.g. AAC ADTS saved as .mp3). The transcription API rejects those,
so before upload we look at the header bytes and either copy the file to a
name with the right extension or transcode it to 16 kHz mono WAV.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

HEADER_BYTES = 64


class AudioKind(str, Enum):
    MP3 = "mp3"
    WAV = "wav"
    MP4 = "mp4"
    WEBM = "webm"
    OGG = "ogg"
    AAC_ADTS = "aac-adts"
    UNKNOWN = "unknown"


# Containers the transcription endpoint accepts as-is
TRANSCRIPTION_SUPPORTED_KINDS = frozenset({AudioKind.MP3, AudioKind.WAV, AudioKind.MP4, AudioKind.WEBM})

EXTENSION_FOR_KIND: dict[AudioKind, str] = {
    AudioKind.MP3: ".mp3",
    AudioKind.WAV: ".wav",
    # .m4a hints audio-only
    AudioKind.MP4: ".m4a",
    AudioKind.WEBM: ".webm",
    AudioKind.OGG: ".ogg",
    AudioKind.AAC_ADTS: ".aac",
}


def read_header_bytes(file_path: str, length: int = HEADER_BYTES) -> bytes:
    with open(file_path, "rb") as f:
        return f.read(max(0, length))


def looks_like_wav(buf: bytes) -> bool:
    if len(buf) < 12:
        return False
    return buf[0:4] in (b"RIFF", b"RF64", b"BW64", b"RIFX") and buf[8:12] == b"WAVE"


def looks_like_aac_adts(buf: bytes) -> bool:
    # 12-bit sync word 0xFFF, layer bits always 00
    if len(buf) < 2 or buf[0] != 0xFF:
        return False
    if (buf[1] & 0xF0) != 0xF0:
        return False
    return (buf[1] & 0x06) == 0x00


def looks_like_mp3(buf: bytes) -> bool:
    if len(buf) < 4:
        return False
    if buf[0:3] == b"ID3":
        return True
    if not (buf[0] == 0xFF and (buf[1] & 0xE0) == 0xE0):
        return False
    if looks_like_aac_adts(buf):
        return False
    version_id = (buf[1] >> 3) & 0x3
    layer = (buf[1] >> 1) & 0x3
    # 01 version and 00 layer are reserved
    return version_id != 0x1 and layer != 0x0


def looks_like_mp4(buf: bytes) -> bool:
    return len(buf) >= 12 and buf[4:8] == b"ftyp"


def looks_like_ogg(buf: bytes) -> bool:
    return len(buf) >= 4 and buf[0:4] == b"OggS"


def looks_like_webm(buf: bytes) -> bool:
    return len(buf) >= 4 and buf[0:4] == b"\x1a\x45\xdf\xa3"


def detect_audio_kind(buf: bytes) -> AudioKind:
    """Identify the audio container from its leading bytes."""
    if looks_like_wav(buf):
        return AudioKind.WAV
    if looks_like_mp4(buf):
        return AudioKind.MP4
    if looks_like_webm(buf):
        return AudioKind.WEBM
    if looks_like_ogg(buf):
        return AudioKind.OGG
    if looks_like_aac_adts(buf):
        return AudioKind.AAC_ADTS
    if looks_like_mp3(buf):
        return AudioKind.MP3
    return AudioKind.UNKNOWN


@dataclass
class PreparedAudio:
    """Audio file ready for upload plus temp files to remove afterwards."""

    path: str
    kind: AudioKind
    cleanup: list[str] = field(default_factory=list)

    def remove_temp_files(self) -> None:
        for temp_path in self.cleanup:
            Path(temp_path).unlink(missing_ok=True)
        self.cleanup.clear()


def _temp_path(suffix: str) -> str:
    return os.path.join(tempfile.gettempdir(), f"transcribe-{uuid.uuid4()}{suffix}")


async def transcode_to_wav(input_path: str, ffmpeg_path: str = "ffmpeg") -> str:
    """Transcode to 16 kHz mono PCM WAV (speech-friendly)."""
    output_path = _temp_path("-transcoded.wav")
    cmd = [
        ffmpeg_path,
        "-y",
        "-i", input_path,
        "-vn",
        "-ac", "1",
        "-ar", "16000",
        "-f", "wav",
        output_path,
    ]
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()
    if process.returncode != 0:
        Path(output_path).unlink(missing_ok=True)
        raise RuntimeError(f"FFmpeg error: {stderr.decode(errors='replace')}")
    return output_path


async def ensure_transcription_compatible_audio(
    audio_path: str,
    ffmpeg_path: str = "ffmpeg",
    allow_transcode: bool = True,
) -> PreparedAudio:
    """Return a path whose extension matches a container the API accepts.

    Falls back to the original path when nothing can be done.
    """
    kind = detect_audio_kind(read_header_bytes(audio_path))
    ext = Path(audio_path).suffix.lower()
    desired_ext = EXTENSION_FOR_KIND.get(kind, "")

    logger.info("[TRANSCRIBE] Audio container sniff: ext=%s kind=%s desired=%s", ext, kind.value, desired_ext)

    if kind in TRANSCRIPTION_SUPPORTED_KINDS:
        if desired_ext and ext != desired_ext:
            copied = _temp_path(desired_ext)
            shutil.copyfile(audio_path, copied)
            logger.info("[TRANSCRIBE] Copied audio to %s to match its container", copied)
            return PreparedAudio(path=copied, kind=kind, cleanup=[copied])
        return PreparedAudio(path=audio_path, kind=kind)

    if not allow_transcode:
        logger.warning("[TRANSCRIBE] Audio container %s not supported and transcoding disabled", kind.value)
        return PreparedAudio(path=audio_path, kind=kind)

    try:
        wav_path = await transcode_to_wav(audio_path, ffmpeg_path)
    except (OSError, RuntimeError) as e:
        logger.warning("[TRANSCRIBE] WAV transcode failed, using original audio: %s", e)
        return PreparedAudio(path=audio_path, kind=kind)

    logger.info("[TRANSCRIBE] Transcoded %s audio to WAV for transcription", kind.value)
    return PreparedAudio(path=wav_path, kind=AudioKind.WAV, cleanup=[wav_path])
