"""ffmpeg/ffprobe collaborators: media validation and audio extraction.

WHY: Before spending a transcription call and a render on a clip, the
pipeline must know the file is real media, and the speech-to-text
provider wants a compact mono WAV rather than the full video. The clip's
audio duration also drives both timelines.

HOW: Runs the ffprobe/ffmpeg binaries as asyncio subprocesses so the
event loop keeps serving other jobs. ffprobe's JSON output is parsed
for stream types and duration.

RULES:
- is_playable_media() never raises; it returns False for anything unusable
- extract_audio() writes ``<video stem>.wav`` (PCM s16le, 16 kHz, mono)
  into the given directory and removes a partial file on failure
- Failures of extract_audio() surface as ExtractionError
- A subprocess whose caller is cancelled is killed and reaped first
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from reel_composer.config import FFMPEG_PATH, FFPROBE_PATH
from reel_composer.errors import ExtractionError

logger = logging.getLogger(__name__)


@dataclass
class AudioExtraction:
    """Result of extracting the speech track from a clip."""

    audio_path: Path
    duration_s: float
    source_video: Path
    format: str = "wav"


async def kill_process(proc: asyncio.subprocess.Process) -> None:
    """Kill proc if it is still running and wait for it to exit."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


async def _run(args: List[str]) -> tuple:
    """Run a subprocess and return (returncode, stdout, stderr) as text."""
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except BaseException:
        await kill_process(proc)
        raise
    return (
        proc.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


async def probe(path: Path, ffprobe_path: str = FFPROBE_PATH) -> Optional[Dict[str, Any]]:
    """Return ffprobe's format/streams JSON for path, or None if unreadable."""
    try:
        code, out, err = await _run([
            ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ])
    except OSError as exc:
        logger.error("Could not run ffprobe (%s): %s", ffprobe_path, exc)
        return None
    if code != 0:
        logger.warning("ffprobe failed for %s: %s", path, err.strip())
        return None
    try:
        return json.loads(out)
    except json.JSONDecodeError:
        logger.warning("ffprobe returned invalid JSON for %s", path)
        return None


async def is_playable_media(path: Path, ffprobe_path: str = FFPROBE_PATH) -> bool:
    """Check that path is a non-empty file with an audio or video stream.

    A clip without audio still validates (with a warning); transcription
    will report the problem.
    """
    path = Path(path)
    logger.info("Validating media file: %s", path)
    if not path.is_file():
        logger.error("Media file does not exist: %s", path)
        return False
    if path.stat().st_size == 0:
        logger.error("Media file is empty: %s", path)
        return False

    metadata = await probe(path, ffprobe_path)
    if metadata is None:
        return False

    codec_types = {s.get("codec_type") for s in metadata.get("streams", [])}
    has_video = "video" in codec_types
    has_audio = "audio" in codec_types
    logger.info("Media %s: video=%s audio=%s", path.name, has_video, has_audio)

    if not has_video and not has_audio:
        logger.error("File contains no video or audio streams: %s", path)
        return False
    if not has_audio:
        logger.warning("Media has no audio stream, transcription may fail: %s", path)
    return True


def _duration_from(metadata: Dict[str, Any]) -> float:
    raw = (metadata.get("format") or {}).get("duration")
    try:
        return float(raw) if raw is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


async def extract_audio(
    video_path: Path,
    out_dir: Path,
    ffmpeg_path: str = FFMPEG_PATH,
    ffprobe_path: str = FFPROBE_PATH,
) -> AudioExtraction:
    """Extract a 16 kHz mono WAV from video_path into out_dir.

    Returns:
        AudioExtraction with the WAV path and its duration in seconds.

    Raises:
        ExtractionError: The video is missing, ffmpeg fails, or the
            result cannot be probed.
    """
    video_path = Path(video_path)
    out_dir = Path(out_dir)
    if not video_path.is_file():
        raise ExtractionError(f"Video file not found: {video_path}")
    out_dir.mkdir(parents=True, exist_ok=True)

    audio_path = out_dir / f"{video_path.stem}.wav"
    args = [
        ffmpeg_path,
        "-y",
        "-i", str(video_path),
        "-vn",
        "-acodec", "pcm_s16le",
        "-ac", "1",
        "-ar", "16000",
        "-f", "wav",
        str(audio_path),
    ]
    logger.debug("Running %s", " ".join(args))

    try:
        code, _out, err = await _run(args)
    except OSError as exc:
        raise ExtractionError(f"Could not run ffmpeg ({ffmpeg_path}): {exc}") from exc

    if code != 0:
        audio_path.unlink(missing_ok=True)
        raise ExtractionError(
            f"Failed to extract audio from {video_path}: {err.strip()[-500:]}"
        )

    metadata = await probe(audio_path, ffprobe_path)
    if metadata is None:
        raise ExtractionError(f"Failed to get audio metadata for {audio_path}")

    duration = _duration_from(metadata)
    logger.info("Extracted audio %s (%.2fs)", audio_path.name, duration)
    return AudioExtraction(
        audio_path=audio_path,
        duration_s=duration,
        source_video=video_path,
    )
