"""
Local media capabilities backed by ffmpeg/ffprobe.

The router and its components only depend on the three protocols below;
``FFmpegMediaTools`` is the production implementation and tests pass fakes.

    AudioExtractor  - decode a PCM window, or extract a compressed audio stream
    FrameSampler    - grab JPEG frames at given timestamps
    ClipCutter      - cut a time-bounded sub-clip into a new file
"""

import json
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np
import soundfile as sf

from reelscribe.modules.errors import CancelledError, MediaToolError
from reelscribe.modules.types import MediaSource
from reelscribe.utils.logger import logger

_POLL_SECONDS = 0.2


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class AudioExtractor(Protocol):
    def decode_window(
        self,
        source: MediaSource,
        start: float,
        duration: float,
        sample_rate: int = 16000,
        cancel=None,
    ) -> np.ndarray:
        """Mono float32 samples for [start, start + duration)."""
        ...

    def extract_audio(
        self,
        source: MediaSource,
        start: Optional[float] = None,
        duration: Optional[float] = None,
        bitrate_kbps: int = 32,
        cancel=None,
    ) -> bytes:
        """Compressed (MP3) mono audio for the whole source or a range."""
        ...


@runtime_checkable
class FrameSampler(Protocol):
    def sample_frames(
        self,
        source: MediaSource,
        timestamps: Sequence[float],
        max_width: int = 1280,
        max_height: int = 720,
        quality: int = 8,
        cancel=None,
    ) -> List[bytes]:
        """One JPEG per timestamp, in order."""
        ...


@runtime_checkable
class ClipCutter(Protocol):
    def cut(
        self,
        source: MediaSource,
        start: float,
        duration: float,
        output_dir: Path,
        cancel=None,
    ) -> MediaSource:
        ...


# ---------------------------------------------------------------------------
# ffprobe
# ---------------------------------------------------------------------------


@dataclass
class ProbeInfo:
    duration: float = 0.0
    width: int = 0
    height: int = 0
    has_audio: bool = False
    has_video: bool = False
    audio_codec: str = ""
    video_codec: str = ""


def check_ffmpeg() -> bool:
    """True when both ffmpeg and ffprobe are on PATH."""
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def probe_media(path: Union[str, Path], timeout: float = 60) -> ProbeInfo:
    """
    Read duration and stream layout with ffprobe.

    Raises:
        MediaToolError: ffprobe missing, failed, or returned unreadable output
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, encoding="utf-8",
            check=True, timeout=timeout,
        )
        data = json.loads(result.stdout or "{}")
    except FileNotFoundError as e:
        raise MediaToolError(
            "ffprobe not found",
            suggestion="Install FFmpeg and make sure ffprobe is on PATH",
        ) from e
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, json.JSONDecodeError) as e:
        raise MediaToolError(f"ffprobe failed: {e}", context={"file": str(path)}) from e

    info = ProbeInfo()
    fmt = data.get("format", {})
    try:
        info.duration = float(fmt.get("duration", 0) or 0)
    except (TypeError, ValueError):
        info.duration = 0.0

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name", "unknown")
        elif codec_type == "video" and not info.has_video:
            info.has_video = True
            info.video_codec = stream.get("codec_name", "unknown")
            info.width = int(stream.get("width", 0) or 0)
            info.height = int(stream.get("height", 0) or 0)

    return info


# ---------------------------------------------------------------------------
# ffmpeg runner
# ---------------------------------------------------------------------------


def run_ffmpeg(cmd: List[str], cancel=None, timeout: float = 300) -> bytes:
    """
    Run ffmpeg, returning stdout.

    The process is killed on timeout, cancellation, or any exception, so no
    decoder is left running behind the caller.
    """
    logger.debug(f"FFmpeg command: {' '.join(cmd)}")
    try:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise MediaToolError(
            "ffmpeg not found",
            suggestion="Install FFmpeg and make sure it is on PATH",
        ) from e

    deadline = time.monotonic() + timeout
    try:
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_cancelled:
                    raise CancelledError()
                if time.monotonic() > deadline:
                    raise MediaToolError(f"ffmpeg timed out after {timeout:.0f}s")
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.communicate()

    if proc.returncode != 0:
        error_msg = stderr.decode("utf-8", errors="replace")[-500:] if stderr else "Unknown FFmpeg error"
        raise MediaToolError(f"ffmpeg failed: {error_msg.strip()}")
    return stdout


# ---------------------------------------------------------------------------
# Implementation
# ---------------------------------------------------------------------------


class FFmpegMediaTools:
    """AudioExtractor, FrameSampler and ClipCutter on top of the ffmpeg CLI."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", timeout: float = 300):
        self.ffmpeg = ffmpeg_binary
        self.timeout = timeout

    def decode_window(self, source, start, duration, sample_rate=16000, cancel=None) -> np.ndarray:
        with tempfile.TemporaryDirectory(prefix="reelscribe_pcm_") as tmp:
            out_path = Path(tmp) / "window.wav"
            cmd = [
                self.ffmpeg, "-v", "error", "-y",
                "-ss", f"{max(0.0, start):.3f}",
                "-t", f"{max(0.1, duration):.3f}",
                "-i", str(source.path),
                "-vn", "-ac", "1", "-ar", str(sample_rate),
                "-acodec", "pcm_s16le",
                str(out_path),
            ]
            run_ffmpeg(cmd, cancel=cancel, timeout=self.timeout)
            if not out_path.exists():
                raise MediaToolError("ffmpeg produced no audio", context={"file": source.name})
            samples, _ = sf.read(str(out_path), dtype="float32", always_2d=False)

        if samples.ndim > 1:
            samples = samples.mean(axis=1)
        return samples

    def extract_audio(self, source, start=None, duration=None, bitrate_kbps=32, cancel=None) -> bytes:
        cmd = [self.ffmpeg, "-v", "error"]
        if start is not None:
            cmd += ["-ss", f"{max(0.0, start):.3f}"]
        if duration is not None:
            cmd += ["-t", f"{duration:.3f}"]
        cmd += [
            "-i", str(source.path),
            "-vn", "-ac", "1", "-ar", "16000",
            "-b:a", f"{bitrate_kbps}k",
            "-f", "mp3", "pipe:1",
        ]
        data = run_ffmpeg(cmd, cancel=cancel, timeout=self.timeout)
        if not data:
            raise MediaToolError("ffmpeg produced no audio", context={"file": source.name})
        return data

    def sample_frames(self, source, timestamps, max_width=1280, max_height=720, quality=8, cancel=None) -> List[bytes]:
        scale = (
            f"scale='min({max_width},iw)':'min({max_height},ih)'"
            ":force_original_aspect_ratio=decrease"
        )
        frames = []
        for ts in timestamps:
            if cancel is not None:
                cancel.raise_if_cancelled()
            cmd = [
                self.ffmpeg, "-v", "error",
                "-ss", f"{max(0.0, ts):.3f}",
                "-i", str(source.path),
                "-frames:v", "1",
                "-vf", scale,
                "-q:v", str(quality),
                "-f", "image2pipe", "-vcodec", "mjpeg", "pipe:1",
            ]
            data = run_ffmpeg(cmd, cancel=cancel, timeout=60)
            if not data:
                raise MediaToolError(f"No frame decoded at {ts:.2f}s", context={"file": source.name})
            frames.append(data)
        return frames

    def cut(self, source, start, duration, output_dir, cancel=None) -> MediaSource:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        suffix = source.path.suffix or ".mp4"
        out_path = output_dir / f"{source.path.stem}_{int(start * 1000):09d}{suffix}"
        cmd = [
            self.ffmpeg, "-v", "error", "-y",
            "-ss", f"{start:.3f}",
            "-t", f"{duration:.3f}",
            "-i", str(source.path),
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            str(out_path),
        ]
        run_ffmpeg(cmd, cancel=cancel, timeout=self.timeout)
        if not out_path.exists():
            raise MediaToolError(f"Clip was not written: {out_path}")

        return MediaSource(
            path=out_path,
            size_bytes=out_path.stat().st_size,
            duration=duration,
            width=source.width,
            height=source.height,
            has_audio_stream=source.has_audio_stream,
        )
