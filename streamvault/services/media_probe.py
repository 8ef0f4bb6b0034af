import json
import subprocess
from fractions import Fraction
from pathlib import Path

import structlog

from streamvault.core.config import settings

logger = structlog.get_logger()


class MediaProbeError(Exception):
    """Exception raised when ffprobe/ffmpeg cannot read the media."""
    pass


def _parse_rate(value: str | None) -> float | None:
    if not value or value in ("0/0", "0"):
        return None
    try:
        return round(float(Fraction(value)), 3)
    except (ValueError, ZeroDivisionError):
        return None


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MediaProbe:
    """Reads container metadata and samples frames using ffprobe/ffmpeg."""

    def __init__(self, timeout: int | None = None) -> None:
        self.timeout = timeout or settings.ffmpeg_timeout_seconds

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, check=False)
        except subprocess.TimeoutExpired as e:
            raise MediaProbeError(f"{cmd[0]} timeout: {e}") from e
        except FileNotFoundError as e:
            raise MediaProbeError(f"{cmd[0]} not installed") from e

        if result.returncode != 0:
            logger.error("media_tool_failed", tool=cmd[0], returncode=result.returncode, stderr=result.stderr[:500])
            raise MediaProbeError(f"{cmd[0]} failed: {result.stderr}")
        return result

    def probe(self, media_path: str) -> dict:
        """
        Extract container/codec metadata.
        Command: ffprobe -v error -print_format json -show_format -show_streams {media_path}
        """
        cmd = [
            "ffprobe", "-v", "error",
            "-print_format", "json",
            "-show_format", "-show_streams",
            media_path,
        ]
        result = self._run(cmd)

        try:
            raw = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise MediaProbeError(f"ffprobe returned invalid JSON: {e}") from e

        streams = raw.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video is None:
            raise MediaProbeError("No video stream found")
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        fmt = raw.get("format") or {}

        bit_rate = _to_float(fmt.get("bit_rate") or video.get("bit_rate"))
        metadata = {
            "container": fmt.get("format_name"),
            "codec": video.get("codec_name"),
            "audio_codec": audio.get("codec_name") if audio else None,
            "width": video.get("width"),
            "height": video.get("height"),
            "duration_seconds": _to_float(fmt.get("duration") or video.get("duration")),
            "bitrate_kbps": round(bit_rate / 1000) if bit_rate else None,
            "frame_rate": _parse_rate(video.get("avg_frame_rate")) or _parse_rate(video.get("r_frame_rate")),
        }
        logger.info("media_probed", media_path=media_path, codec=metadata["codec"])
        return metadata

    def extract_samples(self, media_path: str, output_dir: str, count: int | None = None, fps: float | None = None) -> list[str]:
        """
        Extract a handful of downscaled frames for content analysis.
        Command: ffmpeg -i {media_path} -vf fps={fps},scale=320:-2 -frames:v {count} -y {output_dir}/sample_%03d.jpg
        """
        count = count or settings.sample_frame_count
        fps = fps or settings.sample_fps
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        cmd = [
            "ffmpeg", "-i", media_path,
            "-vf", f"fps={fps},scale=320:-2",
            "-frames:v", str(count),
            "-y", str(output_path / "sample_%03d.jpg"),
        ]
        logger.info("sampling_started", media_path=media_path, count=count, fps=fps)
        self._run(cmd)

        samples = sorted(output_path.glob("sample_*.jpg"))
        logger.info("sampling_completed", sample_count=len(samples))
        return [str(s) for s in samples]
