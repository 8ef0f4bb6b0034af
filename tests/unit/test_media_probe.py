"""
Unit tests for streamvault/services/media_probe.py

ffprobe/ffmpeg are never executed; subprocess.run is mocked.
"""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from streamvault.services.media_probe import MediaProbe, MediaProbeError

FFPROBE_OUTPUT = {
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1280,
            "height": 720,
            "avg_frame_rate": "30000/1001",
            "r_frame_rate": "30/1",
        },
        {"codec_type": "audio", "codec_name": "aac"},
    ],
    "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "62.500000", "bit_rate": "2500000"},
}


@pytest.fixture
def media_probe() -> MediaProbe:
    return MediaProbe(timeout=10)


class TestProbe:
    @pytest.mark.unit
    def test_probe_parses_ffprobe_json(self, media_probe):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps(FFPROBE_OUTPUT), stderr="")

            metadata = media_probe.probe("/tmp/input.mp4")

            call_args = mock_run.call_args[0][0]
            assert call_args[0] == "ffprobe"
            assert "-show_streams" in call_args
            assert "/tmp/input.mp4" in call_args

        assert metadata["codec"] == "h264"
        assert metadata["audio_codec"] == "aac"
        assert metadata["width"] == 1280
        assert metadata["height"] == 720
        assert metadata["duration_seconds"] == 62.5
        assert metadata["bitrate_kbps"] == 2500
        assert metadata["frame_rate"] == 29.97

    @pytest.mark.unit
    def test_probe_without_video_stream_fails(self, media_probe):
        audio_only = {"streams": [{"codec_type": "audio", "codec_name": "mp3"}], "format": {}}
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps(audio_only), stderr="")

            with pytest.raises(MediaProbeError) as exc_info:
                media_probe.probe("/tmp/input.mp3")

        assert "No video stream" in str(exc_info.value)

    @pytest.mark.unit
    def test_probe_tool_failure(self, media_probe):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="Invalid data found")

            with pytest.raises(MediaProbeError) as exc_info:
                media_probe.probe("/tmp/garbage.mp4")

        assert "ffprobe failed" in str(exc_info.value)

    @pytest.mark.unit
    def test_probe_invalid_json(self, media_probe):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="{not json", stderr="")

            with pytest.raises(MediaProbeError):
                media_probe.probe("/tmp/input.mp4")

    @pytest.mark.unit
    def test_probe_timeout(self, media_probe):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=10)):
            with pytest.raises(MediaProbeError) as exc_info:
                media_probe.probe("/tmp/input.mp4")

        assert "timeout" in str(exc_info.value)

    @pytest.mark.unit
    def test_missing_binary(self, media_probe):
        with patch("subprocess.run", side_effect=FileNotFoundError("ffprobe")):
            with pytest.raises(MediaProbeError) as exc_info:
                media_probe.probe("/tmp/input.mp4")

        assert "not installed" in str(exc_info.value)


class TestExtractSamples:
    @pytest.mark.unit
    def test_extract_samples_command_and_result(self, media_probe, tmp_path):
        output_dir = tmp_path / "samples"

        def fake_ffmpeg(cmd, **kwargs):
            for i in (2, 1):
                (output_dir / f"sample_{i:03d}.jpg").write_bytes(b"\xff\xd8")
            return MagicMock(returncode=0, stdout="", stderr="")

        with patch("subprocess.run", side_effect=fake_ffmpeg) as mock_run:
            samples = media_probe.extract_samples("/tmp/input.mp4", str(output_dir), count=3, fps=0.5)

            call_args = mock_run.call_args[0][0]
            assert call_args[0] == "ffmpeg"
            assert "fps=0.5,scale=320:-2" in call_args
            assert call_args[call_args.index("-frames:v") + 1] == "3"

        assert [Path(s).name for s in samples] == ["sample_001.jpg", "sample_002.jpg"]

    @pytest.mark.unit
    def test_extract_samples_creates_output_directory(self, media_probe, tmp_path):
        output_dir = tmp_path / "nested" / "samples"

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
            samples = media_probe.extract_samples("/tmp/input.mp4", str(output_dir))

        assert output_dir.exists()
        assert samples == []
