"""
In-memory stand-ins for the external collaborators used across the test suite.
"""

from pathlib import Path

from streamvault.core.errors import StorageUnavailable
from streamvault.services.classifier import ContentSample


class FakeMediaStore:
    """In-memory stand-in for MediaStore."""

    def __init__(self, blobs: dict[str, bytes] | None = None) -> None:
        self.blobs = dict(blobs or {})
        self.deleted: list[str] = []
        self.available = True

    def _blob(self, key: str) -> bytes:
        if not self.available or key not in self.blobs:
            raise StorageUnavailable(f"Blob not readable: {key}")
        return self.blobs[key]

    def upload_file(self, file_obj, key: str, content_type: str | None = None) -> str:
        self.blobs[key] = file_obj.read()
        return key

    def download_file(self, key: str, destination: str) -> str:
        Path(destination).parent.mkdir(parents=True, exist_ok=True)
        Path(destination).write_bytes(self._blob(key))
        return destination

    def get_size(self, key: str) -> int:
        return len(self._blob(key))

    def read_range(self, key, start=None, end=None, chunk_size=None):
        data = self._blob(key)
        if start is not None:
            data = data[start:None if end is None else end + 1]
        size = chunk_size or 256
        return iter([data[i:i + size] for i in range(0, len(data), size)])

    def delete_file(self, key: str) -> None:
        self.deleted.append(key)
        self.blobs.pop(key, None)

    def ensure_bucket_exists(self) -> None:
        pass


class FakeProbe:
    """MediaProbe stand-in that writes small fake frames instead of running ffmpeg."""

    def __init__(self, metadata: dict | None = None, frame_count: int = 2) -> None:
        self.metadata = metadata if metadata is not None else {
            "container": "mov,mp4,m4a,3gp,3g2,mj2",
            "codec": "h264",
            "audio_codec": "aac",
            "width": 1920,
            "height": 1080,
            "duration_seconds": 12.5,
            "bitrate_kbps": 4500,
            "frame_rate": 30.0,
        }
        self.frame_count = frame_count
        self.probe_error: Exception | None = None
        self.sample_error: Exception | None = None

    def probe(self, media_path: str) -> dict:
        if self.probe_error is not None:
            raise self.probe_error
        return dict(self.metadata)

    def extract_samples(self, media_path, output_dir, count=None, fps=None) -> list[str]:
        if self.sample_error is not None:
            raise self.sample_error
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        paths = []
        for i in range(self.frame_count):
            frame = out / f"sample_{i + 1:03d}.jpg"
            frame.write_bytes(b"\xff\xd8\xff" + bytes([i]) * 64)
            paths.append(str(frame))
        return paths


class StaticScorer:
    def __init__(self, score: float) -> None:
        self.value = score
        self.samples: list[ContentSample] = []

    def score(self, sample: ContentSample) -> float:
        self.samples.append(sample)
        return self.value


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    def subscribe(self, owner_id=None):
        raise NotImplementedError

