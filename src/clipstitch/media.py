"""Host decoder — moviepy-backed media handles.

open_media() turns a Clip into a MediaHandle: the decodable handle the
playback driver drives. Path sources are decoded in place. Bytes and
binary streams are first spooled to a temporary file (the clip's
temporary decode source), which the handle deletes when it is closed.

All decoder failures are translated at this boundary:
  - open failures       -> DecodeOpenError
  - first-frame failure -> PlaybackStartError
  - mid-play failures   -> DecodeRuntimeError
  - missing audio track -> AudioAttachError (non-fatal for the caller)
"""

import logging
import shutil
import tempfile
from pathlib import Path

import numpy as np
from moviepy import VideoFileClip

from .clips import Clip
from .errors import (
    AudioAttachError,
    DecodeOpenError,
    DecodeRuntimeError,
    PlaybackStartError,
)
from .settings import DEFAULT_SAMPLE_RATE


logger = logging.getLogger(__name__)

# Errors moviepy / the ffmpeg readers raise for unreadable or truncated media.
DECODER_ERRORS = (OSError, IndexError, ValueError)


def _spool_to_tempfile(clip: Clip) -> Path:
    """Write a non-path clip source to a temp file carrying the clip's suffix."""
    with tempfile.NamedTemporaryFile(
        prefix="clipstitch-", suffix=clip.suffix or ".bin", delete=False,
    ) as f:
        path = Path(f.name)
        try:
            if isinstance(clip.source, (bytes, bytearray, memoryview)):
                f.write(clip.source)
            else:
                if hasattr(clip.source, "seek") and clip.source.seekable():
                    clip.source.seek(0)
                shutil.copyfileobj(clip.source, f)
        except BaseException:
            f.close()
            _discard(path)
            raise
    return path


def _discard(temp_path: Path | None) -> None:
    if temp_path is not None:
        temp_path.unlink(missing_ok=True)


class _ClipAudio:
    """Audio source adapter handed to the mix bus."""

    def __init__(self, handle: "MediaHandle"):
        self._handle = handle

    def read(self, position: float, count: int, sample_rate: int) -> np.ndarray:
        audio = self._handle._video.audio
        tt = position + np.arange(count) / sample_rate
        out = np.zeros((count, audio.nchannels), dtype=np.float32)
        in_range = (tt >= 0) & (tt < audio.duration)
        if not in_range.any():
            return out
        try:
            out[in_range] = audio.get_frame(tt[in_range])
        except DECODER_ERRORS as exc:
            raise DecodeRuntimeError(
                self._handle.name, f"audio decode failed at {position:.3f}s: {exc}"
            ) from exc
        return out


class MediaHandle:
    """One opened clip: geometry, duration, frame and audio access."""

    def __init__(self, clip: Clip, video: VideoFileClip, temp_path: Path | None = None):
        self.clip = clip
        self._video = video
        self._temp_path = temp_path
        self.closed = False

    @property
    def name(self) -> str:
        return self.clip.name

    @property
    def size(self) -> tuple[int, int]:
        w, h = self._video.size
        return int(w), int(h)

    @property
    def duration(self) -> float:
        return float(self._video.duration or 0.0)

    @property
    def has_audio(self) -> bool:
        return self._video.audio is not None

    @property
    def temp_path(self) -> Path | None:
        return self._temp_path

    def start(self) -> None:
        """Prime the decoder by reading the first frame."""
        if self.duration <= 0:
            return
        try:
            self._video.get_frame(0)
        except DECODER_ERRORS as exc:
            raise PlaybackStartError(self.name, f"could not start playback: {exc}") from exc

    def frame_at(self, position: float) -> np.ndarray:
        try:
            return self._video.get_frame(position)
        except DECODER_ERRORS as exc:
            raise DecodeRuntimeError(
                self.name, f"video decode failed at {position:.3f}s: {exc}"
            ) from exc

    def audio_source(self) -> _ClipAudio:
        if not self.has_audio:
            raise AudioAttachError(self.name, "clip has no audio track")
        return _ClipAudio(self)

    def close(self) -> None:
        """Release the decoder and delete the temporary decode source."""
        if self.closed:
            return
        self.closed = True
        try:
            self._video.close()
        finally:
            if self._temp_path is not None:
                self._temp_path.unlink(missing_ok=True)
                self._temp_path = None


def open_media(clip: Clip, audio_fps: int = DEFAULT_SAMPLE_RATE) -> MediaHandle:
    """Open a clip for decoding.

    Raises:
        DecodeOpenError: Missing file or a resource the decoder rejects.
    """
    temp_path = None
    if clip.is_path:
        path = Path(clip.source)
        if not path.exists():
            raise DecodeOpenError(clip.name, f"file not found: {path}")
    else:
        try:
            temp_path = _spool_to_tempfile(clip)
        except OSError as exc:
            raise DecodeOpenError(clip.name, f"could not read source: {exc}") from exc
        path = temp_path

    try:
        video = VideoFileClip(str(path), audio_fps=audio_fps)
    except DECODER_ERRORS as exc:
        _discard(temp_path)
        raise DecodeOpenError(clip.name, f"could not open media: {exc}") from exc
    except BaseException:
        _discard(temp_path)
        raise

    logger.debug(
        "Opened %s: %sx%s, %.2fs, audio=%s",
        clip.name, *video.size, video.duration or 0.0, video.audio is not None,
    )
    return MediaHandle(clip, video, temp_path)
