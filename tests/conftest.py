"""Shared test fixtures for clipstitch tests.

Real media is generated with the imageio-ffmpeg binary. Pipeline logic is
exercised with in-memory fakes: media handles that count open/close, a
clock that never sleeps, and an encoder that counts what it receives.
"""

import subprocess

import numpy as np
import pytest
import imageio_ffmpeg

from clipstitch.encoder import EncodedOutput
from clipstitch.errors import (
    AudioAttachError,
    DecodeOpenError,
    DecodeRuntimeError,
    NoTrackError,
    PlaybackStartError,
)

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


# ── Real media ────────────────────────────────────────────────────


def _render_clip(out, duration, size=(320, 240), rate=10, color="blue", audio=True):
    w, h = size
    cmd = [
        _FFMPEG, "-y",
        "-f", "lavfi", "-i", f"color=c={color}:s={w}x{h}:d={duration}:r={rate}",
    ]
    if audio:
        cmd += [
            "-f", "lavfi", "-i", f"sine=frequency=440:sample_rate=44100:duration={duration}",
            "-c:a", "aac", "-b:a", "32k",
        ]
    cmd += ["-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p", "-shortest", str(out)]
    subprocess.run(cmd, check=True, capture_output=True)
    return out


@pytest.fixture
def make_video(tmp_path):
    """Factory: make_video(name, duration, size=..., audio=...) -> Path."""
    def _make(name, duration=1.0, **kwargs):
        return _render_clip(tmp_path / name, duration, **kwargs)
    return _make


@pytest.fixture
def source_video(make_video):
    """A 2-second 320x240 clip at 10fps with a sine tone."""
    return make_video("source.mp4", duration=2)


# ── Fakes ─────────────────────────────────────────────────────────


class FakeMedia:
    """In-memory media handle with a solid-color picture and constant audio."""

    def __init__(self, clip, registry, duration=1.0, size=(64, 48), audio=True,
                 fail_start=False, fail_at=None, color=(200, 40, 40)):
        self.clip = clip
        self.registry = registry
        self.duration = duration
        self.size = size
        self.audio = audio
        self.fail_start = fail_start
        self.fail_at = fail_at
        self.color = color
        self.closed = False
        self.positions = []

    @property
    def name(self):
        return self.clip.name

    def start(self):
        if self.fail_start:
            raise PlaybackStartError(self.name, "player refused to start")

    def frame_at(self, position):
        if self.fail_at is not None and position >= self.fail_at:
            raise DecodeRuntimeError(self.name, f"corrupt packet at {position:.2f}s")
        self.positions.append(position)
        w, h = self.size
        return np.full((h, w, 3), self.color, dtype=np.uint8)

    def audio_source(self):
        if not self.audio:
            raise AudioAttachError(self.name, "clip has no audio track")
        return self

    def read(self, position, count, sample_rate):
        return np.full((count, 1), 0.25, dtype=np.float32)

    def close(self):
        if not self.closed:
            self.closed = True
            self.registry.closed += 1


class FakeOpener:
    """Media opener keyed by clip name; unknown names get default FakeMedia."""

    def __init__(self, specs=None, fail_open=()):
        self.specs = specs or {}
        self.fail_open = set(fail_open)
        self.opened = 0
        self.closed = 0
        self.handles = []

    def __call__(self, clip):
        if clip.name in self.fail_open:
            raise DecodeOpenError(clip.name, "unsupported format")
        handle = FakeMedia(clip, self, **self.specs.get(clip.name, {}))
        self.opened += 1
        self.handles.append(handle)
        return handle


class ImmediateClock:
    """Clock that records requested positions and never sleeps."""

    def __init__(self):
        self.started = 0
        self.waits = []

    def start(self):
        self.started += 1

    def wait_until(self, position):
        self.waits.append(position)


class FakeEncoder:
    """Encoder stand-in that counts frames and audio samples."""

    instances = []

    def __init__(self, settings=None):
        self.settings = settings
        self.start_count = 0
        self.stop_count = 0
        self.abort_count = 0
        self.frames = 0
        self.samples = 0
        self.active = False
        self._streams = ()
        FakeEncoder.instances.append(self)

    def start(self, video_stream, audio_stream=None):
        if not video_stream.has_track and (audio_stream is None or not audio_stream.has_track):
            raise NoTrackError("Nothing to encode")
        self.start_count += 1
        self.active = True
        self._streams = (video_stream, audio_stream)
        video_stream.subscribe(self._on_frame)
        if audio_stream is not None:
            audio_stream.subscribe(self._on_audio)

    def _on_frame(self, frame):
        self.frames += 1

    def _on_audio(self, block):
        self.samples += block.shape[0]

    def _release(self):
        video_stream, audio_stream = self._streams
        video_stream.unsubscribe(self._on_frame)
        if audio_stream is not None:
            audio_stream.unsubscribe(self._on_audio)
        self.active = False

    def stop(self):
        self.stop_count += 1
        self._release()
        return EncodedOutput(b"encoded", "video/mp4;codecs=avc1,mp4a.40.2", chunk_count=1)

    def abort(self):
        self.abort_count += 1
        if self.active:
            self._release()


@pytest.fixture
def opener():
    return FakeOpener()


@pytest.fixture
def clock():
    return ImmediateClock()


@pytest.fixture
def fake_encoder_cls():
    FakeEncoder.instances = []
    return FakeEncoder


@pytest.fixture
def fakes():
    """Access to the fake classes for tests that build their own."""
    return {"opener": FakeOpener, "clock": ImmediateClock, "encoder": FakeEncoder}
