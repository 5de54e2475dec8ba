"""Tests for the per-clip playback driver."""

import numpy as np
import pytest

from clipstitch.clips import Clip
from clipstitch.compositor import RasterTarget
from clipstitch.errors import (
    DecodeOpenError,
    DecodeRuntimeError,
    EncoderAbortedError,
    PlaybackStartError,
    RasterTargetBusyError,
)
from clipstitch.mixbus import AudioMixBus
from clipstitch.playback import DriverState, PlaybackDriver, RealtimeClock


S = DriverState


@pytest.fixture
def target():
    return RasterTarget(160, 90, fps=30)


@pytest.fixture
def bus():
    return AudioMixBus(sample_rate=48000, channels=2, fps=30)


def _driver(name, target, bus, opener, clock):
    return PlaybackDriver(Clip(name=name, source=f"/clips/{name}"), target, bus,
                          opener=opener, clock=clock)


class TestSuccessfulRun:
    def test_state_history(self, target, bus, opener, clock):
        driver = _driver("a.mp4", target, bus, opener, clock)
        driver.run()
        assert driver.history == [S.OPENING, S.AUDIO_ATTACHING, S.PLAYING, S.DRAINING, S.CLOSED]
        assert driver.state is S.CLOSED
        assert driver.error is None

    def test_one_frame_per_tick(self, target, bus, opener, clock):
        frames = _driver("a.mp4", target, bus, opener, clock).run()
        assert frames == 30
        assert target.frames_presented == 30
        assert clock.started == 1
        assert clock.waits == [i / 30 for i in range(30)]

    def test_decodes_at_playback_positions(self, target, bus, opener, clock):
        _driver("a.mp4", target, bus, opener, clock).run()
        assert opener.handles[0].positions == [i / 30 for i in range(30)]

    def test_audio_follows_video(self, target, bus, opener, clock):
        received = []
        bus.subscribe(received.append)
        _driver("a.mp4", target, bus, opener, clock).run()
        assert sum(b.shape[0] for b in received) == 48000
        assert np.allclose(received[0], 0.25)

    def test_resources_released(self, target, bus, opener, clock):
        _driver("a.mp4", target, bus, opener, clock).run()
        assert opener.opened == opener.closed == 1
        assert (bus.attach_count, bus.detach_count) == (1, 1)
        assert bus.connection is None
        assert target.writer is None

    def test_frame_is_letterboxed(self, target, bus, clock, fakes):
        opener = fakes["opener"]({"sq.mp4": {"size": (90, 90), "color": (255, 255, 255)}})
        _driver("sq.mp4", target, bus, opener, clock).run()
        assert np.all(target.buffer[:, :35] == 0)
        assert np.all(target.buffer[:, 35:125] == 255)

    def test_zero_duration_clip(self, target, bus, clock, fakes):
        opener = fakes["opener"]({"empty.mp4": {"duration": 0.0}})
        driver = _driver("empty.mp4", target, bus, opener, clock)
        assert driver.run() == 0
        assert driver.state is S.CLOSED
        assert opener.closed == 1

    def test_run_only_once(self, target, bus, opener, clock):
        driver = _driver("a.mp4", target, bus, opener, clock)
        driver.run()
        with pytest.raises(RuntimeError):
            driver.run()


class TestSilentClip:
    def test_plays_silent_with_warning(self, target, bus, clock, fakes, caplog):
        opener = fakes["opener"]({"mute.mp4": {"audio": False}})
        received = []
        bus.subscribe(received.append)
        driver = _driver("mute.mp4", target, bus, opener, clock)
        assert driver.run() == 30
        assert "proceeding without audio" in caplog.text
        assert bus.attach_count == 0
        assert sum(b.shape[0] for b in received) == 48000
        assert all(np.all(b == 0.0) for b in received)


class TestFailures:
    def test_open_failure(self, target, bus, clock, fakes):
        opener = fakes["opener"](fail_open={"bad.mp4"})
        driver = _driver("bad.mp4", target, bus, opener, clock)
        with pytest.raises(DecodeOpenError):
            driver.run()
        assert driver.history == [S.OPENING, S.FAILED]
        assert target.writer is None

    def test_host_open_error_is_translated(self, target, bus, clock):
        def opener(clip):
            raise OSError("permission denied")

        driver = _driver("locked.mp4", target, bus, opener, clock)
        with pytest.raises(DecodeOpenError, match="permission denied"):
            driver.run()

    def test_start_failure_releases_everything(self, target, bus, clock, fakes):
        opener = fakes["opener"]({"a.mp4": {"fail_start": True}})
        driver = _driver("a.mp4", target, bus, opener, clock)
        with pytest.raises(PlaybackStartError):
            driver.run()
        assert driver.state is S.FAILED
        assert driver.frames_captured == 0
        assert opener.closed == 1
        assert (bus.attach_count, bus.detach_count) == (1, 1)
        assert target.writer is None

    def test_runtime_failure_mid_clip(self, target, bus, clock, fakes):
        opener = fakes["opener"]({"a.mp4": {"fail_at": 0.5}})
        driver = _driver("a.mp4", target, bus, opener, clock)
        with pytest.raises(DecodeRuntimeError, match="corrupt packet"):
            driver.run()
        assert driver.frames_captured == 15
        assert driver.history[-2:] == [S.PLAYING, S.FAILED]
        assert isinstance(driver.error, DecodeRuntimeError)
        assert opener.closed == 1
        assert bus.connection is None

    def test_encoder_failure_propagates(self, target, bus, opener, clock):
        def dead_encoder(frame):
            raise EncoderAbortedError("Encoder stopped unexpectedly")

        target.subscribe(dead_encoder)
        driver = _driver("a.mp4", target, bus, opener, clock)
        with pytest.raises(EncoderAbortedError):
            driver.run()
        assert opener.closed == 1
        assert target.writer is None

    def test_busy_target(self, target, bus, opener, clock):
        target.claim("someone else")
        driver = _driver("a.mp4", target, bus, opener, clock)
        with pytest.raises(RasterTargetBusyError):
            driver.run()
        assert opener.opened == 0
        assert target.writer == "someone else"


class TestRealtimeClock:
    def test_late_tick_does_not_sleep(self, monkeypatch):
        slept = []
        monkeypatch.setattr("clipstitch.playback.time.sleep", slept.append)
        clock = RealtimeClock()
        clock.start()
        clock.wait_until(-1.0)
        assert slept == []

    def test_sleeps_until_due(self, monkeypatch):
        slept = []
        monkeypatch.setattr("clipstitch.playback.time.sleep", slept.append)
        clock = RealtimeClock()
        clock.start()
        clock.wait_until(5.0)
        assert len(slept) == 1
        assert 4.5 < slept[0] <= 5.0


class TestCleanupFailures:
    def test_close_failure_after_natural_end(self, target, bus, clock, fakes):
        inner = fakes["opener"]()

        def opener(clip):
            handle = inner(clip)

            def broken_close():
                raise RuntimeError("decoder refused to close")

            handle.close = broken_close
            return handle

        driver = _driver("a.mp4", target, bus, opener, clock)
        with pytest.raises(RuntimeError, match="refused to close"):
            driver.run()
        assert driver.history[-2:] == [S.DRAINING, S.FAILED]
        assert isinstance(driver.error, RuntimeError)
        assert target.writer is None
        assert bus.connection is None

    def test_interrupt_still_releases(self, target, bus, opener, fakes):
        class InterruptingClock(fakes["clock"]):
            def wait_until(self, position):
                if position > 0.2:
                    raise KeyboardInterrupt

        driver = _driver("a.mp4", target, bus, opener, InterruptingClock())
        with pytest.raises(KeyboardInterrupt):
            driver.run()
        assert driver.state is S.FAILED
        assert opener.closed == 1
        assert bus.connection is None
        assert target.writer is None
