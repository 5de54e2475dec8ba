"""Tests for the raster target and letterbox compositing."""

import numpy as np
import pytest

from clipstitch.compositor import (
    BACKGROUND,
    RasterTarget,
    composite,
    compute_letterbox,
)
from clipstitch.errors import RasterTargetBusyError


def _frame(w, h, color=(255, 255, 255)):
    return np.full((h, w, 3), color, dtype=np.uint8)


class TestComputeLetterbox:
    def test_same_aspect_fills_target(self):
        assert compute_letterbox(640, 360, 1280, 720) == (0, 0, 1280, 720)

    def test_wider_frame_fills_width_and_is_centered(self):
        # 2.4:1 into 16:9 -> letterbox bars above and below.
        x, y, w, h = compute_letterbox(1920, 800, 1280, 720)
        assert w == 1280
        assert h == round(800 * 1280 / 1920)
        assert x == 0
        assert y == (720 - h) // 2

    def test_taller_frame_fills_height_and_is_centered(self):
        # 9:16 portrait into 16:9 -> pillarbox bars left and right.
        x, y, w, h = compute_letterbox(1080, 1920, 1280, 720)
        assert h == 720
        assert w == round(1080 * 720 / 1920)
        assert y == 0
        assert x == (1280 - w) // 2

    def test_small_frame_is_scaled_up(self):
        assert compute_letterbox(320, 180, 1280, 720) == (0, 0, 1280, 720)

    @pytest.mark.parametrize("dims", [(0, 480), (640, 0), (-1, 10)])
    def test_degenerate_frame_returns_none(self, dims):
        assert compute_letterbox(*dims, 1280, 720) is None

    def test_degenerate_target_returns_none(self):
        assert compute_letterbox(640, 480, 0, 720) is None


class TestComposite:
    def test_draws_centered_with_black_bars(self):
        target = RasterTarget(160, 90, fps=30)
        target.buffer[:] = 77  # stale content must be cleared
        drawn = composite(_frame(90, 90), target)
        assert drawn
        x, y, w, h = compute_letterbox(90, 90, 160, 90)
        assert (w, h) == (90, 90)
        assert np.all(target.buffer[:, :x] == BACKGROUND)
        assert np.all(target.buffer[:, x + w:] == BACKGROUND)
        assert np.all(target.buffer[y:y + h, x:x + w] == 255)

    def test_is_pure_function_of_frame_and_geometry(self):
        rng = np.random.default_rng(0)
        frame = rng.integers(0, 255, size=(50, 120, 3), dtype=np.uint8)
        first = RasterTarget(200, 150, fps=30)
        second = RasterTarget(200, 150, fps=30)
        second.buffer[:] = 123
        composite(frame, first)
        composite(frame, second)
        composite(frame, second)
        assert np.array_equal(first.buffer, second.buffer)

    def test_skips_zero_dimension_frame(self):
        target = RasterTarget(64, 48, fps=30)
        target.buffer[:] = 9
        assert composite(np.zeros((0, 10, 3), dtype=np.uint8), target) is False
        assert composite(None, target) is False
        assert np.all(target.buffer == 9)

    def test_accepts_grayscale_and_rgba(self):
        target = RasterTarget(32, 32, fps=30)
        assert composite(np.full((16, 16), 200, dtype=np.uint8), target)
        assert np.all(target.buffer == 200)
        rgba = np.zeros((16, 16, 4), dtype=np.uint8)
        rgba[..., 1] = 180
        rgba[..., 3] = 255
        assert composite(rgba, target)
        assert np.all(target.buffer[..., 1] == 180)

    def test_float_frames_are_clipped(self):
        target = RasterTarget(8, 8, fps=30)
        composite(np.full((8, 8, 3), 300.0), target)
        assert target.buffer.dtype == np.uint8
        assert np.all(target.buffer == 255)


class TestRasterTarget:
    def test_present_sends_copies_to_sinks(self):
        target = RasterTarget(4, 2, fps=30)
        received = []
        target.subscribe(received.append)
        target.present()
        target.buffer[:] = 255
        assert received[0].shape == (2, 4, 3)
        assert np.all(received[0] == 0)
        assert target.frames_presented == 1

    def test_unsubscribe(self):
        target = RasterTarget(4, 2, fps=30)
        received = []
        target.subscribe(received.append)
        target.unsubscribe(received.append)
        target.present()
        assert received == []

    def test_single_writer(self):
        target = RasterTarget(4, 2, fps=30)
        first, second = object(), object()
        target.claim(first)
        target.claim(first)
        with pytest.raises(RasterTargetBusyError):
            target.claim(second)
        target.release(first)
        target.claim(second)
        assert target.writer is second

    def test_has_track(self):
        assert RasterTarget(4, 2, fps=30).has_track
        assert not RasterTarget(0, 0, fps=30).has_track
        assert not RasterTarget(4, 2, fps=0).has_track
