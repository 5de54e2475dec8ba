"""Raster target and frame compositing.

The raster target is the fixed-resolution picture buffer every clip is
drawn onto. It is shared by all clips of a run and feeds the encoder's
video stream: each present() hands one frame to the subscribed sinks.

Compositing clears the target to opaque black and draws the decoded frame
scaled by a single factor s = min(target_w / frame_w, target_h / frame_h),
centered. A frame wider than the target fills the width (letterbox bars
above and below); a taller frame fills the height (pillarbox bars left and
right). Nothing is cropped.

Usage:
  target = RasterTarget(1280, 720, fps=30)
  target.subscribe(sink)
  composite(frame, target)
  target.present()
"""

from typing import Callable

import numpy as np
from PIL import Image

from .errors import RasterTargetBusyError


BACKGROUND = (0, 0, 0)


# ── Raster target ─────────────────────────────────────────────────


class RasterTarget:
    """Fixed-size RGB picture buffer with a single writer.

    Sinks receive a private copy of the buffer (H x W x 3 uint8) on every
    present(). Only the owner that claimed the target may draw on it; the
    claim is released when the owner's clip is done.
    """

    def __init__(self, width: int, height: int, fps: int):
        self.width = width
        self.height = height
        self.fps = fps
        self.buffer = np.zeros((max(height, 0), max(width, 0), 3), dtype=np.uint8)
        self.frames_presented = 0
        self._sinks: list[Callable[[np.ndarray], None]] = []
        self._writer = None

    @property
    def has_track(self) -> bool:
        return self.width > 0 and self.height > 0 and self.fps > 0

    @property
    def writer(self):
        return self._writer

    def subscribe(self, sink: Callable[[np.ndarray], None]) -> None:
        self._sinks.append(sink)

    def unsubscribe(self, sink: Callable[[np.ndarray], None]) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def claim(self, owner) -> None:
        """Make owner the only writer. Fails if another writer holds it."""
        if self._writer is not None and self._writer is not owner:
            raise RasterTargetBusyError(
                f"Raster target already claimed by {self._writer!r}"
            )
        self._writer = owner

    def release(self, owner) -> None:
        if self._writer is owner:
            self._writer = None

    def clear(self) -> None:
        self.buffer[:] = BACKGROUND

    def present(self) -> None:
        """Emit the current picture to every sink."""
        frame = self.buffer.copy()
        self.frames_presented += 1
        for sink in list(self._sinks):
            sink(frame)


# ── Geometry ──────────────────────────────────────────────────────


def compute_letterbox(
    frame_w: int, frame_h: int, target_w: int, target_h: int,
) -> tuple[int, int, int, int] | None:
    """Compute the (x, y, w, h) draw rectangle for a frame on the target.

    Returns None when either side is degenerate (zero or negative), in
    which case nothing should be drawn.
    """
    if frame_w <= 0 or frame_h <= 0 or target_w <= 0 or target_h <= 0:
        return None

    scale = min(target_w / frame_w, target_h / frame_h)
    w = min(target_w, int(round(frame_w * scale)))
    h = min(target_h, int(round(frame_h * scale)))
    if w <= 0 or h <= 0:
        return None

    x = (target_w - w) // 2
    y = (target_h - h) // 2
    return x, y, w, h


# ── Compositing ───────────────────────────────────────────────────


def _to_rgb8(frame: np.ndarray) -> np.ndarray:
    """Normalize a decoded frame to contiguous H x W x 3 uint8."""
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    if frame.ndim == 2:
        frame = np.stack([frame] * 3, axis=-1)
    elif frame.shape[2] == 1:
        frame = np.repeat(frame, 3, axis=2)
    elif frame.shape[2] >= 4:
        frame = frame[:, :, :3]
    return np.ascontiguousarray(frame)


def composite(frame: np.ndarray | None, target: RasterTarget) -> bool:
    """Draw one frame onto the target, letterboxed on black.

    A missing or zero-dimension frame is skipped for this tick and the
    target keeps its previous picture.

    Returns:
        True if the frame was drawn, False if it was skipped.
    """
    if frame is None:
        return False
    frame = np.asarray(frame)
    if frame.ndim not in (2, 3) or frame.shape[0] == 0 or frame.shape[1] == 0:
        return False

    frame_h, frame_w = frame.shape[:2]
    box = compute_letterbox(frame_w, frame_h, target.width, target.height)
    if box is None:
        return False
    x, y, w, h = box

    rgb = _to_rgb8(frame)
    if (w, h) == (frame_w, frame_h):
        scaled = rgb
    else:
        scaled = np.asarray(
            Image.fromarray(rgb).resize((w, h), Image.Resampling.BILINEAR)
        )

    target.clear()
    target.buffer[y:y + h, x:x + w] = scaled
    return True
