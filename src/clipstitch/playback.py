"""Playback driver — plays one clip into the raster target and mix bus.

Per-clip state machine:

    OPENING -> AUDIO_ATTACHING -> PLAYING -> DRAINING -> CLOSED
        \\___________\\______________\\__________\\-----> FAILED

OPENING          open the decodable handle and claim the raster target.
AUDIO_ATTACHING  connect the clip's audio to the mix bus. Failure here is
                 logged and the clip plays silent.
PLAYING          prime playback, then run the capture loop: one tick per
                 output frame, each tick waits on the clock for its
                 presentation time, decodes the frame at the clip's
                 playback position, composites and presents it, and
                 advances the mix bus by one tick of audio.
DRAINING         natural end of clip reached.
CLOSED / FAILED  terminal. run() returns or raises exactly once.

The capture loop is guarded by the state itself: it keeps going only
while the driver is PLAYING, and end-of-clip moves it to DRAINING.
Cleanup (detach audio, close the handle and its temporary decode source,
release the raster target) runs on every exit path, failures included.
"""

import logging
import time
from enum import Enum
from typing import Callable, Protocol

from .clips import Clip
from .compositor import RasterTarget, composite
from .errors import (
    AudioAttachError,
    DecodeOpenError,
    DecodeRuntimeError,
)
from .media import open_media
from .mixbus import AudioMixBus, Connection


logger = logging.getLogger(__name__)

# Host-level decoder failures not already translated by the media handle.
_HOST_ERRORS = (OSError, ValueError, IndexError)


class DriverState(Enum):
    OPENING = "opening"
    AUDIO_ATTACHING = "audio_attaching"
    PLAYING = "playing"
    DRAINING = "draining"
    CLOSED = "closed"
    FAILED = "failed"


_TRANSITIONS = {
    DriverState.OPENING: {DriverState.AUDIO_ATTACHING, DriverState.FAILED},
    DriverState.AUDIO_ATTACHING: {DriverState.PLAYING, DriverState.FAILED},
    DriverState.PLAYING: {DriverState.DRAINING, DriverState.FAILED},
    DriverState.DRAINING: {DriverState.CLOSED, DriverState.FAILED},
    DriverState.CLOSED: set(),
    DriverState.FAILED: set(),
}


# ── Clocks ────────────────────────────────────────────────────────


class Clock(Protocol):
    def start(self) -> None: ...

    def wait_until(self, position: float) -> None: ...


class RealtimeClock:
    """Paces the capture loop at playback rate.

    start() anchors position 0 to now; wait_until() sleeps until the given
    playback position is due. A tick that is already late does not sleep,
    so a slow decode delays capture instead of dropping frames.
    """

    def __init__(self):
        self._origin = None

    def start(self) -> None:
        self._origin = time.monotonic()

    def wait_until(self, position: float) -> None:
        delay = self._origin + position - time.monotonic()
        if delay > 0:
            time.sleep(delay)


# ── Driver ────────────────────────────────────────────────────────


class PlaybackDriver:
    """Drives one clip through open → play → close.

    Args:
        clip: The clip to play.
        target: Shared raster target; claimed for the duration of run().
        bus: Shared mix bus.
        opener: Callable turning a Clip into a media handle.
        clock: Tick pacer; a fresh RealtimeClock by default.
    """

    def __init__(
        self,
        clip: Clip,
        target: RasterTarget,
        bus: AudioMixBus,
        opener: Callable = open_media,
        clock: Clock | None = None,
    ):
        self.clip = clip
        self.target = target
        self.bus = bus
        self.opener = opener
        self.clock = clock or RealtimeClock()
        self.state = DriverState.OPENING
        self.history = [DriverState.OPENING]
        self.frames_captured = 0
        self.error: BaseException | None = None
        self._handle = None
        self._connection: Connection | None = None
        self._started = False

    def _enter(self, state: DriverState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal driver transition {self.state.value} -> {state.value}"
            )
        self.state = state
        self.history.append(state)

    def run(self) -> int:
        """Play the clip to its natural end.

        Returns:
            Number of frames captured.

        Raises:
            DecodeOpenError, PlaybackStartError, DecodeRuntimeError, or any
            error raised by the encoder's stream handlers.
        """
        if self._started:
            raise RuntimeError("PlaybackDriver.run() may only be called once")
        self._started = True

        try:
            self._open()
            self._enter(DriverState.AUDIO_ATTACHING)
            self._attach_audio()
            self._enter(DriverState.PLAYING)
            self._play()
        except BaseException as exc:
            self._fail(exc)
            try:
                self._cleanup()
            finally:
                self.target.release(self)
            logger.debug("Clip %s failed: %s", self.clip.name, exc)
            raise

        try:
            self._cleanup()
        except BaseException as exc:
            self._fail(exc)
            raise
        finally:
            self.target.release(self)
        self._enter(DriverState.CLOSED)
        logger.debug("Clip %s closed after %d frames", self.clip.name, self.frames_captured)
        return self.frames_captured

    # ── States ────────────────────────────────────────────────────

    def _open(self) -> None:
        self.target.claim(self)
        try:
            self._handle = self.opener(self.clip)
        except DecodeOpenError:
            raise
        except _HOST_ERRORS as exc:
            raise DecodeOpenError(self.clip.name, f"could not open media: {exc}") from exc

    def _attach_audio(self) -> None:
        try:
            source = self._handle.audio_source()
        except AudioAttachError as exc:
            logger.warning(
                "Audio setup failed for %s, proceeding without audio: %s",
                self.clip.name, exc.detail,
            )
            return
        self._connection = self.bus.attach(source)

    def _play(self) -> None:
        handle = self._handle
        handle.start()
        self.clock.start()

        fps = self.target.fps
        duration = handle.duration
        tick = 0
        while self.state is DriverState.PLAYING:
            position = tick / fps
            if position >= duration - 1e-9:
                self._enter(DriverState.DRAINING)
                continue

            self.clock.wait_until(position)
            try:
                frame = handle.frame_at(position)
            except _HOST_ERRORS as exc:
                raise DecodeRuntimeError(
                    self.clip.name, f"decode failed at {position:.3f}s: {exc}"
                ) from exc

            composite(frame, self.target)
            self.target.present()
            self.bus.advance(position)
            tick += 1
            self.frames_captured += 1

    def _fail(self, exc: BaseException) -> None:
        self.error = exc
        self._enter(DriverState.FAILED)

    def _cleanup(self) -> None:
        """Detach audio and close the handle. The caller releases the target."""
        connection, self._connection = self._connection, None
        handle, self._handle = self._handle, None
        try:
            if connection is not None:
                connection.detach()
        finally:
            if handle is not None:
                try:
                    handle.close()
                except OSError as exc:
                    logger.warning("Could not release %s: %s", self.clip.name, exc)
