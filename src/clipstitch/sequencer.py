"""Clip sequencer — one encoder run across an ordered clip list.

The sequencer owns the run-wide resources (raster target, mix bus,
encoder). It starts the encoder once, drives one PlaybackDriver per clip
strictly in order (clip N+1 starts only after clip N returned), then stops
the encoder and hands the finalized output to the caller.

Progress is reported through a callback:
  - before clip i (0-based): {i+1, N, "Processing clip i+1: <name>"}
  - after the last clip:     {N, N, "Finalizing output..."}

If any clip fails, the remaining clips are skipped, the encoder is torn
down (best-effort), the mix bus is released, and ClipProcessingError
identifies the failing clip. No partial output is ever returned.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from .clips import Clip
from .compositor import RasterTarget
from .encoder import EncodedOutput, Encoder
from .errors import ClipProcessingError, EmptyInputError, RunCancelledError
from .media import open_media
from .mixbus import AudioMixBus
from .playback import PlaybackDriver
from .settings import StitchSettings


logger = logging.getLogger(__name__)

FINALIZING_MESSAGE = "Finalizing output..."


@dataclass(frozen=True)
class ProgressState:
    current_clip_index: int
    total_clips: int
    status_message: str

    @property
    def fraction(self) -> float:
        """Completed share of the run; 0.0 while not started (total 0)."""
        if self.total_clips <= 0:
            return 0.0
        return self.current_clip_index / self.total_clips


IDLE_PROGRESS = ProgressState(0, 0, "")


class ClipSequencer:
    """Runs the capture pipeline over an ordered list of clips.

    Args:
        settings: Raster geometry, audio format and encoder settings.
        encoder_factory: Builds the run's encoder from the settings.
        opener: Media opener handed to each PlaybackDriver.
        clock_factory: Builds a per-clip clock (None → real-time).
    """

    def __init__(
        self,
        settings: StitchSettings | None = None,
        encoder_factory: Callable[[StitchSettings], Encoder] = Encoder,
        opener: Callable | None = None,
        clock_factory: Callable | None = None,
    ):
        self.settings = settings or StitchSettings()
        self.encoder_factory = encoder_factory
        self.opener = opener or self._open_with_settings
        self.clock_factory = clock_factory
        self.progress = IDLE_PROGRESS

    def _open_with_settings(self, clip: Clip):
        return open_media(clip, audio_fps=self.settings.sample_rate)

    def _report(self, state: ProgressState, on_progress) -> None:
        self.progress = state
        if on_progress is not None:
            on_progress(state)

    def _driver_for(self, clip: Clip, target: RasterTarget, bus: AudioMixBus) -> PlaybackDriver:
        clock = self.clock_factory() if self.clock_factory else None
        return PlaybackDriver(clip, target, bus, opener=self.opener, clock=clock)

    def run(
        self,
        clips: Sequence[Clip],
        on_progress: Callable[[ProgressState], None] | None = None,
        cancel=None,
    ) -> EncodedOutput:
        """Stitch clips into one encoded output.

        Args:
            clips: Ordered, non-empty clip sequence.
            on_progress: Called with a ProgressState at each clip boundary.
            cancel: Optional threading.Event-like object; checked before
                each clip.

        Raises:
            EmptyInputError: clips is empty (the encoder is never started).
            ClipProcessingError: a clip failed; wraps the originating error.
            RunCancelledError: cancel was set at a clip boundary.
            NoTrackError, EncoderAbortedError: encoder start/finalize failed.
        """
        clips = list(clips)
        if not clips:
            raise EmptyInputError()

        s = self.settings
        total = len(clips)
        target = RasterTarget(s.width, s.height, s.fps)
        bus = AudioMixBus(s.sample_rate, s.channels, s.fps)
        encoder = self.encoder_factory(s)

        try:
            encoder.start(target, bus)
        except Exception:
            bus.close()
            raise

        logger.info("Stitching %d clip(s) at %dx%d, %dfps", total, s.width, s.height, s.fps)

        try:
            for i, clip in enumerate(clips):
                if cancel is not None and cancel.is_set():
                    raise RunCancelledError(i)

                self._report(
                    ProgressState(i + 1, total, f"Processing clip {i + 1}: {clip.name}"),
                    on_progress,
                )
                driver = self._driver_for(clip, target, bus)
                try:
                    driver.run()
                except Exception as exc:
                    logger.error("Aborting run at clip %d (%s): %s", i + 1, clip.name, exc)
                    raise ClipProcessingError(i, clip.name, exc) from exc

            self._report(ProgressState(total, total, FINALIZING_MESSAGE), on_progress)
        except BaseException:
            # Covers callback errors and KeyboardInterrupt as well as clip failures.
            self._teardown(encoder, bus)
            raise

        try:
            output = encoder.stop()
        finally:
            bus.close()
        return output

    def _teardown(self, encoder: Encoder, bus: AudioMixBus) -> None:
        """Stop the encoder without output and release the bus."""
        try:
            encoder.abort()
        except Exception as exc:
            # Best-effort: the clip error is the one the caller needs.
            logger.warning("Encoder teardown failed: %s", exc)
        finally:
            bus.close()


def stitch_clips(
    clips: Sequence[Clip],
    on_progress: Callable[[ProgressState], None] | None = None,
    settings: StitchSettings | None = None,
) -> EncodedOutput:
    """Convenience wrapper: one ClipSequencer run with default collaborators."""
    return ClipSequencer(settings).run(clips, on_progress)
