"""Audio mix bus — one continuous sink, rotating producers.

The bus lives for a whole run. Each clip's audio is attached while that
clip plays and detached when it ends; at most one connection is live at a
time and a second attach fails loudly instead of mixing two clips.

The bus is clocked by the capture loop: every advance() emits exactly the
samples belonging to one video tick. The tick-to-sample mapping uses a
run-wide cursor (round(ticks * rate / fps)), so rounding never drifts
across clips. With no producer attached the bus emits silence, which
keeps audio aligned with video through silent clips and clip gaps.
"""

import logging
from typing import Callable, Protocol

import numpy as np

from .errors import AudioBusBusyError, AudioBusClosedError


logger = logging.getLogger(__name__)


class AudioSource(Protocol):
    def read(self, position: float, count: int, sample_rate: int) -> np.ndarray:
        """Return `count` samples starting at `position` seconds, (count, channels)."""


class Connection:
    """A live link between one clip's audio and the bus."""

    def __init__(self, bus: "AudioMixBus", source: AudioSource):
        self._bus = bus
        self.source = source
        self.live = True

    def detach(self) -> None:
        """Disconnect from the bus. Safe to call more than once."""
        if not self.live:
            return
        self.live = False
        self._bus._release(self)


class AudioMixBus:
    """Single-slot audio sink feeding float32 PCM blocks to subscribers."""

    def __init__(self, sample_rate: int, channels: int, fps: int):
        self.sample_rate = sample_rate
        self.channels = channels
        self.fps = fps
        self.samples_emitted = 0
        self.attach_count = 0
        self.detach_count = 0
        self._ticks = 0
        self._connection: Connection | None = None
        self._closed = False
        self._sinks: list[Callable[[np.ndarray], None]] = []

    @property
    def has_track(self) -> bool:
        return self.sample_rate > 0 and self.channels > 0 and self.fps > 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection(self) -> Connection | None:
        return self._connection

    def subscribe(self, sink: Callable[[np.ndarray], None]) -> None:
        self._sinks.append(sink)

    def unsubscribe(self, sink: Callable[[np.ndarray], None]) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    # ── Producer protocol ─────────────────────────────────────────

    def attach(self, source: AudioSource) -> Connection:
        if self._closed:
            raise AudioBusClosedError("Cannot attach to a closed mix bus")
        if self._connection is not None:
            raise AudioBusBusyError(
                "Mix bus already has a live connection; detach it first"
            )
        self._connection = Connection(self, source)
        self.attach_count += 1
        return self._connection

    def _release(self, connection: Connection) -> None:
        if self._connection is connection:
            self._connection = None
            self.detach_count += 1

    # ── Clocking ──────────────────────────────────────────────────

    def advance(self, position: float) -> np.ndarray | None:
        """Emit one tick of audio read at the producer's `position`.

        Returns the emitted block (None if the bus has no audio track).
        """
        if self._closed:
            raise AudioBusClosedError("Cannot advance a closed mix bus")
        if not self.has_track:
            return None

        self._ticks += 1
        end = round(self._ticks * self.sample_rate / self.fps)
        count = end - self.samples_emitted
        self.samples_emitted = end
        if count <= 0:
            return None

        if self._connection is not None:
            raw = self._connection.source.read(position, count, self.sample_rate)
            block = self._fit(raw, count)
        else:
            block = np.zeros((count, self.channels), dtype=np.float32)

        for sink in list(self._sinks):
            sink(block)
        return block

    def _fit(self, samples, count: int) -> np.ndarray:
        """Coerce producer samples to (count, channels) float32 in [-1, 1]."""
        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)

        src_channels = samples.shape[1]
        if src_channels != self.channels:
            if self.channels == 1:
                samples = samples.mean(axis=1, keepdims=True)
            elif src_channels == 1:
                samples = np.repeat(samples, self.channels, axis=1)
            else:
                samples = samples[:, :self.channels]

        if samples.shape[0] < count:
            pad = np.zeros((count - samples.shape[0], self.channels), dtype=np.float32)
            samples = np.concatenate([samples, pad])
        elif samples.shape[0] > count:
            samples = samples[:count]

        return np.clip(samples, -1.0, 1.0)

    def close(self) -> None:
        """Detach any live producer and refuse further use."""
        if self._closed:
            return
        if self._connection is not None:
            logger.debug("Closing mix bus with a live connection; detaching it")
            self._connection.detach()
        self._closed = True
        self._sinks.clear()
