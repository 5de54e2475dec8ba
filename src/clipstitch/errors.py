"""Error taxonomy for the stitching pipeline.

Input errors, per-clip decode/playback errors, mix-bus and raster-target
protocol violations, encoder errors, and the sequencer-level wrapper that
names the clip responsible for an aborted run.

Only AudioAttachError is recoverable (the clip plays silent). Every other
error aborts the run.
"""


class ClipStitchError(Exception):
    """Base class for all clipstitch errors."""


# ── Input ─────────────────────────────────────────────────────────


class EmptyInputError(ClipStitchError):
    """The clip sequence handed to the sequencer is empty."""

    def __init__(self, message: str = "No clips to stitch"):
        super().__init__(message)


class NoValidClipsError(ClipStitchError):
    """No candidate file was recognized as a video clip."""

    def __init__(self, rejected: list[str] | None = None):
        self.rejected = list(rejected or [])
        message = "No video clips found"
        if self.rejected:
            message += f" (rejected {len(self.rejected)} file(s): {', '.join(self.rejected)})"
        super().__init__(message)


# ── Per-clip decode / playback ────────────────────────────────────


class ClipError(ClipStitchError):
    """An error tied to one clip, identified by its display name."""

    def __init__(self, clip_name: str, detail: str):
        self.clip_name = clip_name
        self.detail = detail
        super().__init__(f"{clip_name}: {detail}")


class DecodeOpenError(ClipError):
    """The clip's media resource could not be opened for decoding."""


class DecodeRuntimeError(ClipError):
    """Decoding failed while the clip was playing."""


class PlaybackStartError(ClipError):
    """Playback of an opened clip could not begin."""


class AudioAttachError(ClipError):
    """The clip's audio could not be connected to the mix bus.

    Non-fatal: the driver logs it and the clip contributes silence.
    """


# ── Shared resource protocol ──────────────────────────────────────


class AudioBusBusyError(ClipStitchError):
    """A second producer tried to attach while a connection is live."""


class AudioBusClosedError(ClipStitchError):
    """The mix bus was used after it was closed."""


class RasterTargetBusyError(ClipStitchError):
    """A second writer tried to claim the raster target."""


# ── Encoder ───────────────────────────────────────────────────────


class EncoderError(ClipStitchError):
    """Base class for encoder-side failures."""


class NoTrackError(EncoderError):
    """The combined input stream has no audio or video track."""


class EncoderAbortedError(EncoderError):
    """Encoding stopped before stop() was called."""


class NoEncoderAvailableError(EncoderError):
    """Strict negotiation found no supported container/codec combination."""


# ── Sequencer ─────────────────────────────────────────────────────


class ClipProcessingError(ClipStitchError):
    """A clip failed and the whole run was aborted.

    Attributes:
        clip_index: 0-based index of the failing clip.
        clip_name: display name of the failing clip.
        cause: the originating error.
    """

    def __init__(self, clip_index: int, clip_name: str, cause: BaseException):
        self.clip_index = clip_index
        self.clip_name = clip_name
        self.cause = cause
        super().__init__(f"Clip {clip_index + 1} ({clip_name}) failed: {cause}")


class RunCancelledError(ClipStitchError):
    """A cancellation request was observed at a clip boundary."""

    def __init__(self, clip_index: int):
        self.clip_index = clip_index
        super().__init__(f"Run cancelled before clip {clip_index + 1}")
