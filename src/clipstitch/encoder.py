"""Encoder — raster frames + mix-bus audio in, one container out.

The encoder runs ffmpeg as a subprocess for the whole run. It subscribes
to the raster target (raw rgb24 frames) and the mix bus (f32le PCM) and
hands each block to a per-stream feeder thread, which writes it into the
matching ffmpeg input pipe. A reader thread collects the encoded output
from ffmpeg's stdout in arrival order. stop() closes the inputs, waits for
ffmpeg to flush, and joins the chunks into one EncodedOutput tagged with
the negotiated media type.

Container/codec negotiation walks a static preference table and picks the
first entry whose muxer and encoders are compiled into the ffmpeg build.
The probe runs once per ffmpeg binary and is cached. If nothing in the
table is supported the encoder falls back to DEFAULT_CODEC (or, with
strict negotiation, raises NoEncoderAvailableError).

Output is written to a pipe, so MP4 output is fragmented
(frag_keyframe+empty_moov) and WebM output is written without cues.
"""

import logging
import os
import queue
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import numpy as np

from .common import ffmpeg_exe
from .errors import EncoderAbortedError, NoEncoderAvailableError, NoTrackError
from .settings import StitchSettings


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
VIDEO_QUEUE_FRAMES = 8
AUDIO_QUEUE_BLOCKS = 64
FINALIZE_TIMEOUT = 120.0
STDERR_TAIL = 800


# ── Codec table ───────────────────────────────────────────────────


@dataclass(frozen=True)
class CodecCandidate:
    """One container + video codec + audio codec combination."""
    mime_type: str
    muxer: str
    video_codec: str
    audio_codec: str

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)

    def supported_by(self, encoders: frozenset[str], muxers: frozenset[str]) -> bool:
        return (
            self.muxer in muxers
            and self.video_codec in encoders
            and self.audio_codec in encoders
        )


CODEC_CANDIDATES = (
    CodecCandidate("video/mp4;codecs=avc1,mp4a.40.2", "mp4", "libx264", "aac"),
    CodecCandidate("video/mp4;codecs=avc1", "mp4", "libopenh264", "aac"),
    CodecCandidate("video/mp4", "mp4", "mpeg4", "aac"),
    CodecCandidate("video/webm;codecs=vp9,opus", "webm", "libvpx-vp9", "libopus"),
    CodecCandidate("video/webm", "webm", "libvpx", "libvorbis"),
)

DEFAULT_CODEC = CodecCandidate("video/webm", "webm", "libvpx", "libvorbis")


def extension_for(mime_type: str) -> str:
    """File extension for a negotiated media type: 'mp4' or 'webm'."""
    return "mp4" if "mp4" in mime_type else "webm"


def _parse_capability_list(text: str, flag_chars: str) -> frozenset[str]:
    """Parse `ffmpeg -encoders` / `-muxers` output into a set of names.

    Listing lines look like ` V....D libx264   H.264 ...` or ` E mp4  MP4 ...`.
    """
    names = set()
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        flags, name = parts[0], parts[1]
        if name == "=" or not set(flags) <= set(flag_chars + "."):
            continue
        names.update(name.split(","))
    return frozenset(names)


@lru_cache(maxsize=8)
def available_encoders(ffmpeg: str) -> frozenset[str]:
    """Encoder names compiled into the given ffmpeg build (cached)."""
    try:
        result = subprocess.run(
            [ffmpeg, "-hide_banner", "-encoders"],
            capture_output=True, text=True, check=True, timeout=15,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("Could not list ffmpeg encoders: %s", exc)
        return frozenset()
    return _parse_capability_list(result.stdout, "VASFXBD")


@lru_cache(maxsize=8)
def available_muxers(ffmpeg: str) -> frozenset[str]:
    """Muxer names compiled into the given ffmpeg build (cached)."""
    try:
        result = subprocess.run(
            [ffmpeg, "-hide_banner", "-muxers"],
            capture_output=True, text=True, check=True, timeout=15,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("Could not list ffmpeg muxers: %s", exc)
        return frozenset()
    return _parse_capability_list(result.stdout, "DE")


def order_candidates(
    candidates: tuple[CodecCandidate, ...], prefer: tuple[str, ...] = (),
) -> list[CodecCandidate]:
    """Move preferred mime types to the front, keeping table order otherwise."""
    preferred = [c for m in prefer for c in candidates if c.mime_type == m]
    return preferred + [c for c in candidates if c not in preferred]


def negotiate_codec(
    encoders: frozenset[str],
    muxers: frozenset[str],
    candidates: tuple[CodecCandidate, ...] = CODEC_CANDIDATES,
    prefer: tuple[str, ...] = (),
    strict: bool = False,
) -> CodecCandidate:
    """Pick the first supported candidate.

    Raises:
        NoEncoderAvailableError: strict is set and nothing is supported.
    """
    for candidate in order_candidates(candidates, prefer):
        if candidate.supported_by(encoders, muxers):
            return candidate

    if strict:
        raise NoEncoderAvailableError(
            "No supported container/codec combination: "
            + ", ".join(c.mime_type for c in candidates)
        )
    logger.warning(
        "No listed container/codec is supported; falling back to %s",
        DEFAULT_CODEC.mime_type,
    )
    return DEFAULT_CODEC


# ── ffmpeg arguments ──────────────────────────────────────────────


def _video_codec_params(codec: str, settings: StitchSettings) -> list[str]:
    """Return encoder-specific ffmpeg params for the given video codec."""
    if codec == "libx264":
        return ["-preset", settings.preset, "-crf", str(settings.crf), "-pix_fmt", "yuv420p"]
    if codec == "libopenh264":
        return ["-b:v", "4M", "-pix_fmt", "yuv420p"]
    if codec == "libvpx-vp9":
        return [
            "-crf", "32", "-b:v", "0", "-deadline", "realtime",
            "-cpu-used", "8", "-row-mt", "1", "-pix_fmt", "yuv420p",
        ]
    if codec == "libvpx":
        return ["-b:v", "4M", "-deadline", "realtime", "-cpu-used", "8", "-pix_fmt", "yuv420p"]
    return ["-q:v", "3", "-pix_fmt", "yuv420p"]


def _audio_codec_params(codec: str) -> list[str]:
    if codec == "libvorbis":
        return ["-q:a", "4"]
    return ["-b:a", "128k"]


def _muxer_params(muxer: str) -> list[str]:
    if muxer == "mp4":
        return ["-movflags", "frag_keyframe+empty_moov+default_base_moof"]
    return []


def build_command(
    ffmpeg: str,
    codec: CodecCandidate,
    settings: StitchSettings,
    video_stream=None,
    audio_stream=None,
    audio_fd: int | None = None,
) -> list[str]:
    """Assemble the ffmpeg command line for the given tracks.

    The first input is read from stdin; a second input (audio alongside
    video) is read from the inherited pipe `audio_fd`. Raw inputs skip
    stream probing: ffmpeg opens inputs in order and stops reading video
    while it probes the audio pipe.
    """
    cmd = [ffmpeg, "-hide_banner", "-loglevel", "error", "-nostats"]
    maps = []

    if video_stream is not None:
        cmd += [
            "-thread_queue_size", "512",
            "-probesize", "32", "-analyzeduration", "0",
            "-f", "rawvideo", "-pix_fmt", "rgb24",
            "-s", f"{video_stream.width}x{video_stream.height}",
            "-framerate", str(video_stream.fps),
            "-i", "pipe:0",
        ]
        maps.append(f"{len(maps)}:v")

    if audio_stream is not None:
        source = "pipe:0" if video_stream is None else f"pipe:{audio_fd}"
        cmd += [
            "-thread_queue_size", "512",
            "-probesize", "32", "-analyzeduration", "0",
            "-f", "f32le",
            "-ar", str(audio_stream.sample_rate),
            "-ac", str(audio_stream.channels),
            "-i", source,
        ]
        maps.append(f"{len(maps)}:a")

    for m in maps:
        cmd += ["-map", m]

    if video_stream is not None:
        cmd += ["-c:v", codec.video_codec, *_video_codec_params(codec.video_codec, settings)]
        if video_stream.width % 2 or video_stream.height % 2:
            # 4:2:0 chroma needs even dimensions.
            cmd += ["-vf", "pad=ceil(iw/2)*2:ceil(ih/2)*2"]
    if audio_stream is not None:
        cmd += ["-c:a", codec.audio_codec, *_audio_codec_params(codec.audio_codec)]

    cmd += [*_muxer_params(codec.muxer), "-f", codec.muxer, "pipe:1"]
    return cmd


# ── Output ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EncodedOutput:
    """The finalized run output. Owned by the caller once returned."""
    data: bytes
    mime_type: str
    chunk_count: int = 0

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)

    @property
    def size(self) -> int:
        return len(self.data)

    def write_to(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


# ── Encoder ───────────────────────────────────────────────────────


class _Feeder:
    """Writes queued blocks into one ffmpeg input pipe on its own thread."""

    def __init__(self, name: str, pipe, maxsize: int, on_error):
        self.name = name
        self._pipe = pipe
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._on_error = on_error
        self._thread = threading.Thread(
            target=self._run, name=f"clipstitch-feed-{name}", daemon=True,
        )
        self._thread.start()

    def put(self, data: bytes) -> None:
        self._queue.put(data)

    def close(self, timeout: float | None = None) -> None:
        self._queue.put(None)
        self._thread.join(timeout)

    def _run(self) -> None:
        broken = False
        try:
            while True:
                data = self._queue.get()
                if data is None:
                    break
                if broken:
                    # Keep draining so producers never block on a dead pipe.
                    continue
                try:
                    self._pipe.write(data)
                except (OSError, ValueError) as exc:
                    broken = True
                    self._on_error(self.name, exc)
        finally:
            try:
                self._pipe.close()
            except OSError:
                pass


class Encoder:
    """ffmpeg-backed encoder for one run.

    start() subscribes to the streams and launches ffmpeg; stop() returns
    the finalized output; abort() tears everything down without output.
    Negotiation happens at most once per Encoder and is reused.
    """

    def __init__(
        self,
        settings: StitchSettings | None = None,
        ffmpeg: str | None = None,
        candidates: tuple[CodecCandidate, ...] = CODEC_CANDIDATES,
    ):
        self.settings = settings or StitchSettings()
        self.ffmpeg = ffmpeg or ffmpeg_exe()
        self.candidates = candidates
        self.codec: CodecCandidate | None = None
        self.active = False
        self._process: subprocess.Popen | None = None
        self._chunks: list[bytes] = []
        self._feeders: dict[str, _Feeder] = {}
        self._reader: threading.Thread | None = None
        self._stderr = None
        self._failure: str | None = None
        self._video_stream = None
        self._audio_stream = None

    # ── Negotiation ───────────────────────────────────────────────

    def negotiate(self) -> CodecCandidate:
        if self.codec is None:
            self.codec = negotiate_codec(
                available_encoders(self.ffmpeg),
                available_muxers(self.ffmpeg),
                candidates=self.candidates,
                prefer=self.settings.prefer,
                strict=self.settings.strict_codecs,
            )
            logger.info("Using media type %s", self.codec.mime_type)
        return self.codec

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(self, video_stream, audio_stream=None) -> None:
        """Negotiate, launch ffmpeg and subscribe to the streams.

        Raises:
            NoTrackError: Neither stream carries a track.
            EncoderAbortedError: ffmpeg could not be launched.
        """
        if self.active:
            raise RuntimeError("Encoder already started")

        if video_stream is not None and not video_stream.has_track:
            video_stream = None
        if audio_stream is not None and not audio_stream.has_track:
            audio_stream = None
        if video_stream is None and audio_stream is None:
            raise NoTrackError("Nothing to encode: no video or audio track")

        codec = self.negotiate()

        audio_r = audio_w = None
        if video_stream is not None and audio_stream is not None:
            audio_r, audio_w = os.pipe()

        cmd = build_command(
            self.ffmpeg, codec, self.settings,
            video_stream=video_stream, audio_stream=audio_stream, audio_fd=audio_r,
        )
        logger.debug("Launching ffmpeg: %s", " ".join(cmd))

        self._stderr = tempfile.TemporaryFile()
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self._stderr,
                pass_fds=(audio_r,) if audio_r is not None else (),
            )
        except OSError as exc:
            for fd in (audio_r, audio_w):
                if fd is not None:
                    os.close(fd)
            self._stderr.close()
            self._stderr = None
            raise EncoderAbortedError(f"Could not launch ffmpeg: {exc}") from exc
        finally:
            if audio_r is not None and self._process is not None:
                os.close(audio_r)

        self._chunks = []
        self._failure = None
        self.active = True

        self._reader = threading.Thread(
            target=self._collect, args=(self._process.stdout,),
            name="clipstitch-collect", daemon=True,
        )
        self._reader.start()

        if video_stream is not None:
            self._feeders["video"] = _Feeder(
                "video", self._process.stdin, VIDEO_QUEUE_FRAMES, self._record_failure,
            )
            if audio_stream is not None:
                self._feeders["audio"] = _Feeder(
                    "audio", os.fdopen(audio_w, "wb"), AUDIO_QUEUE_BLOCKS,
                    self._record_failure,
                )
        else:
            self._feeders["audio"] = _Feeder(
                "audio", self._process.stdin, AUDIO_QUEUE_BLOCKS, self._record_failure,
            )

        self._video_stream = video_stream
        self._audio_stream = audio_stream
        if video_stream is not None:
            video_stream.subscribe(self._on_video_frame)
        if audio_stream is not None:
            audio_stream.subscribe(self._on_audio_block)

    def stop(self) -> EncodedOutput:
        """Flush, finalize and release. Returns the concatenated output.

        Raises:
            EncoderAbortedError: ffmpeg failed or exited early.
        """
        if not self.active:
            raise RuntimeError("Encoder is not running")
        try:
            for feeder in self._feeders.values():
                feeder.close()
            try:
                returncode = self._process.wait(timeout=FINALIZE_TIMEOUT)
            except subprocess.TimeoutExpired as exc:
                raise EncoderAbortedError("ffmpeg did not finish finalizing in time") from exc
            self._reader.join()

            if returncode != 0 or self._failure is not None:
                raise EncoderAbortedError(self._abort_message(returncode))

            output = EncodedOutput(
                data=b"".join(self._chunks),
                mime_type=self.codec.mime_type,
                chunk_count=len(self._chunks),
            )
        finally:
            self._release()

        logger.info(
            "Finalized %d bytes (%s) from %d chunks",
            output.size, output.mime_type, output.chunk_count,
        )
        return output

    def abort(self) -> None:
        """Best-effort teardown with no output. Safe to call when idle."""
        if not self.active:
            return
        try:
            if self._process.poll() is None:
                self._process.kill()
            for feeder in self._feeders.values():
                feeder.close(timeout=5)
            self._process.wait(timeout=10)
            if self._reader is not None:
                self._reader.join(timeout=5)
        finally:
            self._release()

    # ── Stream handlers ───────────────────────────────────────────

    def _check_alive(self) -> None:
        if self._failure is not None or self._process.poll() is not None:
            raise EncoderAbortedError(self._abort_message(self._process.poll()))

    def _on_video_frame(self, frame: np.ndarray) -> None:
        self._check_alive()
        self._feeders["video"].put(np.ascontiguousarray(frame, dtype=np.uint8).tobytes())

    def _on_audio_block(self, block: np.ndarray) -> None:
        self._check_alive()
        self._feeders["audio"].put(np.ascontiguousarray(block, dtype="<f4").tobytes())

    def _collect(self, stdout) -> None:
        for chunk in iter(lambda: stdout.read1(CHUNK_SIZE), b""):
            self._chunks.append(chunk)
        stdout.close()

    def _record_failure(self, name: str, exc: BaseException) -> None:
        if self._failure is None:
            self._failure = f"{name} pipe closed: {exc}"

    # ── Teardown ──────────────────────────────────────────────────

    def _stderr_tail(self) -> str:
        if self._stderr is None:
            return ""
        self._stderr.seek(0)
        text = self._stderr.read().decode(errors="replace").strip()
        return text[-STDERR_TAIL:]

    def _abort_message(self, returncode: int | None) -> str:
        parts = ["Encoder stopped unexpectedly"]
        if returncode is not None:
            parts.append(f"(exit status {returncode})")
        if self._failure:
            parts.append(f"- {self._failure}")
        tail = self._stderr_tail()
        if tail:
            parts.append(f"\n{tail}")
        return " ".join(parts)

    def _release(self) -> None:
        if self._video_stream is not None:
            self._video_stream.unsubscribe(self._on_video_frame)
        if self._audio_stream is not None:
            self._audio_stream.unsubscribe(self._on_audio_block)
        if self._process is not None and self._process.poll() is None:
            self._process.kill()
            self._process.wait()
        if self._stderr is not None:
            self._stderr.close()
        self._video_stream = None
        self._audio_stream = None
        self._feeders = {}
        self._reader = None
        self._process = None
        self._stderr = None
        self._chunks = []
        self.active = False
